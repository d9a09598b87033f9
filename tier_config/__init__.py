# config package
from .plans import (
    PLAN_CONFIGS, PLAN_ORDER, MODULES, MODULE_DISPLAY_NAMES,
    modules_for, is_enabled, plans_in_order, upgrade_path,
    plan_display_name, module_display_name, get_plan_config,
)

__all__ = [
    'PLAN_CONFIGS', 'PLAN_ORDER', 'MODULES', 'MODULE_DISPLAY_NAMES',
    'modules_for', 'is_enabled', 'plans_in_order', 'upgrade_path',
    'plan_display_name', 'module_display_name', 'get_plan_config',
]
