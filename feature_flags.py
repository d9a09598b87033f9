# feature_flags.py
"""
Per-tenant module gating based on the subscription plan.
Modules are controlled by:
1. The plan catalog (tier_config/plans.py)
2. The tenant's plan row, loaded once per request

A plan that is still loading renders nothing, and a plan that failed to
load denies. Neither ever grants access.
"""

from dataclasses import dataclass, field
from enum import Enum
from functools import wraps
from typing import Iterable, List, Optional, Union

from flask import g, jsonify, redirect, render_template, request
from flask_login import current_user
from markupsafe import Markup

from services.plan_service import PlanFeatures, load_plan_features
from services.supabase_client import request_client
from services.tenant_service import current_tenant_id
from tier_config import plans


# =============================================================================
# GATE DECISIONS
# =============================================================================

class GateOutcome(str, Enum):
    NOTHING = 'nothing'                # plan still loading, or hidden when disabled
    CONTENT = 'content'
    FALLBACK = 'fallback'
    UPGRADE_PROMPT = 'upgrade_prompt'


class PageGateOutcome(str, Enum):
    LOADING = 'loading'
    CONTENT = 'content'
    PAGE_DENIED = 'page_denied'


@dataclass
class GateDecision:
    """
    Result of a gate check.

    Attributes:
        outcome: GateOutcome or PageGateOutcome
        modules: Modules that were required (any of them suffices)
        plan: Current plan, None when unresolved
        plan_display_name: Current plan label for the prompt
        upgrade_plan: Next tier up, if any (None when the plan is unknown)
        fallback: Caller-supplied fallback, set for FALLBACK
        error: Plan lookup error, when that is why access was denied
    """
    outcome: Enum
    modules: List[str] = field(default_factory=list)
    plan: Optional[str] = None
    plan_display_name: str = ''
    upgrade_plan: Optional[str] = None
    fallback: Optional[object] = None
    error: Optional[str] = None

    @property
    def allowed(self) -> bool:
        return self.outcome in (GateOutcome.CONTENT, PageGateOutcome.CONTENT)

    @property
    def module_names(self) -> List[str]:
        return [plans.module_display_name(m) for m in self.modules]

    @property
    def module_names_text(self) -> str:
        return ', '.join(self.module_names)

    @property
    def upgrade_plan_display_name(self) -> Optional[str]:
        return plans.plan_display_name(self.upgrade_plan) if self.upgrade_plan else None

    def to_dict(self) -> dict:
        return {
            'outcome': self.outcome.value,
            'allowed': self.allowed,
            'modules': list(self.modules),
            'module_names': self.module_names,
            'plan': self.plan,
            'plan_display_name': self.plan_display_name,
            'upgrade_plan': self.upgrade_plan,
            'error': self.error,
        }

    def denial_message(self) -> str:
        if self.plan is None:
            return self.error or f"{self.module_names_text} n'est pas disponible : offre inconnue"
        return f"{self.module_names_text} n'est pas disponible avec votre offre {self.plan_display_name}"


def _as_module_list(module_or_modules: Union[str, Iterable[str]]) -> List[str]:
    if isinstance(module_or_modules, str):
        return [module_or_modules]
    return list(module_or_modules)


def _denied_decision(outcome, features: PlanFeatures, modules: List[str], fallback=None) -> GateDecision:
    return GateDecision(
        outcome=outcome,
        modules=modules,
        plan=features.plan,
        plan_display_name=features.plan_display_name,
        upgrade_plan=plans.upgrade_path(features.plan) if features.plan else None,
        fallback=fallback,
        error=features.error,
    )


def resolve_module_gate(features: PlanFeatures, module_or_modules, fallback=None,
                        hide_if_disabled: bool = False) -> GateDecision:
    """
    Decide what an inline gate renders.

    Args:
        features: PlanFeatures of the tenant
        module_or_modules: Module name, or a list where ANY enabled module passes
        fallback: Content to show instead of the upgrade prompt (optional)
        hide_if_disabled: Render nothing instead of fallback/prompt when denied

    Returns:
        GateDecision with NOTHING, CONTENT, FALLBACK or UPGRADE_PROMPT
    """
    modules = _as_module_list(module_or_modules)

    # While loading, render nothing to avoid a deny-then-allow flash
    if features.loading:
        return GateDecision(outcome=GateOutcome.NOTHING, modules=modules)

    if features.has_any_module(modules):
        return GateDecision(
            outcome=GateOutcome.CONTENT,
            modules=modules,
            plan=features.plan,
            plan_display_name=features.plan_display_name,
        )

    if hide_if_disabled:
        return _denied_decision(GateOutcome.NOTHING, features, modules)

    if fallback is not None:
        return _denied_decision(GateOutcome.FALLBACK, features, modules, fallback=fallback)

    return _denied_decision(GateOutcome.UPGRADE_PROMPT, features, modules)


def resolve_module_gate_page(features: PlanFeatures, module_or_modules) -> GateDecision:
    """Page-level variant: LOADING, CONTENT or PAGE_DENIED."""
    modules = _as_module_list(module_or_modules)

    if features.loading:
        return GateDecision(outcome=PageGateOutcome.LOADING, modules=modules)

    if features.has_any_module(modules):
        return GateDecision(
            outcome=PageGateOutcome.CONTENT,
            modules=modules,
            plan=features.plan,
            plan_display_name=features.plan_display_name,
        )

    return _denied_decision(PageGateOutcome.PAGE_DENIED, features, modules)


# =============================================================================
# REQUEST STATE
# =============================================================================

def current_plan_features() -> PlanFeatures:
    """Get the PlanFeatures of the request tenant, loaded once per request."""
    if 'plan_features' not in g:
        g.plan_features = load_plan_features(request_client(), current_tenant_id())
    return g.plan_features


def render_module_gate(module_or_modules, content='', fallback=None,
                       hide_if_disabled: bool = False, features: PlanFeatures = None) -> Markup:
    """
    Render an inline gate for a template block.

    Usage in templates:
        {{ module_gate('payroll', payroll_widget) }}
    """
    if features is None:
        features = current_plan_features()
    decision = resolve_module_gate(features, module_or_modules, fallback=fallback,
                                   hide_if_disabled=hide_if_disabled)

    if decision.outcome == GateOutcome.CONTENT:
        return Markup(content)
    if decision.outcome == GateOutcome.FALLBACK:
        return Markup(decision.fallback)
    if decision.outcome == GateOutcome.UPGRADE_PROMPT:
        return Markup(render_template('gates/upgrade_prompt.html', decision=decision))
    return Markup('')


# =============================================================================
# ROUTE PROTECTION DECORATOR
# =============================================================================

def module_required(*modules: str):
    """
    Decorator to require a plan module for a route.
    With several modules, any one of them grants access.
    Returns the full-page denial (403) if the tenant's plan lacks them.

    Usage:
        @module_required('payroll')
        def payroll():
            ...
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            wants_json = request.is_json or request.accept_mimetypes.best == 'application/json'

            if not current_user.is_authenticated:
                if wants_json:
                    return jsonify({'success': False, 'error': 'Authentification requise'}), 401
                return redirect('/connexion')

            decision = resolve_module_gate_page(current_plan_features(), list(modules))
            if not decision.allowed:
                if wants_json:
                    return jsonify({
                        'success': False,
                        'error': decision.denial_message(),
                        'gate': decision.to_dict(),
                    }), 403
                return render_template('gates/module_locked_page.html', decision=decision), 403

            return f(*args, **kwargs)
        return decorated_function
    return decorator


# =============================================================================
# TEMPLATE HELPERS
# =============================================================================

def get_feature_context():
    """
    Get plan context for templates.
    Use in templates: {% if has_module('payroll') %}

    Returns:
        Dict with the plan features and gate helpers
    """
    if not current_user.is_authenticated:
        features = PlanFeatures()
    else:
        features = current_plan_features()

    return {
        'plan_features': features,
        'has_module': features.has_module,
        'module_display_name': plans.module_display_name,
        'module_gate': lambda module, content='', **kwargs: render_module_gate(
            module, content, features=features, **kwargs
        ),
    }
