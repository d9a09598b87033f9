# tier_config/plans.py
"""
Plan catalog for tenant subscriptions.
Maps each plan to the modules it unlocks. Edit the table, not the functions.

Each plan's module set must include everything from the plan before it
(start < pro < prime < founder).
"""

from typing import Optional

# =============================================================================
# PLANS AND MODULES
# =============================================================================

PLAN_START = 'start'
PLAN_PRO = 'pro'
PLAN_PRIME = 'prime'
PLAN_FOUNDER = 'founder'

PLAN_ORDER = [PLAN_START, PLAN_PRO, PLAN_PRIME, PLAN_FOUNDER]

# Unknown plan values resolve to this tier, never to a higher one
DEFAULT_PLAN = PLAN_START

MODULES = [
    'clients',
    'contracts',
    'commissions',
    'statements',
    'membership',
    'payroll',
    'emailing',
    'automation',
    'mandate_automation',
    'client_portal',
    'advanced_dashboard',
    'advanced_settings',
    'qr_invoice',
    'ia_scan',
]

_START_MODULES = ['clients', 'contracts', 'commissions', 'statements', 'membership']
_PRO_MODULES = _START_MODULES + ['payroll', 'emailing', 'advanced_dashboard']
_PRIME_MODULES = _PRO_MODULES + [
    'automation', 'mandate_automation', 'client_portal',
    'advanced_settings', 'qr_invoice', 'ia_scan',
]

PLAN_CONFIGS = {
    PLAN_START: {
        'name': PLAN_START,
        'display_name': 'Start',
        'description': 'Pour démarrer',
        'modules': frozenset(_START_MODULES),
        'monthly_price': 69,
        'seats_included': 1,
        'extra_seat_price': 20,
        'stripe_product_id': 'prod_TjgUGx2FNdlhas',
        'stripe_price_id': 'price_1SmDBeF7ZITS358AgETS41f5',
    },
    PLAN_PRO: {
        'name': PLAN_PRO,
        'display_name': 'Pro',
        'description': 'Pour les cabinets établis',
        'modules': frozenset(_PRO_MODULES),
        'monthly_price': 150,
        'seats_included': 1,
        'extra_seat_price': 20,
        'stripe_product_id': 'prod_TjgmLXohud7WAb',
        'stripe_price_id': 'price_1SmDSmF7ZITS358AmnGzuosw',
    },
    PLAN_PRIME: {
        'name': PLAN_PRIME,
        'display_name': 'Prime',
        'description': "L'expérience complète",
        'modules': frozenset(_PRIME_MODULES),
        'monthly_price': 250,
        'seats_included': 1,
        'extra_seat_price': 20,
        'stripe_product_id': 'prod_TjgrBLxInrbnSd',
        'stripe_price_id': 'price_1SmDU7F7ZITS358ARd44a4sb',
    },
    PLAN_FOUNDER: {
        'name': PLAN_FOUNDER,
        'display_name': 'Prime Founder',
        'description': 'Offre de lancement 6 mois',
        'modules': frozenset(_PRIME_MODULES),
        'monthly_price': 150,
        'seats_included': 1,
        'extra_seat_price': 20,
        'stripe_product_id': 'prod_Tk0TPGFCuYQu3Q',
        'stripe_price_id': 'price_1SmWSCF7ZITS358Au8LylsBw',
    },
}

# Fallback labels, the UI translation keys below take precedence
MODULE_DISPLAY_NAMES = {
    'clients': 'Gestion des clients',
    'contracts': 'Gestion des contrats',
    'commissions': 'Commissions',
    'statements': 'Décomptes',
    'membership': 'Adhésions',
    'payroll': 'Masse salariale',
    'emailing': 'Emailing & Campagnes',
    'automation': 'Automatisations',
    'mandate_automation': 'Automation mandats',
    'client_portal': 'Espace client',
    'advanced_dashboard': 'Dashboard avancé',
    'advanced_settings': 'Paramètres avancés',
    'qr_invoice': 'Factures QR',
    'ia_scan': 'IA Scan Documents',
}

MODULE_TRANSLATION_KEYS = {
    'clients': 'planModules.clientManagement',
    'contracts': 'planModules.contractManagement',
    'commissions': 'planModules.commissions',
    'statements': 'planModules.statements',
    'membership': 'planModules.memberships',
    'payroll': 'planModules.payroll',
    'emailing': 'planModules.emailCampaigns',
    'automation': 'planModules.automations',
    'mandate_automation': 'planModules.mandateAutomation',
    'client_portal': 'planModules.clientPortal',
    'advanced_dashboard': 'dashboard.title',
    'advanced_settings': 'settings.title',
    'qr_invoice': 'planModules.qrInvoices',
    'ia_scan': 'planModules.iaScan',
}

MODULE_ICONS = {
    'clients': 'Users',
    'contracts': 'FileCheck',
    'commissions': 'DollarSign',
    'statements': 'FileText',
    'membership': 'UserPlus',
    'payroll': 'Wallet',
    'emailing': 'Mail',
    'automation': 'Zap',
    'mandate_automation': 'FileSignature',
    'client_portal': 'Globe',
    'advanced_dashboard': 'LayoutDashboard',
    'advanced_settings': 'Settings',
    'qr_invoice': 'QrCode',
    'ia_scan': 'Sparkles',
}


# =============================================================================
# LOOKUPS
# =============================================================================

def get_plan_config(plan: Optional[str]) -> dict:
    """Get the config for a plan, falling back to the start tier."""
    return PLAN_CONFIGS.get(plan, PLAN_CONFIGS[DEFAULT_PLAN])


def modules_for(plan: Optional[str]) -> frozenset:
    """
    Get the modules enabled for a plan.

    Args:
        plan: Plan name ('start', 'pro', 'prime', 'founder')

    Returns:
        Frozen set of module names. Unknown plans get the start set.
    """
    return get_plan_config(plan)['modules']


def is_enabled(plan: Optional[str], module: str) -> bool:
    """Check if a module is enabled for a plan."""
    return module in modules_for(plan)


def plans_in_order() -> list:
    """Get all plans from lowest to highest tier."""
    return list(PLAN_ORDER)


def upgrade_path(plan: Optional[str]) -> Optional[str]:
    """
    Get the next plan up from the given one.

    Returns:
        The next plan name, or None if already on the top tier.
    """
    if plan not in PLAN_CONFIGS:
        plan = DEFAULT_PLAN
    index = PLAN_ORDER.index(plan)
    if index < len(PLAN_ORDER) - 1:
        return PLAN_ORDER[index + 1]
    return None


def plan_display_name(plan: Optional[str]) -> str:
    return get_plan_config(plan)['display_name']


def module_display_name(module: str) -> str:
    return MODULE_DISPLAY_NAMES.get(module, module)
