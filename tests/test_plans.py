"""
Plan catalog and plan lookup tests.

Run with: python -m pytest tests/test_plans.py -v
"""

import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from models import TenantPlanInfo
from services.plan_service import PlanFeatures, fetch_tenant_plan_info, load_plan_features
from services.exceptions import PlanLookupError
from tier_config import plans

import pytest


class TestPlanCatalog:
    """Test the plan to module mapping."""

    def test_plans_are_ordered(self):
        """Plans should go start < pro < prime < founder."""
        assert plans.plans_in_order() == ['start', 'pro', 'prime', 'founder']

    def test_each_plan_includes_the_previous_one(self):
        """Every plan should keep all modules of the tier below it."""
        order = plans.plans_in_order()
        for lower, higher in zip(order, order[1:]):
            assert plans.modules_for(lower) <= plans.modules_for(higher)

    def test_start_modules(self):
        """Start should unlock exactly the five base modules."""
        assert plans.modules_for('start') == frozenset(
            ['clients', 'contracts', 'commissions', 'statements', 'membership']
        )

    def test_pro_adds_payroll(self):
        """Payroll should be a pro module."""
        assert not plans.is_enabled('start', 'payroll')
        assert plans.is_enabled('pro', 'payroll')
        assert plans.is_enabled('pro', 'emailing')
        assert plans.is_enabled('pro', 'advanced_dashboard')

    def test_prime_and_founder_share_modules(self):
        """Founder should unlock the same modules as prime."""
        assert plans.modules_for('founder') == plans.modules_for('prime')
        assert plans.is_enabled('prime', 'ia_scan')

    def test_unknown_plan_gets_start_modules(self):
        """An unknown plan should never grant more than start."""
        assert plans.modules_for('enterprise') == plans.modules_for('start')
        assert plans.modules_for(None) == plans.modules_for('start')

    def test_upgrade_path(self):
        """Upgrade path should point one tier up, None at the top."""
        assert plans.upgrade_path('start') == 'pro'
        assert plans.upgrade_path('pro') == 'prime'
        assert plans.upgrade_path('prime') == 'founder'
        assert plans.upgrade_path('founder') is None
        assert plans.upgrade_path('unknown') == 'pro'

    def test_display_names(self):
        """Labels should come from the catalog."""
        assert plans.plan_display_name('founder') == 'Prime Founder'
        assert plans.module_display_name('payroll') == 'Masse salariale'
        assert plans.module_display_name('not_a_module') == 'not_a_module'

    def test_every_module_has_a_label(self):
        """Every catalog module should have a display name and an icon."""
        for module in plans.MODULES:
            assert module in plans.MODULE_DISPLAY_NAMES
            assert module in plans.MODULE_ICONS


class TestPlanFeatures:
    """Test PlanFeatures states."""

    def test_pending_denies_everything(self):
        """A plan that is still loading should deny every module."""
        features = PlanFeatures.pending()
        assert features.loading
        assert not features.has_module('clients')
        assert features.enabled_modules == frozenset()

    def test_missing_info_denies_everything(self):
        """No plan info should deny every module."""
        features = PlanFeatures()
        assert not features.is_resolved
        assert not features.has_any_module(['clients', 'payroll'])

    def test_resolved_plan(self):
        """A resolved plan should expose its modules."""
        features = PlanFeatures(info=TenantPlanInfo(plan='pro'))
        assert features.has_module('payroll')
        assert not features.has_module('ia_scan')
        assert features.has_any_module(['ia_scan', 'payroll'])
        assert not features.has_all_modules(['ia_scan', 'payroll'])
        assert not features.has_all_modules([])

    def test_to_dict(self):
        """Serialized features should carry the plan and sorted modules."""
        data = PlanFeatures(info=TenantPlanInfo(plan='start')).to_dict()
        assert data['plan'] == 'start'
        assert data['plan_display_name'] == 'Start'
        assert data['enabled_modules'] == sorted(plans.modules_for('start'))
        assert data['loading'] is False


class TestPlanLookup:
    """Test fetching the tenant plan row."""

    def test_fetch_plan_info(self, supabase):
        """Should read the plan columns of the tenant."""
        supabase.respond('tenants', data=[{'plan': 'prime', 'plan_status': 'active',
                                           'billing_status': 'paid', 'seats_included': 3,
                                           'seats_price': 25}])
        info = fetch_tenant_plan_info(supabase, 'tenant-1')

        assert info.plan == 'prime'
        assert info.seats_included == 3
        query = supabase.executed('tenants')[0]
        assert ('eq', 'id', 'tenant-1') in query.filters

    def test_zero_seat_values_use_defaults(self, supabase):
        """Zero seats and price should fall back to 1 and 20."""
        supabase.respond('tenants', data=[{'plan': 'start', 'seats_included': 0, 'seats_price': 0}])
        info = fetch_tenant_plan_info(supabase, 'tenant-1')
        assert info.seats_included == 1
        assert info.seats_price == 20

    def test_missing_tenant_returns_none(self, supabase):
        """No row should give None."""
        assert fetch_tenant_plan_info(supabase, 'tenant-1') is None

    def test_backend_error_raises(self, supabase):
        """A failed fetch should raise PlanLookupError."""
        supabase.fail('tenants')
        with pytest.raises(PlanLookupError):
            fetch_tenant_plan_info(supabase, 'tenant-1')

    def test_load_without_tenant(self, supabase):
        """No tenant should give empty features without a query."""
        features = load_plan_features(supabase, None)
        assert features.enabled_modules == frozenset()
        assert supabase.queries == []

    def test_load_failure_never_grants(self, supabase):
        """A failed fetch should give empty features with an error."""
        supabase.fail('tenants')
        features = load_plan_features(supabase, 'tenant-1')
        assert features.error == 'Erreur lors du chargement du plan'
        assert not features.has_module('clients')
