"""
Consumption monitoring tests (king layer).

Run with: python -m pytest tests/test_consumption.py -v
"""

import sys
from datetime import date
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from conftest import auth_headers
from models import TenantConsumption, TenantConsumptionSummary, TenantLimits
from services.consumption_service import (
    BYTES_PER_GB, alert_level, consumption_percent, has_quota_alerts, metric_badge,
    reset_consumption, storage_percent, summary_metrics, tenant_metrics, update_tenant_limits,
)
from services.exceptions import ConsumptionError


def summary(**values):
    return TenantConsumptionSummary(tenant_id='tenant-1', tenant_name='Cabinet Test', **values)


class TestPercentages:
    """Test percentage rounding."""

    def test_rounds_half_up(self):
        assert consumption_percent(1, 8) == 13       # 12.5
        assert consumption_percent(1, 3) == 33
        assert consumption_percent(2, 3) == 67

    def test_zero_limit(self):
        """No limit should read as 0%, not divide by zero."""
        assert consumption_percent(10, 0) == 0
        assert consumption_percent(10, None) == 0

    def test_over_limit(self):
        assert consumption_percent(150, 100) == 150

    def test_storage(self):
        assert storage_percent(BYTES_PER_GB // 2, 1) == 50
        assert storage_percent(None, 5) == 0


class TestThresholds:
    """Badges at 85/100, aggregate banner at 70."""

    @pytest.mark.parametrize('percent, badge', [
        (69, None), (84, None), (85, 'Attention'), (99, 'Attention'), (100, 'Limite atteinte'),
    ])
    def test_badges(self, percent, badge):
        assert metric_badge(percent) == badge

    @pytest.mark.parametrize('percent, level', [
        (69, None), (70, 'caution'), (85, 'warning'), (100, 'critical'), (140, 'critical'),
    ])
    def test_alert_levels(self, percent, level):
        assert alert_level(percent) == level

    def test_banner_at_70(self):
        """Any metric at 70% should raise the tenant banner."""
        assert not has_quota_alerts(summary(sms_percent=69))
        assert has_quota_alerts(summary(sms_percent=70))
        assert has_quota_alerts(summary(users_percent=100))

    def test_ai_only_counts_when_enabled(self):
        """AI usage should be ignored for tenants without AI."""
        assert not has_quota_alerts(summary(ai_docs_percent=95, ai_enabled=False))
        assert has_quota_alerts(summary(ai_docs_percent=95, ai_enabled=True))

    def test_bar_is_capped(self):
        metric = summary_metrics(summary(email_percent=130))[2]
        assert metric.resource == 'email'
        assert metric.bar_percent == 100
        assert metric.badge == 'Limite atteinte'


class TestTenantMetrics:
    """Test metrics computed from limits and consumption rows."""

    def test_computes_each_resource(self):
        limits = TenantLimits(tenant_id='t', storage_limit_gb=10, sms_limit_monthly=200,
                              email_limit_monthly=1000, ai_docs_limit_monthly=50, users_limit=4)
        consumption = TenantConsumption(tenant_id='t', period_year=2026, period_month=10,
                                        storage_used_bytes=5 * BYTES_PER_GB, sms_used=170,
                                        email_used=10, ai_docs_used=50, active_users=3)

        metrics = {m.resource: m for m in tenant_metrics(limits, consumption)}

        assert metrics['storage'].percent == 50
        assert metrics['storage'].used == 5.0
        assert metrics['sms'].percent == 85
        assert metrics['sms'].badge == 'Attention'
        assert metrics['email'].percent == 1
        assert metrics['ai_docs'].badge == 'Limite atteinte'
        assert metrics['users'].percent == 75

    def test_missing_rows(self):
        metrics = tenant_metrics(None, None)
        assert [m.percent for m in metrics] == [0, 0, 0, 0, 0]


class TestLimitUpdates:
    """Test limit updates and their audit trail."""

    def test_audits_changed_fields_only(self, supabase):
        supabase.respond('tenant_limits', data=[{'tenant_id': 't', 'sms_limit_monthly': 100,
                                                 'users_limit': 3, 'ai_enabled': False}])

        changed = update_tenant_limits(supabase, 't', {'sms_limit_monthly': 200, 'users_limit': 3,
                                                       'ai_enabled': True}, reason='Upgrade')

        assert changed == ['sms_limit_monthly', 'ai_enabled']
        audits = supabase.executed('log_tenant_limit_change', 'rpc')
        assert [a.payload['p_limit_type'] for a in audits] == ['sms_limit_monthly', 'ai_enabled']
        assert audits[0].payload['p_old_value'] == '100'
        assert audits[0].payload['p_new_value'] == '200'
        assert audits[1].payload['p_old_value'] == 'false'
        assert audits[1].payload['p_new_value'] == 'true'
        assert audits[0].payload['p_reason'] == 'Upgrade'

    def test_missing_old_value_is_audited_as_null(self, supabase):
        changed = update_tenant_limits(supabase, 't', {'users_limit': 5})
        assert changed == ['users_limit']
        audit = supabase.executed('log_tenant_limit_change', 'rpc')[0]
        assert audit.payload['p_old_value'] == 'null'

    def test_update_failure(self, supabase):
        supabase.fail('tenant_limits', 'update')
        with pytest.raises(ConsumptionError, match='Impossible de mettre à jour les limites.'):
            update_tenant_limits(supabase, 't', {'users_limit': 5})
        assert supabase.executed('log_tenant_limit_change') == []

    def test_audit_failure_does_not_fail_update(self, supabase):
        supabase.fail('log_tenant_limit_change', 'rpc')
        assert update_tenant_limits(supabase, 't', {'users_limit': 5}) == ['users_limit']


class TestResetConsumption:
    """Test monthly counter resets."""

    def test_resets_current_month(self, supabase):
        reset_consumption(supabase, 't', 'sms', today=date(2026, 10, 19))

        update = supabase.executed('tenant_consumption', 'update')[0]
        assert update.payload['sms_used'] == 0
        assert ('eq', 'period_year', 2026) in update.filters
        assert ('eq', 'period_month', 10) in update.filters
        audit = supabase.executed('log_tenant_limit_change', 'rpc')[0]
        assert audit.payload['p_limit_type'] == 'sms_reset'
        assert audit.payload['p_old_value'] == 'usage'
        assert audit.payload['p_new_value'] == '0'
        assert audit.payload['p_reason'] == 'Réinitialisation admin'

    def test_unknown_counter(self, supabase):
        """Storage and users are not monthly counters."""
        with pytest.raises(ConsumptionError):
            reset_consumption(supabase, 't', 'storage')
        assert supabase.queries == []


class TestKingRoutes:
    """Test the king endpoints and their access control."""

    def test_non_king_is_forbidden(self, client, supabase):
        supabase.add_user('user-token', 'user-1')
        supabase.respond('user_roles', data=[{'role': 'admin'}])
        response = client.get('/api/king/consumption', headers=auth_headers())
        assert response.status_code == 403

    def test_anonymous_is_unauthorized(self, client):
        response = client.get('/api/king/consumption')
        assert response.status_code == 401

    def test_overview(self, client, supabase):
        supabase.add_user('king-token', 'king-1')
        supabase.respond('user_roles', data=[{'role': 'king'}])
        supabase.respond('get_tenant_consumption_summary', 'rpc', data=[
            {'tenant_id': 't1', 'tenant_name': 'Cabinet A', 'sms_percent': 72},
            {'tenant_id': 't2', 'tenant_name': 'Cabinet B', 'sms_percent': 10},
        ])

        response = client.get('/api/king/consumption', headers=auth_headers('king-token'))

        assert response.status_code == 200
        data = response.get_json()
        assert data['alert_count'] == 1
        assert data['tenants'][0]['has_alerts'] is True
        assert data['tenants'][0]['metrics'][1]['alert_level'] == 'caution'

    def test_update_ignores_unknown_columns(self, client, supabase):
        supabase.add_user('king-token', 'king-1')
        supabase.respond('user_roles', data=[{'role': 'king'}])

        response = client.patch('/api/king/tenants/t1/limits', headers=auth_headers('king-token'),
                                json={'limits': {'plan': 'founder'}})
        assert response.status_code == 400
        assert supabase.executed('tenant_limits', 'update') == []
