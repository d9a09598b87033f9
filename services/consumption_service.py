# services/consumption_service.py
"""
Tenant consumption monitoring (king layer).

Usage counters (storage, SMS, email, AI documents, users) are compared
against per-tenant limits and turned into percentages. Two thresholds
apply and are kept separate:
- per-metric badge: "Attention" from 85%, "Limite atteinte" from 100%
- aggregate banner on a tenant row: any metric at 70% or more
"""

import logging
import math
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import List, Optional

from models import (
    TenantConsumption, TenantConsumptionSummary, TenantLimitAudit,
    TenantLimits, RecordError, load_records,
)
from services.exceptions import ConsumptionError

logger = logging.getLogger(__name__)

BYTES_PER_GB = 1024 ** 3

# =============================================================================
# THRESHOLDS
# =============================================================================

AGGREGATE_ALERT_THRESHOLD = 70
BADGE_WARNING_THRESHOLD = 85
BADGE_LIMIT_THRESHOLD = 100

ALERT_CRITICAL = 'critical'
ALERT_WARNING = 'warning'
ALERT_CAUTION = 'caution'

ALERT_LABELS = {
    ALERT_CRITICAL: 'Critique',
    ALERT_WARNING: 'Attention',
    ALERT_CAUTION: 'Vigilance',
}

BADGE_LIMIT_REACHED = 'Limite atteinte'
BADGE_WARNING = 'Attention'

RESOURCES = ('storage', 'sms', 'email', 'ai_docs', 'users')

RESETTABLE_COUNTERS = {
    'sms': 'sms_used',
    'email': 'email_used',
    'ai_docs': 'ai_docs_used',
}

AUDIT_LOG_LIMIT = 50


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def consumption_percent(used, limit) -> int:
    """Usage as a whole percentage of the limit, 0 when there is no limit."""
    if not limit or limit <= 0:
        return 0
    return _round_half_up(used / limit * 100)


def storage_percent(used_bytes: int, limit_gb: float) -> int:
    """Storage usage percentage, bytes against a limit in GB."""
    return consumption_percent(used_bytes or 0, (limit_gb or 0) * BYTES_PER_GB)


def alert_level(percent) -> Optional[str]:
    """Alert level of a single metric: critical, warning, caution or None."""
    if percent >= BADGE_LIMIT_THRESHOLD:
        return ALERT_CRITICAL
    if percent >= BADGE_WARNING_THRESHOLD:
        return ALERT_WARNING
    if percent >= AGGREGATE_ALERT_THRESHOLD:
        return ALERT_CAUTION
    return None


def metric_badge(percent) -> Optional[str]:
    """Badge shown next to a metric bar, or None."""
    if percent >= BADGE_LIMIT_THRESHOLD:
        return BADGE_LIMIT_REACHED
    if percent >= BADGE_WARNING_THRESHOLD:
        return BADGE_WARNING
    return None


# =============================================================================
# METRICS
# =============================================================================

@dataclass
class ConsumptionMetric:
    resource: str
    used: float
    limit: float
    percent: int

    @property
    def alert_level(self) -> Optional[str]:
        return alert_level(self.percent)

    @property
    def badge(self) -> Optional[str]:
        return metric_badge(self.percent)

    @property
    def bar_percent(self) -> int:
        return min(self.percent, 100)

    def to_dict(self) -> dict:
        return {
            'resource': self.resource,
            'used': self.used,
            'limit': self.limit,
            'percent': self.percent,
            'bar_percent': self.bar_percent,
            'alert_level': self.alert_level,
            'badge': self.badge,
        }


def summary_metrics(summary: TenantConsumptionSummary) -> List[ConsumptionMetric]:
    """Metrics of one consumption summary row, percents as computed by the backend."""
    return [
        ConsumptionMetric('storage', summary.storage_used_gb, summary.storage_limit_gb, summary.storage_percent),
        ConsumptionMetric('sms', summary.sms_used, summary.sms_limit_monthly, summary.sms_percent),
        ConsumptionMetric('email', summary.email_used, summary.email_limit_monthly, summary.email_percent),
        ConsumptionMetric('ai_docs', summary.ai_docs_used, summary.ai_docs_limit_monthly, summary.ai_docs_percent),
        ConsumptionMetric('users', summary.active_users, summary.users_limit, summary.users_percent),
    ]


def tenant_metrics(limits: Optional[TenantLimits], consumption: Optional[TenantConsumption]) -> List[ConsumptionMetric]:
    """
    Metrics computed locally from a limits row and a consumption row.
    Without either row every percent is 0.
    """
    if limits is None or consumption is None:
        return [ConsumptionMetric(r, 0, 0, 0) for r in RESOURCES]

    return [
        ConsumptionMetric(
            'storage',
            round(consumption.storage_used_bytes / BYTES_PER_GB, 2),
            limits.storage_limit_gb,
            storage_percent(consumption.storage_used_bytes, limits.storage_limit_gb),
        ),
        ConsumptionMetric('sms', consumption.sms_used, limits.sms_limit_monthly,
                          consumption_percent(consumption.sms_used, limits.sms_limit_monthly)),
        ConsumptionMetric('email', consumption.email_used, limits.email_limit_monthly,
                          consumption_percent(consumption.email_used, limits.email_limit_monthly)),
        ConsumptionMetric('ai_docs', consumption.ai_docs_used, limits.ai_docs_limit_monthly,
                          consumption_percent(consumption.ai_docs_used, limits.ai_docs_limit_monthly)),
        ConsumptionMetric('users', consumption.active_users, limits.users_limit,
                          consumption_percent(consumption.active_users, limits.users_limit)),
    ]


def has_quota_alerts(summary: TenantConsumptionSummary) -> bool:
    """Aggregate banner condition: any metric at or above 70%. AI counts only when enabled."""
    percents = [
        summary.storage_percent,
        summary.sms_percent,
        summary.email_percent,
        summary.ai_docs_percent if summary.ai_enabled else 0,
        summary.users_percent,
    ]
    return any(p >= AGGREGATE_ALERT_THRESHOLD for p in percents)


# =============================================================================
# KING QUERIES
# =============================================================================

def _current_period(today: date = None) -> tuple:
    today = today or date.today()
    return today.year, today.month


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def fetch_consumption_summaries(client) -> List[TenantConsumptionSummary]:
    """Get the consumption summary of every tenant."""
    try:
        response = client.rpc('get_tenant_consumption_summary', {}).execute()
    except Exception as e:
        logger.error(f"Error fetching consumption summary: {e}")
        raise ConsumptionError('Impossible de charger la consommation des cabinets') from e
    return load_records(TenantConsumptionSummary, response.data)


def fetch_tenant_limits(client, tenant_id: str) -> Optional[TenantLimits]:
    try:
        response = (
            client.table('tenant_limits')
            .select('*')
            .eq('tenant_id', tenant_id)
            .maybe_single()
            .execute()
        )
    except Exception as e:
        logger.error(f"Error fetching limits for tenant {tenant_id}: {e}")
        raise ConsumptionError('Impossible de charger les limites') from e

    data = response.data if response is not None else None
    if not data:
        return None
    try:
        return TenantLimits.from_row(data)
    except RecordError as e:
        logger.error(f"Malformed limits row for tenant {tenant_id}: {e}")
        raise ConsumptionError('Impossible de charger les limites') from e


def fetch_tenant_consumption(client, tenant_id: str, today: date = None) -> Optional[TenantConsumption]:
    """Get the consumption counters of the current month."""
    year, month = _current_period(today)
    try:
        response = (
            client.table('tenant_consumption')
            .select('*')
            .eq('tenant_id', tenant_id)
            .eq('period_year', year)
            .eq('period_month', month)
            .maybe_single()
            .execute()
        )
    except Exception as e:
        logger.error(f"Error fetching consumption for tenant {tenant_id}: {e}")
        raise ConsumptionError('Impossible de charger la consommation') from e

    data = response.data if response is not None else None
    if not data:
        return None
    try:
        return TenantConsumption.from_row(data)
    except RecordError as e:
        logger.error(f"Malformed consumption row for tenant {tenant_id}: {e}")
        raise ConsumptionError('Impossible de charger la consommation') from e


def fetch_limit_audit(client, tenant_id: str) -> List[TenantLimitAudit]:
    """Get the newest limit changes of a tenant."""
    try:
        response = (
            client.table('tenant_limits_audit')
            .select('*')
            .eq('tenant_id', tenant_id)
            .order('created_at', desc=True)
            .limit(AUDIT_LOG_LIMIT)
            .execute()
        )
    except Exception as e:
        logger.error(f"Error fetching limit audit for tenant {tenant_id}: {e}")
        raise ConsumptionError("Impossible de charger l'historique") from e
    return load_records(TenantLimitAudit, response.data)


def _log_limit_change(client, tenant_id: str, limit_type: str, old_value, new_value, reason: str = None):
    try:
        client.rpc('log_tenant_limit_change', {
            'p_tenant_id': tenant_id,
            'p_limit_type': limit_type,
            'p_old_value': str(old_value),
            'p_new_value': str(new_value),
            'p_reason': reason or None,
        }).execute()
    except Exception as e:
        # The change itself is already written
        logger.warning(f"Failed to audit {limit_type} change for tenant {tenant_id}: {e}")


def _audit_str(value) -> str:
    # Match the audit table's text encoding of booleans and missing values
    if value is None:
        return 'null'
    if isinstance(value, bool):
        return 'true' if value else 'false'
    return str(value)


def update_tenant_limits(client, tenant_id: str, updates: dict, reason: str = None) -> List[str]:
    """
    Update a tenant's limits and audit every changed field.

    Returns:
        Names of the fields that changed

    Raises:
        ConsumptionError: the update was rejected
    """
    current = {}
    try:
        response = (
            client.table('tenant_limits')
            .select('*')
            .eq('tenant_id', tenant_id)
            .maybe_single()
            .execute()
        )
        current = (response.data if response is not None else None) or {}
    except Exception as e:
        logger.warning(f"Could not read current limits for tenant {tenant_id}: {e}")

    try:
        client.table('tenant_limits').update(
            {**updates, 'updated_at': _now_iso()}
        ).eq('tenant_id', tenant_id).execute()
    except Exception as e:
        logger.error(f"Error updating limits for tenant {tenant_id}: {e}")
        raise ConsumptionError('Impossible de mettre à jour les limites.') from e

    changed = []
    for key, new_value in updates.items():
        old_value = current.get(key)
        if _audit_str(old_value) != _audit_str(new_value):
            _log_limit_change(client, tenant_id, key, _audit_str(old_value), _audit_str(new_value), reason)
            changed.append(key)

    logger.info(f"Updated limits for tenant {tenant_id}: {changed}")
    return changed


def reset_consumption(client, tenant_id: str, kind: str, today: date = None):
    """
    Reset one monthly counter (sms, email or ai_docs) of the current month.

    Raises:
        ConsumptionError: unknown counter or rejected update
    """
    column = RESETTABLE_COUNTERS.get(kind)
    if column is None:
        raise ConsumptionError(f"Compteur inconnu : {kind}")

    year, month = _current_period(today)
    try:
        (
            client.table('tenant_consumption')
            .update({column: 0, 'updated_at': _now_iso()})
            .eq('tenant_id', tenant_id)
            .eq('period_year', year)
            .eq('period_month', month)
            .execute()
        )
    except Exception as e:
        logger.error(f"Error resetting {kind} for tenant {tenant_id}: {e}")
        raise ConsumptionError('Impossible de réinitialiser le compteur.') from e

    _log_limit_change(client, tenant_id, f'{kind}_reset', 'usage', '0', 'Réinitialisation admin')
