"""
Tenant plan lookup for module gating.

The tenant row is fetched once per request and wrapped in a PlanFeatures
object. PlanFeatures is also the "not loaded yet" / "failed" state: with no
plan info every module check is False, a missing plan never grants access.
"""

import logging
from typing import Iterable, Optional

from models import TenantPlanInfo, RecordError
from services.exceptions import PlanLookupError
from tier_config import plans

logger = logging.getLogger(__name__)

PLAN_COLUMNS = 'plan, plan_status, billing_status, seats_included, seats_price'

# Shown instead of a plan name when no plan could be loaded
UNKNOWN_PLAN_DISPLAY_NAME = 'Offre inconnue'


class PlanFeatures:
    """
    Resolved plan state for one tenant.

    Attributes:
        info: TenantPlanInfo, or None when not loaded / not found / failed
        loading: True until the plan fetch has completed
        error: User-facing error message when the fetch failed
    """

    def __init__(self, info: Optional[TenantPlanInfo] = None, loading: bool = False, error: str = None):
        self.info = info
        self.loading = loading
        self.error = error

    @classmethod
    def pending(cls):
        return cls(loading=True)

    @property
    def is_resolved(self) -> bool:
        return not self.loading and self.info is not None

    @property
    def plan(self) -> Optional[str]:
        return self.info.plan if self.info else None

    @property
    def plan_display_name(self) -> str:
        if self.info is None:
            return UNKNOWN_PLAN_DISPLAY_NAME
        return plans.plan_display_name(self.plan)

    @property
    def enabled_modules(self) -> frozenset:
        if not self.is_resolved:
            return frozenset()
        return plans.modules_for(self.info.plan)

    def has_module(self, module: str) -> bool:
        return module in self.enabled_modules

    def has_any_module(self, modules: Iterable[str]) -> bool:
        return any(self.has_module(m) for m in modules)

    def has_all_modules(self, modules: Iterable[str]) -> bool:
        modules = list(modules)
        return bool(modules) and all(self.has_module(m) for m in modules)

    def to_dict(self) -> dict:
        return {
            'plan': self.plan,
            'plan_display_name': self.plan_display_name,
            'plan_status': self.info.plan_status if self.info else None,
            'billing_status': self.info.billing_status if self.info else None,
            'seats_included': self.info.seats_included if self.info else None,
            'seats_price': self.info.seats_price if self.info else None,
            'enabled_modules': sorted(self.enabled_modules),
            'loading': self.loading,
            'error': self.error,
        }


def fetch_tenant_plan_info(client, tenant_id: str) -> Optional[TenantPlanInfo]:
    """
    Fetch the plan columns of a tenant.

    Returns:
        TenantPlanInfo, or None if the tenant row does not exist

    Raises:
        PlanLookupError: backend failure or malformed row
    """
    try:
        response = (
            client.table('tenants')
            .select(PLAN_COLUMNS)
            .eq('id', tenant_id)
            .maybe_single()
            .execute()
        )
    except Exception as e:
        logger.error(f"Error fetching plan info for tenant {tenant_id}: {e}")
        raise PlanLookupError('Erreur lors du chargement du plan') from e

    data = response.data if response is not None else None
    if not data:
        return None

    try:
        info = TenantPlanInfo.from_row(data)
    except RecordError as e:
        logger.error(f"Malformed plan row for tenant {tenant_id}: {e}")
        raise PlanLookupError('Une erreur est survenue') from e

    if info.plan not in plans.PLAN_CONFIGS:
        logger.warning(f"Tenant {tenant_id} has unknown plan '{info.plan}', gating as {plans.DEFAULT_PLAN}")
    return info


def load_plan_features(client, tenant_id: Optional[str]) -> PlanFeatures:
    """
    Load PlanFeatures for a tenant. Never raises.

    No tenant, no row, or a failed fetch all give a resolved-but-empty
    PlanFeatures, which denies every module.
    """
    if not tenant_id:
        return PlanFeatures()

    try:
        info = fetch_tenant_plan_info(client, tenant_id)
    except PlanLookupError as e:
        return PlanFeatures(error=str(e))

    return PlanFeatures(info=info)
