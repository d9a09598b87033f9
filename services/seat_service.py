# services/seat_service.py
"""
Seat accounting for tenants.

A tenant pays for seats_included + extra_users seats. Active users are the
tenant's user_tenant_assignments rows. Available seats may go negative when
users were added outside the billing flow; the value is reported as-is so
the over-subscription stays visible.
"""

import logging
from dataclasses import dataclass, asdict, replace
from typing import Optional

from services.exceptions import SeatAccountingError
from services.supabase_client import invoke_function, FunctionInvocationError

logger = logging.getLogger(__name__)

DEFAULT_SEATS_INCLUDED = 1
DEFAULT_EXTRA_USERS = 0
DEFAULT_SEAT_PRICE = 20

ADD_SEAT_FUNCTION = 'add-user-seat'

METHOD_CHECKOUT = 'checkout'
METHOD_SUBSCRIPTION_UPDATE = 'subscription_update'


@dataclass
class SeatUsage:
    seats_included: int
    extra_users: int
    active_users: int
    seat_price: int = DEFAULT_SEAT_PRICE

    @property
    def total_seats(self) -> int:
        return self.seats_included + self.extra_users

    @property
    def available_seats(self) -> int:
        return self.total_seats - self.active_users

    @property
    def can_add_user(self) -> bool:
        return self.available_seats > 0

    def to_dict(self) -> dict:
        data = asdict(self)
        data.update(
            total_seats=self.total_seats,
            available_seats=self.available_seats,
            can_add_user=self.can_add_user,
        )
        return data


@dataclass
class SeatAdditionResult:
    """
    Outcome of the add-user-seat function.

    method is 'subscription_update' when the seat was added to the running
    subscription, 'checkout' when the user must complete a payment at url.
    """
    method: str
    url: Optional[str] = None

    @property
    def is_checkout(self) -> bool:
        return self.method == METHOD_CHECKOUT

    def to_dict(self) -> dict:
        return asdict(self)


def compute_seats(seats_included: int, extra_users: int, active_users: int, seat_price: int = DEFAULT_SEAT_PRICE) -> SeatUsage:
    """
    Compute seat usage.

    total = included + extra, available = total - active (not clamped),
    a user can be added while available > 0.
    """
    return SeatUsage(
        seats_included=seats_included,
        extra_users=extra_users,
        active_users=active_users,
        seat_price=seat_price,
    )


def fetch_seat_usage(client, tenant_id: str) -> SeatUsage:
    """
    Read seat columns and count active users of a tenant.

    Returns:
        SeatUsage reflecting the backend at call time

    Raises:
        SeatAccountingError: tenant or user count could not be read
    """
    try:
        response = (
            client.table('tenants')
            .select('seats_included, extra_users, seats_price')
            .eq('id', tenant_id)
            .maybe_single()
            .execute()
        )
    except Exception as e:
        logger.error(f"Error fetching seats for tenant {tenant_id}: {e}")
        raise SeatAccountingError('Erreur lors du chargement des informations du tenant') from e

    tenant = (response.data if response is not None else None) or {}

    try:
        count_response = (
            client.table('user_tenant_assignments')
            .select('*', count='exact', head=True)
            .eq('tenant_id', tenant_id)
            .execute()
        )
    except Exception as e:
        logger.error(f"Error counting users for tenant {tenant_id}: {e}")
        raise SeatAccountingError('Erreur lors du comptage des utilisateurs') from e

    return compute_seats(
        seats_included=tenant.get('seats_included') or DEFAULT_SEATS_INCLUDED,
        extra_users=tenant.get('extra_users') or DEFAULT_EXTRA_USERS,
        active_users=count_response.count or 0,
        seat_price=tenant.get('seats_price') or DEFAULT_SEAT_PRICE,
    )


def add_user_seat(client, access_token: str) -> SeatAdditionResult:
    """
    Ask the billing function for one more seat.

    Args:
        client: Supabase client
        access_token: Session token of the tenant admin

    Returns:
        SeatAdditionResult. On the checkout path the seat does not exist yet.

    Raises:
        SeatAccountingError: not authenticated, function failure or {error} body
    """
    if not access_token:
        raise SeatAccountingError('Non authentifié')

    try:
        data = invoke_function(client, ADD_SEAT_FUNCTION, access_token=access_token)
    except FunctionInvocationError as e:
        logger.error(f"Error adding seat: {e}")
        raise SeatAccountingError(str(e) or 'Une erreur est survenue') from e

    method = data.get('method')
    if method == METHOD_CHECKOUT and data.get('url'):
        return SeatAdditionResult(method=METHOD_CHECKOUT, url=data['url'])
    if method == METHOD_SUBSCRIPTION_UPDATE:
        return SeatAdditionResult(method=METHOD_SUBSCRIPTION_UPDATE)

    logger.error(f"Unexpected {ADD_SEAT_FUNCTION} response: {data}")
    raise SeatAccountingError('Une erreur est survenue')


def apply_seat_addition(usage: SeatUsage, result: SeatAdditionResult) -> SeatUsage:
    """
    Apply a seat addition to local state.

    The direct path adds the seat immediately. The checkout path completes
    outside this system, so the usage is returned unchanged.
    """
    if result.method == METHOD_SUBSCRIPTION_UPDATE:
        return replace(usage, extra_users=usage.extra_users + 1)
    return usage
