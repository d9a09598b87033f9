# models.py
"""
Row records for the remote Supabase collections.

Rows come back from the query builder as plain dicts. Every service turns
them into one of these records through Record.from_row() before handing
them on, so a malformed row is caught (and logged) at the boundary.
"""

import logging
from dataclasses import dataclass, field, fields, asdict, MISSING
from typing import Any, Dict, List, Optional

from flask_login import UserMixin

logger = logging.getLogger(__name__)


class RecordError(ValueError):
    """Raised when a backend row cannot be mapped to a record."""
    def __init__(self, message: str, field_name: str = None):
        self.field_name = field_name
        super().__init__(message)


@dataclass
class Record:
    """
    Base for row records.

    Fields without a default are required: a missing or null value raises
    RecordError. Columns that have no field land in `extra` when the record
    declares one.
    """

    @classmethod
    def from_row(cls, row):
        if not isinstance(row, dict):
            raise RecordError(f"{cls.__name__} row must be a mapping, got {type(row).__name__}")

        values = {}
        known = set()
        has_extra = False
        for f in fields(cls):
            known.add(f.name)
            if f.name == 'extra':
                has_extra = True
                continue
            required = f.default is MISSING and f.default_factory is MISSING
            value = row.get(f.name)
            if value is not None:
                values[f.name] = value
            elif required:
                raise RecordError(f"{cls.__name__} row is missing '{f.name}'", field_name=f.name)

        if has_extra:
            values['extra'] = {k: v for k, v in row.items() if k not in known}
        return cls(**values)

    def to_dict(self) -> dict:
        data = asdict(self)
        extra = data.pop('extra', None) or {}
        return {**extra, **data}


def load_records(record_type, rows) -> list:
    """
    Map a list of rows to records, dropping (and logging) malformed ones.

    Args:
        record_type: Record subclass
        rows: Rows from a query response (None is treated as empty)

    Returns:
        List of records in the original order
    """
    records = []
    for row in rows or []:
        try:
            records.append(record_type.from_row(row))
        except RecordError as e:
            logger.warning(f"Dropping malformed {record_type.__name__} row: {e}")
    return records


# =============================================================================
# TENANT / PLAN
# =============================================================================

@dataclass
class TenantPlanInfo(Record):
    """Plan columns of a tenants row."""
    plan: str = 'start'
    plan_status: str = 'active'          # active, suspended
    billing_status: str = 'trial'        # paid, trial, past_due, canceled
    seats_included: int = 1
    seats_price: int = 20

    @classmethod
    def from_row(cls, row):
        info = super().from_row(row)
        # Zero seat values are treated as unset, same as the billing back-office
        info.seats_included = info.seats_included or 1
        info.seats_price = info.seats_price or 20
        return info


@dataclass
class Tenant(Record):
    id: str
    name: str
    slug: Optional[str] = None
    email: Optional[str] = None
    status: Optional[str] = None
    tenant_branding: Optional[Any] = None

    @property
    def branding(self) -> Optional[dict]:
        raw = self.tenant_branding
        if isinstance(raw, list):
            return raw[0] if raw else None
        return raw


# =============================================================================
# NOTIFICATIONS
# =============================================================================

@dataclass
class Notification(Record):
    id: str
    kind: str
    title: str
    created_at: str
    user_id: Optional[str] = None
    tenant_id: Optional[str] = None
    message: Optional[str] = None
    payload: Optional[Any] = None
    metadata: Optional[Any] = None       # king_notifications carry metadata instead of payload
    read_at: Optional[str] = None

    @property
    def is_read(self) -> bool:
        return self.read_at is not None


# =============================================================================
# CRM COLLECTIONS
# =============================================================================

@dataclass
class Client(Record):
    id: str
    created_at: str
    updated_at: Optional[str] = None
    user_id: Optional[str] = None
    assigned_agent_id: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    company_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    mobile: Optional[str] = None
    status: Optional[str] = None
    type_adresse: Optional[str] = None
    is_company: Optional[bool] = None
    assigned_agent: Optional[dict] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        if self.is_company and self.company_name:
            return self.company_name
        name = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return name or self.company_name or ''


@dataclass
class Document(Record):
    id: str
    owner_id: str
    owner_type: str
    file_name: str
    file_key: str
    created_at: str
    mime_type: Optional[str] = None
    size_bytes: Optional[int] = None
    doc_kind: Optional[str] = None
    created_by: Optional[str] = None


@dataclass
class FamilyMember(Record):
    id: str
    client_id: str
    first_name: str
    last_name: str
    relation_type: str                   # conjoint, enfant, autre
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    birth_date: Optional[str] = None
    permit_type: Optional[str] = None
    nationality: Optional[str] = None
    linked_client_id: Optional[str] = None
    is_reverse_relation: bool = False


@dataclass
class Commission(Record):
    id: str
    policy_id: str
    amount: float
    status: str
    created_at: str
    updated_at: Optional[str] = None
    partner_id: Optional[str] = None
    type: Optional[str] = None
    date: Optional[str] = None
    total_amount: Optional[float] = None
    period_month: Optional[int] = None
    period_year: Optional[int] = None
    paid_at: Optional[str] = None
    notes: Optional[str] = None
    policy: Optional[dict] = None


@dataclass
class Policy(Record):
    id: str
    client_id: str
    product_id: str
    status: str
    start_date: str
    created_at: str
    currency: str = 'CHF'
    updated_at: Optional[str] = None
    partner_id: Optional[str] = None
    policy_number: Optional[str] = None
    end_date: Optional[str] = None
    premium_monthly: Optional[float] = None
    premium_yearly: Optional[float] = None
    deductible: Optional[float] = None
    notes: Optional[str] = None
    client: Optional[dict] = None
    product: Optional[dict] = None
    partner: Optional[dict] = None

    @property
    def product_name(self) -> Optional[str]:
        return (self.product or {}).get('name')

    @property
    def company_name(self) -> Optional[str]:
        return ((self.product or {}).get('company') or {}).get('name')


CONTACT_TYPE_LABELS = {
    'BACK_OFFICE': 'Back-office',
    'KEY_MANAGER': 'Key Account Manager',
    'SINISTRES': 'Sinistres',
    'RECLAMATIONS': 'Réclamations',
    'RESILIATION': 'Résiliation',
    'SUPPORT_COURTIER': 'Support Courtier',
    'COMMERCIAL': 'Commercial',
    'GENERAL': 'Contact Général',
}

CHANNEL_LABELS = {
    'EMAIL': 'Email',
    'TELEPHONE': 'Téléphone',
    'FORMULAIRE': 'Formulaire Web',
    'POSTAL': 'Adresse Postale',
}


@dataclass
class CompanyContact(Record):
    id: str
    company_id: str
    contact_type: str
    channel: str
    value: str
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    label: Optional[str] = None
    is_verified: bool = False
    is_primary: bool = False
    notes: Optional[str] = None

    @property
    def contact_type_label(self) -> str:
        return CONTACT_TYPE_LABELS.get(self.contact_type, self.contact_type)

    @property
    def channel_label(self) -> str:
        return CHANNEL_LABELS.get(self.channel, self.channel)


@dataclass
class InsuranceCompany(Record):
    id: str
    name: str
    created_at: Optional[str] = None
    logo_url: Optional[str] = None


@dataclass
class InsuranceProduct(Record):
    id: str
    name: str
    category: str
    company_id: str
    created_at: Optional[str] = None
    description: Optional[str] = None
    company: Optional[dict] = None


PERMISSION_MODULES = [
    ('adresses', 'Adresses (Clients)'),
    ('contrats', 'Contrats'),
    ('commissions', 'Commissions'),
    ('suivis', 'Suivis'),
    ('documents', 'Documents'),
    ('compagnies', 'Compagnies'),
    ('collaborateurs', 'Collaborateurs'),
]


@dataclass
class CollaboratorPermission(Record):
    collaborator_id: str
    module: str
    id: Optional[str] = None
    can_read: bool = False
    can_create: bool = False
    can_update: bool = False
    can_delete: bool = False

    @property
    def grants_anything(self) -> bool:
        return self.can_read or self.can_create or self.can_update or self.can_delete


# =============================================================================
# CONSUMPTION (king layer)
# =============================================================================

@dataclass
class TenantLimits(Record):
    tenant_id: str
    id: Optional[str] = None
    storage_limit_gb: float = 0
    sms_limit_monthly: int = 0
    email_limit_monthly: int = 0
    ai_docs_limit_monthly: int = 0
    users_limit: int = 0
    ai_enabled: bool = False


@dataclass
class TenantConsumption(Record):
    tenant_id: str
    period_year: int
    period_month: int
    storage_used_bytes: int = 0
    sms_used: int = 0
    email_used: int = 0
    ai_docs_used: int = 0
    active_users: int = 0


@dataclass
class TenantConsumptionSummary(Record):
    """One row of the get_tenant_consumption_summary RPC."""
    tenant_id: str
    tenant_name: str
    tenant_status: Optional[str] = None
    tenant_plan: Optional[str] = None
    storage_limit_gb: float = 0
    sms_limit_monthly: int = 0
    email_limit_monthly: int = 0
    ai_docs_limit_monthly: int = 0
    users_limit: int = 0
    ai_enabled: bool = False
    storage_used_bytes: int = 0
    storage_used_gb: float = 0
    sms_used: int = 0
    email_used: int = 0
    ai_docs_used: int = 0
    active_users: int = 0
    storage_percent: float = 0
    sms_percent: float = 0
    email_percent: float = 0
    ai_docs_percent: float = 0
    users_percent: float = 0
    current_year: Optional[int] = None
    current_month: Optional[int] = None


@dataclass
class TenantLimitAudit(Record):
    id: str
    tenant_id: str
    limit_type: str
    created_at: str
    changed_by: Optional[str] = None
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    reason: Optional[str] = None


def records_to_dicts(records: List[Record]) -> list:
    """Serialize records for jsonify()."""
    return [r.to_dict() for r in records]


# =============================================================================
# AUTH
# =============================================================================

class CRMUser(UserMixin):
    """
    Logged-in user, built from a validated Supabase access token.
    The token is kept so backend calls run under the user's RLS policies.
    """

    def __init__(self, id: str, email: str = None, access_token: str = None):
        self.id = id
        self.email = email
        self.access_token = access_token

    def __repr__(self):
        return f'<CRMUser {self.email or self.id}>'
