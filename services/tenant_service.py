# services/tenant_service.py
"""
Tenant resolution for multi-tenant requests.

A request belongs to a tenant either through the URL (subdomain, or the
?tenant= query param in development) or through the user's assignment row.
The URL tenant wins, but a logged-in user only gets it when assigned to it
(or king). RLS is the safety net, but application code should resolve the
tenant correctly too.
"""

import logging
import re
from functools import wraps
from typing import Optional

from flask import g, request, render_template, jsonify
from flask_login import current_user

from models import Tenant, RecordError
from services.exceptions import TenantResolutionError
from services.supabase_client import request_client

logger = logging.getLogger(__name__)

TENANT_COLUMNS = (
    'id, name, slug, email, status, '
    'tenant_branding (logo_url, primary_color, secondary_color, display_name)'
)

# Subdomains that never name a tenant
RESERVED_SUBDOMAINS = ('www', 'app', 'api')

# Preview/hosting domains where the first label is not a tenant
_NON_TENANT_HOSTS = ('lovable.app', 'lovableproject.com')

_IP_ADDRESS = re.compile(r'^\d+\.\d+\.\d+\.\d+$')

ROLE_KING = 'king'
DEFAULT_ROLE = 'client'


# =============================================================================
# SLUG RESOLUTION
# =============================================================================

def tenant_slug_from_request(host: str, args=None) -> Optional[str]:
    """
    Extract the tenant slug from a request.

    Supports:
        - Query param (development): ?tenant=advisy -> "advisy"
        - Subdomain: advisy.lyta.ch -> "advisy"

    Args:
        host: Request host, with or without port
        args: Query string mapping (request.args)

    Returns:
        Slug, or None for the main platform
    """
    if args:
        tenant_param = args.get('tenant')
        if tenant_param:
            return tenant_param

    hostname = (host or '').split(':', 1)[0].lower()
    if not hostname or hostname == 'localhost':
        return None
    if any(domain in hostname for domain in _NON_TENANT_HOSTS):
        return None
    if _IP_ADDRESS.match(hostname):
        return None

    parts = hostname.split('.')
    if len(parts) >= 3 and parts[0] not in RESERVED_SUBDOMAINS:
        return parts[0]

    return None


def load_tenant_by_slug(client, slug: str) -> Tenant:
    """
    Load an active tenant by slug.

    Raises:
        TenantResolutionError: backend error, unknown slug or suspended tenant.
            The message is shown to the user as-is.
    """
    try:
        response = (
            client.table('tenants')
            .select(TENANT_COLUMNS)
            .eq('slug', slug)
            .maybe_single()
            .execute()
        )
    except Exception as e:
        logger.error(f"Error fetching tenant '{slug}': {e}")
        raise TenantResolutionError('Erreur lors du chargement du cabinet', slug=slug) from e

    data = response.data if response is not None else None
    if not data:
        raise TenantResolutionError(f'Cabinet "{slug}" non trouvé', slug=slug)

    try:
        tenant = Tenant.from_row(data)
    except RecordError as e:
        logger.error(f"Malformed tenant row for '{slug}': {e}")
        raise TenantResolutionError('Une erreur est survenue', slug=slug) from e

    if tenant.status == 'suspended':
        raise TenantResolutionError('Ce cabinet est actuellement suspendu', slug=slug)

    return tenant


def resolve_user_tenant_id(client, user_id: str) -> Optional[str]:
    """
    Get the tenant a user is assigned to, or None.
    A failed lookup is logged and treated as "no assignment".
    """
    if not user_id:
        return None

    try:
        response = (
            client.table('user_tenant_assignments')
            .select('tenant_id')
            .eq('user_id', user_id)
            .not_.is_('tenant_id', 'null')
            .limit(1)
            .maybe_single()
            .execute()
        )
    except Exception as e:
        logger.error(f"Error fetching tenant assignment for user {user_id}: {e}")
        return None

    data = response.data if response is not None else None
    return data.get('tenant_id') if data else None


def user_belongs_to_tenant(client, user_id: str, tenant_id: str) -> bool:
    """
    Check that a user has an assignment row for a tenant.
    A failed lookup is logged and denies.
    """
    if not user_id or not tenant_id:
        return False

    try:
        response = (
            client.table('user_tenant_assignments')
            .select('tenant_id')
            .eq('user_id', user_id)
            .eq('tenant_id', tenant_id)
            .limit(1)
            .maybe_single()
            .execute()
        )
    except Exception as e:
        logger.error(f"Error checking tenant {tenant_id} membership for user {user_id}: {e}")
        return False

    data = response.data if response is not None else None
    return bool(data)


# =============================================================================
# REQUEST TENANT
# =============================================================================

def load_request_tenant():
    """
    Resolve the URL tenant for the current request, once.

    Sets g.tenant (Tenant or None) and g.tenant_error (message or None).
    """
    if 'tenant_resolved' in g:
        return g.tenant

    g.tenant = None
    g.tenant_error = None
    g.tenant_resolved = True

    slug = tenant_slug_from_request(request.host, request.args)
    if not slug:
        return None

    try:
        g.tenant = load_tenant_by_slug(request_client(), slug)
    except TenantResolutionError as e:
        g.tenant_error = str(e)

    return g.tenant


def current_tenant_id() -> Optional[str]:
    """
    Effective tenant id for the current request.

    Priority:
        1. Tenant from the URL (subdomain / query param), for anonymous
           visitors, king users and users assigned to it
        2. Tenant assigned to the logged-in user

    A logged-in user on another tenant's URL gets None and
    g.tenant_forbidden is set.
    """
    if 'tenant_id' in g:
        return g.tenant_id

    g.tenant_forbidden = False
    tenant = load_request_tenant()
    tenant_id = None
    if tenant is not None:
        if not current_user.is_authenticated or is_king() or user_belongs_to_tenant(
                request_client(), current_user.id, tenant.id):
            tenant_id = tenant.id
        else:
            logger.warning(f"User {current_user.id} is not assigned to tenant {tenant.id}")
            g.tenant_forbidden = True
    elif current_user.is_authenticated:
        tenant_id = resolve_user_tenant_id(request_client(), current_user.id)

    g.tenant_id = tenant_id
    return tenant_id


# =============================================================================
# ROLES
# =============================================================================

def fetch_user_role(client, user_id: str) -> Optional[str]:
    """
    Get the role of a user from user_roles.
    Defaults to 'client' when the row is missing or the lookup fails.
    """
    if not user_id:
        return None

    try:
        response = (
            client.table('user_roles')
            .select('role')
            .eq('user_id', user_id)
            .maybe_single()
            .execute()
        )
    except Exception as e:
        logger.error(f"Error fetching role for user {user_id}: {e}")
        return DEFAULT_ROLE

    data = response.data if response is not None else None
    return (data or {}).get('role') or DEFAULT_ROLE


def current_user_role() -> Optional[str]:
    """Role of the logged-in user, cached for the request."""
    if not current_user.is_authenticated:
        return None
    if 'user_role' not in g:
        g.user_role = fetch_user_role(request_client(), current_user.id)
    return g.user_role


def is_king() -> bool:
    """Check if the logged-in user is a platform super-admin."""
    return current_user_role() == ROLE_KING


# =============================================================================
# ROUTE DECORATORS
# =============================================================================

def _wants_json() -> bool:
    return request.is_json or request.accept_mimetypes.best == 'application/json'


def _tenant_unavailable(title: str, message: str, link_url: str, link_label: str, status: int):
    if _wants_json():
        return jsonify({'success': False, 'error': message}), status
    return render_template(
        'errors/tenant_unavailable.html',
        title=title,
        message=message,
        link_url=link_url,
        link_label=link_label,
    ), status


def tenant_required(require_tenant: bool = True):
    """
    Decorator that resolves the request tenant before the view runs.

    A tenant that fails to load always renders the full-screen error view.
    With require_tenant, a request with no tenant at all does too.

    Usage:
        @tenant_required()
        def dashboard():
            ...
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            load_request_tenant()

            if g.tenant_error:
                return _tenant_unavailable(
                    'Accès impossible', g.tenant_error,
                    '/', "Retour à l'accueil", 404,
                )

            tenant_id = current_tenant_id()
            if g.get('tenant_forbidden'):
                return _tenant_unavailable(
                    'Accès refusé', "Vous n'avez pas accès à ce cabinet",
                    '/', "Retour à l'accueil", 403,
                )

            if require_tenant and tenant_id is None:
                return _tenant_unavailable(
                    'Cabinet non identifié',
                    "Accédez à votre espace via l'URL de votre cabinet (ex: votrecabinet.lyta.ch)",
                    '/connexion', 'Se connecter', 404,
                )

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def king_required(f):
    """Decorator that restricts a route to king users (403 otherwise)."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not current_user.is_authenticated:
            return jsonify({'success': False, 'error': 'Authentification requise'}), 401
        if not is_king():
            return jsonify({'success': False, 'error': 'Accès réservé aux administrateurs de la plateforme'}), 403
        return f(*args, **kwargs)
    return decorated_function
