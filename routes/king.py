from flask import Blueprint, jsonify, request

from models import records_to_dicts
from routes.notifications import build_feed, feed_response, mark_all_read_response, mark_read_response
from services.consumption_service import (
    fetch_consumption_summaries, fetch_limit_audit, fetch_tenant_consumption, fetch_tenant_limits,
    has_quota_alerts, reset_consumption, summary_metrics, tenant_metrics, update_tenant_limits,
)
from services.exceptions import ConsumptionError
from services.notification_feed import NotificationScope
from services.supabase_client import request_client
from services.tenant_service import king_required

king_bp = Blueprint('king', __name__, url_prefix='/api/king')

# Limit columns a king may edit
EDITABLE_LIMITS = (
    'storage_limit_gb', 'sms_limit_monthly', 'email_limit_monthly',
    'ai_docs_limit_monthly', 'users_limit', 'ai_enabled',
)


def _error(e, status=502):
    return jsonify({'success': False, 'error': str(e)}), status


# =============================================================================
# CONSUMPTION
# =============================================================================

@king_bp.route('/consumption', methods=['GET'])
@king_required
def consumption_overview():
    try:
        summaries = fetch_consumption_summaries(request_client())
    except ConsumptionError as e:
        return _error(e)

    tenants = []
    for summary in summaries:
        tenants.append({
            **summary.to_dict(),
            'metrics': [m.to_dict() for m in summary_metrics(summary)],
            'has_alerts': has_quota_alerts(summary),
        })
    return jsonify({
        'success': True,
        'tenants': tenants,
        'alert_count': sum(1 for t in tenants if t['has_alerts']),
    })


@king_bp.route('/tenants/<tenant_id>/consumption', methods=['GET'])
@king_required
def tenant_consumption(tenant_id):
    client = request_client()
    try:
        limits = fetch_tenant_limits(client, tenant_id)
        consumption = fetch_tenant_consumption(client, tenant_id)
    except ConsumptionError as e:
        return _error(e)

    return jsonify({
        'success': True,
        'limits': limits.to_dict() if limits else None,
        'consumption': consumption.to_dict() if consumption else None,
        'metrics': [m.to_dict() for m in tenant_metrics(limits, consumption)],
    })


@king_bp.route('/tenants/<tenant_id>/limits/audit', methods=['GET'])
@king_required
def limit_audit(tenant_id):
    try:
        entries = fetch_limit_audit(request_client(), tenant_id)
    except ConsumptionError as e:
        return _error(e)
    return jsonify({'success': True, 'audit': records_to_dicts(entries)})


@king_bp.route('/tenants/<tenant_id>/limits', methods=['PATCH'])
@king_required
def update_limits(tenant_id):
    data = request.get_json(silent=True) or {}
    updates = {k: v for k, v in (data.get('limits') or {}).items() if k in EDITABLE_LIMITS}
    if not updates:
        return jsonify({'success': False, 'error': 'Aucune limite à mettre à jour'}), 400

    try:
        changed = update_tenant_limits(request_client(), tenant_id, updates, reason=data.get('reason'))
    except ConsumptionError as e:
        return _error(e, 400)
    return jsonify({'success': True, 'changed': changed})


@king_bp.route('/tenants/<tenant_id>/consumption/<kind>/reset', methods=['POST'])
@king_required
def reset_counter(tenant_id, kind):
    try:
        reset_consumption(request_client(), tenant_id, kind)
    except ConsumptionError as e:
        return _error(e, 400)
    return jsonify({'success': True})


# =============================================================================
# TENANT NOTIFICATIONS
# =============================================================================

@king_bp.route('/tenants/<tenant_id>/notifications', methods=['GET'])
@king_required
def tenant_notifications(tenant_id):
    return feed_response(build_feed(NotificationScope.for_tenant(tenant_id)).load())


@king_bp.route('/tenants/<tenant_id>/notifications/<notification_id>/read', methods=['POST'])
@king_required
def mark_tenant_notification_read(tenant_id, notification_id):
    return mark_read_response(build_feed(NotificationScope.for_tenant(tenant_id)).load(), notification_id)


@king_bp.route('/tenants/<tenant_id>/notifications/read-all', methods=['POST'])
@king_required
def mark_tenant_notifications_read(tenant_id):
    return mark_all_read_response(build_feed(NotificationScope.for_tenant(tenant_id)).load())
