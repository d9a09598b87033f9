from flask import Blueprint, current_app, jsonify
from flask_login import login_required, current_user

from feature_flags import current_plan_features
from services.exceptions import SeatAccountingError
from services.seat_service import add_user_seat, apply_seat_addition, fetch_seat_usage
from services.supabase_client import request_client
from services.tenant_service import current_tenant_id, tenant_required
from tier_config import plans

settings_bp = Blueprint('settings', __name__, url_prefix='/api/settings')


@settings_bp.route('/plan', methods=['GET'])
@login_required
@tenant_required()
def plan():
    features = current_plan_features()
    catalog = [
        {
            'name': name,
            'display_name': plans.plan_display_name(name),
            'monthly_price': plans.get_plan_config(name)['monthly_price'],
            'modules': sorted(plans.modules_for(name)),
        }
        for name in plans.plans_in_order()
    ]
    return jsonify({
        'success': features.error is None,
        'plan': features.to_dict(),
        'upgrade_plan': plans.upgrade_path(features.plan) if features.plan else None,
        'catalog': catalog,
    })


@settings_bp.route('/seats', methods=['GET'])
@login_required
@tenant_required()
def seats():
    try:
        usage = fetch_seat_usage(request_client(), current_tenant_id())
    except SeatAccountingError as e:
        return jsonify({'success': False, 'error': str(e)}), 502
    return jsonify({'success': True, 'seats': usage.to_dict()})


@settings_bp.route('/seats', methods=['POST'])
@login_required
@tenant_required()
def add_seat():
    client = request_client()
    tenant_id = current_tenant_id()

    try:
        usage = fetch_seat_usage(client, tenant_id)
        result = add_user_seat(client, current_user.access_token)
    except SeatAccountingError as e:
        current_app.logger.warning(f"Seat addition failed for tenant {tenant_id}: {e}")
        return jsonify({'success': False, 'error': str(e)}), 400

    usage = apply_seat_addition(usage, result)
    return jsonify({'success': True, 'result': result.to_dict(), 'seats': usage.to_dict()})
