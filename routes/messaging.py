from flask import Blueprint, current_app, jsonify, request
from flask_login import login_required, current_user

from services.exceptions import MessagingError
from services.messaging_service import (
    email_confirmation, send_crm_email, send_sms, send_verification_sms, verify_sms_code,
)
from services.supabase_client import request_client
from services.tenant_service import tenant_required

messaging_bp = Blueprint('messaging', __name__, url_prefix='/api/messaging')


def _country_code():
    return current_app.config.get('PHONE_DEFAULT_COUNTRY_CODE', '41')


@messaging_bp.route('/email', methods=['POST'])
@login_required
@tenant_required()
def email():
    data = request.get_json(silent=True) or {}
    try:
        result = send_crm_email(
            request_client(),
            data.get('type'),
            data.get('recipient_email'),
            data.get('recipient_name'),
            data=data.get('data'),
        )
    except MessagingError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    if not result['success']:
        return jsonify(result), 502
    return jsonify({**result, 'message': email_confirmation(data.get('type'))})


@messaging_bp.route('/sms', methods=['POST'])
@login_required
@tenant_required()
def sms():
    data = request.get_json(silent=True) or {}
    try:
        response = send_sms(request_client(), data.get('recipients'), data.get('message'), _country_code())
    except MessagingError as e:
        return jsonify({'success': False, 'error': str(e)}), 400
    return jsonify({'success': True, 'data': response})


@messaging_bp.route('/verification', methods=['POST'])
@login_required
def send_verification():
    data = request.get_json(silent=True) or {}
    if not data.get('phone_number') or not data.get('verification_type'):
        return jsonify({'success': False, 'error': 'Numéro de téléphone requis'}), 400

    try:
        result = send_verification_sms(
            request_client(),
            current_user.id,
            data['phone_number'],
            data['verification_type'],
            metadata=data.get('metadata'),
            country_code=_country_code(),
        )
    except MessagingError as e:
        return jsonify({'success': False, 'error': str(e)}), 502
    return jsonify({'success': True, **result})


@messaging_bp.route('/verification/check', methods=['POST'])
@login_required
def check_verification():
    data = request.get_json(silent=True) or {}
    try:
        result = verify_sms_code(
            request_client(), current_user.id, data.get('code'), data.get('verification_type'),
        )
    except MessagingError as e:
        return jsonify({'success': False, 'error': str(e)}), 400

    return jsonify(result), 200 if result['success'] else 400
