from flask import Blueprint, current_app, jsonify, render_template, request
from flask_login import login_required, current_user

from feature_flags import module_required
from models import records_to_dicts
from services.crm_collections import (
    ClientService, CollaboratorPermissionService, CommissionService, CompanyContactService,
    DocumentService, FamilyMemberService, InsuranceCompanyService, InsuranceProductService, PolicyService,
)
from services.supabase_client import get_signed_url, request_client
from services.tenant_service import tenant_required
from services.toasts import request_toasts

crm_bp = Blueprint('crm', __name__)


def _json_body():
    return request.get_json(silent=True) or {}


def _list_response(service, items):
    if service.error:
        return jsonify({'success': False, 'error': service.error, 'items': records_to_dicts(items)}), 502
    return jsonify({'success': True, 'items': records_to_dicts(items)})


def _mutation_body(service) -> dict:
    """Toasts raised by the mutation and the list it re-fetched."""
    toasts = request_toasts()
    body = {'toasts': toasts, 'items': records_to_dicts(service.items)}
    confirmations = [t for t in toasts if t['category'] == 'success']
    if confirmations:
        body['message'] = confirmations[-1]['title']
    return body


def _record_response(service, record, status=200):
    if record is None:
        return jsonify({
            'success': False,
            'error': service.error or 'Une erreur est survenue',
            'toasts': request_toasts(),
        }), 400
    return jsonify({'success': True, 'item': record.to_dict(), **_mutation_body(service)}), status


def _delete_response(service, deleted):
    if not deleted:
        return jsonify({
            'success': False,
            'error': service.error or 'Une erreur est survenue',
            'toasts': request_toasts(),
        }), 400
    return jsonify({'success': True, **_mutation_body(service)})


def _documents():
    return DocumentService(
        request_client(),
        user_id=current_user.id,
        bucket=current_app.config.get('DOCUMENTS_BUCKET', 'documents'),
    )


# =============================================================================
# CLIENTS
# =============================================================================

@crm_bp.route('/api/clients', methods=['GET'])
@login_required
@tenant_required()
def list_clients():
    service = ClientService(request_client())
    items = service.list(type_filter=request.args.get('type'))
    return _list_response(service, items)


@crm_bp.route('/api/clients', methods=['POST'])
@login_required
@tenant_required()
def create_client():
    service = ClientService(request_client())
    return _record_response(service, service.create(_json_body()), 201)


@crm_bp.route('/api/clients/<client_id>', methods=['GET'])
@login_required
@tenant_required()
def get_client(client_id):
    service = ClientService(request_client())
    record = service.get(client_id)
    if record is None:
        return jsonify({'success': False, 'error': service.error or 'Client introuvable'}), 404
    return jsonify({'success': True, 'item': record.to_dict()})


@crm_bp.route('/api/clients/<client_id>', methods=['PATCH'])
@login_required
@tenant_required()
def update_client(client_id):
    service = ClientService(request_client())
    return _record_response(service, service.update(client_id, _json_body()))


@crm_bp.route('/api/clients/<client_id>', methods=['DELETE'])
@login_required
@tenant_required()
def delete_client(client_id):
    service = ClientService(request_client())
    return _delete_response(service, service.delete(client_id))


# =============================================================================
# DOCUMENTS
# =============================================================================

@crm_bp.route('/api/documents', methods=['GET'])
@login_required
@tenant_required()
def list_documents():
    service = _documents()
    items = service.list(
        owner_id=request.args.get('owner_id'),
        owner_type=request.args.get('owner_type'),
    )
    return _list_response(service, items)


@crm_bp.route('/api/documents', methods=['POST'])
@login_required
@tenant_required()
def upload_document():
    service = _documents()
    upload = request.files.get('file')
    owner_type = request.form.get('owner_type')
    owner_id = request.form.get('owner_id')
    if not upload or not owner_type or not owner_id:
        return jsonify({'success': False, 'error': 'Fichier et propriétaire requis'}), 400

    record = service.upload(
        owner_type=owner_type,
        owner_id=owner_id,
        file_name=upload.filename,
        file_data=upload.read(),
        mime_type=upload.mimetype,
        doc_kind=request.form.get('doc_kind'),
    )
    return _record_response(service, record, 201)


@crm_bp.route('/api/documents/<document_id>/url', methods=['GET'])
@login_required
@tenant_required()
def document_url(document_id):
    service = _documents()
    record = service.get(document_id)
    if record is None:
        return jsonify({'success': False, 'error': 'Document introuvable'}), 404

    try:
        url = get_signed_url(
            request_client(), service.bucket, record.file_key,
            expires_in=current_app.config.get('SIGNED_URL_EXPIRES_IN', 3600),
        )
    except Exception as e:
        current_app.logger.error(f"Error signing document {document_id}: {e}")
        return jsonify({'success': False, 'error': 'Impossible de générer le lien'}), 502

    return jsonify({'success': True, 'url': url})


@crm_bp.route('/api/documents/<document_id>', methods=['DELETE'])
@login_required
@tenant_required()
def delete_document(document_id):
    service = _documents()
    return _delete_response(service, service.delete(document_id))


# =============================================================================
# FAMILY MEMBERS
# =============================================================================

@crm_bp.route('/api/clients/<client_id>/family', methods=['GET'])
@login_required
@tenant_required()
def list_family(client_id):
    service = FamilyMemberService(request_client(), client_id=client_id)
    return _list_response(service, service.list())


@crm_bp.route('/api/clients/<client_id>/family', methods=['POST'])
@login_required
@tenant_required()
def create_family_member(client_id):
    service = FamilyMemberService(request_client(), client_id=client_id)
    record = service.create({**_json_body(), 'client_id': client_id})
    return _record_response(service, record, 201)


@crm_bp.route('/api/family/<member_id>', methods=['PATCH'])
@login_required
@tenant_required()
def update_family_member(member_id):
    service = FamilyMemberService(request_client())
    return _record_response(service, service.update(member_id, _json_body()))


@crm_bp.route('/api/family/<member_id>', methods=['DELETE'])
@login_required
@tenant_required()
def delete_family_member(member_id):
    service = FamilyMemberService(request_client())
    return _delete_response(service, service.delete(member_id))


# =============================================================================
# POLICIES
# =============================================================================

def _policies():
    return PolicyService(request_client(), user_id=current_user.id)


@crm_bp.route('/api/policies', methods=['GET'])
@login_required
@tenant_required()
def list_policies():
    service = _policies()
    items = service.list(client_id=request.args.get('client_id'), status=request.args.get('status'))
    return _list_response(service, items)


@crm_bp.route('/api/policies', methods=['POST'])
@login_required
@tenant_required()
def create_policy():
    service = _policies()
    return _record_response(service, service.create(_json_body()), 201)


@crm_bp.route('/api/policies/<policy_id>', methods=['GET'])
@login_required
@tenant_required()
def get_policy(policy_id):
    service = _policies()
    record = service.get(policy_id)
    if record is None:
        return jsonify({'success': False, 'error': service.error or 'Police introuvable'}), 404
    return jsonify({'success': True, 'item': record.to_dict()})


@crm_bp.route('/api/policies/<policy_id>', methods=['PATCH'])
@login_required
@tenant_required()
def update_policy(policy_id):
    service = _policies()
    return _record_response(service, service.update(policy_id, _json_body()))


@crm_bp.route('/api/policies/<policy_id>', methods=['DELETE'])
@login_required
@tenant_required()
def delete_policy(policy_id):
    service = _policies()
    return _delete_response(service, service.delete(policy_id))


# =============================================================================
# COMMISSIONS
# =============================================================================

@crm_bp.route('/api/commissions', methods=['GET'])
@login_required
@tenant_required()
@module_required('commissions')
def list_commissions():
    service = CommissionService(request_client())
    return _list_response(service, service.list())


@crm_bp.route('/api/commissions', methods=['POST'])
@login_required
@tenant_required()
@module_required('commissions')
def create_commission():
    service = CommissionService(request_client())
    return _record_response(service, service.create(_json_body()), 201)


@crm_bp.route('/api/commissions/<commission_id>/paid', methods=['POST'])
@login_required
@tenant_required()
@module_required('commissions')
def mark_commission_paid(commission_id):
    service = CommissionService(request_client())
    return _record_response(service, service.mark_as_paid(commission_id))


@crm_bp.route('/api/commissions/<commission_id>', methods=['DELETE'])
@login_required
@tenant_required()
@module_required('commissions')
def delete_commission(commission_id):
    service = CommissionService(request_client())
    return _delete_response(service, service.delete(commission_id))


# =============================================================================
# INSURANCE CATALOG
# =============================================================================

@crm_bp.route('/api/companies', methods=['GET'])
@login_required
@tenant_required()
def list_companies():
    service = InsuranceCompanyService(request_client())
    return _list_response(service, service.list())


@crm_bp.route('/api/products', methods=['GET'])
@login_required
@tenant_required()
def list_products():
    service = InsuranceProductService(request_client())
    return _list_response(service, service.list(company_id=request.args.get('company_id')))


@crm_bp.route('/api/companies/<company_id>/contacts', methods=['GET'])
@login_required
@tenant_required()
def list_company_contacts(company_id):
    service = CompanyContactService(request_client(), company_id=company_id)
    return _list_response(service, service.list())


@crm_bp.route('/api/companies/<company_id>/contacts', methods=['POST'])
@login_required
@tenant_required()
def create_company_contact(company_id):
    service = CompanyContactService(request_client(), company_id=company_id)
    return _record_response(service, service.create(_json_body()), 201)


@crm_bp.route('/api/companies/<company_id>/contacts/<contact_id>', methods=['DELETE'])
@login_required
@tenant_required()
def delete_company_contact(company_id, contact_id):
    service = CompanyContactService(request_client(), company_id=company_id)
    return _delete_response(service, service.delete(contact_id))


# =============================================================================
# COLLABORATOR PERMISSIONS
# =============================================================================

@crm_bp.route('/api/collaborators/<collaborator_id>/permissions', methods=['GET'])
@login_required
@tenant_required()
def get_permissions(collaborator_id):
    service = CollaboratorPermissionService(request_client())
    service.fetch(collaborator_id)
    if service.error:
        return jsonify({'success': False, 'error': service.error}), 502
    return jsonify({'success': True, 'permissions': service.permissions_map()})


@crm_bp.route('/api/collaborators/<collaborator_id>/permissions', methods=['PUT'])
@login_required
@tenant_required()
def save_permissions(collaborator_id):
    updates = _json_body().get('permissions')
    if not isinstance(updates, list):
        return jsonify({'success': False, 'error': 'Liste de permissions requise'}), 400

    service = CollaboratorPermissionService(request_client())
    if not service.save(collaborator_id, updates):
        return jsonify({'success': False, 'error': service.error or 'Une erreur est survenue'}), 400
    return jsonify({'success': True, 'permissions': service.permissions_map()})


# =============================================================================
# GATED PAGES
# =============================================================================

@crm_bp.route('/masse-salariale')
@login_required
@tenant_required()
@module_required('payroll')
def payroll():
    return render_template('crm/module_page.html', module='payroll')
