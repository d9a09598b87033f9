# services/crm_collections.py
"""
CRM collection services: clients, documents, family members, policies,
commissions, company contacts, the insurance catalog and collaborator
permissions.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from models import (
    Client, Commission, CompanyContact, CollaboratorPermission, Document,
    FamilyMember, InsuranceCompany, InsuranceProduct, PERMISSION_MODULES, Policy, RecordError,
    load_records,
)
from services import client_notifications
from services.collections import CollectionReader, CollectionService
from services.supabase_client import DOCUMENTS_BUCKET, delete_file, generate_storage_path, upload_file

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _same_name(a: dict, b: dict) -> bool:
    return (
        (a.get('first_name') or '').lower() == (b.get('first_name') or '').lower()
        and (a.get('last_name') or '').lower() == (b.get('last_name') or '').lower()
    )


# =============================================================================
# CLIENTS
# =============================================================================

class ClientService(CollectionService):
    table = 'clients'
    record_type = Client
    messages = {
        'created': ('Client créé', 'Le client a été créé avec succès'),
        'updated': ('Client mis à jour', 'Les modifications ont été enregistrées'),
        'deleted': ('Client supprimé', 'Le client a été supprimé avec succès'),
    }

    def build_query(self, type_filter: str = None, **filters):
        query = super().build_query()
        if type_filter:
            query = query.eq('type_adresse', type_filter)
        return query

    def load(self, rows, **filters) -> list:
        # Agents live in the same table, joined by a second query
        agent_ids = sorted({r['assigned_agent_id'] for r in rows if isinstance(r, dict) and r.get('assigned_agent_id')})
        agents = {}
        if agent_ids:
            try:
                response = (
                    self.client.table('clients')
                    .select('id, first_name, last_name, email')
                    .in_('id', agent_ids)
                    .execute()
                )
                agents = {a['id']: a for a in response.data or []}
            except Exception as e:
                logger.warning(f"Could not load assigned agents: {e}")

        enriched = []
        for row in rows:
            if isinstance(row, dict):
                row = {**row, 'assigned_agent': agents.get(row.get('assigned_agent_id'))}
            enriched.append(row)
        return load_records(Client, enriched)


# =============================================================================
# DOCUMENTS
# =============================================================================

class DocumentService(CollectionService):
    """
    Document rows. Files live in the private storage bucket under file_key.
    Creating a document owned by a client notifies that client's portal.
    """
    table = 'documents'
    record_type = Document
    messages = {
        'created': ('Document créé', 'Le document a été enregistré avec succès'),
        'updated': ('Document mis à jour', 'Les modifications ont été enregistrées'),
        'deleted': ('Document supprimé', 'Le document a été supprimé avec succès'),
    }

    def __init__(self, client, toaster=None, user_id: str = None, bucket: str = DOCUMENTS_BUCKET):
        super().__init__(client, toaster)
        self.user_id = user_id
        self.bucket = bucket

    def build_query(self, owner_id: str = None, owner_type: str = None, **filters):
        query = super().build_query()
        if owner_id:
            query = query.eq('owner_id', owner_id)
        if owner_type:
            query = query.eq('owner_type', owner_type)
        return query

    def prepare_insert(self, fields: dict) -> dict:
        return {**fields, 'created_by': self.user_id}

    def after_create(self, record: Document, fields: dict):
        if record.owner_type == 'client':
            client_notifications.new_document(self.client, record.owner_id, record.file_name, record.doc_kind)

    def delete(self, record_id: str) -> bool:
        """Delete the document row, then its file in the bucket."""
        record = self.get(record_id)
        if record is not None:
            self._filters = {'owner_id': record.owner_id, 'owner_type': record.owner_type}
        if not super().delete(record_id):
            return False
        if record is None:
            logger.warning(f"Document {record_id} deleted without a known file_key, storage left as is")
        elif not delete_file(self.client, self.bucket, record.file_key):
            logger.warning(f"Document {record_id} deleted but {record.file_key} is still in storage")
        return True

    def upload(self, owner_type: str, owner_id: str, file_name: str, file_data: bytes,
               mime_type: str = None, doc_kind: str = None) -> Optional[Document]:
        """Store a file in the bucket and create its document row."""
        storage_path, _ = generate_storage_path(owner_type, owner_id, file_name)
        try:
            uploaded = upload_file(self.client, self.bucket, storage_path, file_data, mime_type)
        except Exception as e:
            self.report_error(e, context='upload')
            return None

        self._filters = {'owner_id': owner_id, 'owner_type': owner_type}
        return self.create({
            'owner_id': owner_id,
            'owner_type': owner_type,
            'file_name': file_name,
            'file_key': uploaded['path'],
            'mime_type': mime_type,
            'size_bytes': uploaded['size'],
            'doc_kind': doc_kind,
        })


# =============================================================================
# FAMILY MEMBERS
# =============================================================================

class FamilyMemberService(CollectionService):
    """
    Family members of a client, in both directions.

    Besides the client's own entries, a client that appears by name in
    another client's family sees that other client (reverse relation) and
    the other client's remaining members (siblings).
    """
    table = 'family_members'
    record_type = FamilyMember
    messages = {
        'created': ('Membre ajouté', 'Le membre de la famille a été ajouté avec succès'),
        'updated': ('Membre mis à jour', 'Les modifications ont été enregistrées'),
        'deleted': ('Membre supprimé', 'Le membre de la famille a été supprimé avec succès'),
    }

    PARENT_JOIN = '*, clients!family_members_client_id_fkey(id, first_name, last_name, birthdate, permit_type, nationality)'

    def __init__(self, client, toaster=None, client_id: str = None):
        super().__init__(client, toaster)
        self.client_id = client_id

    def list(self, client_id: str = None, **filters) -> List[FamilyMember]:
        client_id = client_id or self.client_id
        if not client_id:
            self.items = []
            return []
        return super().list(client_id=client_id)

    def build_query(self, client_id: str = None, **filters):
        return super().build_query().eq('client_id', client_id)

    def load(self, rows, client_id: str = None, **filters) -> list:
        direct = load_records(FamilyMember, rows)
        return direct + self._reverse_relations(client_id)

    def _reverse_relations(self, client_id: str) -> List[FamilyMember]:
        current = (
            self.client.table('clients')
            .select('first_name, last_name')
            .eq('id', client_id)
            .maybe_single()
            .execute()
        )
        current = current.data if current is not None else None
        if not current:
            return []

        response = (
            self.client.table('family_members')
            .select(self.PARENT_JOIN)
            .neq('client_id', client_id)
            .execute()
        )

        rows = []
        for member in response.data or []:
            parent = member.get('clients')
            if not _same_name(member, current) or not parent:
                continue

            rows.append({
                'id': f"reverse-{member['id']}",
                'client_id': client_id,
                'first_name': parent.get('first_name') or '',
                'last_name': parent.get('last_name') or '',
                'birth_date': parent.get('birthdate'),
                # A child sees its parent as "autre"
                'relation_type': 'conjoint' if member.get('relation_type') == 'conjoint' else 'autre',
                'permit_type': parent.get('permit_type'),
                'nationality': parent.get('nationality'),
                'created_at': member.get('created_at'),
                'updated_at': member.get('updated_at'),
                'linked_client_id': parent.get('id'),
                'is_reverse_relation': True,
            })

            siblings = (
                self.client.table('family_members')
                .select('*')
                .eq('client_id', parent['id'])
                .neq('id', member['id'])
                .execute()
            )
            for sibling in siblings.data or []:
                if not _same_name(sibling, current):
                    rows.append({**sibling, 'id': f"sibling-{sibling['id']}", 'is_reverse_relation': True})

        return load_records(FamilyMember, rows)

    def create(self, fields: dict) -> Optional[FamilyMember]:
        if fields.get('client_id'):
            self._filters = {'client_id': fields['client_id']}
        return super().create(fields)


# =============================================================================
# POLICIES
# =============================================================================

class PolicyService(CollectionService):
    """
    Insurance policies (contracts) with their client, product, company and
    partner. A new policy is stamped with the creating user's partner
    profile, if any, and notifies the client's portal.
    """
    table = 'policies'
    record_type = Policy
    select = (
        '*, client:clients!client_id (id, first_name, last_name, company_name, phone), '
        'product:insurance_products!product_id (id, name, category, '
        'company:insurance_companies!company_id (name, logo_url)), '
        'partner:partners!partner_id (id, code, phone)'
    )
    messages = {
        'created': ('Police créée', "La police d'assurance a été créée avec succès"),
        'updated': ('Police mise à jour', 'Les modifications ont été enregistrées'),
        'deleted': ('Police supprimée', 'La police a été supprimée avec succès'),
    }

    def __init__(self, client, toaster=None, user_id: str = None):
        super().__init__(client, toaster)
        self.user_id = user_id

    def build_query(self, client_id: str = None, status: str = None, **filters):
        query = super().build_query()
        if client_id:
            query = query.eq('client_id', client_id)
        if status:
            query = query.eq('status', status)
        return query

    def _lookup(self, table: str, column: str, key: str, value: str) -> Optional[str]:
        try:
            response = (
                self.client.table(table)
                .select(column)
                .eq(key, value)
                .maybe_single()
                .execute()
            )
        except Exception as e:
            logger.warning(f"Could not look up {table}.{column} for {value}: {e}")
            return None
        data = response.data if response is not None else None
        return data.get(column) if data else None

    def prepare_insert(self, fields: dict) -> dict:
        payload = dict(fields)
        if not payload.get('partner_id') and self.user_id:
            partner_id = self._lookup('partners', 'id', 'user_id', self.user_id)
            if partner_id:
                payload['partner_id'] = partner_id
        return payload

    def after_create(self, record: Policy, fields: dict):
        product_name = record.product_name or self._lookup('insurance_products', 'name', 'id', record.product_id)
        client_notifications.new_contract(self.client, record.client_id, record.id, product_name)


# =============================================================================
# COMMISSIONS
# =============================================================================

class CommissionService(CollectionService):
    table = 'commissions'
    record_type = Commission
    select = (
        '*, policy:policies!policy_id ('
        'id, policy_number, client_id, '
        'product:insurance_products!product_id (name, category), '
        'client:clients!client_id (id, first_name, last_name, company_name))'
    )
    messages = {
        'created': ('Commission créée', 'La commission a été créée avec succès'),
        'updated': ('Commission mise à jour', 'Les modifications ont été enregistrées'),
        'deleted': ('Commission supprimée', 'La commission a été supprimée avec succès'),
        'paid': ('Commission marquée comme payée', 'Le statut a été mis à jour'),
    }

    def mark_as_paid(self, commission_id: str) -> Optional[Commission]:
        return self.update(commission_id, {'status': 'paid', 'paid_at': _now_iso()}, action='paid')


# =============================================================================
# COMPANY CONTACTS
# =============================================================================

class CompanyContactService(CollectionService):
    """Contact channels of one insurance company."""
    table = 'company_contacts'
    record_type = CompanyContact
    messages = {
        'created': ('Contact ajouté', 'Le contact a été ajouté avec succès'),
        'updated': ('Contact mis à jour', 'Les modifications ont été enregistrées'),
        'deleted': ('Contact supprimé', 'Le contact a été supprimé'),
    }

    def __init__(self, client, toaster=None, company_id: str = None):
        super().__init__(client, toaster)
        self.company_id = company_id

    def list(self, **filters) -> List[CompanyContact]:
        if not self.company_id:
            self.items = []
            return []
        return super().list(**filters)

    def build_query(self, **filters):
        return super().build_query().eq('company_id', self.company_id)

    def apply_order(self, query):
        return (
            query.order('contact_type')
            .order('is_primary', desc=True)
            .order('created_at')
        )

    def prepare_insert(self, fields: dict) -> dict:
        return {'company_id': self.company_id, **fields}


# =============================================================================
# INSURANCE CATALOG (read-only)
# =============================================================================

class InsuranceCompanyService(CollectionReader):
    table = 'insurance_companies'
    record_type = InsuranceCompany
    order_by = 'name'
    order_desc = False


class InsuranceProductService(CollectionReader):
    table = 'insurance_products'
    record_type = InsuranceProduct
    select = '*, company:insurance_companies!company_id (id, name, logo_url)'
    order_by = 'name'
    order_desc = False

    def build_query(self, company_id: str = None, **filters):
        query = super().build_query()
        if company_id:
            query = query.eq('company_id', company_id)
        return query


# =============================================================================
# COLLABORATOR PERMISSIONS
# =============================================================================

class CollaboratorPermissionService(CollectionReader):
    """
    Per-module permissions of a collaborator.

    save() deletes the collaborator's rows then inserts the new set. The two
    steps are not atomic: if the insert fails the collaborator is left with
    no permissions, which is reported as a failure.
    """
    table = 'collaborator_permissions'
    record_type = CollaboratorPermission
    order_by = 'module'
    order_desc = False

    def build_query(self, collaborator_id: str = None, **filters):
        return super().build_query().eq('collaborator_id', collaborator_id)

    def fetch(self, collaborator_id: str) -> List[CollaboratorPermission]:
        return self.list(collaborator_id=collaborator_id)

    def save(self, collaborator_id: str, updates: List[dict]) -> bool:
        """
        Replace a collaborator's permissions.

        Args:
            collaborator_id: Collaborator (clients.id)
            updates: [{module, can_read, can_create, can_update, can_delete}]

        Returns:
            True if both steps succeeded
        """
        rows = []
        for update in updates:
            try:
                permission = CollaboratorPermission.from_row({**update, 'collaborator_id': collaborator_id})
            except RecordError as e:
                self.report_error(e, context='save')
                return False
            if permission.grants_anything:
                row = permission.to_dict()
                row.pop('id', None)
                rows.append(row)

        self.loading = True
        try:
            self.client.table(self.table).delete().eq('collaborator_id', collaborator_id).execute()
        except Exception as e:
            self.loading = False
            self.report_error(e, context='delete')
            return False

        if rows:
            try:
                self.client.table(self.table).insert(rows).execute()
            except Exception as e:
                self.loading = False
                logger.warning(f"Permissions of {collaborator_id} were cleared but not re-inserted")
                self.report_error(e, context='insert')
                return False

        self.loading = False
        self.toaster.success('Permissions mises à jour', "Les droits d'accès ont été enregistrés")
        self.fetch(collaborator_id)
        return True

    def permission_for(self, module: str) -> Optional[CollaboratorPermission]:
        for permission in self.items:
            if permission.module == module:
                return permission
        return None

    def permissions_map(self) -> Dict[str, dict]:
        """Every module with its current flags, all False when unset."""
        result = {}
        for module, _label in PERMISSION_MODULES:
            existing = self.permission_for(module)
            result[module] = {
                'module': module,
                'can_read': bool(existing and existing.can_read),
                'can_create': bool(existing and existing.can_create),
                'can_update': bool(existing and existing.can_update),
                'can_delete': bool(existing and existing.can_delete),
            }
        return result
