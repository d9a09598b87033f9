"""
App factory, authentication and CRM endpoint tests.

Run with: python -m pytest tests/test_routes.py -v
"""

import io
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from app import create_app
from config import TestingConfig
from conftest import MockSupabase, auth_headers
from services.realtime import LocalChangeFeed


class TestAuthentication:
    """Test the Supabase token request loader."""

    def test_invalid_token_is_anonymous(self, client):
        response = client.get('/api/notifications', headers=auth_headers('forged'))
        assert response.status_code == 401

    def test_session_token(self, client, supabase):
        supabase.add_user('session-token', 'user-1')
        with client.session_transaction() as session:
            session['access_token'] = 'session-token'

        response = client.get('/api/notifications', headers={'Accept': 'application/json'})
        assert response.status_code == 200

    def test_user_client_is_bound_to_token(self, change_feed):
        """Authenticated requests should query through the user's own client."""
        anon = MockSupabase()
        anon.add_user('user-token', 'user-1')
        user_clients = {}

        def user_client(token):
            user_clients[token] = MockSupabase()
            return user_clients[token]

        app = create_app(TestingConfig, supabase_client=anon, user_client_factory=user_client,
                         change_feed_factory=lambda token: change_feed)
        response = app.test_client().get('/api/notifications', headers=auth_headers())

        assert response.status_code == 200
        assert anon.executed('notifications') == []
        assert len(user_clients['user-token'].executed('notifications')) == 1

    def test_local_change_feed_when_realtime_disabled(self):
        app = create_app(TestingConfig, supabase_client=MockSupabase())
        factory = app.extensions['change_feed_factory']
        assert isinstance(factory('a'), LocalChangeFeed)
        assert factory('a') is factory('b')


class TestCrmRoutes:
    """Test CRM JSON endpoints."""

    @pytest.fixture(autouse=True)
    def tenant(self, supabase):
        supabase.add_user('user-token', 'user-1')
        supabase.respond('user_tenant_assignments', data=[{'tenant_id': 'tenant-1'}])
        supabase.respond('tenants', data=[{'plan': 'start'}])

    def test_list_clients(self, client, supabase):
        supabase.respond('clients', data=[{'id': 'c1', 'created_at': '2026-10-01', 'first_name': 'Jean'}])
        response = client.get('/api/clients', headers=auth_headers())
        assert response.status_code == 200
        assert response.get_json()['items'][0]['first_name'] == 'Jean'

    def test_list_clients_error(self, client, supabase):
        supabase.fail('clients', message='JWT expired')
        response = client.get('/api/clients', headers=auth_headers())
        assert response.status_code == 502
        assert response.get_json()['error'] == 'Votre session a expiré, veuillez vous reconnecter'

    def test_create_client(self, client, supabase):
        supabase.respond('clients', 'insert', data=[{'id': 'c2', 'created_at': '2026-10-01', 'last_name': 'Muller'}])
        response = client.post('/api/clients', headers=auth_headers(), json={'last_name': 'Muller'})
        assert response.status_code == 201
        assert response.get_json()['item']['id'] == 'c2'

    def test_mutation_returns_toasts_and_refreshed_list(self, client, supabase):
        """JSON callers get the confirmation and the re-fetched list in the body, not as flashes."""
        supabase.respond('clients', data=[{'id': 'c2', 'created_at': '2026-10-01', 'last_name': 'Muller'},
                                          {'id': 'c1', 'created_at': '2026-09-01', 'last_name': 'Favre'}])
        supabase.respond('clients', 'insert', data=[{'id': 'c2', 'created_at': '2026-10-01', 'last_name': 'Muller'}])

        response = client.post('/api/clients', headers=auth_headers(), json={'last_name': 'Muller'})

        data = response.get_json()
        assert data['message'] == 'Client créé'
        assert [item['id'] for item in data['items']] == ['c2', 'c1']
        assert data['toasts'][0]['category'] == 'success'
        assert data['toasts'][0]['title'] == 'Client créé'
        with client.session_transaction() as session:
            assert '_flashes' not in session

    def test_failed_mutation_returns_error_toast(self, client, supabase):
        supabase.fail('clients', 'insert', message='duplicate key value violates unique constraint')

        response = client.post('/api/clients', headers=auth_headers(), json={'last_name': 'Muller'})

        assert response.status_code == 400
        data = response.get_json()
        assert [t['category'] for t in data['toasts']] == ['error']
        assert 'message' not in data

    def test_update_missing_client(self, client):
        response = client.patch('/api/clients/c404', headers=auth_headers(), json={'first_name': 'X'})
        assert response.status_code == 400
        assert response.get_json()['error'] == 'Enregistrement introuvable'

    def test_document_url(self, client, supabase):
        supabase.respond('documents', data=[{
            'id': 'd1', 'owner_id': 'c1', 'owner_type': 'client', 'file_name': 'a.pdf',
            'file_key': 'clients/c1/a.pdf', 'created_at': '2026-10-01',
        }])
        response = client.get('/api/documents/d1/url', headers=auth_headers())
        assert response.get_json()['url'] == 'https://storage.test/documents/clients/c1/a.pdf?expires=3600'

    def test_upload_document(self, client, supabase):
        supabase.respond('documents', 'insert', data=[{
            'id': 'd2', 'owner_id': 'c1', 'owner_type': 'client', 'file_name': 'b.pdf',
            'file_key': 'clients/c1/b.pdf', 'created_at': '2026-10-01',
        }])
        response = client.post('/api/documents', headers=auth_headers(), data={
            'owner_type': 'client', 'owner_id': 'c1',
            'file': (io.BytesIO(b'%PDF-1.4'), 'b.pdf'),
        }, content_type='multipart/form-data')

        assert response.status_code == 201
        assert len(supabase.storage.uploads) == 1

    def test_delete_document_removes_file(self, client, supabase):
        supabase.respond('documents', data=[{
            'id': 'd1', 'owner_id': 'c1', 'owner_type': 'client', 'file_name': 'a.pdf',
            'file_key': 'clients/c1/a.pdf', 'created_at': '2026-10-01',
        }])

        response = client.delete('/api/documents/d1', headers=auth_headers())

        assert response.status_code == 200
        assert response.get_json()['message'] == 'Document supprimé'
        assert supabase.storage.removed == ['clients/c1/a.pdf']

    def test_list_policies(self, client, supabase):
        supabase.respond('policies', data=[{
            'id': 'p1', 'client_id': 'c1', 'product_id': 'prod-1', 'status': 'active',
            'start_date': '2026-11-01', 'created_at': '2026-10-01',
        }])

        response = client.get('/api/policies?client_id=c1', headers=auth_headers())

        assert response.status_code == 200
        assert response.get_json()['items'][0]['id'] == 'p1'
        assert ('eq', 'client_id', 'c1') in supabase.executed('policies')[0].filters

    def test_create_policy(self, client, supabase):
        supabase.respond('partners', data=[{'id': 'partner-7'}])
        supabase.respond('clients', data=[{'user_id': 'portal-1'}])
        supabase.respond('policies', 'insert', data=[{
            'id': 'p2', 'client_id': 'c1', 'product_id': 'prod-1', 'status': 'pending',
            'start_date': '2026-11-01', 'created_at': '2026-10-01',
        }])

        response = client.post('/api/policies', headers=auth_headers(), json={
            'client_id': 'c1', 'product_id': 'prod-1', 'status': 'pending', 'start_date': '2026-11-01',
        })

        assert response.status_code == 201
        assert response.get_json()['message'] == 'Police créée'
        assert ('eq', 'user_id', 'user-1') in supabase.executed('partners')[0].filters
        assert supabase.executed('notifications', 'insert')[0].payload[0]['kind'] == 'contract'

    def test_missing_policy(self, client):
        response = client.get('/api/policies/p404', headers=auth_headers())
        assert response.status_code == 404
        assert response.get_json()['error'] == 'Police introuvable'

    def test_commissions_available_on_start(self, client):
        """Commissions are part of the start plan."""
        response = client.get('/api/commissions', headers=auth_headers())
        assert response.status_code == 200

    def test_save_permissions_requires_list(self, client):
        response = client.put('/api/collaborators/col-1/permissions', headers=auth_headers(), json={})
        assert response.status_code == 400

    def test_permissions(self, client, supabase):
        response = client.put('/api/collaborators/col-1/permissions', headers=auth_headers(), json={
            'permissions': [{'module': 'contrats', 'can_read': True}],
        })
        assert response.status_code == 200
        assert set(response.get_json()['permissions']) == {
            'adresses', 'contrats', 'commissions', 'suivis', 'documents', 'compagnies', 'collaborateurs',
        }
