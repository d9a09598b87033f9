"""
Email and SMS dispatch tests.

Run with: python -m pytest tests/test_messaging.py -v
"""

import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from conftest import auth_headers
from services.exceptions import MessagingError
from services.messaging_service import (
    EmailTemplate, email_confirmation, normalize_phone, send_crm_email, send_sms,
    send_verification_sms, verify_sms_code,
)


class TestEmail:

    def test_sends_template(self, supabase):
        supabase.functions.responses['send-crm-email'] = {'id': 'msg-1'}

        result = send_crm_email(supabase, 'welcome', 'jean@exemple.ch', 'Jean Dupont', data={'agentName': 'Anna'})

        assert result == {'success': True, 'data': {'id': 'msg-1'}}
        name, options = supabase.functions.calls[0]
        assert name == 'send-crm-email'
        body = options['body']
        assert body['type'] == 'welcome'
        assert body['recipientEmail'] == body['clientEmail'] == 'jean@exemple.ch'
        assert body['data'] == {'agentName': 'Anna'}

    def test_mandat_needs_password(self, supabase):
        with pytest.raises(MessagingError):
            send_crm_email(supabase, EmailTemplate.MANDAT_SIGNED, 'a@b.ch', 'A')
        assert supabase.functions.calls == []

    def test_unknown_template(self, supabase):
        with pytest.raises(MessagingError):
            send_crm_email(supabase, 'newsletter', 'a@b.ch', 'A')

    def test_function_error_is_returned(self, supabase):
        supabase.functions.responses['send-crm-email'] = {'error': 'Domain not verified'}
        result = send_crm_email(supabase, 'welcome', 'a@b.ch', 'A')
        assert result == {'success': False, 'error': 'Domain not verified'}

    def test_confirmation(self):
        assert email_confirmation('account_created') == 'Identifiants de connexion envoyés'


class TestSms:

    @pytest.mark.parametrize('raw, expected', [
        ('079 123 45 67', '+41791234567'),
        ('791234567', '+41791234567'),
        ('+33612345678', '+33612345678'),
    ])
    def test_normalize_phone(self, raw, expected):
        assert normalize_phone(raw) == expected

    def test_send_skips_recipients_without_phone(self, supabase):
        supabase.functions.responses['send-sms'] = {'success': True, 'sent': 1, 'simulated': True}

        response = send_sms(supabase, [{'phone': '079 123 45 67', 'name': 'Jean'}, {'name': 'Sans numéro'}], 'Bonjour')

        assert response['simulated'] is True
        body = supabase.functions.calls[0][1]['body']
        assert body['recipients'] == [{'phone': '+41791234567', 'name': 'Jean'}]

    def test_send_requires_recipient(self, supabase):
        with pytest.raises(MessagingError, match='Au moins un destinataire'):
            send_sms(supabase, [], 'Bonjour')

    def test_verification_simulated(self, supabase):
        supabase.functions.responses['send-verification-sms'] = {'success': True, 'simulated': True, 'testCode': '123456'}
        result = send_verification_sms(supabase, 'u1', '0791234567', 'signup')
        assert result == {'sent': True, 'simulated': True, 'test_code': '123456'}

    def test_verify_requires_six_digits(self, supabase):
        with pytest.raises(MessagingError, match='6 chiffres'):
            verify_sms_code(supabase, 'u1', '12345', 'signup')
        assert supabase.functions.calls == []

    def test_verify_wrong_code(self, supabase):
        supabase.functions.responses['verify-sms-code'] = {'success': False}
        assert verify_sms_code(supabase, 'u1', '123456', 'signup') == {'success': False, 'error': 'Code incorrect'}


class TestMessagingRoutes:

    @pytest.fixture(autouse=True)
    def user(self, supabase):
        supabase.add_user('user-token', 'user-1')
        supabase.respond('user_tenant_assignments', data=[{'tenant_id': 'tenant-1'}])

    def test_email(self, client, supabase):
        supabase.functions.responses['send-crm-email'] = {'id': 'msg-1'}
        response = client.post('/api/messaging/email', headers=auth_headers(), json={
            'type': 'relation_client', 'recipient_email': 'a@b.ch', 'recipient_name': 'A',
        })
        assert response.status_code == 200
        assert response.get_json()['message'] == 'Email relation client envoyé'

    def test_email_missing_recipient(self, client):
        response = client.post('/api/messaging/email', headers=auth_headers(), json={'type': 'welcome'})
        assert response.status_code == 400
        assert response.get_json()['error'] == 'Destinataire requis'

    def test_verification_check(self, client, supabase):
        supabase.functions.responses['verify-sms-code'] = {'success': True}
        response = client.post('/api/messaging/verification/check', headers=auth_headers(),
                               json={'code': '654321', 'verification_type': 'signup'})
        assert response.status_code == 200
        assert supabase.functions.calls[0][1]['body']['userId'] == 'user-1'
