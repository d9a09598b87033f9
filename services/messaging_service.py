# services/messaging_service.py
"""
Email and SMS dispatch through the messaging edge functions.

The functions hold the provider credentials (Resend, Twilio). When SMS is
not configured they answer with simulated=True, and the verification
function also returns the code as testCode.
"""

import logging
import re
from enum import Enum
from typing import Iterable, Optional

from services.exceptions import MessagingError
from services.supabase_client import FunctionInvocationError, invoke_function

logger = logging.getLogger(__name__)

DEFAULT_COUNTRY_CODE = '41'

SEND_EMAIL_FUNCTION = 'send-crm-email'
SEND_SMS_FUNCTION = 'send-sms'
SEND_VERIFICATION_FUNCTION = 'send-verification-sms'
VERIFY_CODE_FUNCTION = 'verify-sms-code'

VERIFICATION_CODE = re.compile(r'^\d{6}$')


class EmailTemplate(str, Enum):
    WELCOME = 'welcome'
    CONTRACT_SIGNED = 'contract_signed'
    MANDAT_SIGNED = 'mandat_signed'
    ACCOUNT_CREATED = 'account_created'
    RELATION_CLIENT = 'relation_client'
    OFFRE_SPECIALE = 'offre_speciale'


EMAIL_CONFIRMATIONS = {
    EmailTemplate.WELCOME: 'Email de bienvenue envoyé',
    EmailTemplate.CONTRACT_SIGNED: 'Confirmation de signature envoyée',
    EmailTemplate.MANDAT_SIGNED: 'Email avec identifiants envoyé',
    EmailTemplate.ACCOUNT_CREATED: 'Identifiants de connexion envoyés',
    EmailTemplate.RELATION_CLIENT: 'Email relation client envoyé',
    EmailTemplate.OFFRE_SPECIALE: 'Offre spéciale envoyée',
}


def _template(value) -> EmailTemplate:
    try:
        return EmailTemplate(value)
    except ValueError:
        raise MessagingError(f"Modèle d'email inconnu : {value}")


def send_crm_email(client, template, recipient_email: str, recipient_name: str, data: dict = None) -> dict:
    """
    Send a templated CRM email.

    Args:
        client: Supabase client
        template: EmailTemplate (or its value)
        recipient_email: Recipient address
        recipient_name: Recipient display name
        data: Template variables (optional)

    Returns:
        {'success': True, 'data': ...} or {'success': False, 'error': ...}

    Raises:
        MessagingError: unknown template or missing recipient, before dispatch
    """
    template = _template(template)
    if not recipient_email or not recipient_name:
        raise MessagingError('Destinataire requis')
    if template == EmailTemplate.MANDAT_SIGNED and not (data or {}).get('temporaryPassword'):
        raise MessagingError('Mot de passe temporaire requis pour cet email')

    body = {
        'type': template.value,
        'recipientEmail': recipient_email,
        'recipientName': recipient_name,
        # The deployed function still reads the client* names
        'clientEmail': recipient_email,
        'clientName': recipient_name,
    }
    if data:
        body['data'] = data

    logger.info(f"Sending {template.value} email to {recipient_email}")
    try:
        response = invoke_function(client, SEND_EMAIL_FUNCTION, body=body)
    except FunctionInvocationError as e:
        logger.error(f"Email send error: {e}")
        return {'success': False, 'error': str(e)}

    return {'success': True, 'data': response}


def email_confirmation(template) -> str:
    return EMAIL_CONFIRMATIONS[_template(template)]


# =============================================================================
# SMS
# =============================================================================

def normalize_phone(value: str, country_code: str = DEFAULT_COUNTRY_CODE) -> str:
    """
    Normalize a phone number to +<country><number>.

    Examples (country 41):
        '079 123 45 67' -> '+41791234567'
        '791234567'     -> '+41791234567'
        '+33612345678'  -> '+33612345678'
    """
    number = re.sub(r'\s', '', value or '')
    if number.startswith('0'):
        number = f"+{country_code}{number[1:]}"
    if not number.startswith('+'):
        number = f"+{country_code}{number}"
    return number


def send_sms(client, recipients: Iterable[dict], message: str, country_code: str = DEFAULT_COUNTRY_CODE) -> dict:
    """
    Send an SMS to several recipients.

    Args:
        recipients: [{'phone': ..., 'name': ...}]
        message: Text, may contain {{client_name}}

    Returns:
        Function response ({success, sent, simulated?, ...})

    Raises:
        MessagingError: no recipient / no message, or the function failed
    """
    normalized = [
        {'phone': normalize_phone(r.get('phone'), country_code), 'name': r.get('name') or ''}
        for r in recipients or []
        if r.get('phone')
    ]
    if not normalized:
        raise MessagingError('Au moins un destinataire requis')
    if not message:
        raise MessagingError('Message requis')

    try:
        response = invoke_function(client, SEND_SMS_FUNCTION, body={
            'recipients': normalized,
            'message': message,
        })
    except FunctionInvocationError as e:
        logger.error(f"SMS send error: {e}")
        raise MessagingError("Erreur lors de l'envoi du SMS") from e

    if response.get('simulated'):
        logger.info(f"SMS simulated for {len(normalized)} recipient(s)")
    return response


def send_verification_sms(client, user_id: str, phone_number: str, verification_type: str,
                          metadata: dict = None, country_code: str = DEFAULT_COUNTRY_CODE) -> dict:
    """
    Send a 6-digit verification code.

    Returns:
        {'sent': True, 'simulated': bool, 'test_code': str | None}
    """
    body = {
        'userId': user_id,
        'phoneNumber': normalize_phone(phone_number, country_code),
        'verificationType': verification_type,
    }
    if metadata:
        body['metadata'] = metadata

    try:
        response = invoke_function(client, SEND_VERIFICATION_FUNCTION, body=body)
    except FunctionInvocationError as e:
        logger.error(f"Error sending verification SMS: {e}")
        raise MessagingError("Erreur lors de l'envoi du SMS") from e

    simulated = bool(response.get('simulated'))
    test_code: Optional[str] = response.get('testCode') if simulated else None
    if simulated:
        logger.info(f"Verification SMS simulated for user {user_id}")
    return {'sent': True, 'simulated': simulated, 'test_code': test_code}


def verify_sms_code(client, user_id: str, code: str, verification_type: str) -> dict:
    """
    Check a verification code.

    Returns:
        {'success': True} or {'success': False, 'error': ...}

    Raises:
        MessagingError: code is not 6 digits (nothing is sent)
    """
    code = (code or '').strip()
    if not VERIFICATION_CODE.match(code):
        raise MessagingError('Veuillez entrer le code à 6 chiffres')

    try:
        response = invoke_function(client, VERIFY_CODE_FUNCTION, body={
            'userId': user_id,
            'code': code,
            'verificationType': verification_type,
        })
    except FunctionInvocationError as e:
        logger.warning(f"Verification failed for user {user_id}: {e}")
        return {'success': False, 'error': str(e) or 'Erreur de vérification'}

    if response.get('success'):
        return {'success': True}
    return {'success': False, 'error': response.get('error') or 'Code incorrect'}
