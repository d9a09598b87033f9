"""
Client portal notifications.
Inserts into the notifications table under the client's portal user_id.
Clients without a portal account are skipped.
"""

import logging

logger = logging.getLogger(__name__)

CLIENT_NOTIFICATION_KINDS = ('contract', 'document', 'invoice', 'claim', 'message')


def notify_client(client, client_id: str, kind: str, title: str, message: str = None, payload: dict = None) -> bool:
    """
    Send a notification to a client's portal.

    Args:
        client: Supabase client
        client_id: clients.id of the recipient
        kind: One of CLIENT_NOTIFICATION_KINDS
        title: Notification title
        message: Body text (optional)
        payload: Extra JSON data (optional)

    Returns:
        True if the notification was inserted
    """
    if kind not in CLIENT_NOTIFICATION_KINDS:
        logger.error(f"Unknown client notification kind '{kind}'")
        return False

    try:
        response = (
            client.table('clients')
            .select('user_id')
            .eq('id', client_id)
            .maybe_single()
            .execute()
        )
    except Exception as e:
        logger.warning(f"Could not look up client {client_id}, skipping notification: {e}")
        return False

    row = (response.data if response is not None else None) or {}
    user_id = row.get('user_id')
    if not user_id:
        logger.info(f"Client {client_id} has no user account, skipping notification")
        return False

    try:
        client.table('notifications').insert([{
            'user_id': user_id,
            'kind': kind,
            'title': title,
            'message': message or None,
            'payload': payload or None,
        }]).execute()
    except Exception as e:
        logger.error(f"Error creating notification for client {client_id}: {e}")
        return False

    logger.info(f"Notification sent to client {client_id}: {kind} - {title}")
    return True


# =============================================================================
# PRESETS
# =============================================================================

def new_contract(client, client_id: str, policy_id: str, product_name: str = None) -> bool:
    message = (
        f"Votre contrat {product_name} a été enregistré."
        if product_name else 'Un nouveau contrat a été ajouté à votre dossier.'
    )
    return notify_client(client, client_id, 'contract', 'Nouveau contrat ajouté',
                         message, {'policy_id': policy_id})


def new_document(client, client_id: str, document_name: str, doc_kind: str = None) -> bool:
    return notify_client(client, client_id, 'document', 'Nouveau document disponible',
                         f'Le document "{document_name}" est maintenant accessible.',
                         {'doc_kind': doc_kind})


def new_invoice(client, client_id: str, invoice_number: str, amount: float) -> bool:
    return notify_client(client, client_id, 'invoice', 'Nouvelle facture',
                         f"Facture {invoice_number} de CHF {amount:.2f}",
                         {'invoice_number': invoice_number, 'amount': amount})


def claim_status_update(client, client_id: str, claim_id: str, new_status: str) -> bool:
    return notify_client(client, client_id, 'claim', 'Mise à jour de votre sinistre',
                         f"Le statut de votre sinistre a été mis à jour: {new_status}",
                         {'claim_id': claim_id, 'status': new_status})


def new_message(client, client_id: str) -> bool:
    return notify_client(client, client_id, 'message', 'Nouveau message',
                         'Vous avez reçu un nouveau message de votre conseiller.')
