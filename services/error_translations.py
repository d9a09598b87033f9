# services/error_translations.py
"""
Translates common Supabase/PostgreSQL error messages to French.
Exact match first, then substring match in table order, else the raw text.
"""

# Order matters for substring matching: table-specific RLS messages are
# only reachable through an exact match, the generic one catches the rest.
ERROR_TRANSLATIONS = {
    # RLS errors
    'new row violates row-level security policy':
        "Accès refusé : vous n'avez pas les permissions pour effectuer cette action",
    'new row violates row-level security policy for table "commissions"':
        "Accès refusé : vous n'avez pas les permissions pour créer une commission",
    'new row violates row-level security policy for table "clients"':
        "Accès refusé : vous n'avez pas les permissions pour créer un client",
    'new row violates row-level security policy for table "policies"':
        "Accès refusé : vous n'avez pas les permissions pour créer un contrat",

    # Auth errors
    'Invalid login credentials': 'Identifiants incorrects',
    'Email not confirmed': 'Veuillez confirmer votre adresse email',
    'User already registered': 'Un compte existe déjà avec cet email',
    'Password should be at least 6 characters':
        'Le mot de passe doit contenir au moins 6 caractères',
    'JWT expired': 'Votre session a expiré, veuillez vous reconnecter',

    # Database errors
    'duplicate key value violates unique constraint': 'Cette entrée existe déjà',
    'violates foreign key constraint': 'Impossible de supprimer : des éléments liés existent',
    'null value in column': 'Un champ obligatoire est manquant',
    'value too long for type': 'La valeur saisie est trop longue',

    # Network errors
    'Failed to fetch': 'Erreur de connexion au serveur',
    'Network request failed': 'Problème de connexion réseau',
    'TypeError: Failed to fetch': 'Impossible de contacter le serveur',

    # Permission errors
    'permission denied': 'Permission refusée',
    'insufficient_privilege': 'Droits insuffisants pour cette opération',
}

# Error taxonomy
ACCESS_DENIED = 'access_denied'
VALIDATION = 'validation'
NETWORK = 'network'
NOT_FOUND = 'not_found'
UNKNOWN = 'unknown'

_KIND_FRAGMENTS = [
    (ACCESS_DENIED, ('row-level security', 'permission denied', 'insufficient_privilege', 'jwt expired')),
    (VALIDATION, ('null value in column', 'value too long', 'violates', 'invalid input', 'duplicate key')),
    (NETWORK, ('failed to fetch', 'network', 'timed out', 'connection')),
    (NOT_FOUND, ('not found', 'no rows', '0 rows')),
]


def translate_error(error_message) -> str:
    """
    Translate a backend error message for display.

    Args:
        error_message: Raw message (or exception) from the backend

    Returns:
        French message if a translation matches, else the original message
    """
    message = str(error_message) if error_message is not None else ''

    if message in ERROR_TRANSLATIONS:
        return ERROR_TRANSLATIONS[message]

    lowered = message.lower()
    for key, value in ERROR_TRANSLATIONS.items():
        if key.lower() in lowered:
            return value

    return message


def classify_error(error_message) -> str:
    """Bucket a backend error message into the error taxonomy."""
    lowered = str(error_message or '').lower()
    for kind, fragments in _KIND_FRAGMENTS:
        if any(fragment in lowered for fragment in fragments):
            return kind
    return UNKNOWN


def error_message_from(error) -> str:
    """
    Extract the message from a backend exception.
    postgrest APIError carries it in .message, everything else in str().
    """
    message = getattr(error, 'message', None)
    if isinstance(message, str) and message:
        return message
    return str(error)
