"""
Supabase Client Service

Single entry point to the hosted backend: the cached client, document
storage helpers and edge function invocation.
Files are stored privately and accessed via signed URLs.
"""

import logging
import os
import uuid
from typing import Optional

from flask import current_app, g
from flask_login import current_user
from supabase import create_client, Client, ClientOptions

from services.exceptions import CRMError

logger = logging.getLogger(__name__)

# Supabase client singleton
_supabase_client: Client = None

# Bucket names
DOCUMENTS_BUCKET = 'documents'


class FunctionInvocationError(CRMError):
    """Raised when an edge function call fails or returns an error body."""
    def __init__(self, message: str, function_name: str = None):
        self.function_name = function_name
        super().__init__(message)


def get_supabase_client(url: str = None, key: str = None) -> Client:
    """
    Get or create the Supabase client.
    Uses SUPABASE_URL and SUPABASE_KEY from the environment unless given.
    """
    global _supabase_client

    if _supabase_client is None:
        supabase_url = url or os.getenv('SUPABASE_URL')
        supabase_key = key or os.getenv('SUPABASE_KEY')

        if not supabase_url or not supabase_key:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_KEY environment variables are required. "
                "Get these from your Supabase project settings."
            )

        _supabase_client = create_client(supabase_url, supabase_key)

    return _supabase_client


def set_supabase_client(client) -> None:
    """Replace the cached client (app factory and tests)."""
    global _supabase_client
    _supabase_client = client


# =============================================================================
# EDGE FUNCTIONS
# =============================================================================

def invoke_function(client, function_name: str, body: dict = None, access_token: str = None) -> dict:
    """
    Invoke a Supabase edge function and return its JSON body.

    Args:
        client: Supabase client
        function_name: Deployed function name (e.g. 'add-user-seat')
        body: JSON payload (optional)
        access_token: User access token, sent as a Bearer header (optional)

    Returns:
        Parsed JSON response

    Raises:
        FunctionInvocationError: transport failure, non-2xx status, or an
            {"error": ...} body
    """
    options = {'responseType': 'json'}
    if body is not None:
        options['body'] = body
    if access_token:
        options['headers'] = {'Authorization': f'Bearer {access_token}'}

    try:
        data = client.functions.invoke(function_name, invoke_options=options)
    except Exception as e:
        logger.error(f"Edge function {function_name} failed: {e}")
        raise FunctionInvocationError(str(e), function_name=function_name) from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise FunctionInvocationError(
            f"Unexpected response from {function_name}", function_name=function_name
        )
    if data.get('error'):
        raise FunctionInvocationError(str(data['error']), function_name=function_name)

    return data


# =============================================================================
# DOCUMENT STORAGE
# =============================================================================

def generate_storage_path(owner_type: str, owner_id: str, original_filename: str) -> tuple[str, str]:
    """
    Generate a unique storage path for a document.

    Returns:
        tuple: (storage_path, unique_filename)
    """
    ext = ''
    if '.' in original_filename:
        ext = '.' + original_filename.rsplit('.', 1)[1].lower()

    unique_filename = f"{uuid.uuid4().hex}{ext}"

    # Organize by owner for easy management
    storage_path = f"{owner_type}s/{owner_id}/{unique_filename}"

    return storage_path, unique_filename


def upload_file(client, bucket: str, storage_path: str, file_data: bytes, content_type: Optional[str] = None) -> dict:
    """
    Upload a file to a Supabase Storage bucket.

    Returns:
        dict with 'path', 'filename', 'size' keys on success

    Raises:
        Exception on upload failure
    """
    file_options = {}
    if content_type:
        file_options['content-type'] = content_type

    client.storage.from_(bucket).upload(
        path=storage_path,
        file=file_data,
        file_options=file_options
    )

    return {
        'path': storage_path,
        'filename': storage_path.rsplit('/', 1)[-1],
        'size': len(file_data)
    }


def get_signed_url(client, bucket: str, storage_path: str, expires_in: int = 3600) -> str:
    """Generate a signed URL for private file access (default: 1 hour)."""
    response = client.storage.from_(bucket).create_signed_url(
        path=storage_path,
        expires_in=expires_in
    )
    return response['signedURL']


def delete_file(client, bucket: str, storage_path: str) -> bool:
    """
    Delete a file from Supabase Storage.

    Returns:
        True on success, False on failure
    """
    try:
        client.storage.from_(bucket).remove([storage_path])
        return True
    except Exception as e:
        logger.error(f"Failed to delete file {storage_path}: {e}")
        return False


# =============================================================================
# REQUEST SCOPE
# =============================================================================

def create_user_client(url: str, key: str, access_token: str) -> Client:
    """
    Create a client that sends the user's JWT, so RLS applies to the user
    rather than to the anon role.
    """
    options = ClientOptions(headers={'Authorization': f'Bearer {access_token}'})
    return create_client(url, key, options=options)


def request_client():
    """
    Get the Supabase client for the current request.

    Authenticated requests get a client bound to the user's token (cached on
    flask.g), anonymous ones the app-wide client.
    """
    if 'supabase_client' in g:
        return g.supabase_client

    client = current_app.extensions['supabase']
    token = getattr(current_user, 'access_token', None) if current_user.is_authenticated else None
    if token:
        client = current_app.extensions['supabase_user_client'](token)

    g.supabase_client = client
    return client
