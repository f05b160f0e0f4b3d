"""
Database client and utilities
"""

import logging
from typing import Optional

import httpx
from supabase import create_client, Client
from supabase_auth.errors import AuthError

from .config import Config

logger = logging.getLogger(__name__)

_supabase_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """
    Get or create Supabase client (singleton pattern)

    Returns:
        Supabase client instance
    """
    global _supabase_client

    if _supabase_client is None:
        Config.validate()
        _supabase_client = create_client(
            Config.SUPABASE_URL,
            Config.SUPABASE_ANON_KEY
        )

    return _supabase_client


def reset_supabase_client():
    """Reset the Supabase client (useful for testing)"""
    global _supabase_client
    _supabase_client = None


def sign_in(client: Client, email: str, password: str) -> str:
    """
    Sign the client in with email/password so row-level security applies.

    Returns:
        The authenticated user's id
    """
    response = client.auth.sign_in_with_password({"email": email, "password": password})
    logger.info(f"Signed in as {email}")
    return response.user.id


def get_current_user_id(client: Client) -> Optional[str]:
    """
    Return the id of the user owning the client's current session.

    get_session() refreshes an expired session, which can fail when the
    refresh token was revoked or the auth server is unreachable. Either case
    is treated as signed out.

    Returns:
        User id, or None when there is no valid session
    """
    try:
        session = client.auth.get_session()
    except (AuthError, httpx.HTTPError) as e:
        logger.warning(f"Could not load auth session, treating as signed out: {e}")
        return None

    if not session or not session.user:
        return None
    return session.user.id
