"""
Core module - Database, configuration and error types
"""

from .database import get_supabase_client, get_current_user_id
from .config import Config

__all__ = ['get_supabase_client', 'get_current_user_id', 'Config']
