"""
Service construction shared by CLI commands
"""

import logging

from ..core.config import Config
from ..core.database import get_supabase_client, sign_in
from ..services.competitor_analysis_service import CompetitorAnalysisService, create_inline_service

logger = logging.getLogger(__name__)


def build_service() -> CompetitorAnalysisService:
    """
    Create a CompetitorAnalysisService for one CLI invocation.

    Signs in with SUPABASE_USER_EMAIL / SUPABASE_USER_PASSWORD when set, so
    row-level security scopes every query to that user. Post-processing runs
    inline because the process exits right after the command.
    """
    supabase = get_supabase_client()
    if Config.has_user_credentials():
        sign_in(supabase, Config.SUPABASE_USER_EMAIL, Config.SUPABASE_USER_PASSWORD)
    else:
        logger.warning("No SUPABASE_USER_EMAIL/SUPABASE_USER_PASSWORD set; requests run unauthenticated")
    return create_inline_service(supabase=supabase)
