"""
Configuration management for compintel
"""

import os
from typing import Optional
from dotenv import load_dotenv

# Load environment variables
load_dotenv()


class Config:
    """Application configuration"""

    # Supabase
    SUPABASE_URL: str = os.getenv('SUPABASE_URL', '')
    SUPABASE_ANON_KEY: str = os.getenv('SUPABASE_ANON_KEY', '')

    # CLI sign-in (row-level security needs a real user session)
    SUPABASE_USER_EMAIL: str = os.getenv('SUPABASE_USER_EMAIL', '')
    SUPABASE_USER_PASSWORD: str = os.getenv('SUPABASE_USER_PASSWORD', '')

    # Cost preflight
    COST_PER_PROVIDER_PER_COMPETITOR: float = float(
        os.getenv('COST_PER_PROVIDER_PER_COMPETITOR', '0.02')
    )  # USD estimate per provider per competitor

    # Edge function protection
    ANALYSIS_RATE_LIMIT: int = int(os.getenv('ANALYSIS_RATE_LIMIT', '5'))
    ANALYSIS_RATE_WINDOW_SECONDS: float = float(os.getenv('ANALYSIS_RATE_WINDOW_SECONDS', '10'))
    CIRCUIT_FAILURE_THRESHOLD: int = int(os.getenv('CIRCUIT_FAILURE_THRESHOLD', '3'))
    CIRCUIT_COOLDOWN_SECONDS: float = float(os.getenv('CIRCUIT_COOLDOWN_SECONDS', '15'))

    # Post-save enrichment/aggregation
    BACKGROUND_WORKERS: int = int(os.getenv('BACKGROUND_WORKERS', '2'))

    @classmethod
    def validate(cls) -> bool:
        """Validate required configuration"""
        required = {
            'SUPABASE_URL': cls.SUPABASE_URL,
            'SUPABASE_ANON_KEY': cls.SUPABASE_ANON_KEY,
        }

        missing = [k for k, v in required.items() if not v]

        if missing:
            raise ValueError(f"Missing required configuration: {', '.join(missing)}")

        return True

    @classmethod
    def has_user_credentials(cls) -> bool:
        """Whether a sign-in email and password are configured"""
        return bool(cls.SUPABASE_USER_EMAIL and cls.SUPABASE_USER_PASSWORD)

    @classmethod
    def get(cls, key: str, default: Optional[str] = None) -> Optional[str]:
        """Get configuration value"""
        return getattr(cls, key, default)
