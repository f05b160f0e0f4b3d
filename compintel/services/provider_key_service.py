"""
ProviderKeyService - AI provider key availability and validation.

Talks to the unified-api-key-manager edge function. All lookups fail closed:
any error means "no providers" rather than an exception, so callers can treat
the result as the set of providers that are safe to use right now.
"""

import logging
from typing import Dict, List, Optional

from supabase import Client

from ..core.database import get_current_user_id, get_supabase_client
from .edge_functions import EdgeFunctionClient
from .models import ApiKeyRequirements, ProviderStatus

logger = logging.getLogger(__name__)

KEY_MANAGER_FUNCTION = "unified-api-key-manager"


class ProviderKeyService:
    """Service for provider API key status checks."""

    def __init__(
        self,
        supabase: Optional[Client] = None,
        functions: Optional[EdgeFunctionClient] = None,
    ):
        """
        Initialize ProviderKeyService.

        Args:
            supabase: Optional Supabase client. If not provided, uses the shared one.
            functions: Optional edge function client built on the same Supabase client.
        """
        self.supabase = supabase or get_supabase_client()
        self.functions = functions or EdgeFunctionClient(self.supabase)

    def get_available_providers(self) -> List[str]:
        """
        Get providers for which the current user has an active, validated key.

        Returns:
            Provider names (e.g. ["openai", "anthropic"]); empty on any error
        """
        try:
            if not get_current_user_id(self.supabase):
                return []

            data = self.functions.invoke(KEY_MANAGER_FUNCTION, {"action": "get_all_statuses"})
            if not isinstance(data, dict) or not data.get("success"):
                logger.error(f"Error getting available providers: {data}")
                return []

            entries = data.get("result")
            if not isinstance(entries, list):
                return []

            providers = []
            for entry in entries:
                if not isinstance(entry, dict) or not entry.get("provider"):
                    continue
                status = ProviderStatus.model_validate(entry)
                if status.is_available:
                    providers.append(status.provider)
            return providers

        except Exception as e:
            logger.error(f"Error getting available providers: {e}")
            return []

    def get_available_api_keys(self) -> Dict[str, str]:
        """Available providers mapped to the marker "available"."""
        return {provider: "available" for provider in self.get_available_providers()}

    def check_api_key_requirements(self) -> ApiKeyRequirements:
        """
        Check whether the user can start an analysis.

        Any single active provider key is enough; no provider is mandatory.
        """
        try:
            if not get_current_user_id(self.supabase):
                return ApiKeyRequirements(has_required_keys=False, missing_keys=["Any AI API key"])

            has_any_key = len(self.get_available_providers()) > 0
            return ApiKeyRequirements(
                has_required_keys=has_any_key,
                missing_keys=[] if has_any_key else ["Any AI API key (OpenAI, Anthropic, etc.)"],
            )
        except Exception as e:
            logger.error(f"Error checking API key requirements: {e}")
            return ApiKeyRequirements(has_required_keys=False, missing_keys=["Error checking API keys"])

    def validate_provider(self, provider: str) -> bool:
        """
        Validate one provider's key with the key manager.

        Raises:
            RemoteCallError: If the key manager cannot be reached
        """
        data = self.functions.invoke(KEY_MANAGER_FUNCTION, {"action": "validate", "provider": provider})
        if not isinstance(data, dict) or not data.get("success"):
            return False
        result = data.get("result") or {}
        return bool(isinstance(result, dict) and result.get("isValid"))

    def validate_all_providers(self) -> Dict[str, bool]:
        """
        Validate every available provider, one at a time.

        A failure for one provider is recorded as False and does not stop the
        remaining validations.

        Returns:
            Provider name -> key is valid
        """
        results: Dict[str, bool] = {}
        for provider in self.get_available_providers():
            try:
                results[provider] = self.validate_provider(provider)
            except Exception as e:
                logger.error(f"Error validating {provider}: {e}")
                results[provider] = False
        return results
