"""
Tests for ProviderKeyService.
"""

from types import SimpleNamespace

import pytest
from unittest.mock import MagicMock

from compintel.core.errors import RemoteCallError
from compintel.services.provider_key_service import KEY_MANAGER_FUNCTION, ProviderKeyService


@pytest.fixture
def mock_db():
    """Create a mock Supabase client with a signed-in user."""
    db = MagicMock()
    db.auth.get_session.return_value = SimpleNamespace(user=SimpleNamespace(id="user-1"))
    return db


@pytest.fixture
def functions():
    return MagicMock()


@pytest.fixture
def service(mock_db, functions):
    return ProviderKeyService(mock_db, functions)


def statuses(*entries):
    return {"success": True, "result": list(entries)}


class TestGetAvailableProviders:
    def test_filters_active(self, service, functions):
        functions.invoke.return_value = statuses(
            {"provider": "openai", "is_active": True, "status": "active"},
            {"provider": "anthropic", "is_active": True, "status": "invalid"},
            {"provider": "gemini", "is_active": False, "status": "active"},
            {"provider": "perplexity", "is_active": True, "status": "active"},
        )

        assert service.get_available_providers() == ["openai", "perplexity"]
        functions.invoke.assert_called_once_with(KEY_MANAGER_FUNCTION, {"action": "get_all_statuses"})

    def test_skips_malformed_entries(self, service, functions):
        functions.invoke.return_value = statuses(
            "junk",
            {"is_active": True, "status": "active"},
            {"provider": "openai", "is_active": True, "status": "active"},
        )

        assert service.get_available_providers() == ["openai"]

    def test_unauthenticated(self, service, mock_db, functions):
        mock_db.auth.get_session.return_value = None

        assert service.get_available_providers() == []
        functions.invoke.assert_not_called()

    def test_unsuccessful_response(self, service, functions):
        functions.invoke.return_value = {"success": False, "error": None}

        assert service.get_available_providers() == []

    def test_non_list_result(self, service, functions):
        functions.invoke.return_value = {"success": True, "result": {"openai": "active"}}

        assert service.get_available_providers() == []

    def test_remote_error(self, service, functions):
        functions.invoke.side_effect = RemoteCallError("down", function=KEY_MANAGER_FUNCTION)

        assert service.get_available_providers() == []

    def test_available_api_keys(self, service, functions):
        functions.invoke.return_value = statuses({"provider": "openai", "is_active": True, "status": "active"})

        assert service.get_available_api_keys() == {"openai": "available"}


class TestCheckApiKeyRequirements:
    def test_has_keys(self, service, functions):
        functions.invoke.return_value = statuses({"provider": "openai", "is_active": True, "status": "active"})

        requirements = service.check_api_key_requirements()

        assert requirements.has_required_keys is True
        assert requirements.missing_keys == []

    def test_no_keys(self, service, functions):
        functions.invoke.return_value = statuses()

        requirements = service.check_api_key_requirements()

        assert requirements.has_required_keys is False
        assert requirements.missing_keys == ["Any AI API key (OpenAI, Anthropic, etc.)"]

    def test_unauthenticated(self, service, mock_db):
        mock_db.auth.get_session.return_value = None

        assert service.check_api_key_requirements().missing_keys == ["Any AI API key"]

    def test_session_error(self, service, mock_db):
        mock_db.auth.get_session.side_effect = RuntimeError("token refresh failed")

        requirements = service.check_api_key_requirements()

        assert requirements.has_required_keys is False
        assert requirements.missing_keys == ["Error checking API keys"]


class TestValidation:
    def test_validate_provider(self, service, functions):
        functions.invoke.return_value = {"success": True, "result": {"isValid": True}}

        assert service.validate_provider("openai") is True
        functions.invoke.assert_called_once_with(
            KEY_MANAGER_FUNCTION, {"action": "validate", "provider": "openai"}
        )

    def test_validate_provider_invalid(self, service, functions):
        functions.invoke.return_value = {"success": True, "result": {"isValid": False}}

        assert service.validate_provider("openai") is False

    def test_validate_provider_unsuccessful(self, service, functions):
        functions.invoke.return_value = {"success": False}

        assert service.validate_provider("openai") is False

    def test_validate_all_continues_after_error(self, service, functions):
        def invoke(name, body):
            if body["action"] == "get_all_statuses":
                return statuses(
                    {"provider": "openai", "is_active": True, "status": "active"},
                    {"provider": "anthropic", "is_active": True, "status": "active"},
                    {"provider": "gemini", "is_active": True, "status": "active"},
                )
            if body["provider"] == "anthropic":
                raise RemoteCallError("timeout", function=KEY_MANAGER_FUNCTION)
            return {"success": True, "result": {"isValid": True}}

        functions.invoke.side_effect = invoke

        assert service.validate_all_providers() == {"openai": True, "anthropic": False, "gemini": True}

    def test_validate_all_sequential_order(self, service, functions):
        seen = []

        def invoke(name, body):
            if body["action"] == "get_all_statuses":
                return statuses(
                    {"provider": "openai", "is_active": True, "status": "active"},
                    {"provider": "anthropic", "is_active": True, "status": "active"},
                )
            seen.append(body["provider"])
            return {"success": True, "result": {"isValid": True}}

        functions.invoke.side_effect = invoke
        service.validate_all_providers()

        assert seen == ["openai", "anthropic"]
