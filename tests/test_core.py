"""
Tests for core configuration, Supabase client helpers and Logfire setup.
"""

from types import SimpleNamespace

import pytest
from unittest.mock import MagicMock, patch

import httpx
from supabase_auth.errors import AuthError

from compintel.core import database
from compintel.core.config import Config
from compintel.core.database import get_current_user_id, get_supabase_client, reset_supabase_client, sign_in
from compintel.core.errors import BudgetExceeded, CircuitOpenError, MissingApiKeys, RemoteCallError
from compintel.core.observability import setup_logfire


@pytest.fixture(autouse=True)
def fresh_client():
    reset_supabase_client()
    yield
    reset_supabase_client()


class TestConfig:
    def test_validate_missing(self, monkeypatch):
        monkeypatch.setattr(Config, "SUPABASE_URL", "")
        monkeypatch.setattr(Config, "SUPABASE_ANON_KEY", "")

        with pytest.raises(ValueError, match="SUPABASE_URL, SUPABASE_ANON_KEY"):
            Config.validate()

    def test_validate_ok(self, monkeypatch):
        monkeypatch.setattr(Config, "SUPABASE_URL", "https://proj.supabase.co")
        monkeypatch.setattr(Config, "SUPABASE_ANON_KEY", "anon")

        assert Config.validate() is True

    def test_user_credentials(self, monkeypatch):
        monkeypatch.setattr(Config, "SUPABASE_USER_EMAIL", "analyst@example.com")
        monkeypatch.setattr(Config, "SUPABASE_USER_PASSWORD", "")
        assert Config.has_user_credentials() is False

        monkeypatch.setattr(Config, "SUPABASE_USER_PASSWORD", "secret")
        assert Config.has_user_credentials() is True

    def test_get(self):
        assert Config.get("ANALYSIS_RATE_LIMIT") == Config.ANALYSIS_RATE_LIMIT
        assert Config.get("NOPE", "fallback") == "fallback"


class TestDatabase:
    def test_client_is_singleton(self, monkeypatch):
        monkeypatch.setattr(Config, "SUPABASE_URL", "https://proj.supabase.co")
        monkeypatch.setattr(Config, "SUPABASE_ANON_KEY", "anon")

        with patch.object(database, "create_client", return_value=MagicMock()) as create:
            first = get_supabase_client()
            second = get_supabase_client()

        assert first is second
        create.assert_called_once_with("https://proj.supabase.co", "anon")

    def test_current_user_id(self):
        client = MagicMock()
        client.auth.get_session.return_value = SimpleNamespace(user=SimpleNamespace(id="user-1"))

        assert get_current_user_id(client) == "user-1"

    def test_current_user_id_without_session(self):
        client = MagicMock()
        client.auth.get_session.return_value = None

        assert get_current_user_id(client) is None

    @pytest.mark.parametrize("error", [
        httpx.ConnectError("[Errno 111] Connection refused"),
        httpx.ReadTimeout("timed out"),
    ])
    def test_current_user_id_when_refresh_unreachable(self, error):
        client = MagicMock()
        client.auth.get_session.side_effect = error

        assert get_current_user_id(client) is None

    def test_current_user_id_when_refresh_token_revoked(self):
        class RevokedRefreshToken(AuthError):
            def __init__(self):
                Exception.__init__(self, "Invalid Refresh Token: Refresh Token Not Found")

        client = MagicMock()
        client.auth.get_session.side_effect = RevokedRefreshToken()

        assert get_current_user_id(client) is None

    def test_current_user_id_other_errors_propagate(self):
        client = MagicMock()
        client.auth.get_session.side_effect = KeyError("bug")

        with pytest.raises(KeyError):
            get_current_user_id(client)

    def test_sign_in(self):
        client = MagicMock()
        client.auth.sign_in_with_password.return_value = SimpleNamespace(user=SimpleNamespace(id="user-9"))

        assert sign_in(client, "analyst@example.com", "secret") == "user-9"
        client.auth.sign_in_with_password.assert_called_once_with(
            {"email": "analyst@example.com", "password": "secret"}
        )


class TestErrors:
    def test_missing_keys_message(self):
        error = MissingApiKeys(["Any AI API key"])

        assert str(error) == "Missing required API keys: Any AI API key. Please add them in Settings."
        assert error.details == {"missing_keys": ["Any AI API key"]}

    def test_budget_message(self):
        error = BudgetExceeded(1.234, 50.0, projected_cost=2.0)

        assert str(error) == "Projected cost exceeds remaining budget (remaining: $1.23 of $50)."

    def test_circuit_open_is_remote_error(self):
        error = CircuitOpenError("edge:competitor-analysis", 4.25)

        assert isinstance(error, RemoteCallError)
        assert "retry in 4.2s" in str(error) or "retry in 4.3s" in str(error)


def test_setup_logfire_skipped_without_token(monkeypatch):
    monkeypatch.delenv("LOGFIRE_TOKEN", raising=False)

    with patch("compintel.core.observability.logfire") as mock_logfire:
        assert setup_logfire() is False

    mock_logfire.configure.assert_not_called()
