"""Tests for the authorization-code bootstrap."""

from unittest.mock import AsyncMock, patch

import pytest

from calendar_bridge import auth_helper
from calendar_bridge.auth_helper import AuthorizationResult, complete_authorization
from calendar_bridge.exceptions import MissingCredentials, NoRefreshTokenIssued, UpstreamApiError

# ============================================================================
# complete_authorization Tests
# ============================================================================


class TestCompleteAuthorization:
    """Tests for the code exchange and persistence."""

    async def test_saves_and_verifies(self, credentials, token_store, fake_google):
        result = await complete_authorization(
            "4/code", credentials, token_store, transport=fake_google.transport
        )

        assert result == AuthorizationResult(refresh_token="refresh-new", calendar_count=2)
        assert token_store.load() == "refresh-new"
        assert fake_google.api_requests[0].url.path == "/calendar/v3/users/me/calendarList"

    async def test_does_not_mutate_caller_credentials(self, credentials, token_store, fake_google):
        await complete_authorization(
            "4/code", credentials, token_store, transport=fake_google.transport
        )
        assert credentials.refresh_token is None

    async def test_skip_verification(self, credentials, token_store, fake_google):
        result = await complete_authorization(
            "4/code", credentials, token_store, verify=False, transport=fake_google.transport
        )
        assert result.calendar_count is None
        assert fake_google.api_requests == []

    async def test_failed_verification_still_saves(self, credentials, token_store, fake_google):
        fake_google.routes[("GET", "/calendar/v3/users/me/calendarList")] = (
            403, {"error": {"code": 403, "message": "Calendar API has not been used"}}
        )

        result = await complete_authorization(
            "4/code", credentials, token_store, transport=fake_google.transport
        )

        assert result.calendar_count is None
        assert token_store.load() == "refresh-new"

    async def test_no_refresh_token(self, credentials, token_store, fake_google):
        fake_google.token_response = {"access_token": "a1", "expires_in": 3599}

        with pytest.raises(NoRefreshTokenIssued):
            await complete_authorization(
                "4/code", credentials, token_store, transport=fake_google.transport
            )
        assert token_store.load() is None

    async def test_missing_redirect_uri(self, credentials, token_store, fake_google):
        credentials.redirect_uri = ""
        with pytest.raises(MissingCredentials):
            await complete_authorization(
                "4/code", credentials, token_store, transport=fake_google.transport
            )
        assert fake_google.requests == []


# ============================================================================
# Command Line Tests
# ============================================================================


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    """Configured environment with the working directory in a temp dir."""
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "test-client-id")
    monkeypatch.setenv("GOOGLE_CLIENT_SECRET", "test-client-secret")
    monkeypatch.setenv("GOOGLE_REDIRECT_URI", "http://localhost:3000/auth/callback")
    monkeypatch.chdir(tmp_path)
    with patch.object(auth_helper, "load_dotenv"):
        yield tmp_path


class TestMain:
    """Tests for the calendar-bridge-auth entry point."""

    def test_missing_code(self, cli_env, capsys):
        assert auth_helper.main([]) == 1
        assert "No authorization code provided" in capsys.readouterr().err

    def test_missing_environment(self, cli_env, monkeypatch, capsys):
        monkeypatch.delenv("GOOGLE_CLIENT_SECRET")
        assert auth_helper.main(["4/code"]) == 1
        err = capsys.readouterr().err
        assert "Missing required environment variables" in err
        assert "GOOGLE_CLIENT_SECRET: Missing" in err
        assert "GOOGLE_CLIENT_ID: Set" in err

    def test_success_prints_token_and_updates_env_file(self, cli_env, capsys):
        (cli_env / ".env").write_text("GOOGLE_CLIENT_ID=test-client-id\n")
        mock_complete = AsyncMock(
            return_value=AuthorizationResult(refresh_token="1//refresh", calendar_count=3)
        )

        with patch.object(auth_helper, "complete_authorization", mock_complete):
            assert auth_helper.main(["4/code-abcdef"]) == 0

        out = capsys.readouterr().out
        assert "1//refresh" in out
        assert "Found 3 calendars" in out
        assert "4/cod..." in out
        assert "4/code-abcdef" not in out
        assert (cli_env / ".env").read_text() == (
            "GOOGLE_CLIENT_ID=test-client-id\nGOOGLE_REFRESH_TOKEN='1//refresh'\n"
        )

    def test_expired_code(self, cli_env, capsys):
        mock_complete = AsyncMock(side_effect=UpstreamApiError(
            "invalid_grant: Bad Request", code="invalid_grant", status_code=400
        ))

        with patch.object(auth_helper, "complete_authorization", mock_complete):
            assert auth_helper.main(["4/used"]) == 1

        err = capsys.readouterr().err
        assert "invalid or expired" in err
        assert "http://localhost:3000/auth/callback" in err

    def test_no_refresh_token(self, cli_env, capsys):
        mock_complete = AsyncMock(side_effect=NoRefreshTokenIssued("none"))

        with patch.object(auth_helper, "complete_authorization", mock_complete):
            assert auth_helper.main(["4/code"]) == 1

        err = capsys.readouterr().err
        assert "No refresh token received" in err
        assert "https://myaccount.google.com/permissions" in err

    def test_other_upstream_error(self, cli_env, capsys):
        mock_complete = AsyncMock(side_effect=UpstreamApiError("redirect_uri_mismatch",
                                                               code="redirect_uri_mismatch"))

        with patch.object(auth_helper, "complete_authorization", mock_complete):
            assert auth_helper.main(["4/code"]) == 1

        err = capsys.readouterr().err
        assert "redirect_uri_mismatch" in err
        assert "invalid or expired" not in err
