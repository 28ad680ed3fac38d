"""Tests for the authorization code to token exchange."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from sluice.auth.models.errors import TokenExchangeError
from sluice.auth.models.tokens import Token, TokenRequest, TokenResponse
from sluice.auth.services.tokens import OAuth2TokenManager


def _token_request(**overrides) -> TokenRequest:
    fields = dict(
        token_endpoint="https://auth.example.com/token",
        code="auth-code-123",
        redirect_uri="http://localhost:8080/oauth/callback",
        client_id="client-456",
        code_verifier="dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk",
        resource="https://mcp.example.com/mcp",
    )
    fields.update(overrides)
    return TokenRequest(**fields)


class TestTokenExchange:
    def setup_method(self):
        # Arrange
        self.token_manager = OAuth2TokenManager()
        self.token_manager._http_client = AsyncMock()

    def _respond(self, status_code: int, body: dict) -> None:
        mock_response = MagicMock()
        mock_response.status_code = status_code
        mock_response.json.return_value = body
        self.token_manager._http_client.post.return_value = mock_response

    async def test_successful_exchange(self):
        # Arrange
        self._respond(
            200,
            {
                "access_token": "access-token-xyz",
                "token_type": "Bearer",
                "expires_in": 3600,
                "refresh_token": "refresh-token-abc",
                "scope": "openid profile",
            },
        )

        # Act
        token_response = await self.token_manager.exchange_code_for_token(
            _token_request()
        )

        # Assert
        assert token_response.is_success()
        assert token_response.access_token == "access-token-xyz"
        assert token_response.refresh_token == "refresh-token-abc"

        call_args = self.token_manager._http_client.post.call_args
        assert call_args[0][0] == "https://auth.example.com/token"
        form_data = call_args[1]["data"]
        assert form_data == {
            "grant_type": "authorization_code",
            "code": "auth-code-123",
            "redirect_uri": "http://localhost:8080/oauth/callback",
            "client_id": "client-456",
            "code_verifier": "dBjftJeZ4CVP-mB92K27uhbUJU1p1r_wW1gFWFOEjXk",
            "resource": "https://mcp.example.com/mcp",
        }
        headers = call_args[1]["headers"]
        assert headers["Content-Type"] == "application/x-www-form-urlencoded"

    async def test_confidential_client_sends_secret(self):
        # Arrange
        self._respond(200, {"access_token": "t"})

        # Act
        await self.token_manager.exchange_code_for_token(
            _token_request(client_secret="shh")
        )

        # Assert
        form_data = self.token_manager._http_client.post.call_args[1]["data"]
        assert form_data["client_secret"] == "shh"

    async def test_oauth_error_response_is_returned(self):
        # Arrange
        self._respond(
            400,
            {"error": "invalid_grant", "error_description": "code already used"},
        )

        # Act
        token_response = await self.token_manager.exchange_code_for_token(
            _token_request()
        )

        # Assert
        assert token_response.is_error()
        assert not token_response.is_success()
        assert token_response.error == "invalid_grant"

    async def test_success_without_access_token_raises(self):
        # Arrange
        self._respond(200, {"token_type": "Bearer"})

        # Act & Assert
        with pytest.raises(TokenExchangeError, match="access_token"):
            await self.token_manager.exchange_code_for_token(_token_request())

    async def test_non_json_response_raises(self):
        # Arrange
        mock_response = MagicMock()
        mock_response.status_code = 500
        mock_response.json.side_effect = ValueError("Expecting value")
        self.token_manager._http_client.post.return_value = mock_response

        # Act & Assert
        with pytest.raises(TokenExchangeError, match="HTTP 500"):
            await self.token_manager.exchange_code_for_token(_token_request())

    async def test_transport_failure_is_wrapped(self):
        # Arrange
        self.token_manager._http_client.post.side_effect = httpx.ReadTimeout(
            "timed out"
        )

        # Act & Assert
        with pytest.raises(TokenExchangeError):
            await self.token_manager.exchange_code_for_token(_token_request())


class TestTokenModels:
    def test_to_token_records_expiry(self):
        # Arrange
        response = TokenResponse(access_token="abc", expires_in=60)
        before = datetime.now(timezone.utc)

        # Act
        token = response.to_token()

        # Assert
        assert token.access_token == "abc"
        assert token.expires_at is not None
        assert 59 <= (token.expires_at - before).total_seconds() <= 61

    def test_to_token_rejects_error_response(self):
        with pytest.raises(ValueError):
            TokenResponse(error="invalid_grant").to_token()

    @pytest.mark.parametrize(
        "token_type,expected",
        [("Bearer", "Bearer abc"), ("bearer", "Bearer abc"), ("DPoP", "DPoP abc")],
    )
    def test_authorization_header(self, token_type, expected):
        token = Token(access_token="abc", token_type=token_type)

        assert token.authorization_header() == expected
