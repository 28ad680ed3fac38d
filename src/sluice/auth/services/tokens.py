"""OAuth 2.1 token exchange service.

Implements the RFC 6749 authorization code exchange with PKCE (RFC 7636)
and Resource Indicators (RFC 8707).
"""

from __future__ import annotations

import logging

import httpx
from pydantic import ValidationError

from sluice.auth.models.errors import TokenExchangeError
from sluice.auth.models.tokens import TokenRequest, TokenResponse

logger = logging.getLogger(__name__)


class OAuth2TokenManager:
    """Exchanges authorization codes for access tokens.

    Uses application/x-www-form-urlencoded encoding as required by OAuth 2.1.
    """

    def __init__(
        self, timeout: float = 30.0, http_client: httpx.AsyncClient | None = None
    ):
        """Initialize OAuth token manager.

        Args:
            timeout: HTTP request timeout in seconds
            http_client: Shared client; a private one is created if omitted
        """
        self.timeout = timeout
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def exchange_code_for_token(
        self, token_request: TokenRequest
    ) -> TokenResponse:
        """Exchange an authorization code for an access token.

        Args:
            token_request: Token exchange request parameters

        Returns:
            TokenResponse: Token response (success or OAuth error)

        Raises:
            TokenExchangeError: If the request fails or the response is unusable
        """
        logger.debug(f"Exchanging authorization code at {token_request.token_endpoint}")

        form_data = token_request.to_form_data()
        logger.debug(
            f"Token request: grant_type={form_data['grant_type']}, "
            f"client_id={form_data['client_id']}, "
            f"resource={form_data.get('resource', 'none')}"
        )

        try:
            response = await self._http_client.post(
                token_request.token_endpoint,
                data=form_data,
                headers={
                    "Content-Type": "application/x-www-form-urlencoded",
                    "Accept": "application/json",
                },
            )
        except httpx.HTTPError as e:
            raise TokenExchangeError(f"HTTP error during token exchange: {e}") from e

        return self._parse_token_response(response)

    def _parse_token_response(self, response: httpx.Response) -> TokenResponse:
        """Parse a token endpoint response (RFC 6749 Section 5).

        Raises:
            TokenExchangeError: If the response cannot be parsed
        """
        try:
            response_data = response.json()
        except ValueError as e:
            raise TokenExchangeError(
                f"Invalid token response format (HTTP {response.status_code}): {e}"
            ) from e

        if response.status_code == 200 and "access_token" not in response_data:
            raise TokenExchangeError("Token response missing required access_token")

        try:
            token_response = TokenResponse.model_validate(response_data)
        except ValidationError as e:
            raise TokenExchangeError(f"Invalid token response format: {e}") from e

        if token_response.is_error():
            logger.warning(
                f"Token exchange failed with {response.status_code}: "
                f"{token_response.error} - "
                f"{token_response.error_description or 'No description provided'}"
            )
        elif response.status_code == 200:
            logger.info("Token exchange successful")

        return token_response

    async def close(self) -> None:
        """Close the HTTP client if we created it."""
        if self._owns_client:
            await self._http_client.aclose()
