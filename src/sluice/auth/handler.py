"""OAuth handler bound to one remote MCP server.

The remote transport owns one handler and attaches it to every
AuthorizationRequiredError it raises. The handler knows the server's OAuth
endpoints, the client identity, and where tokens are kept; the authorization
flow drives it step by step.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Protocol

import httpx

from sluice.auth.models.discovery import DiscoveryResult
from sluice.auth.models.errors import (
    AuthorizationError,
    AuthorizationRequiredError,
    RegistrationError,
    TokenExchangeError,
)
from sluice.auth.models.flow import AuthorizationRequest
from sluice.auth.models.registration import ClientCredentials, ClientMetadata
from sluice.auth.models.tokens import Token, TokenRequest
from sluice.auth.primitives.pkce import (
    generate_code_challenge,
    generate_code_verifier,
)
from sluice.auth.services.discovery import OAuth2Discovery
from sluice.auth.services.registration import OAuth2Registration
from sluice.auth.services.security import generate_state, validate_state
from sluice.auth.services.tokens import OAuth2TokenManager
from sluice.storage.credentials import TokenNotFoundError

logger = logging.getLogger(__name__)


class TokenStore(Protocol):
    """Where the handler reads the current token from."""

    def get_token(self) -> Token: ...

    def save_token(self, token: Token) -> None: ...


class OAuthHandler:
    """Authorization code + PKCE client for a single MCP server."""

    def __init__(
        self,
        server_url: str,
        redirect_uri: str,
        token_store: TokenStore,
        scopes: Sequence[str] = (),
        client_id: str = "",
        client_secret: str = "",
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ):
        self.server_url = server_url
        self.redirect_uri = redirect_uri
        self.scopes = list(scopes)
        self._token_store = token_store
        self._client_id = client_id
        self._client_secret = client_secret

        self._discovery = OAuth2Discovery(timeout=timeout, http_client=http_client)
        self._registration = OAuth2Registration(
            timeout=timeout, http_client=http_client
        )
        self._token_manager = OAuth2TokenManager(
            timeout=timeout, http_client=http_client
        )

        self._server_metadata: DiscoveryResult | None = None
        self._www_authenticate: str | None = None
        self._expected_state: str | None = None

    # ================================
    # Client identity
    # ================================

    def get_client_id(self) -> str:
        return self._client_id

    def get_client_secret(self) -> str:
        return self._client_secret

    def use_client(self, client_id: str, client_secret: str = "") -> None:
        """Adopt a client identity obtained elsewhere (configured or stored)."""
        self._client_id = client_id
        self._client_secret = client_secret

    async def register_client(self, client_name: str) -> ClientCredentials:
        """Register dynamically and adopt the issued identity.

        Raises:
            RegistrationError: If the server offers no registration endpoint
                or rejects the request
        """
        metadata = await self.get_server_metadata()
        endpoint = metadata.authorization_server_metadata.registration_endpoint
        if not endpoint:
            raise RegistrationError(
                f"{metadata.auth_server_url} does not support dynamic client "
                "registration; pass a client id explicitly"
            )

        credentials = await self._registration.register_client(
            endpoint,
            ClientMetadata(
                client_name=client_name,
                redirect_uris=[self.redirect_uri],
                scope=self.scope,
            ),
        )
        self._client_id = credentials.client_id
        self._client_secret = credentials.client_secret or ""
        return credentials

    # ================================
    # Authorization
    # ================================

    @staticmethod
    def generate_code_verifier() -> str:
        return generate_code_verifier()

    @staticmethod
    def generate_code_challenge(code_verifier: str) -> str:
        return generate_code_challenge(code_verifier)

    @staticmethod
    def generate_state() -> str:
        return generate_state()

    async def get_authorization_url(self, state: str, code_challenge: str) -> str:
        """Build the URL the user must visit, remembering ``state``.

        Raises:
            AuthorizationError: If no client identity is known yet
        """
        if not self._client_id:
            raise AuthorizationError("Cannot authorize without a client id")

        metadata = await self.get_server_metadata()
        asm = metadata.authorization_server_metadata
        self._expected_state = state

        request = AuthorizationRequest(
            authorization_endpoint=asm.authorization_endpoint,
            client_id=self._client_id,
            redirect_uri=self.redirect_uri,
            code_challenge=code_challenge,
            code_challenge_method="S256",
            state=state,
            resource=metadata.get_resource_url(),
            scope=self.scope,
        )
        return request.build_authorization_url()

    async def process_authorization_response(
        self, code: str, state: str, code_verifier: str
    ) -> Token:
        """Exchange the authorization code for a token.

        The token is returned, not stored; persisting it is the caller's job.

        Raises:
            StateValidationError: If ``state`` is not the one we issued
            TokenExchangeError: If the token endpoint refuses the code
        """
        if self._expected_state is None:
            raise AuthorizationError("No authorization request is in progress")
        validate_state(self._expected_state, state)
        self._expected_state = None

        metadata = await self.get_server_metadata()
        token_response = await self._token_manager.exchange_code_for_token(
            TokenRequest(
                token_endpoint=metadata.authorization_server_metadata.token_endpoint,
                code=code,
                redirect_uri=self.redirect_uri,
                client_id=self._client_id,
                client_secret=self._client_secret or None,
                code_verifier=code_verifier,
                resource=metadata.get_resource_url(),
            )
        )

        if not token_response.is_success():
            reason = token_response.error or "no access_token in response"
            if token_response.error_description:
                reason += f" ({token_response.error_description})"
            raise TokenExchangeError(f"Token exchange failed: {reason}")

        return token_response.to_token()

    # ================================
    # Transport hooks
    # ================================

    def get_authorization_header(self) -> str:
        """Authorization header value for the next request.

        Raises:
            AuthorizationRequiredError: If no token has been stored yet
        """
        try:
            token = self._token_store.get_token()
        except TokenNotFoundError as e:
            raise AuthorizationRequiredError(self, "No stored token") from e
        return token.authorization_header()

    def unauthorized(self, www_authenticate: str | None) -> AuthorizationRequiredError:
        """Build the error for a 401, keeping the challenge for discovery."""
        if www_authenticate and www_authenticate != self._www_authenticate:
            self._www_authenticate = www_authenticate
            self._server_metadata = None
        return AuthorizationRequiredError(
            self, f"{self.server_url} requires authorization"
        )

    async def get_server_metadata(self) -> DiscoveryResult:
        if self._server_metadata is None:
            self._server_metadata = await self._discovery.discover(
                self.server_url, self._www_authenticate
            )
        return self._server_metadata

    @property
    def scope(self) -> str | None:
        return " ".join(self.scopes) or None

    async def close(self) -> None:
        await self._discovery.close()
        await self._registration.close()
        await self._token_manager.close()
