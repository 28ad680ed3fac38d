"""Interactive OAuth 2.1 authorization code flow with PKCE.

Runs once per authorization-required failure:

1. Open the local callback listener
2. Register the client dynamically if no identity is known, and persist it
3. Generate PKCE parameters and state, open the authorization URL
4. Wait for the browser to hit the callback
5. Validate state (CSRF protection) and the presence of a code
6. Exchange the code for a token and hand it back

Any failing step aborts the flow; nothing is retried here.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from sluice.auth.browser import open_browser
from sluice.auth.callback import CallbackServer
from sluice.auth.handler import OAuthHandler
from sluice.auth.models.errors import (
    AuthorizationCallbackError,
    AuthorizationError,
    StateValidationError,
)
from sluice.auth.models.flow import AuthorizationResponse, FlowState
from sluice.auth.models.registration import ClientInfo
from sluice.auth.models.tokens import Token
from sluice.auth.services.security import validate_state
from sluice.storage.credentials import CredentialStore

logger = logging.getLogger(__name__)

CLIENT_NAME = "sluice"


class AuthorizationFlow:
    """Drives an OAuthHandler through one interactive authorization.

    ``state`` reflects the step the most recent flow reached.
    """

    def __init__(
        self,
        store: CredentialStore,
        callback_port: int,
        client_name: str = CLIENT_NAME,
        callback_timeout: float | None = None,
        browser: Callable[[str], bool] = open_browser,
        callback_server_factory: Callable[[int], CallbackServer] = CallbackServer,
    ):
        self.store = store
        self.callback_port = callback_port
        self.client_name = client_name
        self.callback_timeout = callback_timeout
        self._browser = browser
        self._callback_server_factory = callback_server_factory
        self.state = FlowState.IDLE

    async def authorize(self, handler: OAuthHandler) -> Token:
        """Run the full flow and return the new token, unsaved.

        Raises:
            OAuth2Error: If any step fails
            CredentialStoreError: If the new client registration cannot be saved
        """
        logger.info("OAuth authorization required. Starting authorization flow...")
        self.state = FlowState.IDLE
        try:
            token = await self._run(handler)
        except BaseException:
            self.state = FlowState.FAILED
            raise

        self.state = FlowState.COMPLETE
        logger.info("Authorization successful!")
        return token

    async def _run(self, handler: OAuthHandler) -> Token:
        async with self._callback_server_factory(self.callback_port) as callback:
            self._ensure_client(handler)
            if not handler.get_client_id():
                await self._register_client(handler)

            self.state = FlowState.AWAITING_USER_CONSENT
            code_verifier = handler.generate_code_verifier()
            code_challenge = handler.generate_code_challenge(code_verifier)
            state = handler.generate_state()

            auth_url = await handler.get_authorization_url(state, code_challenge)
            logger.info(f"Opening browser to: {auth_url}")
            self._browser(auth_url)

            self.state = FlowState.AWAITING_CALLBACK
            logger.info("Waiting for authorization callback...")
            params = await callback.wait_for_callback(self.callback_timeout)

        response = AuthorizationResponse.from_params(params)
        code = self._validate_callback(response, state)

        self.state = FlowState.EXCHANGING_CODE
        logger.info("Exchanging authorization code for token...")
        return await handler.process_authorization_response(code, state, code_verifier)

    def _ensure_client(self, handler: OAuthHandler) -> None:
        """Adopt a stored registration if the handler has none."""
        if handler.get_client_id():
            return
        client_info = self.store.get_client_info()
        if client_info is not None:
            logger.debug(f"Using stored client registration {client_info.id}")
            handler.use_client(client_info.id, client_info.secret)

    async def _register_client(self, handler: OAuthHandler) -> None:
        self.state = FlowState.AWAITING_CLIENT_REGISTRATION
        logger.info("Registering client...")
        await handler.register_client(self.client_name)
        self.store.save_client_info(
            ClientInfo(id=handler.get_client_id(), secret=handler.get_client_secret())
        )

    def _validate_callback(
        self, response: AuthorizationResponse, expected_state: str
    ) -> str:
        """Check the callback and return its authorization code.

        Raises:
            StateValidationError: If the state is missing or does not match
            AuthorizationError: If the server reported an error
            AuthorizationCallbackError: If no code was delivered
        """
        if response.is_error():
            # A mismatched state on an error response is still a CSRF signal
            if response.state is not None:
                validate_state(expected_state, response.state)
            reason = response.error
            if response.error_description:
                reason += f" ({response.error_description})"
            raise AuthorizationError(f"Authorization failed: {reason}")

        try:
            validate_state(expected_state, response.state)
        except StateValidationError:
            logger.error(
                f"State mismatch: expected {expected_state}, got {response.state}"
            )
            raise

        if response.code is None:
            raise AuthorizationCallbackError("No authorization code received")
        return response.code
