"""Exception hierarchy for OAuth 2.1 authentication errors.

Separates the one recoverable condition (authorization required) from the
failures of the authorization flow itself, which are terminal for the call
that triggered them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sluice.auth.handler import OAuthHandler


class AuthorizationRequiredError(Exception):
    """Raised by the remote transport when the server demands authorization.

    Carries the OAuth handler bound to the remote server so the caller can
    run the interactive flow and retry.
    """

    def __init__(self, handler: OAuthHandler, message: str | None = None):
        super().__init__(message or "OAuth authorization required")
        self.handler = handler


class OAuth2Error(Exception):
    """Base exception for all OAuth 2.1 flow failures."""

    pass


class DiscoveryError(OAuth2Error):
    """Raised when OAuth server discovery fails."""

    pass


class ProtectedResourceMetadataError(DiscoveryError):
    """Raised when Protected Resource Metadata discovery fails."""

    pass


class AuthorizationServerMetadataError(DiscoveryError):
    """Raised when Authorization Server Metadata discovery fails."""

    pass


class RegistrationError(OAuth2Error):
    """Raised when dynamic client registration fails."""

    pass


class TokenError(OAuth2Error):
    """Raised when token operations fail."""

    pass


class TokenExchangeError(TokenError):
    """Raised when authorization code to token exchange fails."""

    pass


class AuthorizationError(OAuth2Error):
    """Raised when user authorization fails."""

    pass


class PKCEError(OAuth2Error):
    """Raised when PKCE parameter generation fails."""

    pass


class AuthorizationCallbackError(OAuth2Error):
    """Raised when the OAuth callback cannot be received or is unusable.

    Covers a listener that cannot bind or stops early as well as callback
    data without an authorization code.
    """

    pass


class StateValidationError(AuthorizationCallbackError):
    """Raised when OAuth state parameter validation fails.

    This indicates either a missing state parameter or a state mismatch,
    which could indicate a CSRF attack or authorization server issue.
    """

    pass
