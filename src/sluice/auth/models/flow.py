"""Authorization flow models for OAuth 2.1.

Contains the authorization request, the parsed callback, and the states the
interactive flow moves through.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from urllib.parse import urlencode


class FlowState(str, Enum):
    """Progress of a single interactive authorization flow."""

    IDLE = "idle"
    AWAITING_CLIENT_REGISTRATION = "awaiting_client_registration"
    AWAITING_USER_CONSENT = "awaiting_user_consent"
    AWAITING_CALLBACK = "awaiting_callback"
    EXCHANGING_CODE = "exchanging_code"
    COMPLETE = "complete"
    FAILED = "failed"


@dataclass(frozen=True)
class AuthorizationRequest:
    """Authorization request parameters for OAuth 2.1 flow."""

    authorization_endpoint: str
    client_id: str
    redirect_uri: str
    code_challenge: str
    code_challenge_method: str
    state: str
    resource: str | None = None  # RFC 8707
    scope: str | None = None

    def build_authorization_url(self) -> str:
        """Build the complete authorization URL."""
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "code_challenge": self.code_challenge,
            "code_challenge_method": self.code_challenge_method,
            "state": self.state,
        }

        if self.resource:
            params["resource"] = self.resource
        if self.scope:
            params["scope"] = self.scope

        separator = "&" if "?" in self.authorization_endpoint else "?"
        return f"{self.authorization_endpoint}{separator}{urlencode(params)}"


@dataclass(frozen=True)
class AuthorizationResponse:
    """Query parameters delivered to the local callback endpoint."""

    code: str | None = None
    state: str | None = None
    error: str | None = None
    error_description: str | None = None

    @classmethod
    def from_params(cls, params: dict[str, str]) -> AuthorizationResponse:
        return cls(
            code=params.get("code") or None,
            state=params.get("state"),
            error=params.get("error") or None,
            error_description=params.get("error_description") or None,
        )

    def is_success(self) -> bool:
        return self.error is None and self.code is not None

    def is_error(self) -> bool:
        return self.error is not None
