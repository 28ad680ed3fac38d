"""Token models for OAuth 2.1.

Contains the persisted token record and the token endpoint request/response.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from pydantic import BaseModel


class Token(BaseModel):
    """Bearer token as held by the credential store.

    Treated as valid until the remote server rejects it; ``expires_at`` is
    recorded for information only.
    """

    access_token: str
    token_type: str = "Bearer"
    refresh_token: str | None = None
    expires_in: int | None = None
    scope: str | None = None
    expires_at: datetime | None = None

    def authorization_header(self) -> str:
        scheme = "Bearer" if self.token_type.lower() == "bearer" else self.token_type
        return f"{scheme} {self.access_token}"


@dataclass(frozen=True)
class TokenRequest:
    """OAuth 2.1 token exchange request parameters (RFC 6749 Section 4.1.3).

    Includes the PKCE code_verifier (RFC 7636) and resource parameter
    (RFC 8707).
    """

    token_endpoint: str
    code: str
    redirect_uri: str
    client_id: str
    code_verifier: str

    client_secret: str | None = None
    grant_type: str = "authorization_code"
    resource: str | None = None

    def to_form_data(self) -> dict[str, str]:
        """Convert to form data for an application/x-www-form-urlencoded body."""
        data = {
            "grant_type": self.grant_type,
            "code": self.code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
            "code_verifier": self.code_verifier,
        }

        if self.client_secret:
            data["client_secret"] = self.client_secret
        if self.resource:
            data["resource"] = self.resource

        return data


class TokenResponse(BaseModel):
    """OAuth 2.1 token response (RFC 6749 Section 5).

    Represents both successful responses (Section 5.1) and error responses
    (Section 5.2).
    """

    access_token: str | None = None
    token_type: str = "Bearer"
    expires_in: int | None = None
    refresh_token: str | None = None
    scope: str | None = None

    error: str | None = None
    error_description: str | None = None
    error_uri: str | None = None

    def is_success(self) -> bool:
        return self.error is None and self.access_token is not None

    def is_error(self) -> bool:
        return self.error is not None

    def to_token(self) -> Token:
        """Convert a successful response into a storable Token.

        Raises:
            ValueError: If the response is not successful
        """
        if not self.is_success():
            raise ValueError("Cannot convert error response to Token")

        expires_at = None
        if self.expires_in is not None:
            expires_at = datetime.now(timezone.utc) + timedelta(
                seconds=self.expires_in
            )

        return Token(
            access_token=self.access_token,
            token_type=self.token_type,
            refresh_token=self.refresh_token,
            expires_in=self.expires_in,
            scope=self.scope,
            expires_at=expires_at,
        )
