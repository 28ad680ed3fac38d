"""Client registration models.

Contains client metadata for dynamic registration (RFC 7591), the credentials
returned by the authorization server, and the compact form persisted on disk.
"""

from __future__ import annotations

from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


class ClientMetadata(BaseModel):
    """OAuth 2.0 Client Metadata for dynamic registration (RFC 7591)."""

    client_name: str
    redirect_uris: list[str] = Field(min_length=1)

    scope: str | None = None
    client_uri: str | None = None

    token_endpoint_auth_method: str = "none"  # Public client
    grant_types: list[str] = Field(default=["authorization_code", "refresh_token"])
    response_types: list[str] = Field(default=["code"])

    @field_validator("redirect_uris")
    @classmethod
    def validate_redirect_uris(cls, v: list[str]) -> list[str]:
        """Redirect URIs must be HTTPS or loopback."""
        for uri in v:
            parsed = urlparse(uri)
            if parsed.scheme == "http" and parsed.hostname not in (
                "localhost",
                "127.0.0.1",
            ):
                raise ValueError(f"Redirect URI must use HTTPS or localhost: {uri}")
        return v


class ClientCredentials(BaseModel):
    """OAuth 2.0 client credentials from a registration response."""

    client_id: str
    client_secret: str | None = None  # None for public clients
    client_id_issued_at: int | None = None
    client_secret_expires_at: int | None = None


class ClientInfo(BaseModel):
    """Client identity as persisted in the credential file."""

    id: str
    secret: str = ""

    @classmethod
    def from_credentials(cls, credentials: ClientCredentials) -> ClientInfo:
        return cls(id=credentials.client_id, secret=credentials.client_secret or "")
