"""Discovery-related models for OAuth 2.1 server metadata.

Contains models for Protected Resource Metadata (RFC 9728) and
Authorization Server Metadata (RFC 8414) discovery.
"""

from __future__ import annotations

from dataclasses import dataclass
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator


class ProtectedResourceMetadata(BaseModel):
    """OAuth 2.0 Protected Resource Metadata (RFC 9728).

    Published by MCP servers to name their authorization servers.
    """

    resource: str | None = None
    authorization_servers: list[str] = Field(min_length=1)

    bearer_methods_supported: list[str] | None = None
    scopes_supported: list[str] | None = None
    resource_documentation: str | None = None


class AuthorizationServerMetadata(BaseModel):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    registration_endpoint: str | None = None

    response_types_supported: list[str] = Field(default=["code"])
    code_challenge_methods_supported: list[str] = Field(default=["S256"])
    grant_types_supported: list[str] = Field(default=["authorization_code"])
    scopes_supported: list[str] | None = None
    token_endpoint_auth_methods_supported: list[str] | None = None

    @field_validator("code_challenge_methods_supported")
    @classmethod
    def validate_pkce_support(cls, v: list[str]) -> list[str]:
        if "S256" not in v:
            raise ValueError("Authorization server must support S256 PKCE method")
        return v

    @classmethod
    def defaults_for(cls, base_url: str) -> AuthorizationServerMetadata:
        """Conventional endpoints for servers that publish no metadata.

        Mirrors the MCP authorization fallback: the endpoints live directly
        under the server's base URL.
        """
        base_url = base_url.rstrip("/")
        return cls(
            issuer=base_url,
            authorization_endpoint=f"{base_url}/authorize",
            token_endpoint=f"{base_url}/token",
            registration_endpoint=f"{base_url}/register",
        )


@dataclass(frozen=True)
class DiscoveryResult:
    """Everything the authorization flow needs to know about a server.

    ``protected_resource_metadata`` is None when the server publishes no
    RFC 9728 document and the authorization server was assumed to live at
    the server's own base URL.
    """

    server_url: str
    authorization_server_metadata: AuthorizationServerMetadata
    auth_server_url: str
    protected_resource_metadata: ProtectedResourceMetadata | None = None

    def get_resource_url(self) -> str:
        """Get the resource URL for the RFC 8707 resource parameter.

        Uses the canonical form of the MCP server URL: lowercase scheme and
        host, path preserved without a trailing slash.
        """
        parsed = urlparse(self.server_url)
        canonical = f"{parsed.scheme.lower()}://{parsed.netloc.lower()}"
        if parsed.path and parsed.path != "/":
            canonical += parsed.path.rstrip("/")

        return canonical
