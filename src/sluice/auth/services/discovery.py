"""OAuth 2.1 server discovery service.

Implements RFC 9728 (Protected Resource Metadata) and RFC 8414
(Authorization Server Metadata) discovery to find the OAuth endpoints of an
MCP server, with the MCP fallback to conventional endpoints for servers that
publish no metadata at all.
"""

from __future__ import annotations

import logging
import re
from urllib.parse import urljoin, urlparse

import httpx
from pydantic import ValidationError

from sluice.auth.models.discovery import (
    AuthorizationServerMetadata,
    DiscoveryResult,
    ProtectedResourceMetadata,
)
from sluice.auth.models.errors import (
    AuthorizationServerMetadataError,
    ProtectedResourceMetadataError,
)

logger = logging.getLogger(__name__)


class OAuth2Discovery:
    """Handles OAuth 2.1 server discovery for MCP authentication.

    Implements the two-step discovery process:
    1. Protected Resource Metadata (RFC 9728) - find authorization servers
    2. Authorization Server Metadata (RFC 8414) - find OAuth endpoints

    When a step yields nothing, falls back to the base URL of the server
    that should have published it.
    """

    def __init__(
        self, timeout: float = 30.0, http_client: httpx.AsyncClient | None = None
    ):
        """Initialize OAuth discovery.

        Args:
            timeout: HTTP request timeout in seconds
            http_client: Shared client; a private one is created if omitted
        """
        self.timeout = timeout
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)

    async def discover(
        self, server_url: str, www_authenticate: str | None = None
    ) -> DiscoveryResult:
        """Discover OAuth configuration for an MCP server.

        Args:
            server_url: MCP server URL
            www_authenticate: WWW-Authenticate header of a 401 response, if any

        Returns:
            Complete discovery results

        Raises:
            DiscoveryError: Only for malformed metadata; missing metadata falls
                back to default endpoints
        """
        resource_metadata_url = None
        if www_authenticate:
            resource_metadata_url = self._extract_resource_metadata_from_www_auth(
                www_authenticate
            )

        if resource_metadata_url is None:
            resource_metadata_url = urljoin(
                self._base_url(server_url), "/.well-known/oauth-protected-resource"
            )

        prm = await self._fetch_protected_resource_metadata(resource_metadata_url)

        if prm is None:
            logger.debug(
                f"No protected resource metadata for {server_url}, "
                "assuming the server is its own authorization server"
            )
            auth_server_url = self._base_url(server_url)
        else:
            auth_server_url = str(prm.authorization_servers[0])

        asm = await self._discover_authorization_server_metadata(auth_server_url)
        if asm is None:
            logger.info(
                f"No authorization server metadata at {auth_server_url}, "
                "using default endpoints"
            )
            asm = AuthorizationServerMetadata.defaults_for(
                self._base_url(auth_server_url)
            )

        return DiscoveryResult(
            server_url=server_url,
            authorization_server_metadata=asm,
            auth_server_url=auth_server_url,
            protected_resource_metadata=prm,
        )

    async def close(self) -> None:
        """Close the HTTP client if we created it."""
        if self._owns_client:
            await self._http_client.aclose()

    def _extract_resource_metadata_from_www_auth(
        self, www_auth_header: str
    ) -> str | None:
        """Extract the resource_metadata URL from a WWW-Authenticate header.

        RFC 9728 Section 5.1: resource_metadata="url" or resource_metadata=url
        """
        pattern = r'resource_metadata=(?:"([^"]+)"|([^\s,]+))'
        match = re.search(pattern, www_auth_header)

        if match:
            return match.group(1) or match.group(2)

        return None

    async def _fetch_protected_resource_metadata(
        self, metadata_url: str
    ) -> ProtectedResourceMetadata | None:
        """Fetch and parse protected resource metadata.

        Returns:
            Parsed metadata, or None if the server does not publish any

        Raises:
            ProtectedResourceMetadataError: If the document exists but is invalid
        """
        logger.debug(f"Fetching protected resource metadata from: {metadata_url}")
        try:
            response = await self._http_client.get(metadata_url)
        except httpx.RequestError as e:
            logger.debug(f"Protected resource metadata unavailable: {e}")
            return None

        if response.status_code != 200:
            logger.debug(
                f"Protected resource metadata request returned "
                f"{response.status_code}"
            )
            return None

        try:
            return ProtectedResourceMetadata.model_validate_json(response.text)
        except ValidationError as e:
            raise ProtectedResourceMetadataError(
                f"Invalid protected resource metadata from {metadata_url}: {e}"
            ) from e

    async def _discover_authorization_server_metadata(
        self, auth_server_url: str
    ) -> AuthorizationServerMetadata | None:
        """Try each well-known location in turn.

        Returns:
            The first valid metadata document, or None if none was found

        Raises:
            AuthorizationServerMetadataError: If the server errors out
        """
        discovery_urls = self._build_discovery_urls(auth_server_url)

        for url in discovery_urls:
            try:
                logger.debug(f"Trying authorization server metadata discovery: {url}")
                response = await self._http_client.get(url)
            except httpx.RequestError:
                continue

            if response.status_code == 200:
                try:
                    return AuthorizationServerMetadata.model_validate_json(
                        response.text
                    )
                except ValidationError:
                    continue
            elif response.status_code >= 500:
                raise AuthorizationServerMetadataError(
                    f"Authorization server metadata request to {url} failed "
                    f"with {response.status_code}"
                )

        return None

    def _build_discovery_urls(self, auth_server_url: str) -> list[str]:
        """Build the ordered list of metadata URLs to try.

        RFC 8414 Section 3: path-aware discovery first, then root discovery,
        then the same for OpenID Connect.
        """
        parsed = urlparse(auth_server_url)
        base_url = f"{parsed.scheme}://{parsed.netloc}"
        path = parsed.path.rstrip("/")
        urls = []

        for well_known in (
            "/.well-known/oauth-authorization-server",
            "/.well-known/openid-configuration",
        ):
            if path:
                urls.append(urljoin(base_url, f"{well_known}{path}"))
            urls.append(urljoin(base_url, well_known))

        return urls

    @staticmethod
    def _base_url(url: str) -> str:
        parsed = urlparse(url)
        return f"{parsed.scheme}://{parsed.netloc}"
