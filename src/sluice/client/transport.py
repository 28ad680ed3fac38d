"""Streamable HTTP client for a single remote MCP server."""

import itertools
import json
import logging
from typing import Any

import httpx
from httpx_sse import EventSource

from sluice.auth.handler import OAuthHandler
from sluice.client.errors import McpError, RemoteProtocolError, TransportError
from sluice.protocol.base import (
    PROTOCOL_VERSION,
    Error,
    RequestId,
    build_notification,
    build_request,
)
from sluice.protocol.initialization import (
    Implementation,
    InitializeParams,
    InitializeResult,
)
from sluice.protocol.tools import CallToolResult, ListToolsResult, Tool

logger = logging.getLogger(__name__)


class StreamableHttpClient:
    """Request/response MCP client over the Streamable HTTP transport.

    Every request carries the bearer token from the OAuth handler. A 401, or
    a missing token, surfaces as AuthorizationRequiredError carrying that
    handler; the caller decides whether to authorize and retry.

    Supports:
    - HTTP POST with JSON or SSE responses
    - Session management with Mcp-Session-Id headers
    - Session termination via DELETE on close
    """

    def __init__(
        self,
        url: str,
        oauth_handler: OAuthHandler,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.url = url
        self.oauth_handler = oauth_handler
        self._owns_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=timeout)
        self._session_id: str | None = None
        self._protocol_version = PROTOCOL_VERSION
        self._ids = itertools.count(1)

    @property
    def session_id(self) -> str | None:
        return self._session_id

    # ================================
    # MCP operations
    # ================================

    async def start(self) -> None:
        """Check that credentials are available before talking to the server.

        Raises:
            AuthorizationRequiredError: If no token has been stored yet
        """
        self.oauth_handler.get_authorization_header()
        logger.debug(f"Client for {self.url} ready")

    async def initialize(
        self,
        client_info: Implementation,
        capabilities: dict[str, Any] | None = None,
    ) -> InitializeResult:
        """Perform the MCP handshake and send notifications/initialized."""
        params = InitializeParams(
            client_info=client_info, capabilities=capabilities or {}
        )
        result = InitializeResult.from_protocol(
            await self._request("initialize", params.to_protocol())
        )
        self._protocol_version = result.protocol_version
        await self._notify("notifications/initialized")

        logger.info(
            f"Connected to {result.server_info.name} {result.server_info.version} "
            f"(protocol {result.protocol_version})"
        )
        return result

    async def list_tools(self) -> list[Tool]:
        """Fetch every tool, following pagination cursors."""
        tools: list[Tool] = []
        cursor: str | None = None
        while True:
            params = {"cursor": cursor} if cursor else None
            page = ListToolsResult.from_protocol(
                await self._request("tools/list", params)
            )
            tools.extend(page.tools)
            if not page.next_cursor:
                return tools
            cursor = page.next_cursor

    async def call_tool(
        self, name: str, arguments: dict[str, Any] | None = None
    ) -> CallToolResult:
        result = await self._request(
            "tools/call", {"name": name, "arguments": arguments or {}}
        )
        return CallToolResult.from_protocol(result)

    async def ping(self) -> None:
        await self._request("ping")

    async def close(self) -> None:
        """Terminate the session and release HTTP resources. Safe to call twice."""
        if self._session_id is not None:
            await self._terminate_session()
        if self._owns_client and not self._http_client.is_closed:
            await self._http_client.aclose()
        await self.oauth_handler.close()

    # ================================
    # Message exchange
    # ================================

    async def _request(
        self, method: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Send a JSON-RPC request and return its result.

        Raises:
            AuthorizationRequiredError: On a missing token or a 401
            McpError: If the server answers with a JSON-RPC error
            TransportError: On network or HTTP failures
        """
        request_id = next(self._ids)
        message = build_request(request_id, method, params)
        headers = self._build_headers()

        try:
            async with self._http_client.stream(
                "POST", self.url, json=message, headers=headers
            ) as response:
                await self._check_response(response)

                if method == "initialize" and "Mcp-Session-Id" in response.headers:
                    self._session_id = response.headers["Mcp-Session-Id"]
                    logger.debug(f"Established session {self._session_id}")

                payload = await self._read_response(response, request_id)
        except httpx.RequestError as e:
            raise TransportError(f"Request to {self.url} failed: {e}") from e

        if "error" in payload:
            raise McpError(Error.from_protocol(payload["error"]))
        return payload.get("result") or {}

    async def _notify(self, method: str, params: dict[str, Any] | None = None) -> None:
        message = build_notification(method, params)
        try:
            async with self._http_client.stream(
                "POST", self.url, json=message, headers=self._build_headers()
            ) as response:
                await self._check_response(response)
        except httpx.RequestError as e:
            raise TransportError(f"Notification to {self.url} failed: {e}") from e

    async def _check_response(self, response: httpx.Response) -> None:
        """Raise for any status that is not a usable answer.

        - 401: authorization required
        - 404 with a session: session expired, must re-initialize
        - other 4xx/5xx: transport error
        """
        if response.status_code == 401:
            raise self.oauth_handler.unauthorized(
                response.headers.get("WWW-Authenticate")
            )

        if response.status_code == 404 and "Mcp-Session-Id" in response.request.headers:
            self._session_id = None
            raise TransportError(
                f"Session expired for {self.url}. "
                "Must re-initialize with a new InitializeRequest.",
                status_code=404,
            )

        if response.status_code >= 400:
            await response.aread()
            raise TransportError(
                f"{self.url} returned {response.status_code}: "
                f"{response.text or response.reason_phrase}",
                status_code=response.status_code,
            )

    async def _read_response(
        self, response: httpx.Response, request_id: RequestId
    ) -> dict[str, Any]:
        content_type = response.headers.get("content-type", "")

        if "text/event-stream" in content_type:
            return await self._read_sse_response(response, request_id)

        if "application/json" in content_type:
            await response.aread()
            try:
                data = response.json()
            except ValueError as e:
                raise RemoteProtocolError(f"Invalid JSON from {self.url}: {e}") from e
            messages = data if isinstance(data, list) else [data]
            for message in messages:
                if self._is_response_to(message, request_id):
                    return message
            raise RemoteProtocolError(
                f"No response to request {request_id} in JSON body"
            )

        raise RemoteProtocolError(
            f"Unexpected response ({response.status_code}, "
            f"content-type {content_type!r}) to request {request_id}"
        )

    async def _read_sse_response(
        self, response: httpx.Response, request_id: RequestId
    ) -> dict[str, Any]:
        """Read SSE events until the response to ``request_id`` arrives.

        Server-initiated requests and notifications on the stream are not
        forwarded; they are logged and skipped.
        """
        async for sse_event in EventSource(response).aiter_sse():
            if not sse_event.data:
                continue
            try:
                message = json.loads(sse_event.data)
            except json.JSONDecodeError as e:
                logger.warning(f"SSE JSON parse error from {self.url}: {e}")
                continue

            if self._is_response_to(message, request_id):
                return message
            logger.debug(
                f"Skipping SSE message: {message.get('method', 'response')}"
                if isinstance(message, dict)
                else "Skipping non-object SSE message"
            )

        raise RemoteProtocolError(
            f"SSE stream closed before the response to request {request_id}"
        )

    @staticmethod
    def _is_response_to(message: Any, request_id: RequestId) -> bool:
        return (
            isinstance(message, dict)
            and message.get("id") == request_id
            and ("result" in message or "error" in message)
        )

    # ================================
    # Headers & session
    # ================================

    def _build_headers(self) -> dict[str, str]:
        """Headers for a POST to the MCP endpoint.

        Raises:
            AuthorizationRequiredError: If no token has been stored yet
        """
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json, text/event-stream",
            "MCP-Protocol-Version": self._protocol_version,
            "Authorization": self.oauth_handler.get_authorization_header(),
        }
        if self._session_id is not None:
            headers["Mcp-Session-Id"] = self._session_id
        return headers

    async def _terminate_session(self) -> None:
        """Attempt graceful session termination via DELETE request."""
        session_id = self._session_id
        headers = {
            "Mcp-Session-Id": session_id,
            "MCP-Protocol-Version": self._protocol_version,
        }
        try:
            headers["Authorization"] = self.oauth_handler.get_authorization_header()
            response = await self._http_client.delete(
                self.url, headers=headers, timeout=5.0
            )
            if response.status_code == 405:
                logger.debug(f"{self.url} does not support session termination")
            elif response.status_code >= 400:
                logger.warning(
                    f"Unexpected response {response.status_code} when "
                    f"terminating session {session_id}"
                )
        except Exception as e:
            logger.debug(f"Failed to gracefully terminate session {session_id}: {e}")
        finally:
            self._session_id = None
