"""Tests for the Streamable HTTP client against an in-process mock server."""

import json
from unittest.mock import MagicMock

import httpx
import pytest

from sluice.auth.handler import OAuthHandler
from sluice.auth.models.errors import AuthorizationRequiredError
from sluice.auth.models.tokens import Token
from sluice.client.errors import McpError, RemoteProtocolError, TransportError
from sluice.client.transport import StreamableHttpClient
from sluice.protocol.base import METHOD_NOT_FOUND
from sluice.protocol.initialization import Implementation
from sluice.storage.credentials import TokenNotFoundError

URL = "https://mcp.example.com/mcp"

INITIALIZE_RESULT = {
    "protocolVersion": "2025-06-18",
    "capabilities": {"tools": {"listChanged": True}},
    "serverInfo": {"name": "remote", "version": "1.2.3"},
    "instructions": "Use the tools wisely.",
}


def _result(request: httpx.Request, result: dict, **headers) -> httpx.Response:
    body = json.loads(request.content)
    return httpx.Response(
        200,
        json={"jsonrpc": "2.0", "id": body["id"], "result": result},
        headers=headers,
    )


def _sse(*messages: dict) -> httpx.Response:
    payload = "".join(
        f"event: message\ndata: {json.dumps(m)}\n\n" for m in messages
    ).encode()
    return httpx.Response(
        200, headers={"content-type": "text/event-stream"}, content=payload
    )


class TestStreamableHttpClient:
    def setup_method(self):
        # Arrange
        self.requests: list[httpx.Request] = []
        self.route = None
        self.store = MagicMock()
        self.store.get_token.return_value = Token(access_token="tok1")
        self.http_client = httpx.AsyncClient(
            transport=httpx.MockTransport(self._handle)
        )
        self.oauth_handler = OAuthHandler(
            URL,
            "http://localhost:8080/oauth/callback",
            self.store,
            http_client=self.http_client,
        )
        self.client = StreamableHttpClient(
            URL, self.oauth_handler, http_client=self.http_client
        )

    def _handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.route(request)

    def _posted(self) -> list[dict]:
        return [json.loads(r.content) for r in self.requests if r.method == "POST"]

    async def test_initialize_negotiates_session_and_sends_initialized(self):
        # Arrange
        def route(request):
            body = json.loads(request.content)
            if body["method"] == "initialize":
                return _result(request, INITIALIZE_RESULT, **{"Mcp-Session-Id": "s-1"})
            return httpx.Response(202)

        self.route = route

        # Act
        result = await self.client.initialize(
            Implementation(name="sluice", version="0.1.0")
        )

        # Assert
        assert result.server_info.name == "remote"
        assert result.server_info.version == "1.2.3"
        assert result.instructions == "Use the tools wisely."
        assert self.client.session_id == "s-1"

        init_request, initialized = self.requests
        assert init_request.headers["Authorization"] == "Bearer tok1"
        assert init_request.headers["Accept"] == "application/json, text/event-stream"
        assert init_request.headers["MCP-Protocol-Version"] == "2025-06-18"
        assert "Mcp-Session-Id" not in init_request.headers
        init_body = json.loads(init_request.content)
        assert init_body["params"]["clientInfo"] == {
            "name": "sluice",
            "version": "0.1.0",
        }

        assert json.loads(initialized.content) == {
            "jsonrpc": "2.0",
            "method": "notifications/initialized",
        }
        assert initialized.headers["Mcp-Session-Id"] == "s-1"

    async def test_sse_response_skips_unrelated_messages(self):
        # Arrange
        def route(request):
            body = json.loads(request.content)
            return _sse(
                {"jsonrpc": "2.0", "method": "notifications/progress", "params": {}},
                {"jsonrpc": "2.0", "id": "other", "result": {}},
                {
                    "jsonrpc": "2.0",
                    "id": body["id"],
                    "result": {"content": [{"type": "text", "text": "42"}]},
                },
            )

        self.route = route

        # Act
        result = await self.client.call_tool("answer", {"q": "life"})

        # Assert
        assert result.content == [{"type": "text", "text": "42"}]
        assert self._posted()[0]["params"] == {
            "name": "answer",
            "arguments": {"q": "life"},
        }

    async def test_sse_stream_without_response_raises(self):
        # Arrange
        self.route = lambda request: _sse(
            {"jsonrpc": "2.0", "method": "notifications/message", "params": {}}
        )

        # Act & Assert
        with pytest.raises(RemoteProtocolError, match="SSE stream closed"):
            await self.client.call_tool("answer")

    async def test_list_tools_follows_cursor(self):
        # Arrange
        def route(request):
            body = json.loads(request.content)
            if body.get("params", {}).get("cursor") == "page-2":
                return _result(request, {"tools": [{"name": "b"}]})
            return _result(
                request,
                {
                    "tools": [
                        {
                            "name": "a",
                            "description": "first",
                            "inputSchema": {"type": "object"},
                            "annotations": {"readOnlyHint": True},
                        }
                    ],
                    "nextCursor": "page-2",
                },
            )

        self.route = route

        # Act
        tools = await self.client.list_tools()

        # Assert
        assert [t.name for t in tools] == ["a", "b"]
        assert tools[0].to_protocol()["annotations"] == {"readOnlyHint": True}
        assert len(self.requests) == 2

    async def test_json_rpc_error_raises_mcp_error(self):
        # Arrange
        def route(request):
            body = json.loads(request.content)
            return httpx.Response(
                200,
                json={
                    "jsonrpc": "2.0",
                    "id": body["id"],
                    "error": {"code": METHOD_NOT_FOUND, "message": "no such tool"},
                },
            )

        self.route = route

        # Act & Assert
        with pytest.raises(McpError) as exc_info:
            await self.client.call_tool("missing")
        assert exc_info.value.error.code == METHOD_NOT_FOUND
        assert exc_info.value.error.message == "no such tool"

    async def test_401_requires_authorization_with_handler(self):
        # Arrange
        challenge = 'Bearer resource_metadata="https://mcp.example.com/prm"'
        self.route = lambda request: httpx.Response(
            401, headers={"WWW-Authenticate": challenge}
        )

        # Act & Assert
        with pytest.raises(AuthorizationRequiredError) as exc_info:
            await self.client.list_tools()
        assert exc_info.value.handler is self.oauth_handler
        assert self.oauth_handler._www_authenticate == challenge

    async def test_start_without_token_requires_authorization(self):
        # Arrange
        self.store.get_token.side_effect = TokenNotFoundError("none")

        # Act & Assert
        with pytest.raises(AuthorizationRequiredError):
            await self.client.start()

    async def test_start_with_token_makes_no_request(self):
        # Act
        await self.client.start()

        # Assert
        assert self.requests == []

    async def test_server_error_raises_transport_error(self):
        # Arrange
        self.route = lambda request: httpx.Response(500, text="boom")

        # Act & Assert
        with pytest.raises(TransportError) as exc_info:
            await self.client.ping()
        assert exc_info.value.status_code == 500
        assert "boom" in str(exc_info.value)

    async def test_expired_session_is_cleared(self):
        # Arrange
        self.client._session_id = "s-1"
        self.route = lambda request: httpx.Response(404)

        # Act & Assert
        with pytest.raises(TransportError, match="Session expired"):
            await self.client.ping()
        assert self.client.session_id is None

    async def test_network_failure_raises_transport_error(self):
        # Arrange
        def route(request):
            raise httpx.ConnectError("connection refused", request=request)

        self.route = route

        # Act & Assert
        with pytest.raises(TransportError, match="connection refused"):
            await self.client.ping()

    async def test_unexpected_content_type_raises(self):
        # Arrange
        self.route = lambda request: httpx.Response(200, text="<html></html>")

        # Act & Assert
        with pytest.raises(RemoteProtocolError):
            await self.client.ping()

    async def test_close_terminates_session(self):
        # Arrange
        self.client._session_id = "s-1"
        self.route = lambda request: httpx.Response(200)

        # Act
        await self.client.close()

        # Assert
        (delete,) = self.requests
        assert delete.method == "DELETE"
        assert delete.headers["Mcp-Session-Id"] == "s-1"
        assert delete.headers["Authorization"] == "Bearer tok1"
        assert self.client.session_id is None
        # The shared client belongs to the caller
        assert not self.http_client.is_closed
        await self.http_client.aclose()
