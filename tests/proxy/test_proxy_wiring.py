"""End-to-end tests of the proxy against a mock remote server.

The interactive flow is replaced by a stub that hands back a token; every
other component is real.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import httpx

from sluice.auth.models.registration import ClientInfo
from sluice.auth.models.tokens import Token
from sluice.config import ProxyConfig
from sluice.proxy.proxy import Proxy
from sluice.storage.credentials import CredentialStore

URL = "https://mcp.example.com/mcp"

RESULTS = {
    "initialize": {
        "protocolVersion": "2025-06-18",
        "capabilities": {"tools": {}},
        "serverInfo": {"name": "remote", "version": "1.0.0"},
    },
    "tools/list": {"tools": [{"name": "echo", "inputSchema": {"type": "object"}}]},
    "tools/call": {"content": [{"type": "text", "text": "pong"}]},
}


class FakeTransport:
    def __init__(self, messages: list[dict]) -> None:
        self._messages = messages
        self.sent: list[dict] = []

    async def messages(self):
        for message in self._messages:
            yield message

    async def send(self, message: dict) -> None:
        self.sent.append(message)


class TestProxy:
    def setup_method(self):
        # Arrange
        self.accepted_token = "tok1"
        self.requests: list[httpx.Request] = []
        self.flow = MagicMock()
        self.flow.authorize = AsyncMock(return_value=Token(access_token="tok1"))
        self.transport = FakeTransport(
            [
                {"jsonrpc": "2.0", "id": 1, "method": "initialize", "params": {}},
                {
                    "jsonrpc": "2.0",
                    "id": 2,
                    "method": "tools/call",
                    "params": {"name": "echo", "arguments": {"text": "ping"}},
                },
            ]
        )

    def _remote(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.headers.get("Authorization") != f"Bearer {self.accepted_token}":
            return httpx.Response(401, headers={"WWW-Authenticate": "Bearer"})
        if request.method == "DELETE":
            return httpx.Response(200)

        body = json.loads(request.content)
        if "id" not in body:
            return httpx.Response(202)
        headers = {"Mcp-Session-Id": "s-1"} if body["method"] == "initialize" else {}
        result = RESULTS[body["method"]]
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": body["id"], "result": result},
            headers=headers,
        )

    def _make_proxy(self, tmp_path, **config) -> Proxy:
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(self._remote))
        return Proxy(
            ProxyConfig(url=URL, storage_root=str(tmp_path), **config),
            transport=self.transport,
            http_client=http_client,
            flow=self.flow,
        )

    async def test_first_run_authorizes_then_serves(self, tmp_path):
        # Arrange
        proxy = self._make_proxy(tmp_path)

        # Act
        await proxy.run()

        # Assert
        self.flow.authorize.assert_awaited_once_with(proxy.handler)
        store = CredentialStore(tmp_path / "mcp.example.com.json")
        assert store.get_token().access_token == "tok1"

        init_response, call_response = sorted(
            self.transport.sent, key=lambda m: m["id"]
        )
        assert init_response["result"]["serverInfo"]["name"] == "remote"
        assert call_response["result"] == RESULTS["tools/call"]

        delete = self.requests[-1]
        assert delete.method == "DELETE"
        assert delete.headers["Mcp-Session-Id"] == "s-1"

    async def test_rejected_token_is_replaced(self, tmp_path):
        # Arrange
        CredentialStore(tmp_path / "mcp.example.com.json").save_token(
            Token(access_token="stale")
        )
        proxy = self._make_proxy(tmp_path)

        # Act
        await proxy.run()

        # Assert
        self.flow.authorize.assert_awaited_once()
        first_post = self.requests[0]
        assert first_post.headers["Authorization"] == "Bearer stale"
        assert len(self.transport.sent) == 2

    async def test_valid_token_skips_authorization(self, tmp_path):
        # Arrange
        CredentialStore(tmp_path / "mcp.example.com.json").save_token(
            Token(access_token="tok1")
        )
        proxy = self._make_proxy(tmp_path)

        # Act
        await proxy.run()

        # Assert
        self.flow.authorize.assert_not_awaited()

    async def test_stored_client_used_when_none_configured(self, tmp_path):
        # Arrange
        CredentialStore(tmp_path / "mcp.example.com.json").save_client_info(
            ClientInfo(id="stored", secret="s")
        )

        # Act
        proxy = self._make_proxy(tmp_path)

        # Assert
        assert proxy.handler.get_client_id() == "stored"
        assert proxy.handler.get_client_secret() == "s"
        await proxy.close()

    async def test_configured_client_wins_over_stored(self, tmp_path):
        # Arrange
        CredentialStore(tmp_path / "mcp.example.com.json").save_client_info(
            ClientInfo(id="stored")
        )

        # Act
        proxy = self._make_proxy(tmp_path, client_id="flag-id")

        # Assert
        assert proxy.handler.get_client_id() == "flag-id"
        await proxy.close()
