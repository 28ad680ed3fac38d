"""Local stdio MCP server that fronts the remote server's tools."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from sluice.client.errors import McpError
from sluice.client.transport import StreamableHttpClient
from sluice.protocol.base import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PROTOCOL_VERSION,
    SUPPORTED_PROTOCOL_VERSIONS,
    Error,
    RequestId,
    build_error,
    build_result,
    is_notification,
    is_request,
    is_valid_id,
)
from sluice.protocol.initialization import (
    InitializeResult,
    ServerCapabilities,
    ToolsCapability,
)
from sluice.protocol.tools import ListToolsResult, Tool
from sluice.proxy.invoker import AuthRetryInvoker
from sluice.transport.stdio.server import StdioServerTransport

logger = logging.getLogger(__name__)

RequestHandler = Callable[[dict[str, Any]], Awaitable[dict[str, Any] | Error]]


class StdioProxyServer:
    """Answers a local MCP client on stdio using the remote server's tools.

    The remote server's identity and tool list are captured at startup.
    Tool calls go to the remote server through the retrying invoker.
    Each request runs in its own task so a slow tool call does not hold up
    the others.
    """

    def __init__(
        self,
        transport: StdioServerTransport,
        client: StreamableHttpClient,
        invoker: AuthRetryInvoker,
        remote: InitializeResult,
        tools: list[Tool],
    ):
        self.transport = transport
        self.client = client
        self.invoker = invoker
        self.remote = remote
        self.tools = tools
        self._request_handlers: dict[str, RequestHandler] = {
            "initialize": self._handle_initialize,
            "ping": self._handle_ping,
            "tools/list": self._handle_list_tools,
            "tools/call": self._handle_call_tool,
        }
        self._in_flight: dict[RequestId, asyncio.Task[None]] = {}

    async def serve(self) -> None:
        """Handle messages until the local client closes stdin.

        Requests already in flight when stdin closes are answered before
        returning.
        """
        try:
            async for payload in self.transport.messages():
                await self._dispatch(payload)
            if self._in_flight:
                await asyncio.gather(
                    *self._in_flight.values(), return_exceptions=True
                )
        finally:
            await self._cancel_in_flight()

    # ================================
    # Route messages
    # ================================

    async def _dispatch(self, payload: dict[str, Any]) -> None:
        if is_request(payload):
            request_id = payload["id"]
            task = asyncio.create_task(
                self._handle_request(payload),
                name=f"handle_{payload['method']}_{request_id}",
            )
            self._in_flight[request_id] = task
            task.add_done_callback(lambda t: self._in_flight.pop(request_id, None))
        elif is_notification(payload):
            self._handle_notification(payload)
        elif "method" in payload:
            logger.warning(f"Rejecting malformed request: {payload}")
            error = Error(
                code=INVALID_REQUEST,
                message="Request needs a string method and a string or integer id",
            )
            await self._send(build_error(None, error), "malformed request")
        else:
            logger.debug(f"Ignoring message without a method: {payload}")

    async def _handle_request(self, payload: dict[str, Any]) -> None:
        method = payload["method"]
        request_id = payload["id"]
        params = payload.get("params") or {}

        if not isinstance(params, dict):
            result: dict[str, Any] | Error = Error(
                code=INVALID_REQUEST, message="params must be an object"
            )
        elif handler := self._request_handlers.get(method):
            try:
                result = await handler(params)
            except Exception as e:
                logger.exception(f"Error handling {method}")
                result = Error(code=INTERNAL_ERROR, message=f"Handler error: {e}")
        else:
            result = Error(code=METHOD_NOT_FOUND, message=f"Unknown method: {method}")

        if isinstance(result, Error):
            response = build_error(request_id, result)
        else:
            response = build_result(request_id, result)

        await self._send(response, f"{method} ({request_id})")

    async def _send(self, response: dict[str, Any], description: str) -> None:
        try:
            await self.transport.send(response)
        except (ConnectionError, ValueError) as e:
            logger.error(f"Failed to send response to {description}: {e}")

    def _handle_notification(self, payload: dict[str, Any]) -> None:
        method = payload["method"]
        if method == "notifications/cancelled":
            params = payload.get("params") or {}
            request_id = params.get("requestId") if isinstance(params, dict) else None
            if not is_valid_id(request_id):
                logger.warning(f"Ignoring malformed cancellation: {payload}")
                return
            if task := self._in_flight.get(request_id):
                logger.debug(f"Cancelling request {request_id}")
                task.cancel()
            return
        logger.debug(f"Ignoring notification {method}")

    async def _cancel_in_flight(self) -> None:
        tasks = list(self._in_flight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ================================
    # Request handlers
    # ================================

    async def _handle_initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        requested = params.get("protocolVersion")
        version = (
            requested if requested in SUPPORTED_PROTOCOL_VERSIONS else PROTOCOL_VERSION
        )
        result = InitializeResult(
            protocol_version=version,
            capabilities=ServerCapabilities(tools=ToolsCapability()),
            server_info=self.remote.server_info,
            instructions=self.remote.instructions,
        )
        return result.to_protocol()

    async def _handle_ping(self, params: dict[str, Any]) -> dict[str, Any]:
        return {}

    async def _handle_list_tools(self, params: dict[str, Any]) -> dict[str, Any]:
        return ListToolsResult(tools=self.tools).to_protocol()

    async def _handle_call_tool(
        self, params: dict[str, Any]
    ) -> dict[str, Any] | Error:
        name = params.get("name")
        if not isinstance(name, str) or not name:
            return Error(code=INVALID_PARAMS, message="Tool name is required")
        arguments = params.get("arguments") or {}
        if not isinstance(arguments, dict):
            return Error(code=INVALID_PARAMS, message="arguments must be an object")

        try:
            result = await self.invoker.call(self.client.call_tool, name, arguments)
        except McpError as e:
            return e.error
        except Exception as e:
            logger.error(f"Tool call {name} failed: {e}")
            return Error(code=INTERNAL_ERROR, message=f"Tool call failed: {e}")
        return result.to_protocol()
