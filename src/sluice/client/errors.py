"""Errors raised by the remote MCP client."""

from __future__ import annotations

from sluice.protocol.base import Error


class TransportError(ConnectionError):
    """The remote server could not be reached or answered with an HTTP error."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RemoteProtocolError(TransportError):
    """The remote server answered with something that is not valid MCP."""

    pass


class McpError(Exception):
    """The remote server answered a request with a JSON-RPC error."""

    def __init__(self, error: Error):
        super().__init__(f"{error.message} (code {error.code})")
        self.error = error
