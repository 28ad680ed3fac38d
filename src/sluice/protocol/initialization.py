from typing import Any

from pydantic import Field

from sluice.protocol.base import PROTOCOL_VERSION, ProtocolModel


class Implementation(ProtocolModel):
    """Name and version string of the server or client."""

    name: str
    version: str


class ToolsCapability(ProtocolModel):
    """Capabilities for tool execution and change notifications."""

    list_changed: bool | None = Field(default=None, alias="listChanged")
    """
    Whether the server sends notifications when tools change.
    """


class ServerCapabilities(ProtocolModel):
    """Capabilities that the server supports, sent during initialization."""

    experimental: dict[str, Any] | None = None
    logging: dict[str, Any] | None = None
    prompts: dict[str, Any] | None = None
    resources: dict[str, Any] | None = None
    tools: ToolsCapability | None = None


class InitializeParams(ProtocolModel):
    """Parameters of the initial handshake request."""

    protocol_version: str = Field(default=PROTOCOL_VERSION, alias="protocolVersion")
    capabilities: dict[str, Any] = Field(default_factory=dict)
    client_info: Implementation = Field(alias="clientInfo")


class InitializeResult(ProtocolModel):
    """
    Server's response to initialization, completing the MCP handshake.

    Contains server capabilities and optional setup instructions for the client.
    """

    protocol_version: str = Field(default=PROTOCOL_VERSION, alias="protocolVersion")
    capabilities: ServerCapabilities = Field(default_factory=ServerCapabilities)
    server_info: Implementation = Field(alias="serverInfo")
    instructions: str | None = None
    """
    Instructions describing how to use the server and its features.
    """
