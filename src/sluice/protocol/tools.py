from typing import Any

from pydantic import Field

from sluice.protocol.base import ProtocolModel


class Tool(ProtocolModel):
    """Definition of a tool the remote server exposes.

    Annotations, titles and output schemas ride along as extra fields.
    """

    name: str
    description: str | None = None
    input_schema: dict[str, Any] = Field(
        default_factory=lambda: {"type": "object"}, alias="inputSchema"
    )


class ListToolsResult(ProtocolModel):
    tools: list[Tool] = Field(default_factory=list)
    next_cursor: str | None = Field(default=None, alias="nextCursor")


class CallToolResult(ProtocolModel):
    """
    The server's response to a tool call.

    Tool-level failures are reported with is_error=True rather than as
    protocol errors, so the model can see them.
    """

    content: list[dict[str, Any]] = Field(default_factory=list)
    structured_content: dict[str, Any] | None = Field(
        default=None, alias="structuredContent"
    )
    is_error: bool | None = Field(default=None, alias="isError")
