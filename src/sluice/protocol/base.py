"""JSON-RPC envelope and shared MCP protocol definitions."""

from typing import Any, Self

from pydantic import BaseModel, ConfigDict

PROTOCOL_VERSION = "2025-06-18"
SUPPORTED_PROTOCOL_VERSIONS = ("2024-11-05", "2025-03-26", "2025-06-18")
JSONRPC_VERSION = "2.0"

# Standard JSON-RPC error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603

RequestId = str | int


class ProtocolModel(BaseModel):
    """Base for MCP payload models.

    Python attributes are snake_case; the wire uses the camelCase aliases.
    Unknown fields are kept so payloads survive a round trip through the
    proxy untouched.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow")

    @classmethod
    def from_protocol(cls, data: dict[str, Any]) -> Self:
        return cls.model_validate(data)

    def to_protocol(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


class Error(ProtocolModel):
    """JSON-RPC error object."""

    code: int
    message: str
    data: Any | None = None


def build_request(
    request_id: RequestId, method: str, params: dict[str, Any] | None = None
) -> dict[str, Any]:
    message: dict[str, Any] = {
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "method": method,
    }
    if params is not None:
        message["params"] = params
    return message


def build_notification(
    method: str, params: dict[str, Any] | None = None
) -> dict[str, Any]:
    message: dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "method": method}
    if params is not None:
        message["params"] = params
    return message


def build_result(request_id: RequestId, result: dict[str, Any]) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "result": result}


def build_error(request_id: RequestId | None, error: Error) -> dict[str, Any]:
    return {"jsonrpc": JSONRPC_VERSION, "id": request_id, "error": error.to_protocol()}


def is_valid_id(value: Any) -> bool:
    return isinstance(value, (str, int)) and not isinstance(value, bool)


def is_request(payload: dict[str, Any]) -> bool:
    return isinstance(payload.get("method"), str) and is_valid_id(payload.get("id"))


def is_notification(payload: dict[str, Any]) -> bool:
    return isinstance(payload.get("method"), str) and "id" not in payload
