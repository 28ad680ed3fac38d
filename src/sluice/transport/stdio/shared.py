import json
from typing import Any


def parse_json_message(line: str) -> dict[str, Any] | None:
    """Parse a line as a JSON-RPC message.

    Args:
        line: Raw line from stdin

    Returns:
        Parsed message dict, or None if the line is blank or not a JSON object
    """
    line = line.strip()
    if not line:
        return None

    try:
        message = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(message, dict):
        return None
    return message


def serialize_message(message: dict[str, Any]) -> str:
    """Serialize a message to a single line of JSON.

    Raises:
        ValueError: If the message cannot be encoded
    """
    try:
        return json.dumps(message, separators=(",", ":"), ensure_ascii=False)
    except (TypeError, ValueError) as e:
        raise ValueError(f"Failed to serialize message to JSON: {e}") from e
