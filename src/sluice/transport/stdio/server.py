import asyncio
import logging
import sys
from typing import Any, AsyncIterator

from sluice.transport.stdio.shared import parse_json_message, serialize_message

logger = logging.getLogger(__name__)

# Tool schemas and results can be large; lines are not split.
STDIN_LINE_LIMIT = 16 * 1024 * 1024


class StdioServerTransport:
    """Newline-delimited JSON-RPC over our own stdin and stdout.

    The MCP client launches us as a subprocess and owns our lifecycle:
    end of input means the client has gone away.
    """

    def __init__(self, reader: asyncio.StreamReader | None = None) -> None:
        self._stdin_reader = reader
        self._write_lock = asyncio.Lock()

    async def _setup_stdin_reader(self) -> asyncio.StreamReader:
        if self._stdin_reader is None:
            self._stdin_reader = asyncio.StreamReader(limit=STDIN_LINE_LIMIT)
            protocol = asyncio.StreamReaderProtocol(self._stdin_reader)
            await asyncio.get_running_loop().connect_read_pipe(
                lambda: protocol, sys.stdin
            )
        return self._stdin_reader

    async def send(self, message: dict[str, Any]) -> None:
        """Write one message to stdout.

        Raises:
            ValueError: If message cannot be serialized
            ConnectionError: If stdout is closed or the write fails
        """
        json_str = serialize_message(message)
        async with self._write_lock:
            try:
                print(json_str, file=sys.stdout, flush=True)
            except (OSError, ValueError) as e:
                raise ConnectionError(f"Failed to send message: {e}") from e

    async def messages(self) -> AsyncIterator[dict[str, Any]]:
        """Yield each JSON object read from stdin until end of input.

        Lines that are not JSON objects are logged and skipped.
        """
        reader = await self._setup_stdin_reader()

        while True:
            try:
                line_bytes = await reader.readline()
            except (OSError, ValueError) as e:
                raise ConnectionError(f"Failed to read from stdin: {e}") from e

            if not line_bytes:
                logger.debug("stdin closed")
                return

            line = line_bytes.decode("utf-8", errors="replace")
            message = parse_json_message(line)
            if message is None:
                if line.strip():
                    logger.warning(f"Invalid JSON received: {line.strip()[:200]}")
                continue

            yield message
