"""Local HTTP listener that receives the OAuth redirect.

Runs a one-route Starlette app under uvicorn for the duration of a single
authorization flow. The first request to the callback path resolves a
future with its query parameters; the listener is always shut down when the
``async with`` block exits.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import socket
from types import TracebackType
from typing import Self

import uvicorn
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import HTMLResponse, Response
from starlette.routing import Route

from sluice.auth.models.errors import AuthorizationCallbackError, AuthorizationError

logger = logging.getLogger(__name__)

CALLBACK_PATH = "/oauth/callback"

SUCCESS_PAGE = """<html>
    <body>
        <h1>Authorization Successful</h1>
        <p>You can now close this window and return to the application.</p>
        <script>window.close();</script>
    </body>
</html>
"""


class CallbackServer:
    """Receives exactly one OAuth callback on localhost.

    Listens on every loopback address ``host`` resolves to, so the browser
    reaches the redirect URI whether it picks IPv4 or IPv6 for it.
    """

    def __init__(
        self, port: int, host: str = "localhost", path: str = CALLBACK_PATH
    ) -> None:
        self.host = host
        self.port = port
        self.path = path

        self._app = Starlette(
            routes=[Route(path, self._handle_callback, methods=["GET"])]
        )
        self._result: asyncio.Future[dict[str, str]] | None = None
        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task | None = None
        self._sockets: list[socket.socket] = []

    @property
    def bound_port(self) -> int:
        """Port actually listened on; differs from ``port`` when that is 0."""
        if not self._sockets:
            return self.port
        return self._sockets[0].getsockname()[1]

    async def start(self) -> None:
        """Bind the port and start serving.

        Raises:
            AuthorizationCallbackError: If the port cannot be bound
        """
        if self._serve_task is not None:
            return

        self._result = asyncio.get_running_loop().create_future()

        try:
            self._sockets = self._bind()
        except OSError as e:
            raise AuthorizationCallbackError(
                f"Cannot listen for the OAuth callback on {self.host}:{self.port}: {e}"
            ) from e

        config = uvicorn.Config(
            app=self._app,
            log_level="warning",
            lifespan="off",
            timeout_graceful_shutdown=1,
        )
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(
            self._server.serve(sockets=self._sockets),
            name=f"oauth-callback-{self.port}",
        )

        while not self._server.started:
            if self._serve_task.done():
                await self._serve_task
                raise AuthorizationCallbackError("OAuth callback listener exited")
            await asyncio.sleep(0.01)

        logger.debug(f"OAuth callback listener on http://{self.host}:{self.port}")

    async def wait_for_callback(self, timeout: float | None = None) -> dict[str, str]:
        """Block until the callback arrives.

        Args:
            timeout: Seconds to wait; None waits until cancelled

        Returns:
            The callback's query parameters, first value per key

        Raises:
            AuthorizationError: If the timeout expires
            AuthorizationCallbackError: If the listener stops first
        """
        if self._result is None or self._serve_task is None:
            raise RuntimeError("CallbackServer.start() has not been called")

        done, _ = await asyncio.wait(
            {self._result, self._serve_task},
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
        if self._result in done:
            return self._result.result()
        if not done:
            raise AuthorizationError(
                f"Timed out after {timeout}s waiting for the authorization callback"
            )
        raise AuthorizationCallbackError(
            "OAuth callback listener stopped before the callback arrived"
        )

    async def stop(self) -> None:
        """Shut the listener down and release the port. Safe to call twice."""
        if self._server is not None:
            self._server.should_exit = True
        if self._serve_task is not None:
            try:
                await self._serve_task
            except Exception as e:
                logger.debug(f"OAuth callback listener exited with error: {e}")
        for sock in self._sockets:
            sock.close()
        if self._result is not None and not self._result.done():
            self._result.cancel()

        self._server = None
        self._serve_task = None
        self._sockets = []
        logger.debug("OAuth callback listener stopped")

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()

    async def _handle_callback(self, request: Request) -> Response:
        params: dict[str, str] = {}
        for key, value in request.query_params.multi_items():
            params.setdefault(key, value)

        if self._result is not None and not self._result.done():
            self._result.set_result(params)
        else:
            logger.debug("Ignoring repeated OAuth callback")

        return HTMLResponse(SUCCESS_PAGE)

    def _bind(self) -> list[socket.socket]:
        resolved = socket.getaddrinfo(
            self.host, self.port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE
        )
        targets = dict.fromkeys(
            (family, address[0]) for family, *_, address in resolved
        )
        sockets: list[socket.socket] = []
        port = self.port
        try:
            for family, address in targets:
                try:
                    sock = self._listen(family, (address, port))
                except OSError as e:
                    # Address family disabled on this host, usually IPv6
                    if e.errno in (errno.EAFNOSUPPORT, errno.EADDRNOTAVAIL):
                        logger.debug(f"Skipping callback address {address}: {e}")
                        continue
                    raise
                sockets.append(sock)
                # Port 0 picks a port once; the other families share it
                port = sock.getsockname()[1]
        except OSError:
            for sock in sockets:
                sock.close()
            raise
        if not sockets:
            raise OSError(f"No usable address for {self.host}")
        return sockets

    @staticmethod
    def _listen(family: int, address: tuple[str, int]) -> socket.socket:
        sock = socket.socket(family, socket.SOCK_STREAM)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if family == socket.AF_INET6:
                sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_V6ONLY, 1)
            sock.bind(address)
            sock.listen(8)
            sock.setblocking(False)
        except OSError:
            sock.close()
            raise
        return sock
