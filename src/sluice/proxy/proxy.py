"""Wires the store, OAuth handler, remote client and stdio server together."""

import logging
from importlib.metadata import PackageNotFoundError, version

import httpx

from sluice.auth.flow import CLIENT_NAME, AuthorizationFlow
from sluice.auth.handler import OAuthHandler
from sluice.client.transport import StreamableHttpClient
from sluice.config import ProxyConfig
from sluice.protocol.initialization import Implementation
from sluice.proxy.invoker import AuthRetryInvoker
from sluice.proxy.server import StdioProxyServer
from sluice.storage.credentials import CredentialStore
from sluice.transport.stdio.server import StdioServerTransport

logger = logging.getLogger(__name__)


def _package_version() -> str:
    try:
        return version("sluice")
    except PackageNotFoundError:
        return "0.0.0"


class Proxy:
    """One proxy process: a single remote server behind a local stdio server.

    Every remote call at startup (start, initialize, list tools) and every
    forwarded tool call goes through the invoker, so a missing or rejected
    token triggers the browser flow once and the call is retried.
    """

    def __init__(
        self,
        config: ProxyConfig,
        transport: StdioServerTransport | None = None,
        http_client: httpx.AsyncClient | None = None,
        flow: AuthorizationFlow | None = None,
    ):
        self.config = config
        self.store = CredentialStore(config.storage_path)
        self._http_client = http_client or httpx.AsyncClient(
            verify=not config.insecure,
            timeout=httpx.Timeout(config.request_timeout, connect=30.0),
        )

        client_id, client_secret = self._client_identity()
        self.handler = OAuthHandler(
            server_url=config.url,
            redirect_uri=config.redirect_uri,
            token_store=self.store,
            scopes=config.scopes,
            client_id=client_id,
            client_secret=client_secret,
            http_client=self._http_client,
        )
        self.client = StreamableHttpClient(
            config.url, self.handler, http_client=self._http_client
        )
        self.flow = flow or AuthorizationFlow(
            self.store,
            config.callback_port,
            callback_timeout=config.auth_timeout,
        )
        self.invoker = AuthRetryInvoker(self.flow, self.store)
        self.transport = transport or StdioServerTransport()

        if config.insecure:
            logger.warning(f"TLS certificate verification disabled for {config.url}")

    def _client_identity(self) -> tuple[str, str]:
        """Configured client id, else a previously registered one, else none."""
        if self.config.client_id:
            return self.config.client_id, self.config.client_secret

        client_info = self.store.get_client_info()
        if client_info is not None:
            logger.debug(f"Using stored client registration {client_info.id}")
            return client_info.id, client_info.secret
        return "", ""

    async def run(self) -> None:
        """Connect to the remote server and serve stdio until stdin closes."""
        try:
            await self.invoker.call(self.client.start)
            remote = await self.invoker.call(
                self.client.initialize,
                Implementation(name=CLIENT_NAME, version=_package_version()),
            )
            tools = await self.invoker.call(self.client.list_tools)
            logger.info(
                f"Proxying {len(tools)} tools from {remote.server_info.name} "
                f"at {self.config.url}"
            )

            server = StdioProxyServer(
                self.transport, self.client, self.invoker, remote, tools
            )
            await server.serve()
        finally:
            await self.close()

    async def close(self) -> None:
        await self.client.close()
        if not self._http_client.is_closed:
            await self._http_client.aclose()
