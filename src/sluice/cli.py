"""Command-line entry point.

    sluice https://mcp.example.com/mcp --client-id abc --auth-port 8080

stdout carries the MCP protocol, so all logging goes to stderr.
"""

import argparse
import asyncio
import logging
import sys

from dotenv import load_dotenv

from sluice.auth.models.errors import AuthorizationRequiredError, OAuth2Error
from sluice.client.errors import McpError, TransportError
from sluice.config import ConfigError, ProxyConfig, parse_scopes
from sluice.proxy.proxy import Proxy
from sluice.storage.credentials import CredentialStoreError

logger = logging.getLogger("sluice")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="sluice",
        description=(
            "Expose a remote OAuth-protected MCP server as a local stdio MCP server."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment variables SLUICE_CLIENT_ID, SLUICE_CLIENT_SECRET, SLUICE_AUTH_PORT,
SLUICE_SCOPES and SLUICE_DATA_PATH supply defaults for the matching flags and
may be set in a .env file.
        """,
    )
    parser.add_argument("url", help="URL of the remote MCP server")
    parser.add_argument("--client-id", help="OAuth client ID (optional)")
    parser.add_argument("--client-secret", help="OAuth client secret (optional)")
    parser.add_argument(
        "--auth-port",
        type=int,
        help="Port for the OAuth callback listener (default: 8080)",
    )
    parser.add_argument(
        "--scopes",
        type=parse_scopes,
        help="Comma-separated OAuth scopes (default: openid,profile,email)",
    )
    parser.add_argument(
        "--data-path",
        help="Directory for stored credentials (default: ~/.sluice)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Skip TLS certificate verification for the remote server",
    )
    parser.add_argument(
        "--auth-timeout",
        type=float,
        help="Seconds to wait for the browser callback (default: wait forever)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    return parser


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def main(argv: list[str] | None = None) -> int:
    load_dotenv()
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level)

    try:
        config = ProxyConfig.from_sources(
            args.url,
            client_id=args.client_id,
            client_secret=args.client_secret,
            callback_port=args.auth_port,
            scopes=args.scopes,
            storage_root=args.data_path,
            insecure=args.insecure,
            auth_timeout=args.auth_timeout,
        )
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    try:
        asyncio.run(Proxy(config).run())
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130
    except (
        AuthorizationRequiredError,
        OAuth2Error,
        CredentialStoreError,
        TransportError,
        McpError,
    ) as e:
        logger.error(f"sluice failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
