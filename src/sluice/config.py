"""Runtime configuration for the proxy.

Values come from command-line flags, then SLUICE_* environment variables
(which a .env file may populate), then defaults.
"""

import os
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

from sluice.auth.callback import CALLBACK_PATH
from sluice.storage.credentials import target_identity

DEFAULT_CALLBACK_PORT = 8080
DEFAULT_SCOPES = ("openid", "profile", "email")
DEFAULT_STORAGE_ROOT = "~/.sluice"
DEFAULT_REQUEST_TIMEOUT = 300.0

ENV_PREFIX = "SLUICE_"


class ConfigError(ValueError):
    """Invalid or inconsistent configuration."""

    pass


def parse_scopes(value: str) -> tuple[str, ...]:
    """Split a comma-separated scope list, dropping blanks."""
    return tuple(s.strip() for s in value.split(",") if s.strip())


@dataclass(frozen=True)
class ProxyConfig:
    url: str
    client_id: str = ""
    client_secret: str = ""
    callback_port: int = DEFAULT_CALLBACK_PORT
    scopes: tuple[str, ...] = DEFAULT_SCOPES
    storage_root: str = DEFAULT_STORAGE_ROOT
    insecure: bool = False
    auth_timeout: float | None = None
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT

    def __post_init__(self) -> None:
        parsed = urlparse(self.url)
        if parsed.scheme not in ("http", "https") or not parsed.hostname:
            raise ConfigError(f"Server URL must be an http(s) URL: {self.url!r}")
        if not 1 <= self.callback_port <= 65535:
            raise ConfigError(f"Invalid callback port: {self.callback_port}")
        if self.auth_timeout is not None and self.auth_timeout <= 0:
            raise ConfigError("Authorization timeout must be positive")
        if self.request_timeout <= 0:
            raise ConfigError("Request timeout must be positive")

    @property
    def target(self) -> str:
        return target_identity(self.url)

    @property
    def redirect_uri(self) -> str:
        return f"http://localhost:{self.callback_port}{CALLBACK_PATH}"

    @property
    def storage_path(self) -> Path:
        return Path(self.storage_root).expanduser().absolute() / f"{self.target}.json"

    @property
    def scope(self) -> str:
        return " ".join(self.scopes)

    @classmethod
    def from_sources(
        cls,
        url: str,
        environ: Mapping[str, str] | None = None,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        callback_port: int | None = None,
        scopes: Sequence[str] | None = None,
        storage_root: str | None = None,
        insecure: bool = False,
        auth_timeout: float | None = None,
    ) -> "ProxyConfig":
        """Merge explicit values over environment variables over defaults.

        Arguments left as None fall back to the matching SLUICE_* variable.
        """
        env = os.environ if environ is None else environ

        def from_env(name: str) -> str | None:
            value = env.get(ENV_PREFIX + name)
            return value if value else None

        if callback_port is None and (raw_port := from_env("AUTH_PORT")):
            try:
                callback_port = int(raw_port)
            except ValueError as e:
                raise ConfigError(f"Invalid {ENV_PREFIX}AUTH_PORT: {raw_port!r}") from e

        if scopes is None and (raw_scopes := from_env("SCOPES")):
            scopes = parse_scopes(raw_scopes)

        return cls(
            url=url,
            client_id=client_id or from_env("CLIENT_ID") or "",
            client_secret=client_secret or from_env("CLIENT_SECRET") or "",
            callback_port=(
                DEFAULT_CALLBACK_PORT if callback_port is None else callback_port
            ),
            scopes=DEFAULT_SCOPES if scopes is None else tuple(scopes),
            storage_root=storage_root or from_env("DATA_PATH") or DEFAULT_STORAGE_ROOT,
            insecure=insecure,
            auth_timeout=auth_timeout,
        )
