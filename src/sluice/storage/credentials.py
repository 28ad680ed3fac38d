"""File-backed credential store, one JSON file per remote host.

The file holds the registered client identity and the current token:

    {"client_info": {"id": "...", "secret": "..."} | null,
     "token": {...} | null}

Every save rewrites the whole record after re-reading it under the write
lock, so saving one field never loses the other. A missing file means "no
credentials yet"; an unreadable one is an error and is left untouched.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from pathlib import Path
from urllib.parse import urlparse

from pydantic import BaseModel, ValidationError

from sluice.auth.models.registration import ClientInfo
from sluice.auth.models.tokens import Token
from sluice.storage.locks import ReadWriteLock

logger = logging.getLogger(__name__)


class CredentialStoreError(Exception):
    """Raised when the credential file cannot be read or written."""

    pass


class CorruptCredentialsError(CredentialStoreError):
    """Raised when the credential file exists but does not parse."""

    pass


class TokenNotFoundError(LookupError):
    """No token has been stored for this target yet."""

    pass


class StoredCredentials(BaseModel):
    """On-disk record for one target."""

    client_info: ClientInfo | None = None
    token: Token | None = None


_locks: dict[Path, ReadWriteLock] = {}
_locks_guard = threading.Lock()


def _lock_for(path: Path) -> ReadWriteLock:
    with _locks_guard:
        lock = _locks.get(path)
        if lock is None:
            lock = _locks[path] = ReadWriteLock()
        return lock


def target_identity(server_url: str) -> str:
    """Storage partition key for a remote server: its host name."""
    host = urlparse(server_url).hostname
    if not host:
        raise ValueError(f"Cannot derive a target identity from URL: {server_url!r}")
    return host


class CredentialStore:
    """Credentials for a single remote server.

    Store instances for the same file share one reader-writer lock, so
    read-modify-write cycles never interleave within the process.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path).expanduser().absolute()
        self._lock = _lock_for(self.path)

    @classmethod
    def for_target(
        cls, storage_root: str | Path, server_url: str
    ) -> CredentialStore:
        filename = f"{target_identity(server_url)}.json"
        return cls(Path(storage_root).expanduser() / filename)

    def load(self) -> StoredCredentials | None:
        """Read the whole record; None if the file does not exist yet."""
        with self._lock.read():
            return self._read()

    def get_token(self) -> Token:
        """Current token for the target.

        Raises:
            TokenNotFoundError: If no token has been saved
            CredentialStoreError: If the file cannot be read
        """
        data = self.load()
        if data is None or data.token is None:
            raise TokenNotFoundError(f"No token stored in {self.path}")
        return data.token

    def save_token(self, token: Token) -> None:
        self._update(token=token)
        logger.debug(f"Saved token to {self.path}")

    def get_client_info(self) -> ClientInfo | None:
        data = self.load()
        return data.client_info if data else None

    def save_client_info(self, client_info: ClientInfo) -> None:
        self._update(client_info=client_info)
        logger.debug(f"Saved client info for {client_info.id} to {self.path}")

    def _update(self, **fields: ClientInfo | Token) -> None:
        with self._lock.write():
            data = self._read() or StoredCredentials()
            self._write(data.model_copy(update=fields))

    def _read(self) -> StoredCredentials | None:
        try:
            raw = self.path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except UnicodeDecodeError as e:
            raise CorruptCredentialsError(
                f"Credentials file {self.path} is not valid UTF-8: {e}"
            ) from e
        except OSError as e:
            raise CredentialStoreError(
                f"Failed to read credentials from {self.path}: {e}"
            ) from e

        try:
            return StoredCredentials.model_validate_json(raw)
        except ValidationError as e:
            raise CorruptCredentialsError(
                f"Malformed credentials file {self.path}: {e}"
            ) from e

    def _write(self, data: StoredCredentials) -> None:
        """Atomically replace the file with an owner-only copy of ``data``."""
        payload = data.model_dump_json(indent=2)
        directory = self.path.parent

        try:
            directory.mkdir(mode=0o700, parents=True, exist_ok=True)
            # mkstemp creates the file with mode 0600
            fd, tmp_name = tempfile.mkstemp(
                dir=directory, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(payload)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise CredentialStoreError(
                f"Failed to write credentials to {self.path}: {e}"
            ) from e

    def __repr__(self) -> str:
        return f"CredentialStore(path={str(self.path)!r})"
