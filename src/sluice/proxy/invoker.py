"""Retry-once wrapper around remote operations that may need authorization."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

from sluice.auth.flow import AuthorizationFlow
from sluice.auth.models.errors import AuthorizationRequiredError
from sluice.storage.credentials import CredentialStore

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


class AuthRetryInvoker:
    """Runs a remote operation, authorizing and retrying once on demand.

    If the operation raises AuthorizationRequiredError, the interactive flow
    runs against the handler carried by the error, the new token is saved,
    and the operation is attempted exactly one more time. Whatever the
    second attempt raises propagates, including another authorization
    error. Any other error propagates immediately.

    Concurrent callers that hit an authorization failure share one flow at
    a time; a caller arriving while a flow is running waits for it and then
    reuses its token if one was obtained in the meantime.
    """

    def __init__(self, flow: AuthorizationFlow, store: CredentialStore):
        self.flow = flow
        self.store = store
        self._flow_lock = asyncio.Lock()
        self._generation = 0

    async def call(
        self,
        operation: Callable[P, Awaitable[T]],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> T:
        generation = self._generation
        try:
            return await operation(*args, **kwargs)
        except AuthorizationRequiredError as e:
            await self._authorize(e, generation)

        return await operation(*args, **kwargs)

    async def _authorize(self, error: AuthorizationRequiredError, seen: int) -> None:
        async with self._flow_lock:
            if self._generation != seen:
                logger.debug("Token refreshed by a concurrent authorization")
                return

            token = await self.flow.authorize(error.handler)
            self.store.save_token(token)
            self._generation += 1
