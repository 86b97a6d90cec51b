"""Replay-nonce bookkeeping (RFC 8555 Section 7.2)."""

import asyncio
from collections.abc import Awaitable, Callable, Mapping

from acmeflow._logging import get_logger

logger = get_logger(__name__)

REPLAY_NONCE_HEADER = "Replay-Nonce"


class NonceCache:
    """Holds at most one unused nonce issued by the server.

    A held nonce is handed out once; after that the cache is empty until a
    response supplies a replacement. Signers that find the cache empty fetch
    their own nonce from the server, so two concurrent requests never share
    one.

    Args:
        fetch: Coroutine function returning a fresh nonce from ``newNonce``.
    """

    def __init__(self, fetch: Callable[[], Awaitable[str]]):
        self._fetch = fetch
        self._nonce: str | None = None
        self._lock = asyncio.Lock()

    @property
    def current(self) -> str | None:
        """The held nonce, without consuming it."""
        return self._nonce

    async def get_nonce(self) -> str:
        """Consume the held nonce, fetching a fresh one if none is held."""
        async with self._lock:
            nonce, self._nonce = self._nonce, None
        if nonce is not None:
            return nonce
        nonce = await self._fetch()
        logger.debug("Fetched fresh nonce")
        return nonce

    def store(self, nonce: str) -> None:
        """Replace the held nonce."""
        self._nonce = nonce

    def update_from(self, headers: Mapping[str, str]) -> bool:
        """Store the ``Replay-Nonce`` of a response, if it carries one.

        Returns:
            True if a nonce was stored.
        """
        nonce = headers.get(REPLAY_NONCE_HEADER)
        if not nonce:
            return False
        self.store(nonce)
        return True

    def clear(self) -> None:
        self._nonce = None
