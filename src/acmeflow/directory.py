"""ACME directory discovery (RFC 8555 Section 7.1.1)."""

import asyncio

from pydantic import ValidationError

from acmeflow._logging import get_logger
from acmeflow.exceptions import DirectoryUnavailable, TransportError
from acmeflow.models import Directory
from acmeflow.transport import Transport

logger = get_logger(__name__)

LETS_ENCRYPT_DIRECTORY = "https://acme-v02.api.letsencrypt.org/directory"
LETS_ENCRYPT_STAGING_DIRECTORY = "https://acme-staging-v02.api.letsencrypt.org/directory"


class DirectoryResolver:
    """Fetches a provider's directory once and caches it.

    Args:
        url: The provider's directory URL.
        transport: Transport used for the GET request.
    """

    def __init__(self, url: str, transport: Transport):
        self.url = url
        self._transport = transport
        self._directory: Directory | None = None
        self._lock = asyncio.Lock()

    @property
    def cached(self) -> Directory | None:
        return self._directory

    def invalidate(self) -> None:
        """Forget the cached directory; the next resolve() refetches it."""
        self._directory = None

    async def resolve(self, refresh: bool = False) -> Directory:
        """Return the directory, fetching it on first use or when ``refresh`` is set.

        Raises:
            DirectoryUnavailable: On network errors, error statuses or a
                malformed document.
        """
        async with self._lock:
            if self._directory is None or refresh:
                self._directory = await self._fetch()
            return self._directory

    async def _fetch(self) -> Directory:
        try:
            response = await self._transport("GET", self.url, {"Accept": "application/json"}, None)
        except TransportError as e:
            raise DirectoryUnavailable(self.url, str(e)) from e

        if not response.ok:
            raise DirectoryUnavailable(self.url, f"HTTP {response.status}")

        try:
            directory = Directory.model_validate(response.json())
        except (TransportError, ValidationError) as e:
            raise DirectoryUnavailable(self.url, f"malformed directory document: {e}") from e

        logger.info(
            "Fetched ACME directory",
            extra={
                "url": self.url,
                "external_account_required": directory.external_account_required,
            },
        )
        return directory
