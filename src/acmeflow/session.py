"""Per-provider protocol session.

An :class:`AcmeSession` owns everything that is shared between the account,
order and authorization components of one provider: the transport, the
directory cache, the nonce cache and the signed-request loop. Nothing here is
process-global, so any number of sessions (accounts, CAs) can coexist.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

from acmeflow._logging import Timer, get_logger, log_extra
from acmeflow.config import AcmeSettings
from acmeflow.crypto import json_bytes
from acmeflow.directory import DirectoryResolver
from acmeflow.exceptions import BadNonceError, TransportError, error_from_response
from acmeflow.jws import POST_AS_GET, AuthMode, sign_request
from acmeflow.models import Directory
from acmeflow.nonce import REPLAY_NONCE_HEADER, NonceCache
from acmeflow.transport import HttpResponse, HttpxTransport, Transport

logger = get_logger(__name__)

JOSE_CONTENT_TYPE = "application/jose+json"
PEM_CHAIN_CONTENT_TYPE = "application/pem-certificate-chain"


class AcmeSession:
    """Shared protocol state for one ACME provider.

    Args:
        directory_url: URL of the provider's directory.
        transport: Async HTTP callable; an ``HttpxTransport`` is created
            (and closed with the session) when omitted.
        settings: Polling, retry and HTTP settings.
        sleep: Coroutine used for poll waits (injectable for tests).
        clock: Monotonic clock used for poll deadlines.
    """

    def __init__(
        self,
        directory_url: str,
        transport: Transport | None = None,
        settings: AcmeSettings | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.settings = settings or AcmeSettings()
        self._owned_transport = HttpxTransport(self.settings) if transport is None else None
        self.transport: Transport = transport or self._owned_transport
        self.sleep = sleep
        self.clock = clock
        self.directories = DirectoryResolver(directory_url, self.transport)
        self.nonces = NonceCache(self._fetch_nonce)

    @property
    def directory_url(self) -> str:
        return self.directories.url

    async def aclose(self) -> None:
        """Close the transport if the session created it."""
        if self._owned_transport is not None:
            await self._owned_transport.aclose()

    async def __aenter__(self) -> "AcmeSession":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def directory(self, refresh: bool = False) -> Directory:
        """Get the ACME directory (cached after first fetch)."""
        return await self.directories.resolve(refresh=refresh)

    async def _send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str] | None = None,
        body: bytes | None = None,
    ) -> HttpResponse:
        request_headers = {"User-Agent": self.settings.user_agent, **(headers or {})}
        return await self.transport(method, url, request_headers, body)

    async def _fetch_nonce(self) -> str:
        """HEAD newNonce and return its Replay-Nonce.

        A 404 means the cached directory is stale; it is refreshed once.
        """
        directory = await self.directory()
        response = await self._send("HEAD", directory.new_nonce)
        if response.status == 404:
            logger.warning(
                "newNonce endpoint not found, refreshing directory",
                extra={"url": directory.new_nonce},
            )
            directory = await self.directory(refresh=True)
            response = await self._send("HEAD", directory.new_nonce)

        if not response.ok:
            raise error_from_response(response.status, response.headers, response.body)

        nonce = response.headers.get(REPLAY_NONCE_HEADER)
        if not nonce:
            raise TransportError(
                "newNonce response has no Replay-Nonce header", status_code=response.status
            )
        return nonce

    async def post(
        self,
        url: str,
        payload: dict[str, Any] | str | None,
        auth: AuthMode,
        accept: str | None = None,
    ) -> HttpResponse:
        """Make a JWS-signed POST request to the ACME server.

        Every response, error or not, replaces the cached nonce before it is
        inspected. A ``badNonce`` rejection is retried with the replacement
        nonce up to ``settings.bad_nonce_retries`` times; every other error
        is raised.

        Args:
            url: The endpoint URL.
            payload: JSON payload, or None/"" for POST-as-GET.
            auth: ``ByKey`` or ``ByKid``.
            accept: Optional Accept header.

        Returns:
            The successful (2xx) response.

        Raises:
            ProblemResponse: The server rejected the request.
            TransportError: Network failure or non-problem error body.
        """
        headers = {"Content-Type": JOSE_CONTENT_TYPE}
        if accept:
            headers["Accept"] = accept

        retries = self.settings.bad_nonce_retries
        attempt = 0
        while True:
            nonce = await self.nonces.get_nonce()
            body = json_bytes(sign_request(payload, url, auth, nonce))

            with Timer() as t:
                response = await self._send("POST", url, headers, body)
            self.nonces.update_from(response.headers)

            logger.debug(
                "Signed request complete",
                extra=log_extra(
                    url=url,
                    status_code=response.status,
                    post_as_get=payload is None or payload == POST_AS_GET,
                    elapsed_ms=t.elapsed_ms,
                ),
            )

            if response.ok:
                return response

            error = error_from_response(response.status, response.headers, response.body)
            if isinstance(error, BadNonceError) and attempt < retries:
                attempt += 1
                logger.warning(
                    "Server rejected nonce, retrying",
                    extra=log_extra(url=url, attempt=attempt),
                )
                continue
            raise error

    async def post_as_get(
        self, url: str, auth: AuthMode, accept: str | None = None
    ) -> HttpResponse:
        """Fetch a resource with a signed POST-as-GET (empty payload)."""
        return await self.post(url, POST_AS_GET, auth, accept=accept)
