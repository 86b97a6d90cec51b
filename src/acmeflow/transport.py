"""HTTP transport boundary.

The protocol engine never opens sockets itself. It talks to a transport: an
async callable taking ``(method, url, headers, body)`` and returning an
:class:`HttpResponse`. :class:`HttpxTransport` is the default implementation;
tests and embedding applications may pass any callable with that signature.
"""

import json
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel

from acmeflow._logging import Timer, get_logger, log_extra
from acmeflow.config import AcmeSettings
from acmeflow.exceptions import TransportError
from acmeflow.models import parse_resource

logger = get_logger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


@dataclass(frozen=True)
class HttpResponse:
    """Status, headers and raw body of one HTTP exchange."""

    status: int
    headers: httpx.Headers = field(default_factory=httpx.Headers)
    body: bytes = b""

    def __post_init__(self) -> None:
        if not isinstance(self.headers, httpx.Headers):
            object.__setattr__(self, "headers", httpx.Headers(self.headers))

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def content_type(self) -> str:
        return self.headers.get("Content-Type", "").split(";")[0].strip().lower()

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        """Decode the body as JSON.

        Raises:
            TransportError: If the body is not valid JSON.
        """
        try:
            return json.loads(self.body)
        except (ValueError, UnicodeDecodeError) as e:
            raise TransportError(
                f"Malformed JSON in response: {e}", status_code=self.status, body=self.text
            ) from e

    def resource(self, model: type[ModelT], **extra: Any) -> ModelT:
        """Decode the body as an ACME resource of type ``model``.

        Raises:
            TransportError: If the body is not JSON or does not describe a
                ``model`` resource.
        """
        data = self.json()
        try:
            return parse_resource(model, data, **extra)
        except ValueError as e:
            raise TransportError(
                f"Unexpected {model.__name__} document: {e}",
                status_code=self.status,
                body=self.text,
            ) from e


Transport = Callable[[str, str, Mapping[str, str], bytes | None], Awaitable[HttpResponse]]


class HttpxTransport:
    """Transport backed by ``httpx.AsyncClient``.

    Args:
        settings: Supplies TLS verification, timeout and User-Agent.
        client: Optional pre-built client (its lifetime stays with the caller).
    """

    def __init__(
        self, settings: AcmeSettings | None = None, client: httpx.AsyncClient | None = None
    ):
        settings = settings or AcmeSettings()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            verify=settings.verify,
            timeout=settings.http_timeout,
            headers={"User-Agent": settings.user_agent},
        )

    async def __call__(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes | None = None,
    ) -> HttpResponse:
        with Timer() as t:
            try:
                response = await self._client.request(
                    method, url, headers=dict(headers), content=body
                )
            except httpx.HTTPError as e:
                logger.warning(
                    "HTTP request failed",
                    extra=log_extra(method=method, url=url, error=str(e)),
                )
                raise TransportError(f"{method} {url} failed: {e}") from e

        logger.debug(
            "HTTP request complete",
            extra=log_extra(
                method=method,
                url=url,
                status_code=response.status_code,
                elapsed_ms=t.elapsed_ms,
            ),
        )
        return HttpResponse(
            status=response.status_code,
            headers=response.headers,
            body=response.content,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
