"""Order lifecycle (RFC 8555 Section 7.4).

``pending`` orders become ``ready`` once every authorization is valid,
``ready`` orders are finalized with a CSR and move through ``processing`` to
``valid`` (certificate available) or ``invalid``. The server drives every
transition; the engine only observes them by polling.
"""

from datetime import datetime
from typing import Any

from acmeflow._logging import get_logger, log_extra
from acmeflow._polling import Deadline, wait_for_next_poll
from acmeflow.account import account_auth
from acmeflow.crypto import base64url_encode
from acmeflow.exceptions import IssuanceFailed, TransportError, parse_retry_after
from acmeflow.models import Account, Identifier, Order, OrderStatus
from acmeflow.session import PEM_CHAIN_CONTENT_TYPE, AcmeSession
from acmeflow.transport import HttpResponse

logger = get_logger(__name__)


def _timestamp(value: datetime) -> str:
    return value.isoformat().replace("+00:00", "Z")


class OrderEngine:
    """Creates, polls, finalizes and downloads certificate orders.

    Args:
        session: The provider session requests are sent through.
    """

    def __init__(self, session: AcmeSession):
        self.session = session

    def _order_from(self, response: HttpResponse, url: str | None) -> Order:
        return response.resource(Order, url=url)

    async def create(
        self,
        account: Account,
        identifiers: list[str],
        not_before: datetime | None = None,
        not_after: datetime | None = None,
    ) -> Order:
        """Create a new certificate order.

        The returned order is ``pending``, or already ``ready`` when the
        server reused valid authorizations from an earlier order.

        Args:
            account: The account placing the order.
            identifiers: DNS names for the certificate.
            not_before: Optional requested validity start.
            not_after: Optional requested validity end.

        Raises:
            ValueError: If no identifiers are given.
        """
        if not identifiers:
            raise ValueError("At least one identifier is required")

        auth = account_auth(account)
        directory = await self.session.directory()

        payload: dict[str, Any] = {
            "identifiers": [
                Identifier(value=name).model_dump(mode="json") for name in identifiers
            ]
        }
        if not_before is not None:
            payload["notBefore"] = _timestamp(not_before)
        if not_after is not None:
            payload["notAfter"] = _timestamp(not_after)

        response = await self.session.post(directory.new_order, payload, auth)
        order_url = response.headers.get("Location")
        if not order_url:
            raise TransportError(
                "Order response has no Location header", status_code=response.status
            )

        order = self._order_from(response, order_url)
        logger.info(
            "Order created",
            extra=log_extra(order_url=order.url, status=order.status, identifiers=identifiers),
        )
        return order

    async def _poll(self, account: Account, order: Order) -> tuple[Order, int | None]:
        if not order.url:
            raise ValueError("Order has no URL to poll")
        response = await self.session.post_as_get(order.url, account_auth(account))
        refreshed = self._order_from(response, order.url)
        logger.debug(
            "Order polled",
            extra=log_extra(order_url=order.url, status=refreshed.status),
        )
        return refreshed, parse_retry_after(response.headers.get("Retry-After"))

    async def poll(self, account: Account, order: Order) -> Order:
        """Fetch the current state of ``order`` from the server.

        Polling a ``valid`` or ``invalid`` order returns the same status again;
        terminal states never change.
        """
        refreshed, _ = await self._poll(account, order)
        return refreshed

    async def finalize(self, account: Account, order: Order, csr_der: bytes) -> Order:
        """Finalize an order by submitting the CSR.

        Args:
            account: The account that owns the order.
            order: A ``ready`` order.
            csr_der: DER-encoded Certificate Signing Request.

        Returns:
            The order as returned by the finalize endpoint (normally
            ``processing`` or already ``valid``).

        Raises:
            ValueError: If the order is not ``ready``.
        """
        if order.status != OrderStatus.READY:
            raise ValueError(
                f"Order {order.url} is {order.status}, only ready orders can be finalized"
            )

        response = await self.session.post(
            order.finalize, {"csr": base64url_encode(csr_der)}, account_auth(account)
        )
        finalized = self._order_from(response, order.url or response.headers.get("Location"))
        logger.info(
            "Order finalized",
            extra=log_extra(order_url=finalized.url, status=finalized.status),
        )
        return finalized

    async def _await_status(
        self,
        account: Account,
        order: Order,
        targets: frozenset[OrderStatus],
        what: str,
        interval: float | None,
        timeout: float | None,
    ) -> Order:
        interval = interval if interval is not None else self.session.settings.poll_interval
        timeout = timeout if timeout is not None else self.session.settings.poll_timeout
        deadline = Deadline(timeout, self.session.clock)

        while True:
            order, retry_after = await self._poll(account, order)
            if order.status in targets:
                return order
            if order.status == OrderStatus.INVALID:
                logger.warning(
                    "Order is invalid",
                    extra=log_extra(order_url=order.url, problem=str(order.error)),
                )
                raise IssuanceFailed(order)
            await wait_for_next_poll(
                self.session.sleep, deadline, interval, retry_after, what, order.status
            )

    async def await_ready(
        self,
        account: Account,
        order: Order,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> Order:
        """Poll until every authorization is confirmed and the order is ``ready``.

        An order that already went past ``ready`` (``processing``/``valid``)
        is returned as is.

        Raises:
            IssuanceFailed: If the order becomes ``invalid``.
            Timeout: If the deadline passes first.
        """
        return await self._await_status(
            account,
            order,
            frozenset({OrderStatus.READY, OrderStatus.PROCESSING, OrderStatus.VALID}),
            f"order {order.url} to become ready",
            interval,
            timeout,
        )

    async def await_valid(
        self,
        account: Account,
        order: Order,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> str:
        """Poll until the order is ``valid`` and return its certificate URL.

        ``processing`` means keep polling, never success.

        Raises:
            IssuanceFailed: If the order becomes ``invalid``.
            Timeout: If the deadline passes first.
        """
        order = await self._await_status(
            account,
            order,
            frozenset({OrderStatus.VALID}),
            f"order {order.url} to become valid",
            interval,
            timeout,
        )
        if not order.certificate:
            raise TransportError(f"Valid order {order.url} has no certificate URL")
        logger.info(
            "Order valid",
            extra=log_extra(order_url=order.url, certificate_url=order.certificate),
        )
        return order.certificate

    async def download(self, account: Account, order: Order) -> str:
        """Download the certificate chain of a ``valid`` order as PEM.

        Raises:
            ValueError: If the order is not valid or has no certificate URL.
        """
        if order.status != OrderStatus.VALID or not order.certificate:
            raise ValueError(f"Order {order.url} has no certificate to download ({order.status})")

        response = await self.session.post_as_get(
            order.certificate, account_auth(account), accept=PEM_CHAIN_CONTENT_TYPE
        )
        chain = response.text
        if "-----BEGIN CERTIFICATE-----" not in chain:
            raise TransportError(
                "Certificate download did not return a PEM chain",
                status_code=response.status,
                body=chain,
            )
        return chain
