"""High-level ACME client for certificate management."""

from collections.abc import Sequence

from cryptography import x509

from acmeflow._logging import domain_context, get_logger
from acmeflow.account import AccountManager, ExternalAccountBinding, account_auth
from acmeflow.authorization import (
    DEFAULT_CHALLENGE_PREFERENCE,
    AuthorizationHandler,
    challenge_response,
    select_challenge,
)
from acmeflow.challenges.base import ChallengePublisher
from acmeflow.config import AcmeSettings
from acmeflow.crypto import (
    AccountKey,
    PrivateKey,
    base64url_encode,
    create_csr,
    csr_to_der,
    generate_rsa_key,
    pem_to_der,
    private_key_to_pem,
)
from acmeflow.jws import ByKey
from acmeflow.models import (
    Account,
    Authorization,
    AuthorizationInfo,
    AuthorizationStatus,
    CertificateResult,
    Directory,
    Order,
    OrderStatus,
    RevocationReason,
)
from acmeflow.order import OrderEngine
from acmeflow.session import AcmeSession
from acmeflow.transport import Transport

logger = get_logger(__name__)


class AcmeClient:
    """ACME client for automated SSL/TLS certificate management.

    Ties the account manager, order engine and authorization handler of one
    session together and adds the end-to-end issuance flow. Each piece stays
    reachable (``accounts``, ``orders``, ``authorizations``) for callers that
    want to drive the state machine step by step.

    Args:
        directory_url: URL of the ACME directory endpoint.
        account_key: Account key, or a raw ``cryptography`` private key.
        publisher: Publishes challenge responses; required by
            obtain_certificate().
        settings: Polling, retry and HTTP settings.
        transport: Custom async transport (defaults to httpx).
    """

    def __init__(
        self,
        directory_url: str,
        account_key: AccountKey | PrivateKey,
        publisher: ChallengePublisher | None = None,
        settings: AcmeSettings | None = None,
        transport: Transport | None = None,
        session: AcmeSession | None = None,
    ):
        self.account_key = (
            account_key if isinstance(account_key, AccountKey) else AccountKey(account_key)
        )
        self.publisher = publisher
        self.session = session or AcmeSession(directory_url, transport, settings)
        self.accounts = AccountManager(self.session)
        self.orders = OrderEngine(self.session)
        self.authorizations = AuthorizationHandler(self.session)
        self._account: Account | None = None

    async def aclose(self) -> None:
        """Close the underlying session."""
        await self.session.aclose()

    async def __aenter__(self) -> "AcmeClient":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()

    async def directory(self) -> Directory:
        return await self.session.directory()

    @property
    def account(self) -> Account:
        """The registered account.

        Raises:
            ValueError: If no account has been registered yet.
        """
        if self._account is None:
            raise ValueError("Account not registered. Call register_account() first.")
        return self._account

    @property
    def account_url(self) -> str | None:
        return self._account.url if self._account else None

    async def register_account(
        self,
        email: str | None = None,
        contacts: list[str] | None = None,
        eab: ExternalAccountBinding | None = None,
    ) -> Account:
        """Register a new account or find the existing one for the key.

        Args:
            email: Contact email address (becomes a ``mailto:`` contact).
            contacts: Full contact URLs, used as given.
            eab: External account binding credentials.
        """
        contact_list = list(contacts or [])
        if email:
            contact_list.append(f"mailto:{email}")
        self._account = await self.accounts.register_or_recover(
            self.account_key, contact_list, eab=eab
        )
        return self._account

    async def rollover_key(self, new_key: AccountKey | PrivateKey) -> Account:
        """Roll over to a new account key.

        The client switches to ``new_key`` only after the server accepted it.
        """
        if not isinstance(new_key, AccountKey):
            new_key = AccountKey(new_key)
        self._account = await self.accounts.rotate_key(self.account, new_key)
        self.account_key = new_key
        return self._account

    async def deactivate_account(self) -> Account:
        """Deactivate the current account. Irreversible."""
        self._account = await self.accounts.deactivate(self.account)
        return self._account

    async def create_order(self, domains: list[str]) -> Order:
        return await self.orders.create(self.account, domains)

    async def fetch_authorizations(self, order: Order) -> list[Authorization]:
        return await self.authorizations.fetch_all(self.account, order)

    async def complete_authorization(
        self,
        authorization: Authorization,
        challenge_types: Sequence[str] = DEFAULT_CHALLENGE_PREFERENCE,
    ) -> Authorization:
        """Answer one challenge of ``authorization`` and wait for it to be valid.

        This method:
        1. Selects a challenge in ``challenge_types`` preference order
        2. Publishes the response through the publisher
        3. Notifies the server and polls the challenge, then the authorization
        4. Removes the published response, whatever the outcome

        Raises:
            ValueError: If the client has no publisher.
            NoUsableChallenge: If none of ``challenge_types`` is offered.
            ChallengeError: If validation fails.
        """
        if self.publisher is None:
            raise ValueError("A ChallengePublisher is required to complete challenges")

        challenge = select_challenge(authorization, challenge_types)
        response = challenge_response(challenge, self.account_key, authorization.domain)

        await self.publisher.publish(response)
        try:
            await self.authorizations.notify_ready(self.account, challenge)
            await self.authorizations.poll_until_final(
                self.account, challenge, domain=authorization.domain
            )
            return await self.authorizations.await_authorization(self.account, authorization)
        finally:
            try:
                await self.publisher.unpublish(response)
            except Exception:
                logger.warning(
                    "Failed to remove challenge response",
                    extra={"domain": response.domain, "record_name": response.name},
                    exc_info=True,
                )

    async def finalize_order(self, order: Order, csr: x509.CertificateSigningRequest) -> Order:
        return await self.orders.finalize(self.account, order, csr_to_der(csr))

    async def download_certificate(self, order: Order) -> str:
        return await self.orders.download(self.account, order)

    async def revoke_certificate(
        self,
        certificate_pem: str,
        reason: RevocationReason | int | None = None,
        certificate_key: PrivateKey | None = None,
    ) -> None:
        """Revoke a certificate (RFC 8555 Section 7.6).

        Args:
            certificate_pem: The PEM-encoded certificate to revoke.
            reason: Optional revocation reason code (RFC 5280 Section 5.3.1).
            certificate_key: Sign with the certificate's own key instead of
                the account key, e.g. after losing the account.

        Raises:
            ValueError: If the certificate PEM cannot be parsed.
        """
        der_bytes = pem_to_der(certificate_pem)
        payload: dict[str, str | int] = {"certificate": base64url_encode(der_bytes)}
        if reason is not None:
            payload["reason"] = int(reason)

        auth = (
            ByKey(AccountKey(certificate_key))
            if certificate_key is not None
            else account_auth(self.account)
        )
        directory = await self.session.directory()
        await self.session.post(directory.revoke_cert, payload, auth)
        logger.info("Certificate revoked", extra={"reason": payload.get("reason")})

    async def obtain_certificate(
        self,
        domains: list[str],
        csr: x509.CertificateSigningRequest | None = None,
        challenge_types: Sequence[str] = DEFAULT_CHALLENGE_PREFERENCE,
    ) -> CertificateResult:
        """Obtain a certificate for the given domains.

        This is the main high-level method that:
        1. Creates an order
        2. Completes every authorization that is not already valid
        3. Waits for the order to be ready and finalizes it with a CSR
        4. Waits for issuance and downloads the certificate

        Args:
            domains: List of domain names for the certificate.
            csr: Optional CSR. If not provided, a key and CSR are generated.
            challenge_types: Accepted challenge types, most preferred first.

        Returns:
            CertificateResult with certificate_pem, private_key_pem and expires_at.

        Raises:
            IssuanceFailed: If the order becomes invalid. The order is never
                retried with a subset of ``domains``.
        """
        with domain_context(domains):
            private_key_pem: str | None = None
            if csr is None:
                cert_key = generate_rsa_key(2048)
                csr = create_csr(cert_key, domains)
                private_key_pem = private_key_to_pem(cert_key)

            order = await self.create_order(domains)

            authorizations = await self.fetch_authorizations(order)
            completed: list[Authorization] = []
            for authz in authorizations:
                if authz.status != AuthorizationStatus.VALID:
                    authz = await self.complete_authorization(authz, challenge_types)
                completed.append(authz)

            order = await self.orders.await_ready(self.account, order)
            if order.status == OrderStatus.READY:
                order = await self.finalize_order(order, csr)

            await self.orders.await_valid(self.account, order)
            order = await self.orders.poll(self.account, order)
            certificate_pem = await self.download_certificate(order)

            cert = x509.load_pem_x509_certificate(certificate_pem.encode())
            logger.info(
                "Certificate issued",
                extra={"expires_at": cert.not_valid_after_utc.isoformat()},
            )

            return CertificateResult(
                certificate_pem=certificate_pem,
                private_key_pem=private_key_pem,
                expires_at=cert.not_valid_after_utc,
                domains=domains,
                authorizations=[
                    AuthorizationInfo(url=a.url, domain=a.domain, expires_at=a.expires)
                    for a in completed
                    if a.url and a.expires
                ],
            )
