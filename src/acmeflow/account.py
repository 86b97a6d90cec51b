"""ACME account management (RFC 8555 Section 7.3)."""

from typing import Any

from pydantic import BaseModel

from acmeflow._logging import get_logger
from acmeflow.crypto import AccountKey
from acmeflow.exceptions import TransportError
from acmeflow.jws import ByKey, ByKid, external_account_binding, key_change_inner
from acmeflow.models import Account, AccountStatus
from acmeflow.session import AcmeSession
from acmeflow.transport import HttpResponse

logger = get_logger(__name__)


class ExternalAccountBinding(BaseModel):
    """Credentials a CA issues out of band to bind a new ACME account.

    ``hmac_key`` is the base64url-encoded MAC key as handed out by the CA.
    """

    kid: str
    hmac_key: str


def account_auth(account: Account) -> ByKid:
    """The ``kid`` authentication mode for requests made as ``account``.

    Raises:
        ValueError: If the account has no URL or key attached.
    """
    if not account.url:
        raise ValueError("Account not registered. Call register_or_recover() first.")
    if account.key is None:
        raise ValueError("Account has no key attached")
    return ByKid(account.url, account.key)


class AccountManager:
    """Registers, looks up, updates, deactivates and re-keys accounts.

    Args:
        session: The provider session requests are sent through.
    """

    def __init__(self, session: AcmeSession):
        self.session = session

    def _account_from(
        self, response: HttpResponse, key: AccountKey, url: str | None = None
    ) -> Account:
        location = url or response.headers.get("Location")
        if not location:
            raise TransportError(
                "Account response has no Location header", status_code=response.status
            )
        return response.resource(
            Account,
            url=location,
            created=response.status == 201,
            key=key,
        )

    async def register_or_recover(
        self,
        key: AccountKey,
        contacts: list[str] | None = None,
        terms_of_service_agreed: bool = True,
        eab: ExternalAccountBinding | None = None,
    ) -> Account:
        """Register a new account or find the existing one for ``key``.

        Both outcomes return the same Account shape; ``created`` records
        whether the server answered 201 (new) or 200 (existing). Calling this
        again with the same key returns the same key-ID.

        Args:
            key: The account key.
            contacts: Contact URLs, e.g. ``["mailto:admin@example.com"]``.
            terms_of_service_agreed: Agree to the provider's terms.
            eab: External account binding, when the provider requires one.

        Returns:
            The Account resource.

        Raises:
            ValueError: If the provider requires external account binding and
                none was given.
        """
        directory = await self.session.directory()
        if directory.external_account_required and eab is None:
            raise ValueError(
                f"{self.session.directory_url} requires external account binding"
            )

        payload: dict[str, Any] = {"termsOfServiceAgreed": terms_of_service_agreed}
        if contacts:
            payload["contact"] = list(contacts)
        if eab is not None:
            payload["externalAccountBinding"] = external_account_binding(
                eab.kid, eab.hmac_key, key, directory.new_account
            )

        # New accounts use jwk, not kid
        response = await self.session.post(directory.new_account, payload, ByKey(key))
        account = self._account_from(response, key)

        logger.info(
            "Account registered" if account.created else "Existing account recovered",
            extra={"account_url": account.url, "status": account.status},
        )
        return account

    async def lookup(self, key: AccountKey) -> Account:
        """Find the existing account for ``key`` without creating one.

        Raises:
            AccountDoesNotExistError: If the server knows no such account.
        """
        directory = await self.session.directory()
        response = await self.session.post(
            directory.new_account, {"onlyReturnExisting": True}, ByKey(key)
        )
        return self._account_from(response, key)

    async def fetch(self, account: Account) -> Account:
        """Refresh an account's status and contacts from the server."""
        auth = account_auth(account)
        response = await self.session.post_as_get(auth.key_id, auth)
        return self._account_from(response, auth.key, url=auth.key_id)

    async def update(self, account: Account, contacts: list[str]) -> Account:
        """Replace the account's contact list."""
        auth = account_auth(account)
        response = await self.session.post(auth.key_id, {"contact": list(contacts)}, auth)
        return self._account_from(response, auth.key, url=auth.key_id)

    async def deactivate(self, account: Account) -> Account:
        """Deactivate the account (RFC 8555 Section 7.3.6).

        WARNING: This is irreversible. A deactivated account cannot be
        reactivated, and no new orders can be created.
        """
        auth = account_auth(account)
        response = await self.session.post(
            auth.key_id, {"status": AccountStatus.DEACTIVATED.value}, auth
        )
        deactivated = self._account_from(response, auth.key, url=auth.key_id)
        logger.info("Account deactivated", extra={"account_url": account.url})
        return deactivated

    async def rotate_key(self, account: Account, new_key: AccountKey) -> Account:
        """Roll over to a new account key (RFC 8555 Section 7.3.5).

        The inner JWS is signed by ``new_key``; the outer request is signed by
        the account's current key with its key-ID. The returned Account is
        bound to ``new_key``. The ``account`` passed in is never modified, so
        if the server rejects the change it is still the one to use.

        Raises:
            ValueError: If the account is not registered.
        """
        auth = account_auth(account)
        directory = await self.session.directory()

        inner = key_change_inner(auth.key_id, auth.key, new_key, directory.key_change)
        await self.session.post(directory.key_change, inner, auth)

        logger.info(
            "Account key rolled over",
            extra={"account_url": account.url, "thumbprint": new_key.thumbprint},
        )
        return account.model_copy(update={"key": new_key})
