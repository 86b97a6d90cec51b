"""Authorizations and challenges (RFC 8555 Sections 7.5 and 8)."""

from collections.abc import Sequence

from acmeflow._logging import get_logger, log_extra
from acmeflow._polling import Deadline, wait_for_next_poll
from acmeflow.account import account_auth
from acmeflow.challenges.dns01 import (
    compute_dns_txt_value,
    compute_key_authorization,
    dns_record_name,
)
from acmeflow.challenges.http01 import http_resource_path
from acmeflow.crypto import AccountKey, base64url_encode, sha256
from acmeflow.exceptions import (
    AuthorizationError,
    ChallengeError,
    NoUsableChallenge,
    parse_retry_after,
)
from acmeflow.models import (
    Account,
    Authorization,
    AuthorizationStatus,
    Challenge,
    ChallengeResponse,
    ChallengeStatus,
    ChallengeType,
    Order,
)
from acmeflow.session import AcmeSession

logger = get_logger(__name__)

DEFAULT_CHALLENGE_PREFERENCE = (ChallengeType.HTTP_01, ChallengeType.DNS_01)


def select_challenge(authorization: Authorization, preferred_types: Sequence[str]) -> Challenge:
    """Pick the challenge to answer for ``authorization``.

    ``preferred_types`` is walked in order and the first type the server
    offers wins.

    Raises:
        NoUsableChallenge: If no offered challenge has an accepted type.
    """
    offered = {challenge.type: challenge for challenge in reversed(authorization.challenges)}
    for challenge_type in preferred_types:
        if challenge_type in offered:
            return offered[challenge_type]
    raise NoUsableChallenge(
        authorization.domain,
        [challenge.type for challenge in authorization.challenges],
        [str(t) for t in preferred_types],
    )


def key_authorization(challenge: Challenge, key: AccountKey) -> str:
    """``token + "." + thumbprint`` for ``challenge`` under ``key``."""
    if not challenge.token:
        raise ValueError(f"{challenge.type} challenge {challenge.url} has no token")
    return compute_key_authorization(challenge.token, key.thumbprint)


def challenge_response(challenge: Challenge, key: AccountKey, domain: str) -> ChallengeResponse:
    """Work out what must be published for ``challenge`` to validate.

    - dns-01: TXT record ``_acme-challenge.<domain>`` with the digest value.
    - http-01: the key authorization, served at the well-known path.
    - tls-alpn-01: the acmeIdentifier digest (base64url), to embed in the
      certificate served for ``domain``.
    """
    keyauth = key_authorization(challenge, key)
    token = challenge.token or ""

    if challenge.type == ChallengeType.DNS_01:
        name, value = dns_record_name(domain), compute_dns_txt_value(keyauth)
    elif challenge.type == ChallengeType.HTTP_01:
        name, value = http_resource_path(token), keyauth
    elif challenge.type == ChallengeType.TLS_ALPN_01:
        name, value = domain, base64url_encode(sha256(keyauth))
    else:
        raise ValueError(f"Unsupported challenge type: {challenge.type}")

    return ChallengeResponse(
        type=challenge.type,
        domain=domain,
        token=token,
        key_authorization=keyauth,
        name=name,
        value=value,
    )


class AuthorizationHandler:
    """Fetches authorizations, answers challenges and watches them conclude.

    Args:
        session: The provider session requests are sent through.
    """

    def __init__(self, session: AcmeSession):
        self.session = session

    async def fetch(self, account: Account, url: str) -> Authorization:
        """Fetch one authorization by URL."""
        response = await self.session.post_as_get(url, account_auth(account))
        return response.resource(Authorization, url=url)

    async def fetch_all(self, account: Account, order: Order) -> list[Authorization]:
        """Fetch every authorization of ``order``, in order."""
        return [await self.fetch(account, url) for url in order.authorizations]

    async def notify_ready(self, account: Account, challenge: Challenge) -> Challenge:
        """Tell the server the challenge response is published.

        Sends ``{}`` (not POST-as-GET) to the challenge URL. Only call this
        once the response is reachable; the server starts validating right
        away and publication is not checked here.
        """
        response = await self.session.post(challenge.url, {}, account_auth(account))
        updated = response.resource(Challenge)
        logger.info(
            "Challenge response submitted",
            extra=log_extra(
                challenge_url=challenge.url, type=challenge.type, status=updated.status
            ),
        )
        return updated

    async def _poll_challenge(self, account: Account, url: str) -> tuple[Challenge, int | None]:
        response = await self.session.post_as_get(url, account_auth(account))
        challenge = response.resource(Challenge)
        return challenge, parse_retry_after(response.headers.get("Retry-After"))

    async def poll_until_final(
        self,
        account: Account,
        challenge: Challenge,
        interval: float | None = None,
        timeout: float | None = None,
        domain: str | None = None,
    ) -> ChallengeStatus:
        """Poll a challenge until it's valid or invalid.

        ``domain`` names the identifier in the error raised on failure.

        Raises:
            ChallengeError: If the challenge becomes ``invalid``; carries the
                challenge's problem document.
            Timeout: If the deadline passes first.
        """
        interval = interval if interval is not None else self.session.settings.poll_interval
        timeout = timeout if timeout is not None else self.session.settings.poll_timeout
        deadline = Deadline(timeout, self.session.clock)

        while True:
            current, retry_after = await self._poll_challenge(account, challenge.url)
            logger.debug(
                "Challenge polled",
                extra=log_extra(challenge_url=challenge.url, status=current.status),
            )
            if current.status == ChallengeStatus.VALID:
                return current.status
            if current.status == ChallengeStatus.INVALID:
                logger.warning(
                    "Challenge validation failed",
                    extra=log_extra(challenge_url=challenge.url, problem=str(current.error)),
                )
                raise ChallengeError(current, domain=domain)
            await wait_for_next_poll(
                self.session.sleep,
                deadline,
                interval,
                retry_after,
                f"challenge {challenge.url}",
                current.status,
            )

    async def await_authorization(
        self,
        account: Account,
        authorization: Authorization,
        interval: float | None = None,
        timeout: float | None = None,
    ) -> Authorization:
        """Poll an authorization until it leaves ``pending``.

        The server updates the authorization after its challenge concludes,
        so it may still read ``pending`` right after the challenge is valid.

        Raises:
            AuthorizationError: If it ends in any state other than ``valid``.
            Timeout: If the deadline passes first.
        """
        if not authorization.url:
            raise ValueError("Authorization has no URL to poll")

        interval = interval if interval is not None else self.session.settings.poll_interval
        timeout = timeout if timeout is not None else self.session.settings.poll_timeout
        deadline = Deadline(timeout, self.session.clock)
        auth = account_auth(account)

        while True:
            response = await self.session.post_as_get(authorization.url, auth)
            current = response.resource(Authorization, url=authorization.url)
            if current.status == AuthorizationStatus.VALID:
                logger.info(
                    "Authorization valid",
                    extra=log_extra(authz_url=current.url, identifier=current.domain),
                )
                return current
            if current.is_final:
                raise AuthorizationError(current)
            await wait_for_next_poll(
                self.session.sleep,
                deadline,
                interval,
                parse_retry_after(response.headers.get("Retry-After")),
                f"authorization for {current.domain}",
                current.status,
            )

    async def deactivate(self, account: Account, authorization: Authorization) -> Authorization:
        """Deactivate an authorization (RFC 8555 Section 7.5.2).

        Stops the authorization from being reused for new orders, e.g. when
        giving up control of a domain.
        """
        if not authorization.url:
            raise ValueError("Authorization has no URL")
        response = await self.session.post(
            authorization.url,
            {"status": AuthorizationStatus.DEACTIVATED.value},
            account_auth(account),
        )
        return response.resource(Authorization, url=authorization.url)
