"""Unit tests for authorizations and challenge selection."""

import pytest

from acmeflow.authorization import (
    AuthorizationHandler,
    challenge_response,
    key_authorization,
    select_challenge,
)
from acmeflow.crypto import AccountKey, base64url_encode, sha256
from acmeflow.exceptions import AuthorizationError, ChallengeError, NoUsableChallenge
from acmeflow.models import (
    Authorization,
    AuthorizationStatus,
    Challenge,
    ChallengeStatus,
    ChallengeType,
)
from acmeflow.order import OrderEngine


def make_authorization(*challenge_types: str, domain: str = "example.com") -> Authorization:
    return Authorization.model_validate(
        {
            "status": "pending",
            "identifier": {"type": "dns", "value": domain},
            "challenges": [
                {
                    "type": t,
                    "url": f"https://acme.test/chall/{i}",
                    "status": "pending",
                    "token": f"token-{i}",
                }
                for i, t in enumerate(challenge_types)
            ],
            "url": "https://acme.test/authz/1",
        }
    )


@pytest.fixture
def handler(session) -> AuthorizationHandler:
    return AuthorizationHandler(session)


class TestSelectChallenge:
    """Tests for select_challenge."""

    def test_first_preferred_type_offered_wins(self):
        authz = make_authorization("dns-01", "http-01")

        chosen = select_challenge(authz, ["tls-alpn-01", "http-01"])

        assert chosen.type == ChallengeType.HTTP_01

    def test_preference_order_not_server_order(self):
        authz = make_authorization("http-01", "dns-01")

        assert select_challenge(authz, ["dns-01", "http-01"]).type == "dns-01"

    def test_duplicate_types_pick_first_offered(self):
        authz = make_authorization("http-01", "http-01")

        assert select_challenge(authz, ["http-01"]).url == "https://acme.test/chall/0"

    def test_unknown_types_are_ignored(self):
        authz = make_authorization("vendor-99", "dns-01")

        assert select_challenge(authz, ["dns-01"]).type == "dns-01"

    def test_no_usable_challenge(self):
        authz = make_authorization("dns-01")

        with pytest.raises(NoUsableChallenge) as exc_info:
            select_challenge(authz, ["http-01", "tls-alpn-01"])

        assert exc_info.value.domain == "example.com"
        assert exc_info.value.offered == ["dns-01"]
        assert exc_info.value.preferred == ["http-01", "tls-alpn-01"]


class TestChallengeResponse:
    """Tests for key authorizations and published values."""

    def test_key_authorization_is_deterministic(self, account_key):
        challenge = make_authorization("http-01").challenges[0]

        first = key_authorization(challenge, account_key)
        second = key_authorization(challenge, account_key)

        assert first == second == f"token-0.{account_key.thumbprint}"

    def test_key_authorization_depends_on_key(self, account_key):
        challenge = make_authorization("http-01").challenges[0]

        assert key_authorization(challenge, account_key) != key_authorization(
            challenge, AccountKey.generate()
        )

    def test_missing_token(self, account_key):
        challenge = Challenge(type="http-01", url="https://acme.test/chall/0", status="pending")

        with pytest.raises(ValueError, match="no token"):
            key_authorization(challenge, account_key)

    def test_dns01_response(self, account_key):
        challenge = make_authorization("dns-01").challenges[0]

        response = challenge_response(challenge, account_key, "*.example.com")

        keyauth = f"token-0.{account_key.thumbprint}"
        assert response.name == "_acme-challenge.example.com"
        assert response.value == base64url_encode(sha256(keyauth))
        assert len(response.value) == 43
        assert response.key_authorization == keyauth

    def test_http01_response(self, account_key):
        challenge = make_authorization("http-01").challenges[0]

        response = challenge_response(challenge, account_key, "example.com")

        assert response.name == "/.well-known/acme-challenge/token-0"
        assert response.value == f"token-0.{account_key.thumbprint}"

    def test_tls_alpn01_response(self, account_key):
        challenge = make_authorization("tls-alpn-01").challenges[0]

        response = challenge_response(challenge, account_key, "example.com")

        assert response.name == "example.com"
        assert response.value == base64url_encode(sha256(response.key_authorization))

    def test_unsupported_type(self, account_key):
        challenge = make_authorization("vendor-99").challenges[0]

        with pytest.raises(ValueError, match="Unsupported challenge type"):
            challenge_response(challenge, account_key, "example.com")


async def _pending_authorization(session, account, handler):
    order = await OrderEngine(session).create(account, ["example.com"])
    [authz] = await handler.fetch_all(account, order)
    return authz


class TestAuthorizationHandler:
    """Tests for AuthorizationHandler against the fake server."""

    @pytest.mark.asyncio
    async def test_fetch_all(self, session, handler, account):
        authz = await _pending_authorization(session, account, handler)

        assert authz.status == AuthorizationStatus.PENDING
        assert authz.domain == "example.com"
        assert authz.url is not None
        assert {c.type for c in authz.challenges} == {"http-01", "dns-01", "tls-alpn-01"}

    @pytest.mark.asyncio
    async def test_notify_ready_sends_empty_object(self, session, handler, account, fake_acme):
        authz = await _pending_authorization(session, account, handler)
        challenge = select_challenge(authz, ["http-01"])

        updated = await handler.notify_ready(account, challenge)

        assert fake_acme.last_request["payload"] == {}
        assert fake_acme.last_request["jws"]["payload"] == "e30"
        assert updated.status == ChallengeStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_challenge_and_authorization_become_valid(self, session, handler, account):
        authz = await _pending_authorization(session, account, handler)
        challenge = select_challenge(authz, ["dns-01"])

        await handler.notify_ready(account, challenge)
        status = await handler.poll_until_final(account, challenge)
        final = await handler.await_authorization(account, authz)

        assert status == ChallengeStatus.VALID
        assert final.status == AuthorizationStatus.VALID

    @pytest.mark.asyncio
    async def test_invalid_challenge_carries_problem(self, session, handler, account, fake_acme):
        fake_acme.challenge_result = "invalid"
        authz = await _pending_authorization(session, account, handler)
        challenge = select_challenge(authz, ["http-01"])

        await handler.notify_ready(account, challenge)
        with pytest.raises(ChallengeError) as exc_info:
            await handler.poll_until_final(account, challenge)

        assert exc_info.value.problem is not None
        assert exc_info.value.problem.type.endswith(":incorrectResponse")

    @pytest.mark.asyncio
    async def test_invalid_challenge_names_domain(self, session, handler, account, fake_acme):
        fake_acme.challenge_result = "invalid"
        authz = await _pending_authorization(session, account, handler)
        challenge = select_challenge(authz, ["http-01"])

        await handler.notify_ready(account, challenge)
        with pytest.raises(ChallengeError, match=f"for {authz.domain} is invalid") as exc_info:
            await handler.poll_until_final(account, challenge, domain=authz.domain)

        assert exc_info.value.domain == authz.domain

    @pytest.mark.asyncio
    async def test_invalid_authorization(self, session, handler, account, fake_acme):
        fake_acme.challenge_result = "invalid"
        authz = await _pending_authorization(session, account, handler)
        challenge = select_challenge(authz, ["http-01"])
        await handler.notify_ready(account, challenge)
        with pytest.raises(ChallengeError):
            await handler.poll_until_final(account, challenge)

        with pytest.raises(AuthorizationError) as exc_info:
            await handler.await_authorization(account, authz)

        assert exc_info.value.authorization.status == AuthorizationStatus.INVALID
        assert exc_info.value.problem is not None

    @pytest.mark.asyncio
    async def test_unanswered_challenge_times_out(
        self, session, handler, account, fake_clock
    ):
        authz = await _pending_authorization(session, account, handler)
        challenge = select_challenge(authz, ["http-01"])

        with pytest.raises(TimeoutError):
            await handler.poll_until_final(account, challenge, interval=1, timeout=3)

        assert sum(fake_clock.sleeps) == 3

    @pytest.mark.asyncio
    async def test_deactivate(self, session, handler, account, fake_acme):
        authz = await _pending_authorization(session, account, handler)

        deactivated = await handler.deactivate(account, authz)

        assert deactivated.status == AuthorizationStatus.DEACTIVATED
        assert fake_acme.last_request["payload"] == {"status": "deactivated"}
