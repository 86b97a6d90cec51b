"""Unit tests for the exception taxonomy and problem mapping."""

from datetime import UTC, datetime

import httpx
import pytest

from acmeflow.exceptions import (
    AcmeError,
    AuthorizationError,
    BadNonceError,
    CAAError,
    ChallengeError,
    DirectoryUnavailable,
    DnsValidationError,
    IssuanceFailed,
    NoUsableChallenge,
    ProblemResponse,
    RateLimitError,
    ServerInternalError,
    Timeout,
    TransportError,
    UserActionRequiredError,
    error_from_response,
    parse_retry_after,
)
from acmeflow.models import Authorization, Challenge, Order

PROBLEM = "urn:ietf:params:acme:error:"


def _problem_headers(**extra: str) -> httpx.Headers:
    return httpx.Headers({"Content-Type": "application/problem+json", **extra})


class TestRetryAfterParsing:
    """Tests for Retry-After header parsing."""

    def test_seconds(self):
        assert parse_retry_after("120") == 120

    def test_http_date(self):
        now = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)
        assert parse_retry_after("Thu, 01 Jan 2026 12:01:30 GMT", now=now) == 90

    def test_http_date_in_the_past(self):
        now = datetime(2026, 1, 1, 12, 0, 0, tzinfo=UTC)
        assert parse_retry_after("Thu, 01 Jan 2026 11:00:00 GMT", now=now) == 0

    def test_none(self):
        assert parse_retry_after(None) is None
        assert parse_retry_after("") is None

    def test_invalid(self):
        assert parse_retry_after("not-a-date") is None


class TestProblemResponse:
    """Tests for ProblemResponse.from_response."""

    def test_from_response(self):
        error = ProblemResponse.from_response(
            {"type": PROBLEM + "malformed", "detail": "Request payload did not parse as JSON"},
            status_code=400,
        )

        assert type(error) is ProblemResponse
        assert error.type == PROBLEM + "malformed"
        assert error.detail == "Request payload did not parse as JSON"
        assert error.status_code == 400
        assert "malformed" in str(error)

    def test_with_subproblems(self):
        error = ProblemResponse.from_response(
            {
                "type": PROBLEM + "compound",
                "detail": "Multiple problems",
                "subproblems": [
                    {
                        "type": PROBLEM + "dns",
                        "detail": "DNS lookup failed",
                        "identifier": {"type": "dns", "value": "example.com"},
                    },
                    {"type": PROBLEM + "caa", "detail": "CAA forbids issuance"},
                ],
            },
            status_code=400,
        )

        assert len(error.subproblems) == 2
        assert error.identifiers() == ["example.com"]

    def test_retry_after_from_headers(self):
        error = ProblemResponse.from_response(
            {"type": PROBLEM + "rateLimited", "detail": "slow down"},
            status_code=429,
            headers=httpx.Headers({"Retry-After": "3600"}),
        )

        assert error.retry_after == 3600
        assert error.get_retry_seconds() == 3600

    def test_get_retry_seconds_default(self):
        error = ProblemResponse.from_response({"type": PROBLEM + "malformed"}, status_code=400)
        assert error.get_retry_seconds(default=60) == 60

    def test_title_used_when_detail_missing(self):
        error = ProblemResponse.from_response(
            {"type": PROBLEM + "malformed", "title": "Malformed request"}, status_code=400
        )
        assert error.detail == "Malformed request"

    @pytest.mark.parametrize(
        ("kind", "error_class"),
        [
            ("badNonce", BadNonceError),
            ("rateLimited", RateLimitError),
            ("dns", DnsValidationError),
            ("caa", CAAError),
            ("serverInternal", ServerInternalError),
            ("userActionRequired", UserActionRequiredError),
        ],
    )
    def test_routes_to_subclass(self, kind, error_class):
        error = ProblemResponse.from_response({"type": PROBLEM + kind}, status_code=400)

        assert isinstance(error, error_class)
        assert isinstance(error, ProblemResponse)
        assert isinstance(error, AcmeError)


class TestRateLimitError:
    """Tests for rate limit classification."""

    @pytest.mark.parametrize(
        ("detail", "kind"),
        [
            (
                "too many certificates (5) already issued for this exact set",
                "duplicate_certificate",
            ),
            ("too many certificates already issued for example.com", "certificates_per_domain"),
            ("too many new orders recently", "orders_per_account"),
            ("too many failed authorizations recently", "failed_authorizations"),
            ("something else", "unknown"),
        ],
    )
    def test_rate_limit_type(self, detail, kind):
        error = RateLimitError(PROBLEM + "rateLimited", detail, 429)
        assert error.rate_limit_type == kind


class TestErrorFromResponse:
    """Tests for mapping raw error responses."""

    def test_problem_json(self):
        error = error_from_response(
            403,
            _problem_headers(),
            b'{"type": "urn:ietf:params:acme:error:unauthorized", "detail": "nope"}',
        )

        assert isinstance(error, ProblemResponse)
        assert error.status_code == 403

    def test_problem_with_charset_parameter(self):
        error = error_from_response(
            400,
            httpx.Headers({"Content-Type": "application/problem+json; charset=utf-8"}),
            b'{"type": "urn:ietf:params:acme:error:badNonce"}',
        )
        assert isinstance(error, BadNonceError)

    def test_html_error_page(self):
        error = error_from_response(
            502, httpx.Headers({"Content-Type": "text/html"}), b"<h1>Bad Gateway</h1>"
        )

        assert isinstance(error, TransportError)
        assert error.status_code == 502
        assert error.body == "<h1>Bad Gateway</h1>"

    def test_json_that_is_not_an_object(self):
        error = error_from_response(500, _problem_headers(), b"[1, 2]")
        assert isinstance(error, TransportError)

    def test_truncated_json(self):
        error = error_from_response(500, _problem_headers(), b'{"type": ')
        assert isinstance(error, TransportError)

    def test_retry_after_is_carried(self):
        error = error_from_response(
            429,
            _problem_headers(**{"Retry-After": "30"}),
            b'{"type": "urn:ietf:params:acme:error:rateLimited", "detail": "x"}',
        )
        assert isinstance(error, RateLimitError)
        assert error.retry_after == 30


class TestLocalErrors:
    """Tests for errors raised without a server response."""

    def test_timeout_is_timeout_error(self):
        error = Timeout("order to become valid", 60, "processing")

        assert isinstance(error, TimeoutError)
        assert isinstance(error, AcmeError)
        assert "processing" in str(error)

    def test_no_usable_challenge(self):
        error = NoUsableChallenge("example.com", ["dns-01"], ["http-01"])
        assert "example.com" in str(error)

    def test_directory_unavailable(self):
        error = DirectoryUnavailable("https://x/dir", "HTTP 500")
        assert error.url == "https://x/dir"
        assert "HTTP 500" in str(error)


class TestResourceErrors:
    """Tests for errors that carry a resource."""

    def test_issuance_failed_carries_order_problem(self):
        order = Order.model_validate(
            {
                "status": "invalid",
                "identifiers": [{"type": "dns", "value": "example.com"}],
                "finalize": "https://x/order/1/finalize",
                "url": "https://x/order/1",
                "error": {"type": PROBLEM + "caa", "detail": "CAA forbids issuance"},
            }
        )

        error = IssuanceFailed(order)

        assert error.order is order
        assert error.problem is order.error
        assert "https://x/order/1" in str(error)

    def test_challenge_error(self):
        challenge = Challenge.model_validate(
            {
                "type": "http-01",
                "url": "https://x/chall/1",
                "status": "invalid",
                "error": {"type": PROBLEM + "connection", "detail": "refused"},
            }
        )

        error = ChallengeError(challenge, domain="example.com")

        assert error.problem.detail == "refused"
        assert "example.com" in str(error)

    def test_authorization_error_takes_challenge_problem(self):
        authz = Authorization.model_validate(
            {
                "status": "invalid",
                "identifier": {"type": "dns", "value": "example.com"},
                "challenges": [
                    {"type": "dns-01", "url": "https://x/chall/1", "status": "pending"},
                    {
                        "type": "http-01",
                        "url": "https://x/chall/2",
                        "status": "invalid",
                        "error": {"type": PROBLEM + "unauthorized", "detail": "bad keyauth"},
                    },
                ],
            }
        )

        error = AuthorizationError(authz)

        assert error.problem is not None
        assert error.problem.detail == "bad keyauth"
        assert "example.com is invalid" in str(error)
