"""ACME protocol exceptions and problem document mapping."""

import json
from collections.abc import Mapping
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

if TYPE_CHECKING:
    from acmeflow.models import Authorization, Challenge, Order, Problem

PROBLEM_CONTENT_TYPE = "application/problem+json"
ACME_ERROR_PREFIX = "urn:ietf:params:acme:error:"


def parse_retry_after(value: str | None, now: datetime | None = None) -> int | None:
    """Parse a Retry-After header (delta-seconds or HTTP-date).

    Args:
        value: Retry-After header value.
        now: Reference time for HTTP-dates (defaults to the current time).

    Returns:
        Seconds to wait, or None if absent or not parseable.
    """
    if not value:
        return None
    value = value.strip()
    if value.isdigit():
        return int(value)
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return max(0, int((dt - (now or datetime.now(UTC))).total_seconds()))


class AcmeError(Exception):
    """Base class of every error raised by acmeflow."""


class TransportError(AcmeError):
    """The request did not produce a usable ACME response.

    Covers network, DNS and TLS failures as well as error responses whose
    body is not a problem document. Always safe for the caller to retry.
    """

    def __init__(self, detail: str, status_code: int | None = None, body: str | None = None):
        self.detail = detail
        self.status_code = status_code
        self.body = body
        message = detail if status_code is None else f"HTTP {status_code}: {detail}"
        super().__init__(message)


class DirectoryUnavailable(AcmeError):
    """The directory document could not be fetched or parsed."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"ACME directory {url} unavailable: {reason}")


class CryptoError(AcmeError):
    """Key generation, loading or signing failed. Never retried."""


class NoUsableChallenge(AcmeError):
    """None of the offered challenge types is acceptable to the caller."""

    def __init__(self, domain: str, offered: list[str], preferred: list[str]):
        self.domain = domain
        self.offered = offered
        self.preferred = preferred
        super().__init__(
            f"No usable challenge for {domain}: offered {offered}, accepted {preferred}"
        )


class Timeout(AcmeError, TimeoutError):
    """A local polling deadline elapsed. Server-side state is unchanged."""

    def __init__(self, what: str, timeout: float, last_status: str | None = None):
        self.what = what
        self.timeout = timeout
        self.last_status = last_status
        message = f"Timed out after {timeout:g}s waiting for {what}"
        if last_status is not None:
            message = f"{message} (last status: {last_status})"
        super().__init__(message)


class ProblemResponse(AcmeError):
    """The server rejected a request with a problem document.

    Represents errors returned by the ACME server in the standard problem
    document format (RFC 7807). Not retried automatically, except for
    ``badNonce``.
    """

    def __init__(
        self,
        type: str,
        detail: str,
        status_code: int,
        subproblems: list["Problem"] | None = None,
        retry_after: int | None = None,
    ):
        self.type = type
        self.detail = detail
        self.status_code = status_code
        self.subproblems = subproblems or []
        self.retry_after = retry_after
        super().__init__(f"{type}: {detail}")

    @classmethod
    def from_response(
        cls,
        data: dict[str, Any],
        status_code: int,
        headers: Mapping[str, str] | None = None,
    ) -> "ProblemResponse":
        """Create a ProblemResponse from a parsed problem document.

        Routes to the subclass registered for the problem type.

        Args:
            data: Parsed JSON error response.
            status_code: HTTP status code.
            headers: Response headers (for Retry-After extraction).

        Returns:
            ProblemResponse instance (or appropriate subclass).
        """
        from acmeflow.models import Problem

        retry_after = parse_retry_after(headers.get("Retry-After")) if headers else None
        problem = Problem.model_validate(data)

        error_class = _PROBLEM_TYPES.get(problem.type, cls)
        return error_class(
            type=problem.type,
            detail=problem.detail or problem.title or "Unknown error",
            status_code=status_code,
            subproblems=problem.subproblems,
            retry_after=retry_after,
        )

    def get_retry_seconds(self, default: int = 3600) -> int:
        """Get retry delay, falling back to default."""
        return self.retry_after if self.retry_after is not None else default

    def identifiers(self) -> list[str]:
        """Identifiers named by the subproblems, in order."""
        return [p.identifier.value for p in self.subproblems if p.identifier is not None]


class BadNonceError(ProblemResponse):
    """Bad nonce error (urn:ietf:params:acme:error:badNonce)."""


class AccountDoesNotExistError(ProblemResponse):
    """No account for this key (urn:ietf:params:acme:error:accountDoesNotExist)."""


class RateLimitError(ProblemResponse):
    """Rate limit exceeded (urn:ietf:params:acme:error:rateLimited)."""

    @property
    def rate_limit_type(self) -> str:
        """Parse the Let's Encrypt rate limit kind from the detail message."""
        detail = self.detail.lower()
        if "exact set" in detail:
            return "duplicate_certificate"
        elif "too many certificates" in detail:
            return "certificates_per_domain"
        elif "too many new orders" in detail:
            return "orders_per_account"
        elif "failed authorizations" in detail:
            return "failed_authorizations"
        return "unknown"


class DnsValidationError(ProblemResponse):
    """DNS validation failed (urn:ietf:params:acme:error:dns)."""


class CAAError(ProblemResponse):
    """CAA record forbids issuance (urn:ietf:params:acme:error:caa)."""


class ServerInternalError(ProblemResponse):
    """ACME server internal error (urn:ietf:params:acme:error:serverInternal)."""


class UserActionRequiredError(ProblemResponse):
    """Terms changed or similar (urn:ietf:params:acme:error:userActionRequired)."""


_PROBLEM_TYPES: dict[str, type[ProblemResponse]] = {
    ACME_ERROR_PREFIX + "badNonce": BadNonceError,
    ACME_ERROR_PREFIX + "accountDoesNotExist": AccountDoesNotExistError,
    ACME_ERROR_PREFIX + "rateLimited": RateLimitError,
    ACME_ERROR_PREFIX + "dns": DnsValidationError,
    ACME_ERROR_PREFIX + "caa": CAAError,
    ACME_ERROR_PREFIX + "serverInternal": ServerInternalError,
    ACME_ERROR_PREFIX + "userActionRequired": UserActionRequiredError,
}


def error_from_response(status_code: int, headers: Mapping[str, str], body: bytes) -> AcmeError:
    """Map a non-2xx response to an exception.

    Problem documents become ProblemResponse (or a subclass). Anything else,
    including JSON that does not validate as a problem, becomes a
    TransportError carrying the raw status and body.
    """
    content_type = headers.get("Content-Type", "").split(";")[0].strip().lower()
    text = body.decode("utf-8", errors="replace")

    if content_type in (PROBLEM_CONTENT_TYPE, "application/json"):
        try:
            data = json.loads(body)
        except ValueError:
            data = None
        if isinstance(data, dict):
            try:
                return ProblemResponse.from_response(data, status_code, headers)
            except ValidationError:
                pass

    return TransportError("Unexpected error response", status_code=status_code, body=text)


class IssuanceFailed(AcmeError):
    """The order reached ``invalid``.

    The whole order is reported, never a subset of its identifiers; retrying
    with fewer identifiers is the caller's call.
    """

    def __init__(self, order: "Order"):
        self.order = order
        self.problem = order.error
        detail = str(order.error) if order.error else "no problem document"
        super().__init__(f"Order {order.url or '<unknown>'} is invalid: {detail}")


class ChallengeError(AcmeError):
    """A challenge reached ``invalid``."""

    def __init__(self, challenge: "Challenge", domain: str | None = None):
        self.challenge = challenge
        self.problem = challenge.error
        self.domain = domain
        target = f" for {domain}" if domain else ""
        detail = str(challenge.error) if challenge.error else "validation failed"
        super().__init__(f"Challenge {challenge.type}{target} is invalid: {detail}")


class AuthorizationError(AcmeError):
    """An authorization ended in a final state other than ``valid``."""

    def __init__(self, authorization: "Authorization"):
        self.authorization = authorization
        self.problem = next((c.error for c in authorization.challenges if c.error), None)
        super().__init__(
            f"Authorization for {authorization.identifier.value} is {authorization.status}"
        )
