"""Pydantic models for ACME protocol resources."""

from datetime import UTC, datetime
from enum import IntEnum, StrEnum
from typing import Any

from pydantic import BaseModel, Field

from acmeflow.crypto import AccountKey

# =============================================================================
# ACME Protocol Enums (RFC 8555)
# =============================================================================


class RevocationReason(IntEnum):
    """Certificate revocation reasons (RFC 5280 Section 5.3.1)."""

    UNSPECIFIED = 0
    KEY_COMPROMISE = 1
    CA_COMPROMISE = 2
    AFFILIATION_CHANGED = 3
    SUPERSEDED = 4
    CESSATION_OF_OPERATION = 5
    CERTIFICATE_HOLD = 6
    REMOVE_FROM_CRL = 8
    PRIVILEGE_WITHDRAWN = 9
    AA_COMPROMISE = 10


class ChallengeStatus(StrEnum):
    """Challenge statuses (RFC 8555 Section 7.1.6)."""

    PENDING = "pending"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class AuthorizationStatus(StrEnum):
    """Authorization statuses (RFC 8555 Section 7.1.6)."""

    PENDING = "pending"
    VALID = "valid"
    INVALID = "invalid"
    DEACTIVATED = "deactivated"
    EXPIRED = "expired"
    REVOKED = "revoked"


class OrderStatus(StrEnum):
    """Order statuses (RFC 8555 Section 7.1.6)."""

    PENDING = "pending"
    READY = "ready"
    PROCESSING = "processing"
    VALID = "valid"
    INVALID = "invalid"


class AccountStatus(StrEnum):
    """Account statuses (RFC 8555 Section 7.1.6)."""

    VALID = "valid"
    DEACTIVATED = "deactivated"
    REVOKED = "revoked"


class ChallengeType(StrEnum):
    """Challenge types (RFC 8555 Section 8, RFC 8737)."""

    HTTP_01 = "http-01"
    DNS_01 = "dns-01"
    TLS_ALPN_01 = "tls-alpn-01"


class IdentifierType(StrEnum):
    """Identifier types (RFC 8555 Section 9.7.7)."""

    DNS = "dns"


FINAL_ORDER_STATUSES = frozenset({OrderStatus.VALID, OrderStatus.INVALID})
FINAL_CHALLENGE_STATUSES = frozenset({ChallengeStatus.VALID, ChallengeStatus.INVALID})

# =============================================================================
# Pydantic Models
# =============================================================================


class Identifier(BaseModel):
    """ACME identifier (RFC 8555 Section 7.1.3)."""

    type: IdentifierType = IdentifierType.DNS
    value: str


class Problem(BaseModel):
    """Problem document (RFC 7807, RFC 8555 Section 6.7)."""

    type: str = "about:blank"
    title: str | None = None
    detail: str | None = None
    status: int | None = None
    identifier: Identifier | None = None
    subproblems: list["Problem"] = Field(default_factory=list)

    def __str__(self) -> str:
        text = f"{self.type}: {self.detail or self.title or 'no detail'}"
        if self.identifier is not None:
            text = f"{text} ({self.identifier.value})"
        return text


class DirectoryMeta(BaseModel):
    """Optional directory metadata (RFC 8555 Section 7.1.1)."""

    terms_of_service: str | None = Field(default=None, alias="termsOfService")
    website: str | None = None
    caa_identities: list[str] = Field(default_factory=list, alias="caaIdentities")
    external_account_required: bool = Field(default=False, alias="externalAccountRequired")

    model_config = {"populate_by_name": True, "extra": "allow", "frozen": True}


class Directory(BaseModel):
    """ACME directory resource (RFC 8555 Section 7.1.1)."""

    new_nonce: str = Field(alias="newNonce")
    new_account: str = Field(alias="newAccount")
    new_order: str = Field(alias="newOrder")
    revoke_cert: str = Field(alias="revokeCert")
    key_change: str = Field(alias="keyChange")
    new_authz: str | None = Field(default=None, alias="newAuthz")
    renewal_info: str | None = Field(default=None, alias="renewalInfo")
    meta: DirectoryMeta = Field(default_factory=DirectoryMeta)

    model_config = {"populate_by_name": True, "frozen": True}

    @property
    def terms_of_service(self) -> str | None:
        return self.meta.terms_of_service

    @property
    def external_account_required(self) -> bool:
        return self.meta.external_account_required


class Account(BaseModel):
    """ACME account resource (RFC 8555 Section 7.1.2).

    ``url`` is the key-ID assigned by the server and ``key`` the account key
    that signs requests for it. Neither is part of the server's JSON.
    """

    status: AccountStatus
    contact: list[str] = Field(default_factory=list)
    orders: str | None = None
    terms_of_service_agreed: bool | None = Field(default=None, alias="termsOfServiceAgreed")
    url: str | None = None
    created: bool = False
    key: AccountKey | None = Field(default=None, exclude=True, repr=False)

    model_config = {"populate_by_name": True, "arbitrary_types_allowed": True}


class Challenge(BaseModel):
    """ACME challenge resource (RFC 8555 Section 7.5.1).

    ``type`` is kept as a plain string so challenge types this library does
    not know are parsed and simply never selected.
    """

    type: str
    url: str
    status: ChallengeStatus
    token: str | None = None
    validated: datetime | None = None
    error: Problem | None = None

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_CHALLENGE_STATUSES


class Authorization(BaseModel):
    """ACME authorization resource (RFC 8555 Section 7.1.4)."""

    status: AuthorizationStatus
    identifier: Identifier
    challenges: list[Challenge] = Field(default_factory=list)
    expires: datetime | None = None
    wildcard: bool = False
    url: str | None = None

    @property
    def domain(self) -> str:
        return self.identifier.value

    @property
    def is_final(self) -> bool:
        return self.status != AuthorizationStatus.PENDING


class Order(BaseModel):
    """ACME order resource (RFC 8555 Section 7.1.3)."""

    status: OrderStatus
    identifiers: list[Identifier]
    authorizations: list[str] = Field(default_factory=list)
    finalize: str
    expires: datetime | None = None
    not_before: datetime | None = Field(default=None, alias="notBefore")
    not_after: datetime | None = Field(default=None, alias="notAfter")
    certificate: str | None = None
    error: Problem | None = None
    url: str | None = None

    model_config = {"populate_by_name": True}

    @property
    def domains(self) -> list[str]:
        return [identifier.value for identifier in self.identifiers]

    @property
    def is_final(self) -> bool:
        return self.status in FINAL_ORDER_STATUSES


class ChallengeResponse(BaseModel):
    """What the caller must publish for a challenge to validate.

    ``name`` is where it goes: the TXT record name for dns-01, the URL path
    for http-01, the domain served with ALPN ``acme-tls/1`` for tls-alpn-01.
    """

    type: str
    domain: str
    token: str
    key_authorization: str
    name: str
    value: str


class AuthorizationInfo(BaseModel):
    """Authorization details for later deactivation."""

    url: str
    domain: str
    expires_at: datetime


class CertificateResult(BaseModel):
    """Result of certificate issuance."""

    certificate_pem: str
    private_key_pem: str | None
    expires_at: datetime
    domains: list[str]
    authorizations: list[AuthorizationInfo] = Field(default_factory=list)

    def valid_days_left(self, now: datetime | None = None) -> int:
        """Whole days until the certificate expires (negative once expired)."""
        now = now or datetime.now(UTC)
        return (self.expires_at - now).days


def parse_resource(model: type[BaseModel], data: Any, **extra: Any) -> Any:
    """Validate server JSON into ``model``, attaching local-only fields."""
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object for {model.__name__}, got {type(data).__name__}")
    return model.model_validate({**data, **extra})
