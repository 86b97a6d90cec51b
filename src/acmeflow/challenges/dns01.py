"""DNS-01 challenge computations (RFC 8555 Section 8.4)."""

from acmeflow.crypto import base64url_encode, sha256

DNS01_PREFIX = "_acme-challenge"


def compute_key_authorization(token: str, thumbprint: str) -> str:
    """Compute the key authorization string.

    The key authorization is the token concatenated with the account
    key thumbprint, separated by a period.

    Args:
        token: The challenge token from the ACME server.
        thumbprint: The base64url-encoded SHA-256 thumbprint of the account key.

    Returns:
        The key authorization string (token.thumbprint).
    """
    return f"{token}.{thumbprint}"


def compute_dns_txt_value(key_authorization: str) -> str:
    """Compute the DNS TXT record value for DNS-01 challenge.

    The TXT record value is the base64url-encoded SHA-256 digest
    of the key authorization string, without padding (43 characters).
    """
    return base64url_encode(sha256(key_authorization))


def dns_record_name(domain: str) -> str:
    """Name of the TXT record validated for ``domain``.

    Wildcard identifiers are validated at the base domain.
    """
    domain = domain.rstrip(".")
    if domain.startswith("*."):
        domain = domain[2:]
    return f"{DNS01_PREFIX}.{domain}"
