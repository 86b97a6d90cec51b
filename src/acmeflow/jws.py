"""JWS request construction (RFC 8555 Section 6.2, RFC 7515).

Every signed ACME request body is a JWS in flattened JSON serialization.
This module builds those envelopes; it performs no I/O, the nonce is an
argument.
"""

from dataclasses import dataclass
from typing import Any

from acmeflow.crypto import AccountKey, base64url_decode, base64url_encode, hmac_sha256, json_bytes

# Empty payload of a POST-as-GET request. Not the same thing as "{}".
POST_AS_GET = ""


@dataclass(frozen=True)
class ByKey:
    """Authenticate with the embedded public key (``jwk`` header).

    Used for account creation, the inner key-change JWS and revocation by
    certificate key.
    """

    key: AccountKey


@dataclass(frozen=True)
class ByKid:
    """Authenticate with the account URL (``kid`` header)."""

    key_id: str
    key: AccountKey


AuthMode = ByKey | ByKid


def encode_payload(payload: dict[str, Any] | str | None) -> str:
    """Encode a JWS payload segment.

    ``None`` and ``""`` are POST-as-GET and encode to the empty string.
    Anything else is serialized as compact JSON, so ``{}`` becomes ``e30``.
    """
    if payload is None or payload == POST_AS_GET:
        return ""
    return base64url_encode(json_bytes(payload))


def protected_header(auth: AuthMode, url: str, nonce: str | None) -> dict[str, Any]:
    """Build the protected header for ``auth`` targeting ``url``."""
    header: dict[str, Any] = {"alg": auth.key.alg, "url": url}
    if nonce is not None:
        header["nonce"] = nonce
    if isinstance(auth, ByKid):
        header["kid"] = auth.key_id
    else:
        header["jwk"] = auth.key.jwk
    return header


def sign_request(
    payload: dict[str, Any] | str | None,
    url: str,
    auth: AuthMode,
    nonce: str | None,
) -> dict[str, str]:
    """Sign ``payload`` for a POST to ``url``.

    Args:
        payload: JSON object, or None/"" for POST-as-GET.
        url: The exact request URL; the server compares it to the header.
        auth: ``ByKey`` or ``ByKid``.
        nonce: Replay nonce; only the inner key-change JWS omits it.

    Returns:
        Flattened JSON serialization: ``protected``, ``payload``, ``signature``.
    """
    protected_b64 = base64url_encode(json_bytes(protected_header(auth, url, nonce)))
    payload_b64 = encode_payload(payload)
    signature = auth.key.sign(f"{protected_b64}.{payload_b64}".encode("ascii"))
    return {
        "protected": protected_b64,
        "payload": payload_b64,
        "signature": base64url_encode(signature),
    }


def key_change_inner(
    account_url: str,
    old_key: AccountKey,
    new_key: AccountKey,
    url: str,
) -> dict[str, str]:
    """Build the inner JWS of a key rollover (RFC 8555 Section 7.3.5).

    Signed by the NEW key with its ``jwk`` in the header and no nonce. The
    payload names the account and the OLD key. The result becomes the payload
    of an outer request signed by the old key with ``kid``.
    """
    payload = {"account": account_url, "oldKey": old_key.jwk}
    return sign_request(payload, url, ByKey(new_key), nonce=None)


def external_account_binding(
    eab_kid: str,
    hmac_key: str,
    account_key: AccountKey,
    url: str,
) -> dict[str, str]:
    """Build an external account binding JWS (RFC 8555 Section 7.3.4).

    Args:
        eab_kid: Key identifier issued by the CA out of band.
        hmac_key: Base64url-encoded MAC key issued with it.
        account_key: The account key being bound; its JWK is the payload.
        url: The ``newAccount`` URL.
    """
    protected = {"alg": "HS256", "kid": eab_kid, "url": url}
    protected_b64 = base64url_encode(json_bytes(protected))
    payload_b64 = base64url_encode(json_bytes(account_key.jwk))
    mac = hmac_sha256(base64url_decode(hmac_key), f"{protected_b64}.{payload_b64}".encode("ascii"))
    return {
        "protected": protected_b64,
        "payload": payload_b64,
        "signature": base64url_encode(mac),
    }
