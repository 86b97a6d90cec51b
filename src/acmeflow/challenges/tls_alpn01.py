"""TLS-ALPN-01 challenge computations (RFC 8737)."""

from datetime import UTC, datetime, timedelta

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.x509.oid import NameOID, ObjectIdentifier

from acmeflow.crypto import PrivateKey, generate_ecdsa_key, private_key_to_pem, sha256

ALPN_PROTOCOL = "acme-tls/1"
ACME_IDENTIFIER_OID = ObjectIdentifier("1.3.6.1.5.5.7.1.31")


def acme_identifier_value(key_authorization: str) -> bytes:
    """DER value of the acmeIdentifier extension.

    An OCTET STRING wrapping the SHA-256 digest of the key authorization.
    """
    digest = sha256(key_authorization)
    return bytes([0x04, len(digest)]) + digest


def build_validation_certificate(
    domain: str,
    key_authorization: str,
    key: PrivateKey | None = None,
    lifetime: timedelta = timedelta(days=7),
) -> tuple[str, str]:
    """Build the self-signed certificate served for ``domain``.

    Must be presented on port 443 to connections negotiating ALPN
    ``acme-tls/1`` with SNI ``domain``.

    Returns:
        Tuple of (certificate PEM, private key PEM).
    """
    key = key or generate_ecdsa_key("P-256")
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)])
    now = datetime.now(UTC)

    cert = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + lifetime)
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(domain)]), critical=False)
        .add_extension(
            x509.UnrecognizedExtension(
                ACME_IDENTIFIER_OID, acme_identifier_value(key_authorization)
            ),
            critical=True,
        )
        .sign(key, hashes.SHA256())
    )
    return cert.public_bytes(serialization.Encoding.PEM).decode("ascii"), private_key_to_pem(key)
