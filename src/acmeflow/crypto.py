"""Cryptographic primitives for ACME protocol operations."""

import base64
import hashlib
import json
from typing import Any

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, hmac, serialization
from cryptography.hazmat.primitives.asymmetric import ec, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import decode_dss_signature
from cryptography.x509.oid import NameOID

from acmeflow.exceptions import CryptoError

# Type alias for private keys
PrivateKey = rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey

MIN_RSA_KEY_SIZE = 2048

# curve name -> (JWK crv, coordinate size in bytes, JWS alg, hash)
_CURVES: dict[str, tuple[str, int, str, hashes.HashAlgorithm]] = {
    "secp256r1": ("P-256", 32, "ES256", hashes.SHA256()),
    "secp384r1": ("P-384", 48, "ES384", hashes.SHA384()),
}


def base64url_encode(data: bytes) -> str:
    """Base64url encode without padding."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def base64url_decode(data: str) -> bytes:
    """Decode unpadded base64url."""
    return base64.urlsafe_b64decode(data + "=" * (-len(data) % 4))


def sha256(data: bytes | str) -> bytes:
    """SHA-256 digest of ``data`` (strings are UTF-8 encoded)."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    return hashlib.sha256(data).digest()


def json_bytes(obj: Any) -> bytes:
    """Compact JSON encoding used for JWS segments."""
    return json.dumps(obj, separators=(",", ":")).encode("utf-8")


def generate_rsa_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """Generate an RSA private key.

    Args:
        key_size: Key size in bits (2048 or larger).

    Returns:
        RSA private key.

    Raises:
        CryptoError: If the size is too small or generation fails.
    """
    if key_size < MIN_RSA_KEY_SIZE:
        raise CryptoError(f"RSA keys must be at least {MIN_RSA_KEY_SIZE} bits, got {key_size}")
    try:
        return rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    except (ValueError, UnsupportedAlgorithm) as e:
        raise CryptoError(f"RSA key generation failed: {e}") from e


def generate_ecdsa_key(curve: str = "P-256") -> ec.EllipticCurvePrivateKey:
    """Generate an ECDSA private key.

    Args:
        curve: Curve name ("P-256" or "P-384").

    Returns:
        ECDSA private key.

    Raises:
        CryptoError: If curve is not supported.
    """
    curves = {
        "P-256": ec.SECP256R1(),
        "P-384": ec.SECP384R1(),
    }
    if curve not in curves:
        raise CryptoError(f"Unsupported curve: {curve}. Supported: {list(curves.keys())}")

    return ec.generate_private_key(curves[curve])


def load_private_key_pem(pem_data: str | bytes, password: bytes | None = None) -> PrivateKey:
    """Load a private key from PEM-encoded data.

    Args:
        pem_data: PEM-encoded private key.
        password: Optional password for encrypted keys.

    Returns:
        RSA or ECDSA private key.

    Raises:
        CryptoError: If PEM data is invalid, the password is wrong or the
            key type is not usable for ACME.
    """
    if isinstance(pem_data, str):
        pem_data = pem_data.encode("utf-8")
    try:
        key = serialization.load_pem_private_key(pem_data, password=password)
    except TypeError as e:
        # Raised when an encrypted key is loaded without password
        raise CryptoError("Encrypted key requires a password") from e
    except (ValueError, UnsupportedAlgorithm) as e:
        raise CryptoError(f"Invalid private key PEM: {e}") from e

    if not isinstance(key, (rsa.RSAPrivateKey, ec.EllipticCurvePrivateKey)):
        raise CryptoError(f"Unsupported key type: {type(key).__name__}")

    return key


def private_key_to_pem(key: PrivateKey) -> str:
    """Serialize a private key as unencrypted PKCS#8 PEM."""
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def create_csr(key: PrivateKey, domains: list[str]) -> x509.CertificateSigningRequest:
    """Create a Certificate Signing Request (CSR).

    The first domain becomes the Common Name, all domains are listed in
    the subjectAltName extension.

    Args:
        key: Private key to sign the CSR.
        domains: List of domain names to include in the CSR.

    Returns:
        Certificate Signing Request.

    Raises:
        ValueError: If domains list is empty.
    """
    if not domains:
        raise ValueError("At least one domain is required")

    subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domains[0])])
    san = x509.SubjectAlternativeName([x509.DNSName(domain) for domain in domains])

    builder = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(subject)
        .add_extension(san, critical=False)
    )
    try:
        return builder.sign(key, hashes.SHA256())
    except (ValueError, TypeError) as e:
        raise CryptoError(f"CSR signing failed: {e}") from e


def csr_to_der(csr: x509.CertificateSigningRequest) -> bytes:
    """DER bytes of a CSR, as submitted at finalization."""
    return csr.public_bytes(serialization.Encoding.DER)


def pem_to_der(pem: str) -> bytes:
    """Convert a PEM-encoded certificate to DER format.

    Only the first certificate of a chain is converted.
    """
    cert = x509.load_pem_x509_certificate(pem.encode())
    return cert.public_bytes(serialization.Encoding.DER)


def _int_to_base64url(n: int, length: int) -> str:
    return base64url_encode(n.to_bytes(length, byteorder="big"))


def get_jwk(key: PrivateKey) -> dict[str, str]:
    """Get the JWK (JSON Web Key) of the public half of ``key``."""
    if isinstance(key, rsa.RSAPrivateKey):
        numbers = key.public_key().public_numbers()
        return {
            "kty": "RSA",
            "n": _int_to_base64url(numbers.n, (numbers.n.bit_length() + 7) // 8),
            "e": _int_to_base64url(numbers.e, (numbers.e.bit_length() + 7) // 8),
        }

    public_key = key.public_key()
    if public_key.curve.name not in _CURVES:
        raise CryptoError(f"Unsupported curve: {public_key.curve.name}")
    crv, coord_size, _, _ = _CURVES[public_key.curve.name]
    numbers = public_key.public_numbers()
    return {
        "kty": "EC",
        "crv": crv,
        "x": _int_to_base64url(numbers.x, coord_size),
        "y": _int_to_base64url(numbers.y, coord_size),
    }


def jwk_thumbprint(jwk: dict[str, str]) -> str:
    """Compute the RFC 7638 thumbprint of a public JWK.

    Only the required members take part, serialized with sorted keys and no
    whitespace.
    """
    if jwk["kty"] == "RSA":
        canonical = {"e": jwk["e"], "kty": "RSA", "n": jwk["n"]}
    else:
        canonical = {"crv": jwk["crv"], "kty": "EC", "x": jwk["x"], "y": jwk["y"]}

    encoded = json.dumps(canonical, sort_keys=True, separators=(",", ":")).encode("utf-8")
    return base64url_encode(sha256(encoded))


def key_thumbprint(key: PrivateKey) -> str:
    """Compute the JWK thumbprint of a key (RFC 7638)."""
    return jwk_thumbprint(get_jwk(key))


def hmac_sha256(secret: bytes, data: bytes) -> bytes:
    """HMAC-SHA256, used for external account binding (HS256)."""
    mac = hmac.HMAC(secret, hashes.SHA256())
    mac.update(data)
    return mac.finalize()


class AccountKey:
    """An ACME account key pair.

    Wraps an RSA (2048 bits or more) or EC P-256/P-384 private key and
    derives everything the protocol needs from it: the JWS algorithm, the
    public JWK and its thumbprint. The key is never written anywhere by this
    library; use ``to_pem()`` to persist it yourself.

    Args:
        private_key: A ``cryptography`` RSA or EC private key.

    Raises:
        CryptoError: If the key type, size or curve cannot be used.
    """

    def __init__(self, private_key: PrivateKey):
        if isinstance(private_key, rsa.RSAPrivateKey):
            if private_key.key_size < MIN_RSA_KEY_SIZE:
                raise CryptoError(
                    f"RSA account keys must be at least {MIN_RSA_KEY_SIZE} bits, "
                    f"got {private_key.key_size}"
                )
            self._alg = "RS256"
        elif isinstance(private_key, ec.EllipticCurvePrivateKey):
            curve_name = private_key.curve.name
            if curve_name not in _CURVES:
                raise CryptoError(f"Unsupported curve: {curve_name}")
            self._alg = _CURVES[curve_name][2]
        else:
            raise CryptoError(f"Unsupported key type: {type(private_key).__name__}")

        self.private_key = private_key
        self._jwk = get_jwk(private_key)
        self._thumbprint = jwk_thumbprint(self._jwk)

    @classmethod
    def generate(cls, algorithm: str = "ES256", rsa_key_size: int = 2048) -> "AccountKey":
        """Generate a new account key.

        Args:
            algorithm: "RS256", "ES256" or "ES384".
            rsa_key_size: Modulus size when ``algorithm`` is RS256.
        """
        if algorithm == "RS256":
            return cls(generate_rsa_key(rsa_key_size))
        if algorithm == "ES256":
            return cls(generate_ecdsa_key("P-256"))
        if algorithm == "ES384":
            return cls(generate_ecdsa_key("P-384"))
        raise CryptoError(f"Unsupported algorithm: {algorithm}")

    @classmethod
    def from_pem(cls, pem_data: str | bytes, password: bytes | None = None) -> "AccountKey":
        return cls(load_private_key_pem(pem_data, password))

    def to_pem(self) -> str:
        return private_key_to_pem(self.private_key)

    @property
    def alg(self) -> str:
        return self._alg

    @property
    def jwk(self) -> dict[str, str]:
        return dict(self._jwk)

    @property
    def thumbprint(self) -> str:
        return self._thumbprint

    def sign(self, data: bytes) -> bytes:
        """Sign ``data`` as required by the key's JWS algorithm.

        RSA uses PKCS#1 v1.5 with SHA-256; ECDSA signatures are converted
        from DER to the fixed-size ``r || s`` form JWS expects.

        Raises:
            CryptoError: If the signing operation fails.
        """
        key = self.private_key
        try:
            if isinstance(key, rsa.RSAPrivateKey):
                return key.sign(data, padding.PKCS1v15(), hashes.SHA256())

            _, coord_size, _, hash_alg = _CURVES[key.curve.name]
            r, s = decode_dss_signature(key.sign(data, ec.ECDSA(hash_alg)))
            return r.to_bytes(coord_size, byteorder="big") + s.to_bytes(
                coord_size, byteorder="big"
            )
        except (ValueError, TypeError, UnsupportedAlgorithm) as e:
            raise CryptoError(f"Signing with {self._alg} failed: {e}") from e

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, AccountKey):
            return NotImplemented
        return self._thumbprint == other._thumbprint

    def __hash__(self) -> int:
        return hash(self._thumbprint)

    def __repr__(self) -> str:
        return f"AccountKey(alg={self._alg!r}, thumbprint={self._thumbprint!r})"
