"""acmeflow - asyncio ACME (RFC 8555) client library."""

__version__ = "0.1.0"

from acmeflow.account import AccountManager, ExternalAccountBinding  # noqa: E402
from acmeflow.authorization import (  # noqa: E402
    AuthorizationHandler,
    challenge_response,
    select_challenge,
)
from acmeflow.client import AcmeClient  # noqa: E402
from acmeflow.config import AcmeSettings  # noqa: E402
from acmeflow.crypto import AccountKey  # noqa: E402
from acmeflow.directory import (  # noqa: E402
    LETS_ENCRYPT_DIRECTORY,
    LETS_ENCRYPT_STAGING_DIRECTORY,
    DirectoryResolver,
)
from acmeflow.order import OrderEngine  # noqa: E402
from acmeflow.session import AcmeSession  # noqa: E402

__all__ = [
    "LETS_ENCRYPT_DIRECTORY",
    "LETS_ENCRYPT_STAGING_DIRECTORY",
    "AccountKey",
    "AccountManager",
    "AcmeClient",
    "AcmeSession",
    "AcmeSettings",
    "AuthorizationHandler",
    "DirectoryResolver",
    "ExternalAccountBinding",
    "OrderEngine",
    "challenge_response",
    "select_challenge",
]
