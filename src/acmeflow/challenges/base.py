"""Challenge publication boundary."""

from abc import ABC, abstractmethod

from acmeflow.models import ChallengeResponse


class ChallengePublisher(ABC):
    """Publishes challenge responses where the CA will look for them.

    Implementations create the DNS TXT record, serve the HTTP file or the
    TLS-ALPN certificate. ``publish`` must only return once the response is
    actually reachable: the server is told to validate right afterwards.
    """

    @abstractmethod
    async def publish(self, response: ChallengeResponse) -> None:
        """Make ``response`` visible to the validation server.

        Args:
            response: Where to publish (``name``) and what (``value``).
        """
        ...

    @abstractmethod
    async def unpublish(self, response: ChallengeResponse) -> None:
        """Remove whatever publish() created for ``response``."""
        ...
