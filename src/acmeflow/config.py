"""Client configuration."""

from pydantic import BaseModel, Field

from acmeflow import __version__

DEFAULT_USER_AGENT = f"acmeflow/{__version__}"


class AcmeSettings(BaseModel):
    """Tunables shared by every component of a session.

    Polling methods accept ``interval``/``timeout`` arguments that override
    ``poll_interval``/``poll_timeout`` for a single call.
    """

    poll_interval: float = Field(default=2.0, gt=0)
    poll_timeout: float = Field(default=60.0, gt=0)
    bad_nonce_retries: int = Field(default=1, ge=0, le=5)
    http_timeout: float = Field(default=30.0, gt=0)
    # CA bundle path, False to disable verification, True for system defaults
    verify: str | bool = True
    user_agent: str = DEFAULT_USER_AGENT

    model_config = {"frozen": True}
