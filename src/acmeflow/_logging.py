"""Logging helpers for the acmeflow library."""

import logging
import time
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any

# Silent unless the embedding application configures logging
_root = logging.getLogger("acmeflow")
_root.addHandler(logging.NullHandler())

# Identifiers of the order being worked on by the current task
_current_domains: ContextVar[tuple[str, ...] | None] = ContextVar(
    "acmeflow_current_domains", default=None
)


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the acmeflow namespace.

    Args:
        name: The module name (typically __name__).

    Returns:
        A logger instance for the module.
    """
    return logging.getLogger(name)


def set_domains(domains: list[str] | None) -> Token[tuple[str, ...] | None]:
    """Set the identifiers reported in log records of the current task.

    Args:
        domains: Identifiers of the order being processed, or None to clear.

    Returns:
        Token to pass to reset_domains().
    """
    return _current_domains.set(tuple(domains) if domains is not None else None)


def reset_domains(token: Token[tuple[str, ...] | None]) -> None:
    """Restore the identifiers that were active before set_domains()."""
    _current_domains.reset(token)


@contextmanager
def domain_context(domains: list[str] | None) -> Iterator[None]:
    """Report ``domains`` in log records emitted inside the block."""
    token = set_domains(domains)
    try:
        yield
    finally:
        reset_domains(token)


def get_domain_extra() -> dict[str, Any]:
    """Get domain info for log extra fields.

    Returns:
        Dict with 'domain' (single) or 'domains' (multiple), or empty dict.
    """
    domains = _current_domains.get()
    if not domains:
        return {}
    if len(domains) == 1:
        return {"domain": domains[0]}
    return {"domains": list(domains)}


def log_extra(**fields: Any) -> dict[str, Any]:
    """Build an ``extra`` mapping from ``fields`` plus the domain context."""
    return {**get_domain_extra(), **fields}


class Timer:
    """Context manager measuring wall time of a block in milliseconds.

    Usage:
        with Timer() as t:
            response = await transport(...)
        logger.debug("done", extra={"elapsed_ms": t.elapsed_ms})
    """

    def __init__(self) -> None:
        self.elapsed_ms: float = 0
        self._start: float = 0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args: object) -> None:
        self.elapsed_ms = round((time.perf_counter() - self._start) * 1000, 3)
