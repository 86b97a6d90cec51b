"""Pytest fixtures for the acmeflow test suite."""

import logging
import logging.handlers
from collections.abc import AsyncGenerator, Generator

import pytest
import pytest_asyncio
import respx
from fake_acme import DIRECTORY_URL, FakeAcmeServer, FakeClock

from acmeflow.account import AccountManager
from acmeflow.crypto import AccountKey
from acmeflow.models import Account
from acmeflow.session import AcmeSession


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_acme() -> Generator[FakeAcmeServer]:
    """Fake ACME server; all httpx traffic to acme.test is routed to it."""
    with respx.mock(assert_all_called=False) as router:
        yield FakeAcmeServer(router)


@pytest_asyncio.fixture
async def session(fake_acme: FakeAcmeServer, fake_clock: FakeClock) -> AsyncGenerator[AcmeSession]:
    """Session talking to the fake server, with a fake clock."""
    session = AcmeSession(DIRECTORY_URL, sleep=fake_clock.sleep, clock=fake_clock)
    yield session
    await session.aclose()


@pytest.fixture(scope="session")
def account_key() -> AccountKey:
    return AccountKey.generate("ES256")


@pytest.fixture(scope="session")
def rsa_account_key() -> AccountKey:
    return AccountKey.generate("RS256")


@pytest.fixture
def fresh_key() -> AccountKey:
    return AccountKey.generate("ES256")


# =============================================================================
# Log capture
# =============================================================================


class LogCapture:
    """Helper class to capture and inspect log records."""

    def __init__(self, handler: logging.handlers.MemoryHandler) -> None:
        self._handler = handler

    @property
    def records(self) -> list[logging.LogRecord]:
        """Get all captured log records."""
        return self._handler.buffer

    def get_records(
        self, level: int | None = None, name: str | None = None
    ) -> list[logging.LogRecord]:
        """Get log records filtered by level and/or logger name prefix."""
        records = self.records
        if level is not None:
            records = [r for r in records if r.levelno == level]
        if name is not None:
            records = [r for r in records if r.name.startswith(name)]
        return records

    def get_messages(self, level: int | None = None, name: str | None = None) -> list[str]:
        """Get log messages filtered by level and/or logger name prefix."""
        return [r.getMessage() for r in self.get_records(level, name)]

    def clear(self) -> None:
        """Clear all captured log records."""
        self._handler.buffer.clear()


@pytest.fixture
def log_capture() -> Generator[LogCapture]:
    """Capture logs from the acmeflow library during a test.

    Usage:
        def test_something(log_capture):
            # do something that logs
            assert "Order created" in log_capture.get_messages(logging.INFO)
    """
    handler = logging.handlers.MemoryHandler(capacity=1000)
    handler.setLevel(logging.DEBUG)

    acmeflow_logger = logging.getLogger("acmeflow")
    original_level = acmeflow_logger.level
    acmeflow_logger.setLevel(logging.DEBUG)
    acmeflow_logger.addHandler(handler)

    try:
        yield LogCapture(handler)
    finally:
        acmeflow_logger.removeHandler(handler)
        acmeflow_logger.setLevel(original_level)
        handler.close()


@pytest_asyncio.fixture
async def account(session: AcmeSession, account_key: AccountKey) -> Account:
    """An account registered with the fake server under ``account_key``."""
    return await AccountManager(session).register_or_recover(account_key)
