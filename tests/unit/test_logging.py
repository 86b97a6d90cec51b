"""Unit tests for logging functionality."""

import asyncio
import logging
import time

import pytest

from acmeflow._logging import (
    Timer,
    domain_context,
    get_domain_extra,
    get_logger,
    log_extra,
    reset_domains,
    set_domains,
)


class TestGetLogger:
    """Tests for the get_logger function."""

    def test_logger_hierarchy(self) -> None:
        """Module loggers sit under the acmeflow namespace."""
        child = get_logger("acmeflow.session")
        assert child.name == "acmeflow.session"
        assert child.parent is logging.getLogger("acmeflow")


class TestTimer:
    """Tests for the Timer context manager."""

    def test_measures_elapsed_time(self) -> None:
        with Timer() as t:
            time.sleep(0.01)

        assert 9 <= t.elapsed_ms < 500

    def test_elapsed_starts_at_zero(self) -> None:
        assert Timer().elapsed_ms == 0


class TestNullHandler:
    """Tests for NullHandler setup."""

    def test_root_logger_has_null_handler(self) -> None:
        root = logging.getLogger("acmeflow")
        assert any(isinstance(h, logging.NullHandler) for h in root.handlers)

    def test_library_silent_by_default(self, capsys: pytest.CaptureFixture[str]) -> None:
        get_logger("acmeflow.test").info("This should not appear")

        captured = capsys.readouterr()
        assert captured.out == ""
        assert captured.err == ""


class TestLogCapture:
    """Tests for the log_capture fixture."""

    def test_captures_levels(self, log_capture) -> None:
        logger = get_logger("acmeflow.test")
        logger.debug("Debug message")
        logger.warning("Warning message")

        assert log_capture.get_messages(logging.DEBUG) == ["Debug message"]
        assert log_capture.get_messages(logging.WARNING) == ["Warning message"]

    def test_filter_by_logger_name(self, log_capture) -> None:
        get_logger("acmeflow.order").info("Order message")
        get_logger("acmeflow.account").info("Account message")

        assert log_capture.get_messages(name="acmeflow.order") == ["Order message"]

    def test_clear_removes_records(self, log_capture) -> None:
        get_logger("acmeflow.test").info("Message")
        log_capture.clear()
        assert log_capture.records == []


class TestDomainContext:
    """Tests for the domain context variable."""

    def test_empty_without_context(self) -> None:
        assert get_domain_extra() == {}

    def test_single_domain(self) -> None:
        token = set_domains(["example.com"])
        try:
            assert get_domain_extra() == {"domain": "example.com"}
        finally:
            reset_domains(token)

    def test_multiple_domains(self) -> None:
        token = set_domains(["example.com", "www.example.com"])
        try:
            assert get_domain_extra() == {"domains": ["example.com", "www.example.com"]}
        finally:
            reset_domains(token)

    def test_set_domains_none(self) -> None:
        token = set_domains(None)
        try:
            assert get_domain_extra() == {}
        finally:
            reset_domains(token)

    def test_context_manager_nests(self) -> None:
        with domain_context(["outer.com"]):
            with domain_context(["inner.com"]):
                assert get_domain_extra() == {"domain": "inner.com"}
            assert get_domain_extra() == {"domain": "outer.com"}
        assert get_domain_extra() == {}

    def test_context_manager_resets_on_error(self) -> None:
        with pytest.raises(RuntimeError):
            with domain_context(["example.com"]):
                raise RuntimeError("boom")
        assert get_domain_extra() == {}

    def test_log_extra_merges_context(self, log_capture) -> None:
        logger = get_logger("acmeflow.test")
        with domain_context(["merge.example.com"]):
            logger.info("Test message", extra=log_extra(url="https://example.com"))

        [record] = log_capture.get_records(logging.INFO)
        assert record.domain == "merge.example.com"
        assert record.url == "https://example.com"

    @pytest.mark.asyncio
    async def test_context_is_per_task(self) -> None:
        """Concurrent issuances report their own domains."""

        async def report(domain: str) -> dict:
            with domain_context([domain]):
                await asyncio.sleep(0)
                return get_domain_extra()

        results = await asyncio.gather(report("a.example"), report("b.example"))

        assert results == [{"domain": "a.example"}, {"domain": "b.example"}]
