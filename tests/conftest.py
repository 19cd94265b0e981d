"""
Shared pytest fixtures and configuration for opguard tests.

This module provides:
- Process-wide state cleanup (default cache store, settings cache, structlog)
- A controllable monotonic clock for time-based wrappers

Usage:
    Fixtures are auto-discovered by pytest; request them as arguments.

    def test_expiry(fake_clock):
        @cached(expiry=1.0, clock=fake_clock)
        def f(): ...
"""

import logging
from pathlib import Path

import pytest
import structlog

from opguard.core import logging as opguard_logging
from opguard.core.settings import get_settings
from opguard.execution.cache import get_default_store


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Mark tests without explicit markers as unit tests."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)
        if "composition" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# State Cleanup Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def clean_state(monkeypatch):
    """Reset process-wide state before and after each test."""
    for var in (
        "OPGUARD_LOG_LEVEL",
        "OPGUARD_LOG_FORMAT",
        "OPGUARD_RETRY_BACKOFF",
        "OPGUARD_RETRY_STRATEGY",
        "OPGUARD_STATE_SCOPE",
    ):
        monkeypatch.delenv(var, raising=False)
    get_settings.cache_clear()
    get_default_store().clear()

    yield

    get_settings.cache_clear()
    get_default_store().clear()
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    opguard_logging._configured = False
    root = logging.getLogger()
    for handler in list(root.handlers):
        if type(handler) is logging.StreamHandler:
            root.removeHandler(handler)
    root.setLevel(logging.WARNING)
    logging.getLogger("opguard").setLevel(logging.NOTSET)


# =============================================================================
# Clock
# =============================================================================


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_clock() -> FakeClock:
    """A clock starting at t=1000.0 that only moves via advance()."""
    return FakeClock()
