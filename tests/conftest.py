"""Pytest configuration and shared fixtures."""

import pytest

from pricescout.models.config import EngineConfig
from pricescout.storage.cache import InMemoryCache
from tests.fixtures.fakes import FakeClock, FakeMonotonic, RecordingSleeper


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_monotonic():
    return FakeMonotonic()


@pytest.fixture
def sleeper():
    return RecordingSleeper()


@pytest.fixture
def cache(fake_monotonic):
    return InMemoryCache(now=fake_monotonic)


@pytest.fixture
def engine_config():
    """Configuration with delays removed for fast tests."""
    return EngineConfig(
        environment="test",
        settle_delay=0.0,
        retry_base_delay=1.0,
        retry_jitter_ms=0,
        log_level="WARNING",
    )


@pytest.fixture
def fallback_config(engine_config):
    return engine_config.model_copy(update={"allow_synthetic_fallback": True})

