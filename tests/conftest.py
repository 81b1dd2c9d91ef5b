"""
Shared pytest configuration.

This file ensures the project root is on sys.path so that
`import integration_metrics` works consistently in all tests, and provides
the clock / Redis / database fixtures most metrics tests share.
"""

import sys
from pathlib import Path

import pytest

# Ensure project root is importable for test modules.
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from integration_metrics.services.integration_metrics_service import IntegrationMetricsService  # noqa: E402
from integration_metrics.settings import settings  # noqa: E402
from tests.utils import FrozenClock, InMemoryRedis, install_inmemory_db  # noqa: E402


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def redis(clock: FrozenClock) -> InMemoryRedis:
    return InMemoryRedis(clock=clock)


@pytest.fixture
def session_factory(tmp_path: Path):
    return install_inmemory_db(tmp_path / "metrics.db")


@pytest.fixture
def test_settings():
    return settings.model_copy(
        update={
            "metrics_queue_workers": 2,
            "metrics_queue_maxsize": 100,
            "metrics_hot_write_timeout_ms": 250,
            "metrics_cold_write_timeout_ms": 2000,
        }
    )


@pytest.fixture
def service(redis, session_factory, test_settings, clock) -> IntegrationMetricsService:
    return IntegrationMetricsService(redis, session_factory, settings=test_settings, clock=clock)
