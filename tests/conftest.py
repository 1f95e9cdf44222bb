"""Test configuration and fixtures."""

import os

import fakeredis
import pytest
from fastapi.testclient import TestClient

# Set test environment variables BEFORE importing the app
os.environ["ENVIRONMENT"] = "test"
os.environ["STORE_PROVIDER"] = "memory"
os.environ.pop("REDIS_URL", None)
os.environ.pop("CRON_SECRET", None)
os.environ.pop("WRITE_STRATEGY", None)

from daily_tally.cache.fast_cache import FastCache
from daily_tally.config import get_settings
from daily_tally.main import create_app
from daily_tally.models import DynamicSettings
from daily_tally.services.aggregator import ReadAggregator
from daily_tally.store.memory import InMemoryBackingStore

TEST_TIMEZONE = "Europe/Istanbul"
CRON_SECRET = "test-cron-secret"


@pytest.fixture
def default_settings():
    """Settings partition defaults used across tests."""
    return DynamicSettings(dhikr_name="Test Tally", target=1000, reset_hour=22)


@pytest.fixture
def memory_store(default_settings):
    """Fresh in-memory backing store."""
    return InMemoryBackingStore(default_settings)


@pytest.fixture
def fake_redis_server():
    """Isolated fakeredis server; set ``connected = False`` to simulate an outage."""
    return fakeredis.FakeServer()


@pytest.fixture
def redis_client(fake_redis_server):
    """Async fakeredis client returning str values, like the production client."""
    return fakeredis.FakeAsyncRedis(server=fake_redis_server, decode_responses=True)


@pytest.fixture
def fast_cache(redis_client):
    """Fast cache over fakeredis."""
    return FastCache(redis_client, key_prefix="test")


@pytest.fixture
def aggregator(memory_store, default_settings):
    """Read aggregator over the in-memory store."""
    return ReadAggregator(memory_store, TEST_TIMEZONE, default_settings)


@pytest.fixture
def cron_secret():
    """Configure the bearer secret for replay and seed triggers."""
    os.environ["CRON_SECRET"] = CRON_SECRET
    get_settings.cache_clear()
    yield CRON_SECRET
    os.environ.pop("CRON_SECRET", None)
    get_settings.cache_clear()


@pytest.fixture
def direct_client(memory_store):
    """Test client for an app using the direct write strategy."""
    with TestClient(create_app(store=memory_store)) as client:
        yield client


@pytest.fixture
def queued_client(memory_store, fast_cache):
    """Test client for an app using the queued write strategy over fakeredis."""
    with TestClient(create_app(store=memory_store, fast_cache=fast_cache)) as client:
        yield client
