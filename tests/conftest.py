"""
Shared pytest fixtures and configuration for all tests.
"""
import os

import pytest
from fastapi.testclient import TestClient

# Hypothesis configuration for property-based testing
from hypothesis import settings, Verbosity, Phase

from config.settings import Environment, Settings, StoreBackend
from middleware.rate_limiter import limiter
from realtime.broker import ChangeBroker
from store.memory_store import InMemoryBusStore

# Default profile: balanced for local development
settings.register_profile(
    "default",
    max_examples=100,
    verbosity=Verbosity.normal,
    deadline=None,  # Disable deadline for async tests
    print_blob=True,  # Print failing examples for debugging
)

# CI profile: more thorough testing for continuous integration
settings.register_profile(
    "ci",
    max_examples=200,
    verbosity=Verbosity.verbose,
    deadline=None,
    print_blob=True,
    derandomize=True,  # Reproducible results in CI
)

# Debug profile: minimal examples for quick debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    deadline=None,
    print_blob=True,
    phases=[Phase.explicit, Phase.reuse, Phase.generate],  # Skip shrinking for speed
)

# Fast profile: quick smoke tests
settings.register_profile(
    "fast",
    max_examples=20,
    verbosity=Verbosity.normal,
    deadline=None,
)

# Load profile from environment variable HYPOTHESIS_PROFILE, default to "default"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "default"))


@pytest.fixture
def test_settings() -> Settings:
    """Development settings with the in-memory store and no rate limiting."""
    return Settings(
        _env_file=None,
        environment=Environment.DEVELOPMENT,
        store_backend=StoreBackend.MEMORY,
        seed_demo_data=True,
        redis_url=None,
        otel_endpoint=None,
        rate_limit_enabled=False,
        simulator_enabled=False,
    )


@pytest.fixture
def memory_store() -> InMemoryBusStore:
    """In-memory store holding the demo routes, buses, schedules and keys."""
    store = InMemoryBusStore()
    store.load_demo_data()
    return store


@pytest.fixture
def broker() -> ChangeBroker:
    return ChangeBroker(max_queue_size=10, instance_id="test-instance")


@pytest.fixture
def app(test_settings, memory_store, broker):
    from main import create_app
    return create_app(settings=test_settings, store=memory_store, broker=broker)


@pytest.fixture
def client(app):
    """TestClient with the application lifespan running."""
    with TestClient(app) as test_client:
        yield test_client
    limiter.reset()


@pytest.fixture
def valid_report() -> dict:
    """A location report bus-1 is allowed to send."""
    return {
        "bus_id": "bus-1",
        "latitude": 40.75,
        "longitude": -73.98,
        "speed": 35.5,
        "heading": 90.0,
        "label": "Millbrook Stop",
        "api_key": "simulation_key_bus-1",
    }
