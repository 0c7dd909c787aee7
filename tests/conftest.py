"""Shared test fixtures and configuration."""
import pytest
from fastapi.testclient import TestClient

from rollcall.api.deps import get_services
from rollcall.core.clock import ManualClock
from rollcall.core.config import Settings
from rollcall.main import app
from rollcall.services.container import STORE_INDEXES, Services
from rollcall.store.memory import MemoryDocumentStore

from tests.utils import OWNER_ID, PARTICIPANT_ID, auth_headers


@pytest.fixture(autouse=True)
def disable_rate_limiting_for_tests(request):
    """Disable rate limiting for all tests except rate limiting tests."""
    from rollcall.core.rate_limit import limiter

    limiter.reset()
    if "rate_limit" in request.keywords:
        yield
    else:
        limiter.enabled = False
        yield
        limiter.enabled = True
    limiter.reset()


@pytest.fixture
def clock():
    """Virtual clock; tests move time with ``await clock.advance(seconds)``."""
    return ManualClock()


@pytest.fixture
def store(clock):
    return MemoryDocumentStore(clock, indexes=STORE_INDEXES)


@pytest.fixture
def settings():
    return Settings(STORE_BACKEND="memory", SECRET_KEY="test-secret-key")


@pytest.fixture
def services(settings, clock, store):
    return Services(settings, clock, store)


@pytest.fixture
def client(services):
    """Test client wired to the fixture services and virtual clock."""
    app.dependency_overrides[get_services] = lambda: services
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def advance(client, clock):
    """Advance the virtual clock inside the app's event loop."""
    def _advance(seconds: float) -> None:
        client.portal.call(clock.advance, seconds)
    return _advance


@pytest.fixture
def owner_headers():
    return auth_headers(OWNER_ID, "owner", name="Dr. Rao", handle="rao@example.edu")


@pytest.fixture
def participant_headers():
    return auth_headers(PARTICIPANT_ID, "participant", name="Asha", handle="asha@example.edu")
