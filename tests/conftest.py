import asyncio
import inspect
import os
import sys
from pathlib import Path

# Configure the environment before any imports that might initialize runtime
os.environ.setdefault("TEST_MODE", "true")
os.environ.setdefault("LOG_JSON", "true")
os.environ.pop("OPENAI_API_KEY", None)
os.environ.pop("STATE_ROOT", None)

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


from lessonhub.service.runtime import get_runtime, reset_runtime_for_tests  # noqa: E402
from lessonhub.storage.memory import MemoryStore  # noqa: E402

STUDENT_PASSWORD = "StudentPass123"
ADMIN_PASSWORD = "AdminPass123"


class RecordingLogger:
    """Stand-in for a structlog logger that keeps every call for assertions."""

    def __init__(self):
        self.records = []

    def _record(self, level):
        def log(event, **fields):
            self.records.append((level, event, fields))

        return log

    def __getattr__(self, level):
        return self._record(level)

    def events(self, name):
        return [fields for _, event, fields in self.records if event == name]


@pytest.fixture(autouse=True)
def reset_runtime_state():
    reset_runtime_for_tests()
    yield
    reset_runtime_for_tests()


@pytest.fixture
def memory_store():
    return MemoryStore()


@pytest.fixture
def recording_logger():
    return RecordingLogger()


@pytest.fixture
def client():
    """Create a test client for the API."""
    from lessonhub import app as app_module

    return TestClient(app_module.app)


@pytest.fixture
def student_token(client):
    """Register a student through the API and return its bearer token."""
    response = client.post(
        "/api/register",
        json={"name": "Sam Student", "email": "sam@example.com", "password": STUDENT_PASSWORD},
    )
    assert response.status_code == 201
    return response.json()["access_token"]


@pytest.fixture
def admin_token(client):
    """Seed an admin account directly in the store and log it in."""
    runtime = get_runtime()
    user = runtime.store.create_user("Ada Admin", "ada@example.com", role="admin")
    runtime.auth.save_password(user.id, ADMIN_PASSWORD)
    response = client.post(
        "/api/login", json={"email": "ada@example.com", "password": ADMIN_PASSWORD}
    )
    assert response.status_code == 200
    return response.json()["access_token"]


def pytest_pyfunc_call(pyfuncitem):
    if inspect.iscoroutinefunction(pyfuncitem.obj):
        call_kwargs = {
            name: pyfuncitem.funcargs[name]
            for name in pyfuncitem._fixtureinfo.argnames
            if name in pyfuncitem.funcargs
        }
        asyncio.run(pyfuncitem.obj(**call_kwargs))
        return True
    return None


def pytest_configure(config):
    config.addinivalue_line("markers", "asyncio: mark test as async")
