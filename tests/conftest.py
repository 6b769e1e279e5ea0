"""
Pytest configuration and shared fixtures.

Test environment variables are set here before any app import so the
cached settings and the database engine pick them up.
"""

import os
import tempfile

os.environ.setdefault(
    "DATABASE_URL",
    f"sqlite:///{os.path.join(tempfile.gettempdir(), 'wschannel-test.db')}",
)
os.environ.setdefault("LOG_LEVEL", "DEBUG")

import httpx  # noqa: E402
import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from wschannel.config import get_settings  # noqa: E402

# Clear settings cache so test env vars are used
get_settings.cache_clear()

from wschannel import models, storage  # noqa: E402,F401
from wschannel.handlers import HandlerRegistry, WebSocketHandler  # noqa: E402
from wschannel.main import app  # noqa: E402
from wschannel.storage import Base, SessionLocal, engine  # noqa: E402

WS_ADDRESS = "+15551234567"
SEND_URL = "https://provider.example.com/send"


@pytest.fixture(scope="function")
def client():
    """Create test client with fresh database for each test."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
    # Cleanup - drop all tables after test
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db(client):
    """Session on the test database, closed after the test."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def channel(db):
    """A WS channel sending to SEND_URL with the whatsapp scheme."""
    return storage.create_channel(
        db,
        channel_type="WS",
        address=WS_ADDRESS,
        schemes=["whatsapp"],
        name="Test WS",
        config={"send_url": SEND_URL},
    )


@pytest.fixture
def ext_channel(db):
    """A WS channel registering users under the ext scheme."""
    return storage.create_channel(
        db,
        channel_type="WS",
        address=WS_ADDRESS,
        schemes=["ext"],
        name="Test WS ext",
    )


class RecordingTransport(httpx.MockTransport):
    """Mock transport that keeps every request it served."""

    def __init__(self, responder):
        self.requests = []

        def handler(request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            return responder(request)

        super().__init__(handler)


@pytest.fixture
def provider():
    """Provider answering 200 {"id": "ext-1"} unless told otherwise."""
    return RecordingTransport(lambda request: httpx.Response(200, json={"id": "ext-1"}))


@pytest.fixture
def registry(provider):
    registry = HandlerRegistry()
    registry.register(WebSocketHandler(httpx.Client(transport=provider)))
    return registry
