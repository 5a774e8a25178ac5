"""Shared test fixtures and configuration for backend tests."""
import pytest
from fastapi.testclient import TestClient

from lobby.main import app


@pytest.fixture
def client():
    """Provide a TestClient with the app lifespan running.

    Entering the client as a context manager runs the lifespan, so the
    EventBroadcaster worker is started, and keeps every WebSocket session
    on the same event loop. The broadcaster is recreated for each test.
    """
    with TestClient(app) as test_client:
        yield test_client
