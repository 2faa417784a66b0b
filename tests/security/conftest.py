"""Security test fixtures.

Responsibilities:
- Creates the FastAPI `app` fixture from test settings (scheduler not started)
- Wraps it in a TestClient with raise_server_exceptions=False (attacker perspective)
- Provides a pending tip to aim webhooks at

The global tests/conftest.py provides settings, signing helpers and the
performer directory.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from tipgate.app import create_app


@pytest.fixture
def app(settings, directory):
    """Full route table with test secrets; APScheduler is not started."""
    return create_app(settings=settings, directory=directory, start_scheduler=False)


@pytest.fixture
def client(app):
    """TestClient from an untrusted address."""
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def tip(app):
    return app.state.ledger.create_tip(5000, "fan@example.com", "default")


@pytest.fixture
def usd_tip(app):
    return app.state.ledger.create_tip(1000, "fan@example.com", "usd")
