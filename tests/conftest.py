"""
Pytest Configuration for Fleet Tracker Tests

IMPORTANT: This must be the FIRST file imported by pytest.
The os.environ must be set BEFORE settings.py is imported.
"""

import os
import tempfile

# CRITICAL: Set these BEFORE any other imports
os.environ["STORE_BACKEND"] = "memory"
os.environ.setdefault("LOG_DIR", tempfile.mkdtemp(prefix="fleet_tracker_logs_"))

import pytest

# Import all fixtures
from tests.fixtures.fleet_fixtures import *  # noqa
from tests.fixtures.mysql_fixtures import *  # noqa


@pytest.fixture
def test_client(seeded_store):
    """Provide a test client bound to the seeded in-memory store (monitor off)."""
    from fastapi.testclient import TestClient

    from main import create_app

    app = create_app(store=seeded_store, start_monitor=False)
    with TestClient(app) as client:
        yield client
