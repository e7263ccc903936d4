"""
Pytest configuration and shared fixtures for SOSTrack tests.
"""
import tempfile
from pathlib import Path
from typing import Any, Dict

import pytest
import pytest_asyncio

from sostrack.core.database import DatabaseManager
from sostrack.models.tracking import SubscriptionParams, TrackingSession
from sostrack.services.tracking.location_source import LocationSource
from sostrack.services.tracking.session_controller import SessionController
from sostrack.services.tracking.session_store import SessionStore
from sostrack.services.tracking.sync_client import SyncClient
from tests.mocks.tracking_mocks import FakePositionProvider, FakeTransport


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def test_config(temp_dir) -> Dict[str, Any]:
    """Provide a complete test configuration rooted in the temp directory."""
    return {
        "app": {
            "name": "SOSTrack",
            "version": "1.0.0",
            "debug": False,
            "log_level": "DEBUG"
        },
        "storage": {
            "path": str(temp_dir / "sostrack.db")
        },
        "tracking": {
            "min_time_interval": 0.0,
            "min_distance": 0.0,
            "sample_queue_size": 16,
            "providers": [
                {"type": "replay", "path": str(temp_dir / "track.csv"), "interval": 0.01}
            ]
        },
        "sync": {
            "base_url": "https://sos-test.firebaseio.com",
            "path_template": "live_locations/{user_id}.json",
            "method": "PATCH",
            "timeout": 5,
            "max_concurrent_publishes": 2,
            "max_pending_publishes": 8,
            "clear_remote_on_stop": False
        },
        "foreground": {
            "status_file": str(temp_dir / "sostrack.status.json"),
            "heartbeat_interval": 30,
            "notification_title": "SOS Active",
            "notification_text": "Emergency tracking is active."
        },
        "logging": {
            "level": "DEBUG",
            "file": str(temp_dir / "logs" / "sostrack.log"),
            "console": False
        }
    }


@pytest.fixture
def database(temp_dir):
    """Create a migrated test database."""
    db = DatabaseManager(str(temp_dir / "test.db"))
    yield db
    db.close()


@pytest.fixture
def store(database):
    return SessionStore(database)


@pytest.fixture
def session():
    """The reference SOS session."""
    return TrackingSession(sos_id="S1", sos_token="T1", identity_token="I1", user_id="U1")


@pytest.fixture
def fake_provider():
    return FakePositionProvider()


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest_asyncio.fixture
async def sync_client(fake_transport):
    client = SyncClient(fake_transport, max_concurrent=2, max_pending=8)
    yield client
    await client.close()


@pytest_asyncio.fixture
async def controller(store, fake_provider, sync_client):
    """Session controller wired to fakes, with rate limiting disabled."""
    ctrl = SessionController(
        store=store,
        location_source=LocationSource([fake_provider]),
        sync_client=sync_client,
        params=SubscriptionParams(min_time_interval=0.0, min_distance=0.0),
    )
    yield ctrl
    await ctrl.shutdown()
