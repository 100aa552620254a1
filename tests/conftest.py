# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

import json

import pytest
import requests
from unittest.mock import MagicMock

from justice_bus.errors import ReplayFailure, StoreUnavailableError
from justice_bus.offline.connection_manager import ConnectivityWatcher
from justice_bus.offline.http_client import ApiClient
from justice_bus.offline.local_store import FlatStore, LocalStore, StructuredStore
from justice_bus.offline.sync_queue import SyncDrainer, SyncQueue


# =============================================================================
# STORE FIXTURES
# =============================================================================

@pytest.fixture
def structured_store(tmp_path):
    """Opened SQLite store in a temporary directory"""
    store = StructuredStore(tmp_path / "offline.db").open()
    yield store
    store.close()


@pytest.fixture
def flat_store(tmp_path):
    """Opened flat JSON store in a temporary directory"""
    return FlatStore(tmp_path / "legacy.json").open()


@pytest.fixture(params=["structured", "flat"])
def any_store(request, tmp_path):
    """Each storage tier in turn, for contract tests"""
    if request.param == "structured":
        store = StructuredStore(tmp_path / "offline.db").open()
    else:
        store = FlatStore(tmp_path / "legacy.json").open()
    yield store
    store.close()


class BrokenStore(LocalStore):
    """Store whose every operation fails like an aborted transaction"""

    structured = True

    def _fail(self, *args, **kwargs):
        raise StoreUnavailableError("Transaction aborted: disk I/O error", operation="test")

    open = put = get = get_all = delete = clear = _fail


@pytest.fixture
def broken_store():
    return BrokenStore()


# =============================================================================
# NETWORK FIXTURES
# =============================================================================

def make_response(status_code=200, body=None, url="http://testserver/api"):
    """Build a real requests.Response with a JSON body"""
    response = requests.Response()
    response.status_code = status_code
    response.url = url
    response._content = json.dumps(body).encode() if body is not None else b""
    response.headers["Content-Type"] = "application/json"
    return response


@pytest.fixture
def mock_client():
    """
    ApiClient stand-in that accepts every request.

    Set send.side_effect to script failures, e.g.
    mock_client.send.side_effect = [None, ReplayFailure("boom"), None]
    """
    client = MagicMock(spec=ApiClient)
    client.send.return_value = make_response(200, {"ok": True})
    client.post_json.return_value = {"success": True}
    client.get_json.return_value = None
    return client


@pytest.fixture
def failing_client(mock_client):
    """ApiClient stand-in whose every request fails in transport"""
    failure = ReplayFailure("Request failed: connection refused", api_path="/api", method="POST")
    mock_client.send.side_effect = failure
    mock_client.post_json.side_effect = failure
    mock_client.get_json.side_effect = failure
    return mock_client


# =============================================================================
# OFFLINE COMPONENT FIXTURES
# =============================================================================

@pytest.fixture
def online_watcher():
    return ConnectivityWatcher(initial_online=True)


@pytest.fixture
def offline_watcher():
    return ConnectivityWatcher(initial_online=False)


@pytest.fixture
def sync_queue(structured_store):
    return SyncQueue(structured_store)


@pytest.fixture
def drainer(sync_queue, mock_client):
    return SyncDrainer(sync_queue, mock_client)


# =============================================================================
# SAMPLE DATA FIXTURES
# =============================================================================

@pytest.fixture
def sample_events_payload():
    """Events payload as served by the events endpoint"""
    return {
        "events": [
            {
                "id": "evt-1",
                "title": "Expungement Clinic",
                "date": "2024-05-04",
                "location": "Nashville Public Library",
            },
            {
                "id": "evt-2",
                "title": "Driver's License Restoration",
                "date": "2024-05-18",
                "location": "Memphis Community Center",
            },
        ],
        "lastUpdated": "2024-04-01T12:00:00.000Z",
        "contactInfo": {
            "email": "justicebus@tncourts.gov",
            "phone": "615-555-0100",
        },
    }
