# =============================================================================
# tests/conftest.py
# Pytest Configuration and Fixtures
# =============================================================================

from urllib.parse import urlsplit

import pytest
import requests
from requests.adapters import BaseAdapter
from requests.structures import CaseInsensitiveDict

from app import create_app, get_store
from client.api_client import APIConfig, RemoteAPIClient
from client.coordinator import PersistenceCoordinator
from client.record_store import RecordStore
from client.storage import LocalStorage, SessionStorage
from db.stores import DocumentStore, MemoryStore

BASE_URL = "http://telemed.test/api"


# =============================================================================
# TRANSPORTS
# =============================================================================

class FlaskTransport(BaseAdapter):
    """Serves requests.Session traffic from a Flask test client, no sockets involved."""

    def __init__(self, flask_app):
        super().__init__()
        self.client = flask_app.test_client()
        self.calls = []

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        parts = urlsplit(request.url)
        path = parts.path + (f"?{parts.query}" if parts.query else "")
        body = request.body.encode("utf-8") if isinstance(request.body, str) else request.body
        headers = {
            key: value for key, value in request.headers.items()
            if key.lower() not in ("content-type", "content-length")
        }
        self.calls.append((request.method, parts.path))

        result = self.client.open(
            path,
            method=request.method,
            data=body,
            headers=headers,
            content_type=request.headers.get("Content-Type"),
        )

        response = requests.Response()
        response.status_code = result.status_code
        response._content = result.get_data()
        response.headers = CaseInsensitiveDict(dict(result.headers))
        response.encoding = "utf-8"
        response.reason = result.status
        response.url = request.url
        response.request = request
        return response

    def close(self):
        pass


class FailingTransport(BaseAdapter):
    """Every request fails as if the backend host were unreachable."""

    def __init__(self):
        super().__init__()
        self.calls = 0

    def send(self, request, **kwargs):
        self.calls += 1
        raise requests.ConnectionError(f"backend unreachable: {request.url}")

    def close(self):
        pass


class TimeoutTransport(BaseAdapter):
    """Every request times out as if the backend were hung; records the timeout it was given."""

    def __init__(self):
        super().__init__()
        self.timeouts = []

    def send(self, request, stream=False, timeout=None, verify=True, cert=None, proxies=None):
        self.timeouts.append(timeout)
        raise requests.exceptions.ReadTimeout(f"read timed out: {request.url}")

    def close(self):
        pass


def make_session(adapter) -> requests.Session:
    session = requests.Session()
    session.mount("http://telemed.test", adapter)
    return session


def make_api(adapter) -> RemoteAPIClient:
    return RemoteAPIClient(APIConfig(base_url=BASE_URL, timeout=1), session=make_session(adapter))


# =============================================================================
# BACKEND FIXTURES
# =============================================================================

@pytest.fixture(params=["memory", "document"])
def app(request):
    """Flask app over each storage backend; the document store runs on in-memory SQLite"""
    store = MemoryStore() if request.param == "memory" else DocumentStore("sqlite:///:memory:")
    flask_app = create_app(store=store, TESTING=True)
    yield flask_app
    store.close()


@pytest.fixture
def http(app):
    return app.test_client()


@pytest.fixture
def store(app):
    return get_store(app)


# =============================================================================
# CLIENT FIXTURES
# =============================================================================

@pytest.fixture
def local_storage(tmp_path):
    return LocalStorage(tmp_path / "profile")


@pytest.fixture
def records(local_storage):
    return RecordStore(local_storage)


@pytest.fixture
def transport(app):
    return FlaskTransport(app)


@pytest.fixture
def api(transport):
    return make_api(transport)


@pytest.fixture
def coordinator(api, records):
    """Coordinator talking to the real backend"""
    return PersistenceCoordinator(api, records, session_storage=SessionStorage())


@pytest.fixture
def offline_coordinator(records):
    """Coordinator whose backend is unreachable from the start"""
    return PersistenceCoordinator(make_api(FailingTransport()), records, session_storage=SessionStorage())


@pytest.fixture
def ticking_clock(monkeypatch):
    """
    Replaces record timestamps with a strictly increasing sequence so
    newest-first ordering is deterministic on both client and server.
    """
    state = {"second": 0}

    def next_timestamp():
        state["second"] += 1
        return f"2024-01-01T00:00:{state['second']:02d}.000Z"

    monkeypatch.setattr("client.coordinator.utc_now", next_timestamp)
    monkeypatch.setattr("app.routes.utc_now", next_timestamp)
    return next_timestamp


@pytest.fixture
def failing_transport():
    return FailingTransport()


@pytest.fixture
def make_coordinator(records):
    """Builds coordinators over the shared local records with any transport"""

    def build(adapter, **kwargs):
        kwargs.setdefault("session_storage", SessionStorage())
        return PersistenceCoordinator(make_api(adapter), records, **kwargs)

    return build


@pytest.fixture
def mount():
    """Swaps the transport behind an existing coordinator's HTTP session"""

    def swap(coordinator, adapter):
        coordinator.api.session.mount("http://telemed.test", adapter)

    return swap


@pytest.fixture
def timeout_transport():
    return TimeoutTransport()
