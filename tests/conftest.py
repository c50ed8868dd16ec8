import pytest

from app import create_app
from db_queries.contacts import upsert_public_contact

ALICE_URL = "https://remote.example/profile/alice"
ALICE_HANDLE = "alice@remote.example"


@pytest.fixture()
def app(tmp_path):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test-secret",
        "DATABASE": str(tmp_path / "test.db"),
        "NODE_HOSTNAME": "home.example",
        "WORKER_ENABLED": False,
        "MAGIC_AUTH_DEBUG": True,
    })
    yield app


@pytest.fixture()
def client(app):
    return app.test_client()


@pytest.fixture()
def app_ctx(app):
    """A request context on this node, so get_db() and get_base_url() work."""
    with app.test_request_context("/"):
        yield app


@pytest.fixture()
def alice_id(app_ctx):
    """Public contact of the remote visitor alice@remote.example."""
    return upsert_public_contact({
        "url": ALICE_URL,
        "addr": ALICE_HANDLE,
        "name": "Alice",
        "network": "owa",
    })


@pytest.fixture()
def no_probe(monkeypatch):
    """Fail every WebFinger discovery without touching the network."""
    calls = []

    def fake_probe(url_or_handle):
        calls.append(url_or_handle)
        return None

    monkeypatch.setattr("utils.probe.probe_url", fake_probe)
    return calls
