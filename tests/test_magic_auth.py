import json
import time
from urllib.parse import quote_plus

import pytest
import requests

from db import get_db
from db_queries.cache import cache_get
from db_queries.contacts import FOLLOWER, FRIEND, SHARING, add_user_contact, set_blocked_by_user
from db_queries.openwebauth_tokens import create_token, get_meta
from db_queries.users import add_user
from utils import hooks
from utils.magic_auth import (RemoteAuthContext, add_visitor_cookie_for_handle, apply_visitor_session,
                              magic_endpoint_reachable, openwebauth_init, remote_contact_for, remote_user, zrl_init)
from utils.worker import PRIORITY_LOW

from conftest import ALICE_HANDLE, ALICE_URL

INBOUND_QUERY = "profile/bob?zrl=" + quote_plus(ALICE_URL)


@pytest.fixture()
def reachable(monkeypatch):
    """Pretend every remote /magic endpoint answers; records the probed base paths."""
    probed = []

    def fake_reachable(base_path):
        probed.append(base_path)
        return True

    monkeypatch.setattr("utils.magic_auth.magic_endpoint_reachable", fake_reachable)
    return probed


def make_ctx(**kwargs):
    values = {"base_url": "https://home.example", "query_string": INBOUND_QUERY, "my_url": ALICE_URL}
    values.update(kwargs)
    return RemoteAuthContext(**values)


def queued_jobs():
    return [dict(row) for row in get_db().execute("SELECT * FROM workerqueue ORDER BY id").fetchall()]


# --- initiation ---

def test_zrl_init_redirects_to_visitor_home_magic(alice_id, reachable):
    target = zrl_init(make_ctx())

    expected_dest = quote_plus("https://home.example/profile/bob?rzrl=" + quote_plus(ALICE_URL))
    assert target == "https://remote.example/magic?f=&owa=1&dest=" + expected_dest
    assert reachable == ["https://remote.example"]
    assert cache_get("zrlInit:" + ALICE_URL) is True


def test_zrl_init_queues_low_priority_probe(alice_id, reachable):
    zrl_init(make_ctx())

    jobs = queued_jobs()
    assert len(jobs) == 1
    assert jobs[0]["command"] == "GProbe"
    assert jobs[0]["priority"] == PRIORITY_LOW
    assert json.loads(jobs[0]["parameter"]) == [ALICE_URL]


def test_zrl_init_twice_within_ttl_redirects_once(alice_id, reachable):
    assert zrl_init(make_ctx()) is not None
    assert zrl_init(make_ctx()) is None

    assert len(reachable) == 1
    assert len(queued_jobs()) == 1


def test_zrl_init_again_after_ttl(alice_id, reachable):
    zrl_init(make_ctx())
    db = get_db()
    db.execute("UPDATE cache SET expires = ?", (time.time() - 1,))
    db.commit()

    assert zrl_init(make_ctx()) is not None


@pytest.mark.parametrize("my_url", [None, "", "not a url", "ftp://remote.example/profile/alice"])
def test_zrl_init_ignores_invalid_visitor_url(alice_id, reachable, my_url):
    assert zrl_init(make_ctx(my_url=my_url)) is None
    assert reachable == []
    assert queued_jobs() == []


def test_zrl_init_skips_local_users(alice_id, reachable):
    assert zrl_init(make_ctx(local_user_id=1)) is None
    assert cache_get("zrlInit:" + ALICE_URL) is None


def test_zrl_init_skips_already_authenticated_visitor(alice_id, reachable):
    assert zrl_init(make_ctx(remote_user_id=alice_id)) is None
    assert zrl_init(make_ctx(remote_user_id=alice_id, visitor_home=ALICE_URL)) is None
    assert cache_get("zrlInit:" + ALICE_URL) is None
    assert reachable == []


def test_zrl_init_unknown_visitor(app_ctx, reachable, no_probe):
    assert zrl_init(make_ctx()) is None
    assert no_probe == [ALICE_URL]
    assert cache_get("zrlInit:" + ALICE_URL) is None


def test_zrl_init_falls_through_when_remote_unreachable(alice_id, monkeypatch):
    monkeypatch.setattr("utils.magic_auth.magic_endpoint_reachable", lambda base_path: False)

    assert zrl_init(make_ctx()) is None


def test_zrl_init_never_redirects_to_own_node(app_ctx, reachable):
    from db_queries.contacts import upsert_public_contact
    upsert_public_contact({"url": "https://home.example/profile/carol", "addr": "carol@home.example"})

    assert zrl_init(make_ctx(my_url="https://home.example/profile/carol")) is None
    assert reachable == []


def test_zrl_init_does_not_redirect_from_magic_destination(alice_id, reachable):
    ctx = make_ctx(query_string="magic?owa=1&zrl=" + quote_plus(ALICE_URL))

    assert zrl_init(ctx) is None
    assert reachable == []


def test_zrl_init_calls_hook(alice_id, reachable):
    seen = []
    hooks.register("zrl_init", seen.append)
    try:
        zrl_init(make_ctx())
    finally:
        hooks.unregister("zrl_init", seen.append)

    assert seen == [{"zrl": ALICE_URL, "url": "profile/bob"}]


# --- session materialization ---

def test_visitor_connections_skip_blocked_and_system_rows(alice_id):
    bob = add_user("bob", "pw")
    carol = add_user("carol", "pw")
    dave = add_user("dave", "pw")
    erin = add_user("erin", "pw")
    a = add_user_contact(bob, ALICE_URL, FRIEND)
    add_user_contact(carol, ALICE_URL, FRIEND)
    set_blocked_by_user(alice_id, carol)
    d = add_user_contact(dave, ALICE_URL, FOLLOWER)
    add_user_contact(erin, ALICE_URL, SHARING)

    visitor = add_visitor_cookie_for_handle(ALICE_HANDLE)

    assert visitor["authenticated"] == 1
    assert visitor["visitor_id"] == alice_id
    assert visitor["visitor_handle"] == ALICE_HANDLE
    assert visitor["visitor_home"] == ALICE_URL
    assert visitor["my_url"] == ALICE_URL
    assert visitor["remote"] == [
        {"cid": a, "uid": bob, "url": ALICE_URL},
        {"cid": d, "uid": dave, "url": ALICE_URL},
    ]


def test_materialize_unknown_handle(app_ctx, no_probe):
    assert add_visitor_cookie_for_handle("nobody@nowhere.example") is None


def test_apply_visitor_session_replaces_connection_list(alice_id):
    bob = add_user("bob", "pw")
    a = add_user_contact(bob, ALICE_URL, FRIEND)
    session = {"remote": [{"cid": 99, "uid": 9, "url": "https://old.example/profile/x"}], "user_theme": "dark"}

    apply_visitor_session(session, add_visitor_cookie_for_handle(ALICE_HANDLE))

    assert session["remote"] == [{"cid": a, "uid": bob, "url": ALICE_URL}]
    assert session["visitor_id"] == alice_id
    assert session["user_theme"] == "dark"
    assert "contact" not in session
    assert remote_user(session) == alice_id
    assert remote_contact_for(session, bob) == a
    assert remote_contact_for(session, 12345) is None


def test_remote_user_requires_authenticated_flag():
    assert remote_user({"visitor_id": 5}) is None
    assert remote_user({"authenticated": 0, "visitor_id": 5}) is None
    assert remote_user({"authenticated": 1, "visitor_id": 5}) == 5
    assert remote_contact_for({"remote": [{"cid": 1, "uid": 2}]}, 2) is None


# --- completion ---

def test_openwebauth_init_authenticates_and_consumes_token(alice_id):
    token = create_token("owt", 0, ALICE_HANDLE)
    ctx = make_ctx(query_string="profile/bob")

    visitor = openwebauth_init(ctx, token)

    assert visitor["visitor_id"] == alice_id
    assert ctx.visitor is visitor
    assert get_meta("owt", 0, token) is None
    assert openwebauth_init(make_ctx(), token) is None


def test_openwebauth_init_replay_allowed_when_not_single_use(app, alice_id):
    app.config["OWT_SINGLE_USE"] = False
    token = create_token("owt", 0, ALICE_HANDLE)

    assert openwebauth_init(make_ctx(), token) is not None
    assert openwebauth_init(make_ctx(), token) is not None


def test_openwebauth_init_rejects_unknown_token(alice_id):
    assert openwebauth_init(make_ctx(), "deadbeef") is None
    assert openwebauth_init(make_ctx(), "") is None


def test_openwebauth_init_rejects_expired_token(alice_id):
    token = create_token("owt", 0, ALICE_HANDLE)
    db = get_db()
    db.execute("UPDATE openwebauth_tokens SET created = ?", (time.time() - 181,))
    db.commit()

    assert openwebauth_init(make_ctx(), token) is None
    assert db.execute("SELECT COUNT(*) FROM openwebauth_tokens").fetchone()[0] == 0


def test_openwebauth_init_unresolvable_handle(app_ctx, no_probe):
    token = create_token("owt", 0, "ghost@gone.example")

    assert openwebauth_init(make_ctx(), token) is None


def test_openwebauth_init_calls_success_hook(alice_id):
    seen = []

    def on_success(data):
        seen.append(data["url"])
        data["visitor"] = dict(data["visitor"], name="Alice (verified)")

    hooks.register("magic_auth_success", on_success)
    try:
        visitor = openwebauth_init(make_ctx(query_string="profile/bob"), create_token("owt", 0, ALICE_HANDLE))
    finally:
        hooks.unregister("magic_auth_success", on_success)

    assert seen == ["profile/bob"]
    assert visitor["contact"]["name"] == "Alice (verified)"


# --- reachability ---

class FakeResponse:
    def __init__(self, ok):
        self.ok = ok


def test_magic_endpoint_reachable_uses_probe_timeout(app_ctx, monkeypatch):
    calls = []

    def fake_get(url, **kwargs):
        calls.append((url, kwargs))
        return FakeResponse(True)

    monkeypatch.setattr("utils.magic_auth.requests.get", fake_get)

    assert magic_endpoint_reachable("https://remote.example") is True
    assert calls[0][0] == "https://remote.example/magic"
    assert calls[0][1]["timeout"] == 5


def test_magic_endpoint_unreachable_on_error_status(app_ctx, monkeypatch):
    monkeypatch.setattr("utils.magic_auth.requests.get", lambda url, **kwargs: FakeResponse(False))

    assert magic_endpoint_reachable("https://remote.example") is False


def test_zrl_init_without_redirect_when_probe_times_out(alice_id, monkeypatch):
    def timeout(url, **kwargs):
        raise requests.exceptions.ConnectTimeout("no answer")

    monkeypatch.setattr("utils.magic_auth.requests.get", timeout)

    assert magic_endpoint_reachable("https://remote.example") is False
    assert zrl_init(make_ctx()) is None
