"""Tests for the platform HTTP client (urlopen is patched)."""
import io
import json
import urllib.error
import urllib.parse

import pytest

from app.treetrace.backend import (
    AuthError,
    AuthSession,
    BackendError,
    SupabaseClient,
    backend_from_config,
    build_select_params,
    ilike_pattern,
    service_client_from_env,
)


class FakeResponse:
    def __init__(self, status=200, body=b"", headers=None):
        self.status = status
        self._body = body
        self.headers = headers or {}

    def read(self):
        return self._body

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False


def _http_error(code, body):
    return urllib.error.HTTPError("http://supabase.test", code, "err", {}, io.BytesIO(body))


@pytest.fixture()
def transport(monkeypatch):
    """Queue of responses/exceptions; records every Request sent."""
    state = {"queue": [], "requests": []}

    def fake_urlopen(req, timeout=None):
        state["requests"].append(req)
        item = state["queue"].pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    monkeypatch.setattr("urllib.request.urlopen", fake_urlopen)
    monkeypatch.setattr("app.treetrace.backend.time.sleep", lambda _s: None)
    return state


@pytest.fixture()
def sb():
    return SupabaseClient(url="http://supabase.test", anon_key="anon-key", access_token="user-token")


def _query(req):
    return {k: v[0] for k, v in urllib.parse.parse_qs(urllib.parse.urlsplit(req.full_url).query).items()}


def test_select_builds_query(transport, sb):
    transport["queue"].append(FakeResponse(body=b'[{"id": "1"}]', headers={"Content-Range": "0-11/42"}))
    result = sb.select(
        "trees",
        "*,tree_images(*)",
        search=(("common_name", "scientific_name"), "oak"),
        order="created_at",
        ascending=False,
        offset=12,
        limit=12,
        count=True,
    )
    assert result.rows == [{"id": "1"}]
    assert result.count == 42

    req = transport["requests"][0]
    assert req.get_method() == "GET"
    assert urllib.parse.urlsplit(req.full_url).path == "/rest/v1/trees"
    q = _query(req)
    assert q["select"] == "*,tree_images(*)"
    assert q["or"] == '(common_name.ilike."*oak*",scientific_name.ilike."*oak*")'
    assert q["order"] == "created_at.desc"
    assert q["offset"] == "12"
    assert q["limit"] == "12"
    assert req.get_header("Prefer") == "count=exact"
    assert req.get_header("Apikey") == "anon-key"
    assert req.get_header("Authorization") == "Bearer user-token"


def test_select_single_column_search_and_eq(transport, sb):
    transport["queue"].append(FakeResponse(body=b"[]"))
    result = sb.select("profiles", eq={"id": "abc"}, search=(("full_name",), "ann"))
    assert result.rows == []
    assert result.count is None
    q = _query(transport["requests"][0])
    assert q["id"] == "eq.abc"
    assert q["full_name"] == "ilike.*ann*"
    assert "or" not in q
    assert transport["requests"][0].get_header("Prefer") is None


def test_anonymous_client_uses_anon_key(transport):
    transport["queue"].append(FakeResponse(body=b"[]"))
    SupabaseClient(url="http://supabase.test", anon_key="anon-key").select("roles")
    assert transport["requests"][0].get_header("Authorization") == "Bearer anon-key"


def test_insert_returns_representation(transport, sb):
    transport["queue"].append(FakeResponse(status=201, body=b'[{"id": "t1", "common_name": "Oak"}]'))
    rows = sb.insert("trees", {"common_name": "Oak"})
    assert rows == [{"id": "t1", "common_name": "Oak"}]
    req = transport["requests"][0]
    assert req.get_method() == "POST"
    assert json.loads(req.data) == {"common_name": "Oak"}
    assert req.get_header("Prefer") == "return=representation"
    assert req.get_header("Content-type") == "application/json"


def test_update_and_delete_need_filter(transport, sb):
    with pytest.raises(BackendError):
        sb.update("trees", {"common_name": "x"}, eq={})
    with pytest.raises(BackendError):
        sb.delete("trees", eq={})
    assert transport["requests"] == []


def test_delete_sends_filter(transport, sb):
    transport["queue"].append(FakeResponse(body=b"[]"))
    sb.delete("tree_images", eq={"tree_id": "t1"})
    req = transport["requests"][0]
    assert req.get_method() == "DELETE"
    assert _query(req) == {"tree_id": "eq.t1"}


def test_http_error_message(transport, sb):
    transport["queue"].append(_http_error(400, b'{"message": "column does not exist"}'))
    with pytest.raises(BackendError) as exc:
        sb.select("trees")
    assert str(exc.value) == "column does not exist"
    assert exc.value.status == 400


def test_get_retried_on_server_error(transport, sb):
    transport["queue"].extend([_http_error(503, b""), FakeResponse(body=b"[]")])
    assert sb.select("trees").rows == []
    assert len(transport["requests"]) == 2


def test_post_not_retried_on_server_error(transport, sb):
    transport["queue"].extend([_http_error(503, b"down"), FakeResponse(body=b"[]")])
    with pytest.raises(BackendError):
        sb.insert("trees", {"common_name": "x"})
    assert len(transport["requests"]) == 1


def test_network_error_exhausts_retries(transport):
    sb = SupabaseClient(url="http://supabase.test", anon_key="k", retries=2)
    transport["queue"].extend([urllib.error.URLError("refused")] * 3)
    with pytest.raises(BackendError) as exc:
        sb.select("trees")
    assert "refused" in str(exc.value)
    assert len(transport["requests"]) == 3


def test_missing_url_fails_fast(transport):
    with pytest.raises(BackendError):
        SupabaseClient(url="", anon_key="k").select("trees")


def test_sign_in_with_password(transport, sb):
    payload = {
        "access_token": "at",
        "refresh_token": "rt",
        "expires_at": 1900000000,
        "user": {"id": "u1", "email": "a@example.com"},
    }
    transport["queue"].append(FakeResponse(body=json.dumps(payload).encode()))
    session = sb.sign_in_with_password("a@example.com", "pw")
    assert session == AuthSession("u1", "a@example.com", "at", "rt", 1900000000)

    req = transport["requests"][0]
    assert _query(req) == {"grant_type": "password"}
    assert json.loads(req.data) == {"email": "a@example.com", "password": "pw"}


def test_sign_in_failure_is_auth_error(transport, sb):
    transport["queue"].append(_http_error(400, b'{"error": "invalid_grant", "error_description": "Invalid login credentials"}'))
    with pytest.raises(AuthError) as exc:
        sb.sign_in_with_password("a@example.com", "bad")
    assert str(exc.value) == "Invalid login credentials"


def test_refresh_session_uses_expires_in(transport, sb):
    payload = {"access_token": "at2", "refresh_token": "rt2", "expires_in": 3600, "user": {"id": "u1"}}
    transport["queue"].append(FakeResponse(body=json.dumps(payload).encode()))
    session = sb.refresh_session("rt")
    assert session.access_token == "at2"
    assert session.expires_at > 0
    assert _query(transport["requests"][0]) == {"grant_type": "refresh_token"}


def test_session_payload_without_token():
    with pytest.raises(AuthError):
        AuthSession.from_payload({"user": {"id": "u1"}})


def test_invoke_function_success(transport, sb):
    transport["queue"].append(FakeResponse(body=b'{"message": "created"}'))
    resp = sb.invoke_function("create-user-by-admin", {"email": "x@example.com"}, authorization="Bearer caller")
    assert resp.ok
    assert resp.data == {"message": "created"}
    req = transport["requests"][0]
    assert urllib.parse.urlsplit(req.full_url).path == "/functions/v1/create-user-by-admin"
    assert req.get_header("Authorization") == "Bearer caller"
    assert json.loads(req.data) == {"email": "x@example.com"}


def test_invoke_function_error_passes_through(transport, sb):
    transport["queue"].append(_http_error(403, b'{"error": "Only admins can create users"}'))
    resp = sb.invoke_function("create-user-by-admin", {})
    assert not resp.ok
    assert resp.status == 403
    assert resp.data == {"error": "Only admins can create users"}
    assert len(transport["requests"]) == 1


def test_invoke_function_non_json_error(transport, sb):
    transport["queue"].append(_http_error(500, b"boom"))
    resp = sb.invoke_function("delete-user-by-admin", {"userId": "u"})
    assert resp.status == 500
    assert resp.data == {"error": "boom"}


def test_ilike_pattern_escapes_quotes():
    assert ilike_pattern("oak") == '"*oak*"'
    assert ilike_pattern('a"b') == '"*a\\"b*"'


def test_backend_from_config():
    client = backend_from_config({"SUPABASE_URL": "https://abc.supabase.co/", "SUPABASE_ANON_KEY": " k "})
    assert client.url == "https://abc.supabase.co"
    assert client.anon_key == "k"
    assert client.with_token("t").access_token == "t"
    assert client.access_token is None


def test_build_select_params_quotes_only_inside_logic_tree():
    single = build_select_params(search=(("full_name",), "o'neil, jr"))
    assert single["full_name"] == "ilike.*o'neil, jr*"
    assert "or" not in single

    multi = build_select_params(search=(("common_name", "scientific_name"), "a,b"))
    assert multi["or"] == '(common_name.ilike."*a,b*",scientific_name.ilike."*a,b*")'


def test_build_select_params_skips_empty_search():
    assert build_select_params(search=(("full_name",), "")) == {"select": "*"}


def test_post_retried_on_rate_limit(transport, sb):
    transport["queue"].extend([_http_error(429, b""), FakeResponse(status=201, body=b'[{"id": "t1"}]')])
    assert sb.insert("trees", {"common_name": "x"}) == [{"id": "t1"}]
    assert len(transport["requests"]) == 2
    assert all(req.get_method() == "POST" for req in transport["requests"])


def test_service_client_from_env(monkeypatch):
    monkeypatch.setenv("SUPABASE_URL", "https://abc.supabase.co/")
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", "service-key")
    client = service_client_from_env()
    assert client.url == "https://abc.supabase.co"
    assert client.anon_key == client.access_token == "service-key"

    monkeypatch.delenv("SUPABASE_SERVICE_ROLE_KEY")
    with pytest.raises(BackendError):
        service_client_from_env()
