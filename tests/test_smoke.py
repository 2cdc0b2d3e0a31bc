from conftest import login


def test_health_ok(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json["ok"] is True


def test_healthz_plain(client):
    r = client.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_index_redirects_by_auth_state(client):
    r = client.get("/")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]

    login(client)
    r = client.get("/")
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/dashboard")


def test_login_and_admin_access(client):
    # Anonymous is sent to login
    r = client.get("/admin/")
    assert r.status_code == 302
    assert "/auth/login" in r.headers["Location"]

    r = login(client)
    assert r.status_code == 302

    r = client.get("/admin/")
    assert r.status_code == 200
    assert b"Admin Dashboard" in r.data


def test_unknown_route_404(client):
    r = client.get("/no-such-page")
    assert r.status_code == 404
    assert b"Not found" in r.data
