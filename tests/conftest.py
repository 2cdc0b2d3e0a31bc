import copy
import itertools
import re
import time
import uuid

import pytest

from app.treetrace import auth as auth_module
from app.treetrace import create_app
from app.treetrace.backend import (
    AuthError,
    AuthSession,
    BackendError,
    FunctionResponse,
    QueryResult,
    build_select_params,
)

ADMIN_ID = "a0000000-0000-0000-0000-000000000001"
USER_ID = "b0000000-0000-0000-0000-000000000002"

_RESERVED_PARAMS = frozenset({"select", "order", "offset", "limit", "or"})


def _unquote(value):
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return re.sub(r"\\(.)", r"\1", value[1:-1])
    return value


def _split_logic_tree(tree):
    """Split `(a.op.x,b.op."y,z")` into its branches, honouring quotes."""
    inner = tree[1:-1] if tree.startswith("(") and tree.endswith(")") else tree
    parts, buf, quoted, escaped = [], [], False, False
    for ch in inner:
        if escaped:
            buf.append(ch)
            escaped = False
        elif ch == "\\" and quoted:
            buf.append(ch)
            escaped = True
        elif ch == '"':
            buf.append(ch)
            quoted = not quoted
        elif ch == "," and not quoted:
            parts.append("".join(buf))
            buf = []
        else:
            buf.append(ch)
    parts.append("".join(buf))
    return parts


def _filter_matches(value, expr, quoted=False):
    # Plain query-string filters are literal; only logic-tree values may be quoted.
    op, _, operand = expr.partition(".")
    if quoted:
        operand = _unquote(operand)
    if op == "eq":
        return str(value) == operand
    if op == "ilike":
        regex = "".join(".*" if ch == "*" else re.escape(ch) for ch in operand)
        return re.fullmatch(regex, str(value or ""), re.IGNORECASE | re.DOTALL) is not None
    raise AssertionError(f"unsupported filter {expr!r}")


class FakeBackend:
    """
    In-memory stand-in for the hosted platform client.

    Tables are lists of dicts; `trees` selects embed `tree_images` and
    `profiles` selects embed `role`. Deleting a tree cascades to its image
    rows like the remote foreign key does.
    """

    url = "http://supabase.test"

    def __init__(self):
        self.access_token = None
        self.tables = {"trees": [], "tree_images": [], "profiles": [], "roles": []}
        self.users = {}
        self.function_calls = []
        self.function_responses = {}
        self.fail = set()
        self.signed_out = []
        self.refreshed = []
        self._clock = itertools.count(1)

    # ---------- helpers ----------
    def with_token(self, access_token):
        other = copy.copy(self)
        other.access_token = access_token
        return other

    def _maybe_fail(self, op):
        if op in self.fail:
            raise BackendError(f"{op} failed")

    def _stamp(self):
        return f"2024-01-01T00:00:00.{next(self._clock):06d}+00:00"

    def add_user(self, email, password, user_id, full_name, role_name):
        self.users[email] = (password, user_id)
        role = next(r for r in self.tables["roles"] if r["name"] == role_name)
        self.tables["profiles"].append({"id": user_id, "full_name": full_name, "role_id": role["id"]})

    def add_tree(self, images=(), **values):
        row = {
            "id": str(uuid.uuid4()),
            "created_at": self._stamp(),
            "user_id": ADMIN_ID,
            "common_name": "Oak",
            "scientific_name": "Quercus robur",
            "is_premium": False,
        }
        row.update(values)
        self.tables["trees"].append(row)
        for url in images:
            self.tables["tree_images"].append(
                {"id": str(uuid.uuid4()), "tree_id": row["id"], "image_url": url, "uploaded_at": self._stamp()}
            )
        return row

    def _session(self, email, user_id):
        return AuthSession(
            user_id=user_id,
            email=email,
            access_token=f"token-{user_id}",
            refresh_token=f"refresh-{user_id}",
            expires_at=int(time.time()) + 3600,
        )

    def _embed(self, table, columns, row):
        out = dict(row)
        if table == "trees" and "tree_images(" in columns:
            out["tree_images"] = [dict(r) for r in self.tables["tree_images"] if r["tree_id"] == row["id"]]
        if table == "profiles" and "role:" in columns:
            role = next((r for r in self.tables["roles"] if r["id"] == row.get("role_id")), None)
            out["role"] = dict(role) if role else None
        return out

    @staticmethod
    def _matches(row, eq):
        return all(str(row.get(k)) == str(v) for k, v in (eq or {}).items())

    # ---------- auth ----------
    def sign_in_with_password(self, email, password):
        self._maybe_fail("sign_in")
        known = self.users.get(email)
        if not known or known[0] != password:
            raise AuthError("Invalid login credentials", status=400)
        return self._session(email, known[1])

    def refresh_session(self, refresh_token):
        self.refreshed.append(refresh_token)
        self._maybe_fail("refresh")
        for email, (_pw, user_id) in self.users.items():
            if refresh_token == f"refresh-{user_id}":
                return self._session(email, user_id)
        raise AuthError("Invalid Refresh Token", status=400)

    def sign_out(self):
        self.signed_out.append(self.access_token)

    # ---------- query ----------
    def select(self, table, columns="*", *, eq=None, search=None, order=None, ascending=True,
               offset=None, limit=None, count=False):
        self._maybe_fail(f"select:{table}")
        # Read back the same query string the real client sends.
        params = build_select_params(
            columns, eq=eq, search=search, order=order, ascending=ascending, offset=offset, limit=limit
        )
        rows = list(self.tables[table])
        for key, expr in params.items():
            if key in _RESERVED_PARAMS:
                continue
            rows = [r for r in rows if _filter_matches(r.get(key), expr)]
        if "or" in params:
            branches = [b.split(".", 1) for b in _split_logic_tree(params["or"])]
            rows = [r for r in rows if any(_filter_matches(r.get(c), e, quoted=True) for c, e in branches)]
        if "order" in params:
            col, direction = params["order"].rsplit(".", 1)
            rows.sort(key=lambda r: str(r.get(col) or ""), reverse=direction == "desc")
        total = len(rows)
        start = params.get("offset") or 0
        end = start + params["limit"] if "limit" in params else None
        rows = [self._embed(table, columns, r) for r in rows[start:end]]
        return QueryResult(rows=rows, count=total if count else None)

    def select_one(self, table, columns="*", *, eq):
        result = self.select(table, columns, eq=eq, limit=1)
        return result.rows[0] if result.rows else None

    def insert(self, table, rows):
        self._maybe_fail(f"insert:{table}")
        items = rows if isinstance(rows, list) else [rows]
        out = []
        for item in items:
            row = {"id": str(uuid.uuid4()), **item}
            if table == "trees":
                row.setdefault("created_at", self._stamp())
            if table == "tree_images":
                row.setdefault("uploaded_at", self._stamp())
            self.tables[table].append(row)
            out.append(dict(row))
        return out

    def update(self, table, values, *, eq):
        self._maybe_fail(f"update:{table}")
        out = []
        for row in self.tables[table]:
            if self._matches(row, eq):
                row.update(values)
                out.append(dict(row))
        return out

    def delete(self, table, *, eq):
        self._maybe_fail(f"delete:{table}")
        gone = [r for r in self.tables[table] if self._matches(r, eq)]
        self.tables[table] = [r for r in self.tables[table] if not self._matches(r, eq)]
        if table == "trees":
            ids = {r["id"] for r in gone}
            self.tables["tree_images"] = [r for r in self.tables["tree_images"] if r["tree_id"] not in ids]
        return gone

    # ---------- functions ----------
    def invoke_function(self, name, payload, *, authorization=None):
        self.function_calls.append({"name": name, "payload": payload, "authorization": authorization})
        self._maybe_fail(f"function:{name}")
        return self.function_responses.get(name, FunctionResponse(status=200, data={"ok": True}))


@pytest.fixture(autouse=True)
def _reset_login_attempts():
    auth_module._login_attempts.clear()
    yield
    auth_module._login_attempts.clear()


@pytest.fixture()
def backend():
    fake = FakeBackend()
    fake.tables["roles"] = [{"id": "role-admin", "name": "admin"}, {"id": "role-user", "name": "user"}]
    fake.add_user("admin@example.com", "pw-admin", ADMIN_ID, "Admin Person", "admin")
    fake.add_user("user@example.com", "pw-user", USER_ID, "Regular Person", "user")
    return fake


@pytest.fixture()
def app(tmp_path, monkeypatch, backend):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("SUPABASE_URL", "http://supabase.test")
    monkeypatch.setenv("SUPABASE_ANON_KEY", "anon-key")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("LOCAL_STORAGE_ROOT", str(tmp_path / "storage"))
    monkeypatch.setenv("CSRF_ENABLED", "0")
    for k in ("S3_ENDPOINT", "S3_REGION", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY", "STORAGE_BUCKET"):
        monkeypatch.delenv(k, raising=False)

    app = create_app()
    app.config["TESTING"] = True
    app.extensions["backend"] = backend
    return app


@pytest.fixture()
def client(app):
    return app.test_client()


def login(client, email="admin@example.com", password="pw-admin"):
    return client.post("/auth/login", data={"email": email, "password": password}, follow_redirects=False)


@pytest.fixture()
def admin_client(client):
    login(client)
    return client


@pytest.fixture()
def user_client(client):
    login(client, "user@example.com", "pw-user")
    return client
