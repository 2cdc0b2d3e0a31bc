from __future__ import annotations

import json
import os
import time
import urllib.error
import urllib.parse
import urllib.request
from dataclasses import dataclass, replace
from typing import Any


class BackendError(RuntimeError):
    def __init__(self, message: str, status: int | None = None, body: bytes = b"") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class AuthError(BackendError):
    pass


_IDEMPOTENT = frozenset({"GET", "HEAD", "DELETE"})


@dataclass(frozen=True)
class QueryResult:
    rows: list[dict[str, Any]]
    count: int | None = None


@dataclass(frozen=True)
class FunctionResponse:
    status: int
    data: Any

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@dataclass(frozen=True)
class AuthSession:
    user_id: str
    email: str
    access_token: str
    refresh_token: str
    expires_at: int

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "AuthSession":
        user = payload.get("user") or {}
        access_token = payload.get("access_token") or ""
        if not access_token or not user.get("id"):
            raise AuthError("Sign-in response did not include a session.")
        expires_at = payload.get("expires_at")
        if not expires_at:
            expires_at = int(time.time()) + int(payload.get("expires_in") or 3600)
        return cls(
            user_id=str(user["id"]),
            email=user.get("email") or "",
            access_token=access_token,
            refresh_token=payload.get("refresh_token") or "",
            expires_at=int(expires_at),
        )


def _error_message(raw: bytes, default: str) -> str:
    try:
        body = json.loads(raw.decode("utf-8"))
    except Exception:
        text = raw.decode("utf-8", errors="ignore").strip()
        return text[:300] or default
    if isinstance(body, dict):
        for key in ("error_description", "message", "msg", "error"):
            val = body.get(key)
            if isinstance(val, str) and val:
                return val
    return default


def _decode(raw: bytes) -> Any:
    if not raw:
        return None
    try:
        return json.loads(raw.decode("utf-8"))
    except Exception as e:
        raise BackendError("Invalid JSON from backend") from e


def _parse_content_range(value: str | None) -> int | None:
    # "0-11/42" or "*/0"
    if not value or "/" not in value:
        return None
    total = value.rsplit("/", 1)[1].strip()
    return int(total) if total.isdigit() else None


def ilike_pattern(term: str) -> str:
    """Double-quoted `*term*` pattern safe to embed in a logic tree."""
    escaped = term.replace("\\", "\\\\").replace('"', '\\"')
    return f'"*{escaped}*"'


def build_select_params(
    columns: str = "*",
    *,
    eq: dict[str, Any] | None = None,
    search: tuple[tuple[str, ...], str] | None = None,
    order: str | None = None,
    ascending: bool = True,
    offset: int | None = None,
    limit: int | None = None,
) -> dict[str, Any]:
    """
    Query-string parameters for a REST select.

    A one-column search is a plain `col=ilike.*term*` filter, whose value is
    taken literally. Several columns go in an `or=(...)` logic tree, where
    each pattern is double-quoted so commas and parentheses in the term stay
    part of it.
    """
    params: dict[str, Any] = {"select": columns}
    for col, val in (eq or {}).items():
        params[col] = f"eq.{val}"
    if search:
        search_cols, term = search
        if term:
            if len(search_cols) == 1:
                params[search_cols[0]] = f"ilike.*{term}*"
            else:
                pattern = ilike_pattern(term)
                params["or"] = "(" + ",".join(f"{c}.ilike.{pattern}" for c in search_cols) + ")"
    if order:
        params["order"] = f"{order}.{'asc' if ascending else 'desc'}"
    if offset is not None:
        params["offset"] = offset
    if limit is not None:
        params["limit"] = limit
    return params


@dataclass(frozen=True)
class SupabaseClient:
    """
    Thin client for the hosted platform: auth, query (REST), functions.

    Requests run as `access_token` when set so row-level policies apply,
    otherwise as the anonymous key.
    """

    url: str
    anon_key: str
    access_token: str | None = None
    timeout_seconds: int = 30
    retries: int = 3

    def with_token(self, access_token: str | None) -> "SupabaseClient":
        return replace(self, access_token=access_token)

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers = {
            "apikey": self.anon_key,
            "Authorization": f"Bearer {self.access_token or self.anon_key}",
            "Accept": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        data: bytes | None = None,
        headers: dict[str, str] | None = None,
    ) -> tuple[int, dict[str, str], bytes]:
        if not self.url:
            raise BackendError("SUPABASE_URL is not configured.")
        url = self.url.rstrip("/") + path
        if params:
            url += "?" + urllib.parse.urlencode({k: v for k, v in params.items() if v is not None})

        hdrs = self._headers(headers)
        if json_body is not None:
            data = json.dumps(json_body).encode("utf-8")
            hdrs.setdefault("Content-Type", "application/json")

        method = method.upper()
        attempts = self.retries + 1
        last_err: Exception | None = None
        for attempt in range(attempts):
            req = urllib.request.Request(url, data=data, method=method, headers=hdrs)
            try:
                with urllib.request.urlopen(req, timeout=self.timeout_seconds) as resp:
                    return resp.status, dict(resp.headers.items()), resp.read()
            except urllib.error.HTTPError as e:
                try:
                    raw = e.read()
                except Exception:
                    raw = b""
                retryable = e.code == 429 or (e.code >= 500 and method in _IDEMPOTENT)
                if retryable and attempt < attempts - 1:
                    time.sleep(min(1 * (attempt + 1), 5))
                    last_err = BackendError(f"HTTP {e.code}", status=e.code)
                    continue
                raise BackendError(_error_message(raw, f"HTTP {e.code} from backend"), status=e.code, body=raw) from e
            except urllib.error.URLError as e:
                last_err = e
                if method not in _IDEMPOTENT or attempt == attempts - 1:
                    break
                time.sleep(min(1 * (attempt + 1), 5))
        raise BackendError(f"Backend request failed: {last_err}")

    def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        _status, _headers, raw = self.request(method, path, **kwargs)
        return _decode(raw)

    # ---------- Auth ----------
    def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        try:
            payload = self._json(
                "POST",
                "/auth/v1/token",
                params={"grant_type": "password"},
                json_body={"email": email, "password": password},
            )
        except BackendError as e:
            raise AuthError(str(e), status=e.status) from e
        return AuthSession.from_payload(payload or {})

    def refresh_session(self, refresh_token: str) -> AuthSession:
        try:
            payload = self._json(
                "POST",
                "/auth/v1/token",
                params={"grant_type": "refresh_token"},
                json_body={"refresh_token": refresh_token},
            )
        except BackendError as e:
            raise AuthError(str(e), status=e.status) from e
        return AuthSession.from_payload(payload or {})

    def sign_out(self) -> None:
        self.request("POST", "/auth/v1/logout")

    # ---------- Query ----------
    def select(
        self,
        table: str,
        columns: str = "*",
        *,
        eq: dict[str, Any] | None = None,
        search: tuple[tuple[str, ...], str] | None = None,
        order: str | None = None,
        ascending: bool = True,
        offset: int | None = None,
        limit: int | None = None,
        count: bool = False,
    ) -> QueryResult:
        params = build_select_params(
            columns,
            eq=eq,
            search=search,
            order=order,
            ascending=ascending,
            offset=offset,
            limit=limit,
        )
        headers = {"Prefer": "count=exact"} if count else None
        _status, resp_headers, raw = self.request("GET", f"/rest/v1/{table}", params=params, headers=headers)
        rows = _decode(raw) or []
        total = None
        if count:
            content_range = next((v for k, v in resp_headers.items() if k.lower() == "content-range"), None)
            total = _parse_content_range(content_range)
        return QueryResult(rows=rows if isinstance(rows, list) else [rows], count=total)

    def select_one(self, table: str, columns: str = "*", *, eq: dict[str, Any]) -> dict[str, Any] | None:
        result = self.select(table, columns, eq=eq, limit=1)
        return result.rows[0] if result.rows else None

    def insert(self, table: str, rows: dict[str, Any] | list[dict[str, Any]]) -> list[dict[str, Any]]:
        out = self._json(
            "POST",
            f"/rest/v1/{table}",
            json_body=rows,
            headers={"Prefer": "return=representation"},
        )
        return out if isinstance(out, list) else ([out] if out else [])

    def update(self, table: str, values: dict[str, Any], *, eq: dict[str, Any]) -> list[dict[str, Any]]:
        if not eq:
            raise BackendError("Refusing to update without a filter.")
        out = self._json(
            "PATCH",
            f"/rest/v1/{table}",
            params={col: f"eq.{val}" for col, val in eq.items()},
            json_body=values,
            headers={"Prefer": "return=representation"},
        )
        return out if isinstance(out, list) else []

    def delete(self, table: str, *, eq: dict[str, Any]) -> list[dict[str, Any]]:
        if not eq:
            raise BackendError("Refusing to delete without a filter.")
        out = self._json(
            "DELETE",
            f"/rest/v1/{table}",
            params={col: f"eq.{val}" for col, val in eq.items()},
            headers={"Prefer": "return=representation"},
        )
        return out if isinstance(out, list) else []

    # ---------- Functions ----------
    def invoke_function(self, name: str, payload: dict[str, Any], *, authorization: str | None = None) -> FunctionResponse:
        """
        Call a platform function. Non-2xx responses are returned, not raised,
        so callers can pass the status and error body through.
        """
        headers = {"Content-Type": "application/json"}
        if authorization is not None:
            headers["Authorization"] = authorization
        no_retry = replace(self, retries=0)
        try:
            status, _headers, raw = no_retry.request(
                "POST",
                f"/functions/v1/{urllib.parse.quote(name)}",
                data=json.dumps(payload).encode("utf-8"),
                headers=headers,
            )
        except BackendError as e:
            if e.status is None:
                raise
            data = _safe_decode(e.body) if e.body else None
            return FunctionResponse(status=e.status, data=data if data is not None else {"error": str(e)})
        return FunctionResponse(status=status, data=_safe_decode(raw))


def _safe_decode(raw: bytes) -> Any:
    try:
        return _decode(raw)
    except BackendError:
        return {"error": raw.decode("utf-8", errors="ignore")[:300]}


def backend_from_config(config: dict) -> SupabaseClient:
    return SupabaseClient(
        url=(config.get("SUPABASE_URL") or "").strip().rstrip("/"),
        anon_key=(config.get("SUPABASE_ANON_KEY") or "").strip(),
        timeout_seconds=int(config.get("REQUEST_TIMEOUT_SECONDS") or 30),
    )


def service_client_from_env() -> SupabaseClient:
    """Client authenticated with the service-role key (scripts only)."""
    url = (os.environ.get("SUPABASE_URL") or "").strip().rstrip("/")
    key = (os.environ.get("SUPABASE_SERVICE_ROLE_KEY") or "").strip()
    if not url or not key:
        raise BackendError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required.")
    return SupabaseClient(url=url, anon_key=key, access_token=key)
