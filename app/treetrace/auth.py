from __future__ import annotations

import time
import uuid
from collections import defaultdict
from datetime import datetime, timedelta

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, session, url_for

from app.treetrace.audit import record_event
from app.treetrace.backend import AuthError, AuthSession, BackendError
from app.treetrace.db import db_session
from app.treetrace.models import CurrentUser
from app.treetrace.security import is_safe_next

bp = Blueprint("auth", __name__)
_login_attempts: dict[str, list[datetime]] = defaultdict(list)
_LOGIN_RATE_LIMIT = 5
_LOGIN_RATE_WINDOW = 300  # seconds
_REFRESH_MARGIN = 60  # seconds before expiry

_SESSION_KEYS = ("user_id", "email", "access_token", "refresh_token", "expires_at")


def _check_rate_limit(ip: str) -> bool:
    now = datetime.utcnow()
    cutoff = now - timedelta(seconds=_LOGIN_RATE_WINDOW)
    _login_attempts[ip] = [t for t in _login_attempts[ip] if t > cutoff]
    return len(_login_attempts[ip]) >= _LOGIN_RATE_LIMIT


def _record_attempt(ip: str) -> None:
    _login_attempts[ip].append(datetime.utcnow())


def _store_session(auth: AuthSession) -> None:
    session["user_id"] = auth.user_id
    session["email"] = auth.email
    session["access_token"] = auth.access_token
    session["refresh_token"] = auth.refresh_token
    session["expires_at"] = auth.expires_at


def clear_auth_session() -> None:
    for key in _SESSION_KEYS:
        session.pop(key, None)


def load_current_user() -> None:
    """
    Loads g.current_user from the signed session cookie, refreshing the
    access token shortly before it expires.
    Also assigns a simple per-request request_id (for audit/log correlation).
    """
    if not getattr(g, "request_id", None):
        g.request_id = uuid.uuid4().hex
    g.db_session = None
    if request.path.startswith(("/static/", "/health", "/healthz")):
        g.current_user = None
        return

    access_token = session.get("access_token")
    user_id = session.get("user_id")
    if not access_token or not user_id:
        g.current_user = None
        return

    expires_at = int(session.get("expires_at") or 0)
    if expires_at - time.time() < _REFRESH_MARGIN:
        refresh_token = session.get("refresh_token") or ""
        try:
            if not refresh_token:
                raise AuthError("No refresh token in session.")
            _store_session(current_app.extensions["backend"].refresh_session(refresh_token))
        except BackendError as e:
            current_app.logger.warning(
                "Session refresh failed (clearing session, request_id=%s): %s", g.request_id, e
            )
            clear_auth_session()
            g.current_user = None
            return

    g.current_user = CurrentUser(
        id=str(session["user_id"]),
        email=session.get("email") or "",
        access_token=session["access_token"],
        refresh_token=session.get("refresh_token") or "",
        expires_at=int(session.get("expires_at") or 0),
    )


@bp.get("/login")
def login_get():
    if getattr(g, "current_user", None):
        return redirect(url_for("trees.dashboard"))
    nxt = (request.args.get("next") or "").strip()
    return render_template("auth/login.html", next=nxt)


@bp.post("/login")
def login_post():
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    nxt = (request.form.get("next") or "").strip()
    ip = request.remote_addr or "unknown"

    if _check_rate_limit(ip):
        flash("Too many login attempts. Please wait 5 minutes.", "danger")
        return redirect(url_for("auth.login_get"))

    if not email or not password:
        flash("Email and password are required.", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))

    _record_attempt(ip)

    try:
        auth = current_app.extensions["backend"].sign_in_with_password(email, password)
    except AuthError as e:
        record_event(
            actor=None,
            action="auth.login_failed",
            entity_type="User",
            entity_id=email,
            reason=str(e),
            metadata={"email": email},
        )
        flash(str(e) or "Invalid credentials.", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))
    except BackendError:
        current_app.logger.exception("Login POST failed (email=%s request_id=%s)", email, getattr(g, "request_id", None))
        flash("An unexpected error occurred", "danger")
        return redirect(url_for("auth.login_get", next=nxt or None))

    _store_session(auth)
    _login_attempts[ip].clear()
    actor = CurrentUser(
        id=auth.user_id,
        email=auth.email,
        access_token=auth.access_token,
        refresh_token=auth.refresh_token,
        expires_at=auth.expires_at,
    )
    record_event(actor=actor, action="auth.login", entity_type="User", entity_id=auth.user_id)
    current_app.logger.info("Login successful (user_id=%s)", auth.user_id)
    # Optional "next" redirect (only allow local paths to avoid open redirects).
    if nxt and is_safe_next(nxt):
        return redirect(nxt)
    return redirect(url_for("trees.dashboard"))


@bp.route("/logout", methods=["GET", "POST"])
def logout():
    user = getattr(g, "current_user", None)
    if user:
        try:
            db_session().sign_out()
        except BackendError as e:
            current_app.logger.warning("Logout error (request_id=%s): %s", getattr(g, "request_id", None), e)
        record_event(actor=user, action="auth.logout", entity_type="User", entity_id=user.id)
    clear_auth_session()
    return redirect(url_for("auth.login_get"))
