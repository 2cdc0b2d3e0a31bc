from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import current_app, flash, g, redirect, request, url_for

from app.treetrace.backend import BackendError
from app.treetrace.constants import PROFILE_WITH_ROLE, PROFILES_TABLE
from app.treetrace.db import db_session
from app.treetrace.models import CurrentUser, Profile

_UNSET = object()


def current_profile() -> Profile | None:
    """The signed-in user's profile with its role, fetched once per request."""
    cached = getattr(g, "current_profile", _UNSET)
    if cached is not _UNSET:
        return cached
    user: CurrentUser | None = getattr(g, "current_user", None)
    profile = None
    if user:
        try:
            row = db_session().select_one(PROFILES_TABLE, PROFILE_WITH_ROLE, eq={"id": user.id})
            profile = Profile.from_row(row) if row else None
        except BackendError as e:
            current_app.logger.error(
                "Error fetching user profile (user_id=%s request_id=%s): %s",
                user.id,
                getattr(g, "request_id", None),
                e,
            )
    g.current_profile = profile
    return profile


def user_is_admin() -> bool:
    profile = current_profile()
    return bool(profile and profile.is_admin)


def _login_redirect():
    nxt = request.full_path or request.path
    # Avoid trailing '?' from full_path when there is no query string.
    if nxt.endswith("?"):
        nxt = nxt[:-1]
    return redirect(url_for("auth.login_get", next=nxt))


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        if not getattr(g, "current_user", None):
            return _login_redirect()
        return fn(*args, **kwargs)

    return wrapped


def require_admin(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user: CurrentUser | None = getattr(g, "current_user", None)
        # Unauthenticated → redirect to login (UX + reduces confusion).
        if not user:
            return _login_redirect()
        # Authenticated but not an admin → back to the catalog
        if not user_is_admin():
            current_app.logger.warning(
                "Access denied: user %s is not an admin (request_id=%s)", user.id, getattr(g, "request_id", None)
            )
            flash("Admin access required.", "danger")
            return redirect(url_for("trees.dashboard"))
        return fn(*args, **kwargs)

    return wrapped
