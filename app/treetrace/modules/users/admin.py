from __future__ import annotations

from flask import Blueprint, current_app, flash, g, redirect, render_template, request, url_for

from app.treetrace.auth import clear_auth_session
from app.treetrace.backend import BackendError
from app.treetrace.constants import ADMIN_PAGE_SIZE, DEFAULT_ROLE
from app.treetrace.db import db_session
from app.treetrace.models import CurrentUser
from app.treetrace.modules.users.service import (
    UserAdminError,
    change_role,
    create_user,
    delete_user,
    list_profiles,
    list_roles,
    validate_new_user,
)
from app.treetrace.pagination import Page, parse_page
from app.treetrace.rbac import require_admin

bp = Blueprint("admin", __name__)


def _current_user() -> CurrentUser:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _back_to_list():
    """Redirect to the user list, keeping the page and search the form was posted from."""
    args = {}
    page = parse_page(request.form.get("page"))
    search = (request.form.get("search") or "").strip()
    if page:
        args["page"] = page
    if search:
        args["search"] = search
    return redirect(url_for("admin.index", **args))


# ---------- List ----------
@bp.get("/")
@require_admin
def index():
    client = db_session()
    search = (request.args.get("search") or "").strip()
    page = Page(page=parse_page(request.args.get("page")), page_size=ADMIN_PAGE_SIZE)

    roles = []
    try:
        roles = list_roles(client)
    except BackendError as e:
        current_app.logger.error("Error fetching roles (request_id=%s): %s", g.request_id, e)
        flash("Failed to load roles.", "danger")

    profiles = []
    try:
        profiles, page = list_profiles(client, page, search)
    except BackendError as e:
        current_app.logger.error("Error fetching users (request_id=%s): %s", g.request_id, e)
        flash("Failed to load users.", "danger")

    def build_url(p):
        args = {"page": p}
        if search:
            args["search"] = search
        return url_for("admin.index", **args)

    default_role = DEFAULT_ROLE if any(r.name == DEFAULT_ROLE for r in roles) else ""
    return render_template(
        "admin/users.html",
        profiles=profiles,
        roles=roles,
        search=search,
        page=page,
        build_url=build_url,
        default_role=default_role,
        current_user_id=_current_user().id,
    )


# ---------- Role ----------
@bp.post("/users/<profile_id>/role")
@require_admin
def user_role_post(profile_id: str):
    u = _current_user()
    client = db_session()
    role_name = (request.form.get("role") or "").strip()
    try:
        roles = list_roles(client)
        role = change_role(client, profile_id, role_name, roles, u)
    except UserAdminError as e:
        flash(str(e), "danger")
        return _back_to_list()
    except BackendError as e:
        current_app.logger.error("Error updating user role (profile_id=%s request_id=%s): %s", profile_id, g.request_id, e)
        flash(f"Failed to update role for {profile_id[:8]}...: {e}", "danger")
        return _back_to_list()

    flash(f"Role for {profile_id[:8]}... updated to {role.name}", "success")
    return _back_to_list()


# ---------- Create ----------
@bp.post("/users/new")
@require_admin
def user_new_post():
    u = _current_user()
    email = (request.form.get("email") or "").strip().lower()
    password = request.form.get("password") or ""
    role_name = (request.form.get("role") or "").strip()

    errors = validate_new_user(email, password, role_name)
    if errors:
        for e in errors:
            flash(e, "danger")
        return redirect(url_for("admin.index"))

    try:
        create_user(db_session(), current_app.config["CREATE_USER_FUNCTION"], email, password, role_name, u)
    except (UserAdminError, BackendError) as e:
        current_app.logger.error("Error creating user (request_id=%s): %s", g.request_id, e)
        flash(str(e) or "An error occurred during user creation.", "danger")
        return redirect(url_for("admin.index"))

    flash(f'User "{email}" created with role "{role_name}" successfully!', "success")
    # first page, no search, so the new user is visible
    return redirect(url_for("admin.index"))


# ---------- Delete ----------
@bp.post("/users/<user_id>/delete")
@require_admin
def user_delete_post(user_id: str):
    u = _current_user()
    try:
        delete_user(db_session(), current_app.config["DELETE_USER_FUNCTION"], user_id, u)
    except (UserAdminError, BackendError) as e:
        current_app.logger.error("Error deleting user (user_id=%s request_id=%s): %s", user_id, g.request_id, e)
        flash(str(e) or "An error occurred during user deletion.", "danger")
        return _back_to_list()

    if user_id == u.id:
        clear_auth_session()
        flash("Your account was deleted.", "info")
        return redirect(url_for("auth.login_get"))

    flash(f"User {user_id[:8]}... deleted successfully.", "success")
    return redirect(url_for("admin.index"))
