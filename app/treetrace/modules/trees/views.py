from __future__ import annotations

from flask import Blueprint, abort, current_app, flash, g, redirect, render_template, request, url_for

from app.treetrace.backend import BackendError
from app.treetrace.constants import TREES_PAGE_SIZE
from app.treetrace.db import db_session, request_storage
from app.treetrace.models import CurrentUser
from app.treetrace.modules.trees.service import (
    UploadedImage,
    create_tree,
    delete_tree,
    form_values,
    gallery_index,
    get_tree,
    list_trees,
    replace_tree_images,
    update_tree,
    upload_tree_images,
    validate_images,
    validate_tree_form,
)
from app.treetrace.pagination import Page, parse_page
from app.treetrace.rbac import require_admin, require_login, user_is_admin
from app.treetrace.storage import StorageError

bp = Blueprint("trees", __name__)


def _current_user() -> CurrentUser:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _uploaded_images() -> list[UploadedImage]:
    files = []
    for f in request.files.getlist("images"):
        if not f or not f.filename:
            continue
        files.append(
            UploadedImage(
                filename=f.filename,
                content_type=(f.mimetype or "application/octet-stream").strip(),
                data=f.read(),
            )
        )
    return files


def _load_tree_or_404(tree_id: str):
    try:
        tree = get_tree(db_session(), tree_id)
    except BackendError as e:
        current_app.logger.error("Error fetching tree %s (request_id=%s): %s", tree_id, g.request_id, e)
        tree = None
    if not tree:
        abort(404)
    return tree


# ---------- List ----------
@bp.get("/dashboard")
@require_login
def dashboard():
    search = (request.args.get("q") or "").strip()
    page = Page(page=parse_page(request.args.get("page")), page_size=TREES_PAGE_SIZE)

    trees = []
    try:
        trees, page = list_trees(db_session(), page, search)
    except BackendError as e:
        current_app.logger.error("Error fetching trees (request_id=%s): %s", g.request_id, e)
        flash("Failed to load trees.", "danger")

    def build_url(p):
        args = {"page": p}
        if search:
            args["q"] = search
        return url_for("trees.dashboard", **args)

    return render_template(
        "trees/list.html",
        trees=trees,
        search=search,
        page=page,
        build_url=build_url,
        is_admin=user_is_admin(),
    )


# ---------- New ----------
@bp.get("/trees/new")
@require_admin
def tree_new_get():
    return render_template("trees/form.html", tree=None, values=form_values())


@bp.post("/trees/new")
@require_admin
def tree_new_post():
    u = _current_user()
    payload, errors = validate_tree_form(request.form)
    images = _uploaded_images()
    errors.extend(validate_images(images))
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("trees/form.html", tree=None, values=form_values(form=request.form))

    client = db_session()
    try:
        tree = create_tree(client, payload, u)
        if images:
            upload_tree_images(client, request_storage(), tree.id, images, u)
    except (BackendError, StorageError) as e:
        current_app.logger.error("Form submission error (request_id=%s): %s", g.request_id, e)
        flash(str(e) or "An unexpected error occurred during submission.", "danger")
        return render_template("trees/form.html", tree=None, values=form_values(form=request.form))

    flash("Tree created.", "success")
    return redirect(url_for("trees.tree_detail", tree_id=tree.id))


# ---------- Detail ----------
@bp.get("/trees/<tree_id>")
@require_login
def tree_detail(tree_id: str):
    tree = _load_tree_or_404(tree_id)
    total = len(tree.images)
    current = gallery_index(request.args.get("image"), total)
    return render_template(
        "trees/detail.html",
        tree=tree,
        is_admin=user_is_admin(),
        image_index=current,
        prev_index=(current - 1) % total if total else 0,
        next_index=(current + 1) % total if total else 0,
        viewing=request.args.get("image") is not None and total > 0,
    )


# ---------- Edit ----------
@bp.get("/trees/edit")
@require_admin
def tree_edit_by_query():
    tree_id = (request.args.get("id") or "").strip()
    if not tree_id:
        abort(404)
    return redirect(url_for("trees.tree_edit_get", tree_id=tree_id))


@bp.get("/trees/<tree_id>/edit")
@require_admin
def tree_edit_get(tree_id: str):
    tree = _load_tree_or_404(tree_id)
    return render_template("trees/form.html", tree=tree, values=form_values(tree))


@bp.post("/trees/<tree_id>/edit")
@require_admin
def tree_edit_post(tree_id: str):
    u = _current_user()
    tree = _load_tree_or_404(tree_id)

    payload, errors = validate_tree_form(request.form)
    images = _uploaded_images()
    errors.extend(validate_images(images))
    if errors:
        for e in errors:
            flash(e, "danger")
        return render_template("trees/form.html", tree=tree, values=form_values(form=request.form))

    client = db_session()
    try:
        update_tree(client, tree, payload, u)
        if images:
            replace_tree_images(client, request_storage(), tree, images, u)
    except (BackendError, StorageError) as e:
        current_app.logger.error("Form submission error (tree_id=%s request_id=%s): %s", tree_id, g.request_id, e)
        flash(str(e) or "An unexpected error occurred during submission.", "danger")
        return render_template("trees/form.html", tree=tree, values=form_values(form=request.form))

    flash("Tree updated.", "success")
    return redirect(url_for("trees.tree_detail", tree_id=tree_id))


# ---------- Delete ----------
@bp.post("/trees/<tree_id>/delete")
@require_admin
def tree_delete(tree_id: str):
    u = _current_user()
    tree = _load_tree_or_404(tree_id)
    try:
        delete_tree(db_session(), request_storage(), tree, u)
    except (BackendError, StorageError) as e:
        current_app.logger.error("Failed to delete tree %s (request_id=%s): %s", tree_id, g.request_id, e)
        flash("Failed to delete tree. Please try again.", "danger")
        return redirect(url_for("trees.tree_detail", tree_id=tree_id))

    flash("Tree deleted.", "success")
    return redirect(url_for("trees.dashboard"))
