import mimetypes

from flask import Blueprint, abort, current_app, g, redirect, send_file, url_for

from app.treetrace.storage import PUBLIC_PREFIX, LocalStorage, StorageError

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    if getattr(g, "current_user", None):
        return redirect(url_for("trees.dashboard"))
    return redirect(url_for("auth.login_get"))


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for probes. No backend access, minimal overhead.
    """
    return "ok", 200


@bp.get(PUBLIC_PREFIX + "/<bucket>/<path:key>")
def local_media(bucket: str, key: str):
    """Serves uploaded images when STORAGE_BACKEND=local."""
    storage = current_app.extensions.get("storage")
    if not isinstance(storage, LocalStorage) or bucket != storage.bucket:
        abort(404)
    try:
        if not storage.exists(key):
            abort(404)
        fobj = storage.open(key)
    except StorageError:
        abort(404)
    mimetype = mimetypes.guess_type(key)[0] or "application/octet-stream"
    return send_file(fobj, mimetype=mimetype)
