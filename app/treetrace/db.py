from __future__ import annotations

from flask import Flask, current_app, g

from app.treetrace.backend import SupabaseClient, backend_from_config
from app.treetrace.storage import Storage, SupabaseStorage, storage_from_config


def init_backend(app: Flask) -> None:
    client = backend_from_config(app.config)
    app.extensions["backend"] = client
    if (app.config.get("STORAGE_BACKEND") or "supabase").strip().lower() != "supabase":
        app.extensions["storage"] = storage_from_config(app.config)
    if not client.url:
        app.logger.warning("SUPABASE_URL is not set; remote calls will fail.")


def db_session(app: Flask | None = None) -> SupabaseClient:
    """
    Request-scoped client. Runs as the signed-in user's access token so the
    platform's row-level policies apply; anonymous otherwise.
    """
    if getattr(g, "db_session", None) is not None:
        return g.db_session
    if app is None:
        app = current_app
    user = getattr(g, "current_user", None)
    token = user.access_token if user else None
    g.db_session = app.extensions["backend"].with_token(token)
    return g.db_session


def request_storage(app: Flask | None = None) -> Storage:
    if app is None:
        app = current_app
    storage = app.extensions.get("storage")
    if storage is not None:
        return storage
    return SupabaseStorage(client=db_session(app), bucket=app.config.get("STORAGE_BUCKET") or "treeimages")


def teardown_db_session(_exc: BaseException | None) -> None:
    g.db_session = None
