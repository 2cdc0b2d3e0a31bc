import logging
from datetime import timedelta

from flask import Flask, g, render_template, request, session
from dotenv import load_dotenv

from app.treetrace.config import load_config
from app.treetrace.db import init_backend, teardown_db_session
from app.treetrace.routes import bp as routes_bp
from app.treetrace.auth import bp as auth_bp, load_current_user
from app.treetrace.api import bp as api_bp
from app.treetrace.modules.trees.views import bp as trees_bp
from app.treetrace.modules.users.admin import bp as admin_bp


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    level = getattr(logging, str(app.config.get("LOG_LEVEL") or "INFO"), logging.INFO)
    app.logger.setLevel(level)
    logging.getLogger("treetrace.audit").setLevel(level)

    from app.treetrace.security import ensure_csrf_token, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_user() -> dict:
        from app.treetrace.rbac import user_is_admin

        return {"current_user": getattr(g, "current_user", None), "is_admin_user": user_is_admin}

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz", "/api/")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if not app.config.get("CSRF_ENABLED", True):
            return None
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Allow safe auth endpoints to pass through (login/logout)
            if (request.endpoint or "").startswith("auth."):
                return None
            if not validate_csrf(request):
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("SUPABASE_URL") or not app.config.get("SUPABASE_ANON_KEY"):
            raise RuntimeError("SUPABASE_URL and SUPABASE_ANON_KEY are required in production.")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if app.config.get("STORAGE_BACKEND") == "local":
            raise RuntimeError("STORAGE_BACKEND=local is for development only.")

    init_backend(app)

    # Storage config check (fail loudly on misconfiguration)
    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = []
        for key in ("S3_ENDPOINT", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY"):
            if not app.config.get(key):
                missing_s3.append(key)
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(trees_bp)
    app.register_blueprint(admin_bp, url_prefix="/admin")
    app.register_blueprint(api_bp, url_prefix="/api")

    app.before_request(load_current_user)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        return render_template("errors/500.html", request_id=rid), 500

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        return render_template("errors/404.html"), 404

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        app.logger.warning("Forbidden: path=%s request_id=%s", request.path, getattr(g, "request_id", None))
        return render_template("errors/403.html"), 403

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        from flask import flash, redirect, url_for

        flash("File too large. Maximum upload size is 25MB.", "danger")
        referrer = request.referrer
        if referrer and referrer.startswith(request.host_url):
            return redirect(referrer), 302
        return redirect(url_for("trees.dashboard")), 302

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
