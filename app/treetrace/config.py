import os
from dataclasses import dataclass


@dataclass(frozen=True)
class Settings:
    secret_key: str
    env: str
    log_level: str

    supabase_url: str
    supabase_anon_key: str
    supabase_service_role_key: str
    request_timeout_seconds: int

    create_user_function: str
    delete_user_function: str

    storage_backend: str
    storage_bucket: str
    local_storage_root: str
    s3_endpoint: str
    s3_region: str
    s3_access_key_id: str
    s3_secret_access_key: str

    csrf_enabled: bool


def _getenv(name: str, default: str = "") -> str:
    return (os.environ.get(name) or default).strip()


def _getenv_bool(name: str, default: bool) -> bool:
    raw = _getenv(name)
    if not raw:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def _getenv_int(name: str, default: int) -> int:
    raw = _getenv(name)
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def load_settings() -> Settings:
    return Settings(
        secret_key=_getenv("SECRET_KEY", "change-me"),
        env=_getenv("ENV", "development"),
        log_level=_getenv("LOG_LEVEL", "INFO").upper(),
        supabase_url=_getenv("SUPABASE_URL", "").rstrip("/"),
        supabase_anon_key=_getenv("SUPABASE_ANON_KEY", ""),
        supabase_service_role_key=_getenv("SUPABASE_SERVICE_ROLE_KEY", ""),
        request_timeout_seconds=_getenv_int("REQUEST_TIMEOUT_SECONDS", 30),
        create_user_function=_getenv("CREATE_USER_FUNCTION", "create-user-by-admin"),
        delete_user_function=_getenv("DELETE_USER_FUNCTION", "delete-user-by-admin"),
        storage_backend=_getenv("STORAGE_BACKEND", "supabase"),
        storage_bucket=_getenv("STORAGE_BUCKET", "treeimages"),
        local_storage_root=_getenv("LOCAL_STORAGE_ROOT", ""),
        s3_endpoint=_getenv("S3_ENDPOINT", ""),
        s3_region=_getenv("S3_REGION", ""),
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", ""),
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", ""),
        csrf_enabled=_getenv_bool("CSRF_ENABLED", True),
    )


def load_config() -> dict:
    s = load_settings()
    is_production = s.env in ("prod", "production")
    return {
        "SECRET_KEY": s.secret_key,
        "ENV": s.env,
        "LOG_LEVEL": s.log_level,
        "SUPABASE_URL": s.supabase_url,
        "SUPABASE_ANON_KEY": s.supabase_anon_key,
        "SUPABASE_SERVICE_ROLE_KEY": s.supabase_service_role_key,
        "REQUEST_TIMEOUT_SECONDS": s.request_timeout_seconds,
        "CREATE_USER_FUNCTION": s.create_user_function,
        "DELETE_USER_FUNCTION": s.delete_user_function,
        "STORAGE_BACKEND": s.storage_backend,
        "STORAGE_BUCKET": s.storage_bucket,
        "LOCAL_STORAGE_ROOT": s.local_storage_root,
        "S3_ENDPOINT": s.s3_endpoint,
        "S3_REGION": s.s3_region,
        "S3_ACCESS_KEY_ID": s.s3_access_key_id,
        "S3_SECRET_ACCESS_KEY": s.s3_secret_access_key,
        "CSRF_ENABLED": s.csrf_enabled,
        # security defaults
        "SESSION_COOKIE_HTTPONLY": True,
        "SESSION_COOKIE_SAMESITE": "Lax",
        "SESSION_COOKIE_SECURE": is_production,  # Require HTTPS in production
        # file upload limits (25MB)
        "MAX_CONTENT_LENGTH": 25 * 1024 * 1024,
    }
