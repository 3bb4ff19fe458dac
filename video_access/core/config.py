from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]
CapScope = Literal["user", "module"]
AuditReadFailurePolicy = Literal["fail_open", "fail_closed"]


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _getint(name: str, default: int, *, minimum: int = 0) -> int:
    raw = _getenv(name, str(default))
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None
    if value < minimum:
        raise ValueError(f"{name} must be >= {minimum} (got {value})")
    return value


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None
    jwt_public_key_pem: str | None = None

    # --- object storage / capability URLs ---
    video_bucket: str | None = None
    video_prefix: str = "course-videos/"
    s3_endpoint_url: str | None = None
    s3_region: str = "us-east-1"
    url_signing_secret: str = "dev-only-url-signing-secret"
    local_media_base_url: str = "http://localhost:8000/media"
    default_url_ttl_minutes: int = 60

    # --- streaming sessions ---
    max_concurrent_sessions: int = 1
    session_idle_timeout_seconds: int = 1800
    session_cap_scope: CapScope = "user"

    # --- abuse throttling ---
    failed_attempt_threshold: int = 10
    failed_attempt_window_seconds: int = 3600
    audit_read_failure_policy: AuditReadFailurePolicy = "fail_closed"

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()
    port_raw = _getenv("PORT", "8000")

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    try:
        port = int(port_raw)
    except ValueError:
        raise ValueError(f"PORT must be an integer (got {port_raw!r})") from None

    cap_scope = _getenv("SESSION_CAP_SCOPE", "user").lower()
    if cap_scope not in ("user", "module"):
        raise ValueError(f"SESSION_CAP_SCOPE must be user|module (got {cap_scope!r})")

    read_policy = _getenv("AUDIT_READ_FAILURE_POLICY", "fail_closed").lower()
    if read_policy not in ("fail_open", "fail_closed"):
        raise ValueError(
            "AUDIT_READ_FAILURE_POLICY must be fail_open|fail_closed "
            f"(got {read_policy!r})"
        )

    default_ttl = _getint("DEFAULT_URL_TTL_MINUTES", 60, minimum=1)
    if default_ttl > 120:
        raise ValueError(f"DEFAULT_URL_TTL_MINUTES must be <= 120 (got {default_ttl})")

    url_signing_secret = _getenv("URL_SIGNING_SECRET", "")
    if not url_signing_secret:
        if app_env_raw == "prod":
            raise ValueError("URL_SIGNING_SECRET is required when APP_ENV=prod")
        url_signing_secret = "dev-only-url-signing-secret"

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getenv("LOG_JSON", "false").lower() in ("1", "true", "yes"),
        port=port,
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
        jwt_public_key_pem=_getenv("JWT_PUBLIC_KEY_PEM", "") or None,
        video_bucket=_getenv("VIDEO_BUCKET", "") or None,
        video_prefix=_getenv("VIDEO_PREFIX", "course-videos/"),
        s3_endpoint_url=_getenv("S3_ENDPOINT_URL", "") or None,
        s3_region=_getenv("S3_REGION", "us-east-1"),
        url_signing_secret=url_signing_secret,
        local_media_base_url=_getenv(
            "LOCAL_MEDIA_BASE_URL", "http://localhost:8000/media"
        ).rstrip("/"),
        default_url_ttl_minutes=default_ttl,
        max_concurrent_sessions=_getint("MAX_CONCURRENT_SESSIONS", 1, minimum=1),
        session_idle_timeout_seconds=_getint(
            "SESSION_IDLE_TIMEOUT_SECONDS", 1800, minimum=1
        ),
        session_cap_scope=cap_scope,
        failed_attempt_threshold=_getint("FAILED_ATTEMPT_THRESHOLD", 10),
        failed_attempt_window_seconds=_getint(
            "FAILED_ATTEMPT_WINDOW_SECONDS", 3600, minimum=1
        ),
        audit_read_failure_policy=read_policy,
    )


SETTINGS = load_settings()
