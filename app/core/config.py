from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Literal

AppEnv = Literal["dev", "test", "prod"]
LogLevel = Literal["debug", "info", "warning", "error"]


def _getenv(name: str, default: str) -> str:
    return os.environ.get(name, default).strip()


def _getint(name: str, default: int) -> int:
    raw = _getenv(name, str(default))
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer (got {raw!r})") from None


@dataclass(frozen=True)
class Settings:
    app_env: AppEnv
    log_level: LogLevel
    log_json: bool
    port: int
    database_url: str | None
    redis_url: str | None

    # File storage
    upload_dir: str = "./uploads"
    max_upload_mb: int = 10
    download_url_ttl_seconds: int = 3600
    s3_endpoint: str | None = None
    s3_access_key_id: str | None = None
    s3_secret_access_key: str | None = None
    s3_bucket: str | None = None
    s3_region: str = "auto"

    # Membership
    invite_ttl_hours: int = 24

    @property
    def is_dev(self) -> bool:
        return self.app_env == "dev"

    @property
    def is_test(self) -> bool:
        return self.app_env == "test"

    @property
    def is_prod(self) -> bool:
        return self.app_env == "prod"

    @property
    def max_upload_bytes(self) -> int:
        return self.max_upload_mb * 1024 * 1024

    @property
    def object_storage_configured(self) -> bool:
        return bool(
            self.s3_endpoint
            and self.s3_access_key_id
            and self.s3_secret_access_key
            and self.s3_bucket
        )


def load_settings() -> Settings:
    app_env_raw = _getenv("APP_ENV", "dev").lower()
    log_level_raw = _getenv("LOG_LEVEL", "info").lower()

    if app_env_raw not in ("dev", "test", "prod"):
        raise ValueError(f"APP_ENV must be dev|test|prod (got {app_env_raw!r})")

    if log_level_raw not in ("debug", "info", "warning", "error"):
        raise ValueError(
            f"LOG_LEVEL must be debug|info|warning|error (got {log_level_raw!r})"
        )

    port = _getint("PORT", 8000)
    max_upload_mb = _getint("MAX_UPLOAD_MB", 10)
    if max_upload_mb <= 0:
        raise ValueError(f"MAX_UPLOAD_MB must be positive (got {max_upload_mb})")

    invite_ttl_hours = _getint("INVITE_TTL_HOURS", 24)
    if invite_ttl_hours <= 0:
        raise ValueError(
            f"INVITE_TTL_HOURS must be positive (got {invite_ttl_hours})"
        )

    return Settings(  # type: ignore[arg-type]
        app_env=app_env_raw,
        log_level=log_level_raw,
        log_json=_getenv("LOG_JSON", "false").lower() in ("1", "true", "yes"),
        port=port,
        database_url=_getenv("DATABASE_URL", "") or None,
        redis_url=_getenv("REDIS_URL", "") or None,
        upload_dir=_getenv("UPLOAD_DIR", "./uploads"),
        max_upload_mb=max_upload_mb,
        download_url_ttl_seconds=_getint("DOWNLOAD_URL_TTL_SECONDS", 3600),
        s3_endpoint=_getenv("S3_ENDPOINT", "") or None,
        s3_access_key_id=_getenv("S3_ACCESS_KEY_ID", "") or None,
        s3_secret_access_key=_getenv("S3_SECRET_ACCESS_KEY", "") or None,
        s3_bucket=_getenv("S3_BUCKET", "") or None,
        s3_region=_getenv("S3_REGION", "auto"),
        invite_ttl_hours=invite_ttl_hours,
    )


# Module-level singleton so imports are cheap
SETTINGS = load_settings()
