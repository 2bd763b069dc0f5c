"""Environment-driven configuration."""

import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() in ("1", "true", "yes")


@dataclass(frozen=True)
class Settings:
    env: Optional[str] = os.getenv("ENV")
    commit_hash: Optional[str] = os.getenv("COMMIT_HASH")
    host: str = os.getenv("HOST", "0.0.0.0")  # nosec B104
    port: int = int(os.getenv("PORT", "8000"))
    log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

    # Relational store
    database_url: str = os.getenv(
        "DATABASE_URL", "sqlite+aiosqlite:///./coach_messaging.db"
    )
    sql_debug: bool = _flag("SQL_DEBUG")
    db_create_all: bool = _flag("DB_CREATE_ALL")

    # Realtime delivery; in-process fan-out when unset
    redis_url: Optional[str] = os.getenv("REDIS_URL") or None

    # Object storage for attachments
    storage_url: str = os.getenv("STORAGE_URL", "http://localhost:8003").rstrip("/")
    storage_public_url: str = os.getenv("STORAGE_PUBLIC_URL", "").rstrip("/")
    storage_bucket: str = os.getenv("STORAGE_BUCKET", "message-attachments")
    storage_api_key: str = os.getenv("STORAGE_API_KEY", "")

    # External profile service (coaches and clients)
    profile_service_url: str = os.getenv("PROFILE_SERVICE_URL", "").rstrip("/")
    profile_service_api_key: str = os.getenv("PROFILE_SERVICE_API_KEY", "")

    http_timeout_seconds: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10"))

    @property
    def is_prod(self) -> bool:
        return self.env == "prod"


S = Settings()

if S.is_prod and not S.commit_hash:
    raise ValueError("COMMIT_HASH is required for production environments")
