import os
from typing import Optional

from pydantic import BaseModel

from .errors import ConfigurationError


def _flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).lower() == "true"


class Settings(BaseModel):
    signing_secret: str
    session_secret: str
    database_url: str = "sqlite:///./checkpoint_gate.db"
    redis_url: str = "redis://localhost:6379/0"
    credential_ttl_days: int = 30
    enforce_unlocked_checkpoints: bool = True
    audit_outbox_enabled: bool = True
    idempotency_ttl_seconds: int = 300
    db_timeout_seconds: int = 30
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        secret = os.environ.get("CHECKIN_SIGNING_SECRET", "")
        if not secret:
            raise ConfigurationError("CHECKIN_SIGNING_SECRET is not set")

        return cls(
            signing_secret=secret,
            session_secret=os.environ.get("SESSION_SECRET") or secret,
            database_url=os.environ.get("DATABASE_URL", "sqlite:///./checkpoint_gate.db"),
            redis_url=os.environ.get("REDIS_URL", "redis://localhost:6379/0"),
            credential_ttl_days=int(os.environ.get("CREDENTIAL_TTL_DAYS", "30")),
            enforce_unlocked_checkpoints=_flag("ENFORCE_UNLOCKED_CHECKPOINTS", "true"),
            audit_outbox_enabled=_flag("AUDIT_OUTBOX_ENABLED", "true"),
            idempotency_ttl_seconds=int(os.environ.get("IDEMPOTENCY_TTL_SECONDS", "300")),
            db_timeout_seconds=int(os.environ.get("DB_TIMEOUT_SECONDS", "30")),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )


_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings.from_env()
    return _settings
