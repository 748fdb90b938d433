from __future__ import annotations
from pydantic_settings import BaseSettings
from pydantic import Field

class Settings(BaseSettings):
    # required only when CHECKIN_BACKEND=sql
    database_url: str | None = Field(default=None, alias="DATABASE_URL")

    # Deduplication store: sql | redis | http | local (device-local only)
    checkin_backend: str = Field("sql", alias="CHECKIN_BACKEND")
    checkin_service_url: str = Field("http://localhost:8004", alias="CHECKIN_SERVICE_URL")
    store_timeout_seconds: float = Field(default=5.0, alias="STORE_TIMEOUT_SECONDS")

    # Guest directory (display names)
    guest_directory_url: str | None = Field(default=None, alias="GUEST_DIRECTORY_URL")
    lookup_timeout_seconds: float = Field(default=2.0, alias="LOOKUP_TIMEOUT_SECONDS")
    placeholder_name: str = Field("Guest", alias="PLACEHOLDER_NAME")

    # Scan sessions
    suppression_window_seconds: float = Field(default=1.5, alias="SUPPRESSION_WINDOW_SECONDS")
    audit_log_size: int = Field(default=200, alias="AUDIT_LOG_SIZE")
    device_id: str | None = Field(default=None, alias="DEVICE_ID")

    # Redis
    redis_url: str = Field("redis://127.0.0.1:6379/0", alias="REDIS_URL")

    # NATS
    nats_enabled: bool = Field(default=True, alias="NATS_ENABLED")
    nats_urls: str = Field("nats://127.0.0.1:4222", alias="NATS_URLS")
    nats_subject_checkin: str = Field("checkins.recorded", alias="NATS_SUBJECT_CHECKIN")

    log_level: str = Field("INFO", alias="LOG_LEVEL")
    cors_origins: str = Field(
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000",
        alias="CORS_ORIGINS",
    )

    class Config:
        env_file = ".env"
        env_prefix = ""
        case_sensitive = False

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

_settings: Settings | None = None
def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
