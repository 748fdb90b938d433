from __future__ import annotations
from fastapi import Request

from .core.config import Settings, get_settings
from .db import get_engine, get_session_maker
from .services.backends import (
    CheckinBackend, HttpCheckinBackend, LocalCheckinBackend, RedisCheckinBackend, SqlCheckinBackend,
)
from .services.dedup import StoreRegistry
from .services.directory import GuestDirectory, HttpGuestDirectory, SqlGuestDirectory

def build_backend(settings: Settings) -> CheckinBackend:
    kind = settings.checkin_backend.strip().lower()
    if kind == "sql":
        return SqlCheckinBackend(get_session_maker(), get_engine().dialect.name)
    if kind == "redis":
        return RedisCheckinBackend()
    if kind == "http":
        return HttpCheckinBackend(settings.checkin_service_url, timeout=settings.store_timeout_seconds)
    if kind == "local":
        return LocalCheckinBackend()
    raise ValueError(f"unknown CHECKIN_BACKEND {settings.checkin_backend!r}")

def build_directory(settings: Settings) -> GuestDirectory | None:
    if settings.guest_directory_url:
        return HttpGuestDirectory(settings.guest_directory_url, timeout=settings.lookup_timeout_seconds)
    if settings.checkin_backend.strip().lower() == "sql":
        return SqlGuestDirectory(get_session_maker())
    return None

def build_registry(settings: Settings | None = None) -> StoreRegistry:
    settings = settings or get_settings()
    return StoreRegistry(
        build_backend(settings),
        build_directory(settings),
        timeout=settings.store_timeout_seconds,
        lookup_timeout=settings.lookup_timeout_seconds,
        placeholder_name=settings.placeholder_name,
    )

def get_stores(request: Request) -> StoreRegistry:
    return request.app.state.stores
