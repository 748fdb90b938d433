# guest-checkin-svc/tests/conftest.py
"""
Shared fixtures for the check-in service tests.

Env bootstrap happens at import time, before any guest_checkin module reads
its settings:
- DATABASE_URL : throwaway SQLite file (aiosqlite) in a temp directory
- NATS_ENABLED : off, nothing publishes during tests
- CHECKIN_BACKEND : sql, the service's default store

Useful knobs:
- TEST_LOG_LEVEL : DEBUG/INFO/WARNING (default INFO)
"""

from __future__ import annotations

import os
import sys
import logging
import tempfile
from fnmatch import fnmatchcase
from pathlib import Path

_TMP = Path(tempfile.mkdtemp(prefix="guest-checkin-tests-"))
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TMP / 'checkin.db'}")
os.environ.setdefault("NATS_ENABLED", "false")
os.environ.setdefault("CHECKIN_BACKEND", "sql")

import anyio
import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError


# =========================
# Logging -> stdout
# =========================
@pytest.fixture(scope="session", autouse=True)
def _tests_log_to_stdout():
    root = logging.getLogger()
    want = None
    for h in root.handlers:
        if isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) is sys.stdout:
            want = h
            break
    if want is None:
        want = logging.StreamHandler(sys.stdout)
        want.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
        root.addHandler(want)
    root.setLevel(os.getenv("TEST_LOG_LEVEL", "INFO").upper())


# Make anyio run on asyncio (so our async fixtures work everywhere)
@pytest.fixture(scope="session", autouse=True)
def anyio_backend():
    return "asyncio"


# ==============================================================
# Helpers
# ==============================================================

GUEST_A = "550e8400-e29b-41d4-a716-446655440000"
GUEST_B = "6fa459ea-ee8a-3ca4-894e-db77e160355e"


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    """Poll *predicate* until true or fail the test after *timeout* seconds."""
    with anyio.fail_after(timeout):
        while not predicate():
            await anyio.sleep(interval)


class FakeClock:
    """Monotonic clock stand-in for suppression-window tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeRedis:
    """Just enough of redis.asyncio.Redis for the check-in backend."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.down = False

    def _check(self):
        if self.down:
            raise RedisConnectionError("Connection refused")

    async def set(self, key, value, ex=None, nx=False):
        self._check()
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def mget(self, keys):
        self._check()
        return [self.data.get(k) for k in keys]

    async def scan_iter(self, match=None):
        self._check()
        for k in list(self.data):
            if match is None or fnmatchcase(k, match):
                yield k


# ==============================================================
# Fixtures
# ==============================================================

@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
async def sql_engine(tmp_path):
    from guest_checkin.db import init_db, make_engine
    eng = make_engine(f"sqlite+aiosqlite:///{tmp_path / 'store.db'}")
    await init_db(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def sql_session_maker(sql_engine):
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
    return async_sessionmaker(sql_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def client():
    """In-process API client; runs the app lifespan around the test."""
    from guest_checkin.main import app, lifespan
    async with lifespan(app):
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url="http://test") as c:
            yield c
