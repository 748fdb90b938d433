from __future__ import annotations
from urllib.parse import quote
import redis.asyncio as redis
from .config import get_settings
from .log import get_logger

_settings = get_settings()
_r: redis.Redis | None = None
log = get_logger("redis")

def get_redis() -> redis.Redis:
    global _r
    if _r is None:
        _r = redis.from_url(_settings.redis_url, decode_responses=True)
    return _r

async def ping_redis() -> bool:
    try:
        r = get_redis()
        pong = await r.ping()
        return bool(pong)
    except Exception as exc:
        log.warning("redis ping failed: %s", exc)
        return False

async def close_redis() -> None:
    global _r
    if _r is not None:
        await _r.aclose()
        _r = None

def _part(value: str) -> str:
    # percent-encoded parts hold no ":" and no glob metacharacters
    return quote(value, safe="")

def checkin_key(event_id: str, code: str) -> str:
    return f"checkin:{_part(event_id)}:{_part(code)}"

def checkin_match(event_id: str) -> str:
    """SCAN pattern for every check-in key of one event."""
    return f"checkin:{_part(event_id)}:*"

# ---- First-writer-wins claim for a guest code ----
async def claim_once(r: redis.Redis, key: str, value: str) -> bool:
    """
    Return True if we stored *value* under *key* (first time),
    return False if the key already exists (someone else won).
    """
    # SET if Not eXists; no expiry, check-ins are permanent
    ok = await r.set(key, value, nx=True)
    return bool(ok)
