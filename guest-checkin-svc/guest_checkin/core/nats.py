from __future__ import annotations
import json
from typing import Sequence
from nats.aio.client import Client as NATS
from .config import get_settings
from .log import get_logger
from ..schemas import CheckInRecord

_settings = get_settings()
_nats = NATS()
log = get_logger("nats")

async def nats_connect():
    if not _nats.is_connected:
        servers: Sequence[str] = [u.strip() for u in _settings.nats_urls.split(",") if u.strip()]
        await _nats.connect(servers=servers, connect_timeout=2, max_reconnect_attempts=3)

async def nats_close():
    try:
        if _nats.is_connected:
            await _nats.drain()
    except Exception as exc:
        log.warning("nats drain failed: %s", exc)

def checkin_event(rec: CheckInRecord) -> dict:
    """Wire shape of a recorded check-in; consumers dedupe on idempotency_key."""
    return {
        "event_id": rec.event_id,
        "code": rec.code,
        "display_name": rec.display_name,
        "accepted_at": rec.accepted_at.isoformat().replace("+00:00", "Z"),
        "accepted_by": rec.accepted_by,
        "idempotency_key": f"{rec.event_id}:{rec.code}",
    }

async def publish_checkin(rec: CheckInRecord):
    await nats_connect()
    body = json.dumps(checkin_event(rec)).encode("utf-8")
    await _nats.publish(_settings.nats_subject_checkin, body)
    log.debug("published check-in %s:%s", rec.event_id, rec.code)
