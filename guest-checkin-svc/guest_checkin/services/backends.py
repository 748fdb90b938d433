from __future__ import annotations
import uuid
from datetime import timezone
from typing import Protocol
from urllib.parse import quote

import httpx
from pydantic import ValidationError
from redis.exceptions import RedisError
from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.errors import StoreUnavailable
from ..core.log import get_logger
from ..core.redis import checkin_key, checkin_match, claim_once, get_redis
from ..models import Checkin, Invite, InviteStatus
from ..schemas import CheckInRecord, RecordClaim

log = get_logger("backends")

class CheckinBackend(Protocol):
    """
    Persistence behind the deduplication store.

    claim() is the single atomic conditional write: it stores *record* only if
    no record exists for (event_id, code) and reports whether it did.
    """
    device_local: bool

    async def claim(self, record: CheckInRecord) -> bool: ...
    async def fetch(self, event_id: str, code: str) -> CheckInRecord | None: ...
    async def list_records(self, event_id: str) -> list[CheckInRecord]: ...
    async def aclose(self) -> None: ...


def _to_record(row: Checkin) -> CheckInRecord:
    accepted_at = row.accepted_at
    if accepted_at is not None and accepted_at.tzinfo is None:
        # sqlite drops tzinfo; values are always written as UTC
        accepted_at = accepted_at.replace(tzinfo=timezone.utc)
    return CheckInRecord(
        event_id=row.event_id, code=row.code, display_name=row.display_name,
        accepted_at=accepted_at, accepted_by=row.accepted_by, attempt_id=row.attempt_id,
    )


# --- SQL: INSERT ... ON CONFLICT DO NOTHING, rowcount decides

class SqlCheckinBackend:
    device_local = False

    def __init__(self, session_maker: async_sessionmaker[AsyncSession], dialect_name: str):
        if dialect_name == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        elif dialect_name == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            raise ValueError(f"no insert-if-absent support for dialect {dialect_name!r}")
        self._insert = insert
        self._session_maker = session_maker

    async def claim(self, record: CheckInRecord) -> bool:
        stmt = (
            self._insert(Checkin)
            .values(
                id=uuid.uuid4(),
                event_id=record.event_id,
                code=record.code,
                display_name=record.display_name,
                accepted_at=record.accepted_at,
                accepted_by=record.accepted_by,
                attempt_id=record.attempt_id,
            )
            .on_conflict_do_nothing(index_elements=["event_id", "code"])
        )
        try:
            async with self._session_maker() as db:
                res = await db.execute(stmt)
                created = res.rowcount == 1
                if created:
                    # keep the directory row in step, same transaction, still conditional
                    await db.execute(
                        update(Invite)
                        .where(
                            Invite.id == record.code,
                            Invite.event_id == record.event_id,
                            Invite.status == InviteStatus.PENDING,
                        )
                        .values(status=InviteStatus.ACCEPTED)
                        .execution_options(synchronize_session=False)
                    )
                    await db.commit()
                return created
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailable(f"check-in database unavailable: {exc}") from exc

    async def fetch(self, event_id: str, code: str) -> CheckInRecord | None:
        try:
            async with self._session_maker() as db:
                row = (await db.execute(
                    select(Checkin).where(Checkin.event_id == event_id, Checkin.code == code)
                )).scalar_one_or_none()
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailable(f"check-in database unavailable: {exc}") from exc
        return _to_record(row) if row else None

    async def list_records(self, event_id: str) -> list[CheckInRecord]:
        try:
            async with self._session_maker() as db:
                rows = (await db.execute(
                    select(Checkin).where(Checkin.event_id == event_id).order_by(Checkin.accepted_at.asc())
                )).scalars().all()
        except (SQLAlchemyError, OSError) as exc:
            raise StoreUnavailable(f"check-in database unavailable: {exc}") from exc
        return [_to_record(r) for r in rows]

    async def aclose(self) -> None:
        """Nothing to release."""


# --- Redis: SET NX, reply decides

class RedisCheckinBackend:
    device_local = False

    def __init__(self, client=None):
        self._client = client

    @staticmethod
    def _decode(raw: str) -> CheckInRecord:
        try:
            return CheckInRecord.model_validate_json(raw)
        except ValidationError as exc:
            raise StoreUnavailable(f"unreadable check-in record in redis: {exc}") from exc

    @property
    def redis(self):
        return self._client if self._client is not None else get_redis()

    async def claim(self, record: CheckInRecord) -> bool:
        key = checkin_key(record.event_id, record.code)
        try:
            return await claim_once(self.redis, key, record.model_dump_json())
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(f"redis unavailable: {exc}") from exc

    async def fetch(self, event_id: str, code: str) -> CheckInRecord | None:
        try:
            raw = await self.redis.get(checkin_key(event_id, code))
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(f"redis unavailable: {exc}") from exc
        return self._decode(raw) if raw else None

    async def list_records(self, event_id: str) -> list[CheckInRecord]:
        try:
            keys = [k async for k in self.redis.scan_iter(match=checkin_match(event_id))]
            values = await self.redis.mget(keys) if keys else []
        except (RedisError, OSError) as exc:
            raise StoreUnavailable(f"redis unavailable: {exc}") from exc
        records = [rec for rec in (self._decode(v) for v in values if v) if rec.event_id == event_id]
        return sorted(records, key=lambda r: r.accepted_at)

    async def aclose(self) -> None:
        """Nothing to release."""


# --- HTTP: the service's conditional-write endpoint, 201 created / 200 existing

class HttpCheckinBackend:
    device_local = False

    def __init__(self, base_url: str, *, timeout: float = 5.0, client: httpx.AsyncClient | None = None):
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    @staticmethod
    def _path(event_id: str, code: str) -> str:
        return f"/checkin/events/{quote(event_id, safe='')}/records/{quote(code, safe='')}"

    @staticmethod
    def _body(r: httpx.Response):
        try:
            return r.json()
        except ValueError as exc:
            # a proxy or captive portal answering in place of the service
            raise StoreUnavailable(f"check-in service sent a non-JSON body ({r.status_code})") from exc

    async def claim(self, record: CheckInRecord) -> bool:
        body = RecordClaim(
            display_name=record.display_name, accepted_at=record.accepted_at,
            accepted_by=record.accepted_by, attempt_id=record.attempt_id,
        )
        try:
            r = await self._client.put(self._path(record.event_id, record.code), json=body.model_dump(mode="json"))
        except httpx.HTTPError as exc:
            raise StoreUnavailable(f"check-in service unreachable: {exc}") from exc
        if r.status_code == 201:
            return True
        if r.status_code == 200:
            return False
        raise StoreUnavailable(f"check-in service answered {r.status_code}")

    async def fetch(self, event_id: str, code: str) -> CheckInRecord | None:
        try:
            r = await self._client.get(self._path(event_id, code))
        except httpx.HTTPError as exc:
            raise StoreUnavailable(f"check-in service unreachable: {exc}") from exc
        if r.status_code == 404:
            return None
        if r.status_code != 200:
            raise StoreUnavailable(f"check-in service answered {r.status_code}")
        try:
            return CheckInRecord.model_validate(self._body(r))
        except ValidationError as exc:
            raise StoreUnavailable(f"check-in service sent an unreadable record: {exc}") from exc

    async def list_records(self, event_id: str) -> list[CheckInRecord]:
        try:
            r = await self._client.get(f"/checkin/events/{quote(event_id, safe='')}/roster")
            r.raise_for_status()
        except httpx.HTTPError as exc:
            raise StoreUnavailable(f"check-in service unreachable: {exc}") from exc
        try:
            return [CheckInRecord.model_validate(x) for x in self._body(r)]
        except (TypeError, ValidationError) as exc:
            raise StoreUnavailable(f"check-in service sent an unreadable roster: {exc}") from exc

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


# --- Device-local: no cross-device guarantee whatsoever

class LocalCheckinBackend:
    """In-memory records for a single device. Never the source of truth across devices."""
    device_local = True

    def __init__(self):
        self._records: dict[tuple[str, str], CheckInRecord] = {}
        log.warning("using device-local check-in store: duplicates on other devices are NOT detected")

    async def claim(self, record: CheckInRecord) -> bool:
        # setdefault is atomic on the event loop thread
        kept = self._records.setdefault((record.event_id, record.code), record)
        return kept is record

    async def fetch(self, event_id: str, code: str) -> CheckInRecord | None:
        return self._records.get((event_id, code))

    async def list_records(self, event_id: str) -> list[CheckInRecord]:
        rows = [r for (e, _), r in self._records.items() if e == event_id]
        return sorted(rows, key=lambda r: r.accepted_at)

    async def aclose(self) -> None:
        """Nothing to release."""
