from __future__ import annotations
import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from ..core.errors import StoreUnavailable
from ..core.log import get_logger
from ..schemas import CheckInRecord
from .backends import CheckinBackend
from .directory import GuestDirectory

log = get_logger("dedup")

def _now():
    return datetime.now(timezone.utc)

@dataclass(frozen=True)
class AcceptMeta:
    name_hint: str | None = None  # name carried by the payload itself
    accepted_by: str | None = None

@dataclass(frozen=True)
class Accepted:
    record: CheckInRecord
    recovered: bool = False  # an earlier timed-out write of ours turned out to have landed
    accepted = True

@dataclass(frozen=True)
class AlreadyAccepted:
    record: CheckInRecord
    accepted = False

AcceptResult = Accepted | AlreadyAccepted


class DedupStore:
    """
    Decides first-ever acceptance of a guest code for one event.

    The backend's conditional write is the only authority; the in-process
    cache of seen records just saves a round trip for repeat codes.
    """

    def __init__(
        self,
        event_id: str,
        backend: CheckinBackend,
        directory: GuestDirectory | None = None,
        *,
        timeout: float = 5.0,
        lookup_timeout: float = 2.0,
        placeholder_name: str = "Guest",
    ):
        self.event_id = event_id
        self._backend = backend
        self._directory = directory
        self._timeout = timeout
        self._lookup_timeout = lookup_timeout
        self._placeholder = placeholder_name
        self._known: dict[str, CheckInRecord] = {}
        self._unresolved: dict[str, set[str]] = {}
        self._pending: set[asyncio.Task] = set()

    @property
    def device_local(self) -> bool:
        return bool(getattr(self._backend, "device_local", False))

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    async def resolve_display_name(self, code: str, hint: str | None = None) -> str:
        # best-effort: directory failures never reach the reconciliation path
        if self._directory is not None:
            try:
                name = await asyncio.wait_for(self._directory.lookup_display_name(code), self._lookup_timeout)
            except Exception as exc:
                log.warning("guest directory lookup failed for %s: %r", code, exc)
                name = None
            if name:
                return name
        return (hint or "").strip() or self._placeholder

    async def try_accept(self, code: str, meta: AcceptMeta | None = None) -> AcceptResult:
        meta = meta or AcceptMeta()
        code = (code or "").strip().lower()
        if not code:
            raise ValueError("empty guest code")

        known = self._known.get(code)
        if known is not None:
            return self._settle(known, created=False)

        display_name = await self.resolve_display_name(code, meta.name_hint)
        record = CheckInRecord(
            event_id=self.event_id,
            code=code,
            display_name=display_name,
            accepted_at=_now(),
            accepted_by=meta.accepted_by,
            attempt_id=uuid.uuid4().hex,
        )

        write = asyncio.ensure_future(self._reconcile(record))
        try:
            return await asyncio.wait_for(asyncio.shield(write), self._timeout)
        except asyncio.TimeoutError:
            self._leave_running(write, record)
            log.warning("check-in write for %s/%s timed out after %ss", self.event_id, code, self._timeout)
            raise StoreUnavailable(f"check-in store did not answer within {self._timeout}s") from None
        except asyncio.CancelledError:
            if not write.done():
                self._leave_running(write, record)
            raise

    async def _reconcile(self, record: CheckInRecord) -> AcceptResult:
        if await self._backend.claim(record):
            return self._settle(record, created=True)
        existing = await self._backend.fetch(record.event_id, record.code)
        if existing is None:
            raise StoreUnavailable(f"write for {record.code} was rejected but no record is readable")
        return self._settle(existing, created=False)

    def _settle(self, record: CheckInRecord, *, created: bool) -> AcceptResult:
        self._known[record.code] = record
        if created:
            log.info("accepted %s for event %s (%s)", record.code, record.event_id, record.display_name)
            return Accepted(record)
        ours = self._unresolved.get(record.code)
        if ours and record.attempt_id in ours:
            self._unresolved.pop(record.code, None)
            log.info("recovered earlier acceptance of %s for event %s", record.code, record.event_id)
            return Accepted(record, recovered=True)
        log.debug("duplicate %s for event %s, first accepted at %s", record.code, record.event_id, record.accepted_at)
        return AlreadyAccepted(record)

    def _leave_running(self, write: asyncio.Task, record: CheckInRecord) -> None:
        self._unresolved.setdefault(record.code, set()).add(record.attempt_id)
        self._pending.add(write)
        write.add_done_callback(self._late_result)

    def _late_result(self, write: asyncio.Task) -> None:
        self._pending.discard(write)
        if write.cancelled():
            log.warning("abandoned check-in write without an answer")
            return
        exc = write.exception()
        if exc is not None:
            log.warning("late check-in write failed: %r", exc)
            return
        result = write.result()
        log.info(
            "late check-in write for %s resolved as %s",
            result.record.code, "accepted" if result.accepted else "duplicate",
        )

    async def aclose(self) -> None:
        pending = list(self._pending)
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)


class StoreRegistry:
    """One DedupStore per event over a shared backend."""

    def __init__(self, backend: CheckinBackend, directory: GuestDirectory | None = None, **store_kwargs):
        self.backend = backend
        self.directory = directory
        self._store_kwargs = store_kwargs
        self._stores: dict[str, DedupStore] = {}

    def get(self, event_id: str) -> DedupStore:
        store = self._stores.get(event_id)
        if store is None:
            store = DedupStore(event_id, self.backend, self.directory, **self._store_kwargs)
            self._stores[event_id] = store
        return store

    async def aclose(self) -> None:
        for store in list(self._stores.values()):
            await store.aclose()
        self._stores.clear()
        await self.backend.aclose()
