from __future__ import annotations
import asyncio
import enum
import time
from collections import deque
from datetime import datetime, timezone
from typing import Callable

from ..core.config import Settings
from ..core.errors import DeviceUnavailable, InvalidPayload, StoreUnavailable
from ..core.feed import DecodeFeed
from ..core.log import get_logger
from ..core.payload import parse_payload
from ..schemas import ScanAttempt, ScanOutcome
from .dedup import AcceptMeta, DedupStore

log = get_logger("session")

def _now():
    return datetime.now(timezone.utc)

class SessionState(str, enum.Enum):
    IDLE = "IDLE"
    RUNNING = "RUNNING"
    EVALUATING = "EVALUATING"
    STOPPED = "STOPPED"


class ScanSession:
    """
    One device's decode loop: decode -> normalize -> reconcile -> report.

    Exactly one evaluation runs at a time (camera frames and manual entries
    share the same slot). start()/stop() are idempotent; stop() releases the
    feed right away but lets an in-flight evaluation finish and land in
    `attempts`.
    """

    def __init__(
        self,
        store: DedupStore,
        feed: DecodeFeed,
        *,
        device_id: str | None = None,
        suppression_window: float = 1.5,
        audit_size: int = 200,
        clock: Callable[[], float] = time.monotonic,
        on_attempt: Callable[[ScanAttempt], None] | None = None,
    ):
        self._store = store
        self._feed = feed
        self._device_id = device_id
        self._window = suppression_window
        self._clock = clock
        self._on_attempt = on_attempt
        self.attempts: deque[ScanAttempt] = deque(maxlen=audit_size)
        self.last_error: Exception | None = None

        self._state = SessionState.IDLE
        self._streaming = False
        self._consumer: asyncio.Task | None = None
        self._inflight: set[asyncio.Task] = set()
        self._eval_lock = asyncio.Lock()
        self._last: tuple[str, str | None, float] | None = None  # raw, code, clock

    @classmethod
    def from_settings(cls, store: DedupStore, feed: DecodeFeed, settings: Settings, **kwargs) -> "ScanSession":
        kwargs.setdefault("device_id", settings.device_id)
        kwargs.setdefault("suppression_window", settings.suppression_window_seconds)
        kwargs.setdefault("audit_size", settings.audit_log_size)
        return cls(store, feed, **kwargs)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._streaming

    # --- lifecycle

    async def start(self) -> None:
        if self._streaming:
            return
        try:
            await self._feed.open()
        except DeviceUnavailable:
            raise
        except Exception as exc:
            raise DeviceUnavailable(f"decode feed unavailable: {exc}") from exc
        if self._store.device_local:
            log.warning("scan session on a device-local store: no cross-device duplicate detection")
        self._streaming = True
        self.last_error = None
        if self._state is not SessionState.EVALUATING:
            self._state = SessionState.RUNNING
        self._consumer = asyncio.create_task(self._consume())
        log.info("scan session started (event %s, device %s)", self._store.event_id, self._device_id)

    async def stop(self) -> None:
        if not self._streaming:
            return
        self._streaming = False
        self._state = SessionState.STOPPED
        consumer, self._consumer = self._consumer, None
        if consumer is not None and consumer is not asyncio.current_task():
            consumer.cancel()
            await asyncio.gather(consumer, return_exceptions=True)
        await self._release_feed()
        log.info("scan session stopped (event %s)", self._store.event_id)

    async def manual_submit(self, raw: str) -> ScanAttempt | None:
        """Keyboard/manual entry. Stops the camera first so only one stream feeds the window."""
        if self._streaming:
            await self.stop()
        return await asyncio.shield(self._spawn(raw))

    async def drain(self) -> None:
        """Wait for evaluations still in flight (e.g. after stop())."""
        if self._inflight:
            await asyncio.gather(*list(self._inflight), return_exceptions=True)

    # --- loop

    async def _consume(self) -> None:
        try:
            async for event in self._feed:
                if event.failed:
                    continue
                try:
                    await asyncio.shield(self._spawn(event.text))
                except Exception:
                    log.exception("evaluation of %r failed; scanning continues", event.text)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.error("decode feed failed, halting session: %s", exc)
            self.last_error = exc if isinstance(exc, DeviceUnavailable) else DeviceUnavailable(str(exc))
            await self._halt()
        else:
            if self._streaming:
                log.warning("decode feed ended unexpectedly")
                await self._halt()

    async def _halt(self) -> None:
        self._streaming = False
        self._consumer = None
        if self._state is not SessionState.EVALUATING:
            self._state = SessionState.STOPPED
        await self._release_feed()

    async def _release_feed(self) -> None:
        try:
            await self._feed.close()
        except Exception as exc:
            log.warning("error releasing decode feed: %s", exc)

    def _spawn(self, raw: str) -> asyncio.Task:
        task = asyncio.create_task(self._evaluate(raw))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)
        return task

    async def _evaluate(self, raw: str) -> ScanAttempt | None:
        async with self._eval_lock:
            resting = self._state
            self._state = SessionState.EVALUATING
            try:
                return await self._reconcile(raw or "")
            finally:
                if self._state is SessionState.EVALUATING:
                    if self._streaming:
                        self._state = SessionState.RUNNING
                    elif resting is SessionState.RUNNING:
                        self._state = SessionState.STOPPED
                    else:
                        self._state = resting

    def _suppressed(self, raw: str, code: str | None, now: float) -> bool:
        if self._last is None or self._window <= 0:
            return False
        last_raw, last_code, last_at = self._last
        if now - last_at >= self._window:
            return False
        return raw == last_raw or (code is not None and code == last_code)

    async def _reconcile(self, raw: str) -> ScanAttempt | None:
        now = self._clock()
        try:
            scanned = parse_payload(raw)
            reason = None
        except InvalidPayload as exc:
            scanned, reason = None, exc.reason
        code = scanned.code if scanned else None

        if self._suppressed(raw, code, now):
            log.debug("suppressed repeat frame %r", raw)
            return None
        self._last = (raw, code, now)

        if scanned is None:
            return self._record(ScanAttempt(raw=raw, outcome=ScanOutcome.INVALID, at=_now(), error=reason))

        meta = AcceptMeta(name_hint=scanned.name_hint, accepted_by=self._device_id)
        try:
            result = await self._store.try_accept(code, meta)
        except StoreUnavailable as exc:
            log.warning("scan of %s unresolved: %s", code, exc)
            return self._record(ScanAttempt(
                raw=raw, code=code, outcome=ScanOutcome.ERROR, at=_now(), error=str(exc),
            ))
        except Exception as exc:
            # unresolved either way; the attempt still lands in the audit log
            log.exception("scan of %s failed", code)
            return self._record(ScanAttempt(
                raw=raw, code=code, outcome=ScanOutcome.ERROR, at=_now(), error=f"{type(exc).__name__}: {exc}",
            ))

        rec = result.record
        if result.accepted:
            attempt = ScanAttempt(
                raw=raw, code=code, outcome=ScanOutcome.ACCEPTED, at=_now(),
                display_name=rec.display_name, accepted_at=rec.accepted_at, recovered=result.recovered,
            )
        else:
            attempt = ScanAttempt(
                raw=raw, code=code, outcome=ScanOutcome.DUPLICATE, at=_now(),
                display_name=rec.display_name, accepted_at=rec.accepted_at,
            )
        return self._record(attempt)

    def _record(self, attempt: ScanAttempt) -> ScanAttempt:
        self.attempts.append(attempt)
        if self._on_attempt is not None:
            try:
                self._on_attempt(attempt)
            except Exception:
                log.exception("scan attempt observer failed")
        return attempt
