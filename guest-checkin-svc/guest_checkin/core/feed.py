from __future__ import annotations
import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Protocol

from .errors import DeviceUnavailable
from .log import get_logger

log = get_logger("feed")

@dataclass(frozen=True)
class DecodeEvent:
    text: str | None
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.text is None

class DecodeFeed(Protocol):
    """Camera/decode stream. open() may raise; iteration ends after close()."""

    async def open(self) -> None: ...
    async def close(self) -> None: ...
    def __aiter__(self) -> AsyncIterator[DecodeEvent]: ...

_CLOSED = object()

class QueueDecodeFeed:
    """
    Bridges a callback-style decoder into an async stream.

    The decoder (camera library, keyboard-wedge reader thread, ...) calls
    push()/push_failure() from any thread; the scan session iterates the
    feed. Frames are dropped when the backlog is full or the feed is closed.
    """

    def __init__(self, maxsize: int = 100):
        self._maxsize = maxsize
        self._queue: asyncio.Queue | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def is_open(self) -> bool:
        return self._queue is not None

    async def open(self) -> None:
        if self._queue is not None:
            return
        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue(maxsize=self._maxsize)

    async def close(self) -> None:
        q, self._queue = self._queue, None
        if q is None:
            return
        # pending frames are discarded; the sentinel must always fit
        while True:
            try:
                q.put_nowait(_CLOSED)
                break
            except asyncio.QueueFull:
                q.get_nowait()

    def push(self, text: str) -> bool:
        return self._offer(DecodeEvent(text=text))

    def push_failure(self, error: str = "decode failed") -> bool:
        return self._offer(DecodeEvent(text=None, error=error))

    def fail(self, reason: str) -> bool:
        """Report an unrecoverable device error; the consuming session halts."""
        return self._offer(DeviceUnavailable(reason))

    def _offer(self, item) -> bool:
        q, loop = self._queue, self._loop
        if q is None or loop is None:
            log.debug("decode feed closed; dropping %r", item)
            return False
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is loop:
            self._put(q, item)
        else:
            loop.call_soon_threadsafe(self._put, q, item)
        return True

    @staticmethod
    def _put(q: asyncio.Queue, item) -> None:
        try:
            q.put_nowait(item)
        except asyncio.QueueFull:
            log.warning("decode backlog full; dropping frame")

    def __aiter__(self) -> AsyncIterator[DecodeEvent]:
        return self._iterate(self._queue)

    async def _iterate(self, q: asyncio.Queue | None) -> AsyncIterator[DecodeEvent]:
        if q is None:
            return
        while True:
            item = await q.get()
            if item is _CLOSED:
                return
            if isinstance(item, DeviceUnavailable):
                raise item
            yield item
