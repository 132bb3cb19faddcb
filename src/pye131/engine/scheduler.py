"""Source liveness timers.

The universe engine does not own a reactor. It asks a scheduler for one
timer per registered source, resets it on every accepted packet and
cancels it when the source goes away. When a timer runs out the
scheduler reports the source's CID through the expiry handler.

Two implementations are provided:

* :class:`AsyncioTimerScheduler` - backed by ``loop.call_later``.
* :class:`ManualTimerScheduler` - a heap of deadlines advanced by the
  caller, for tests and callers that drive time themselves.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol

from pye131.exceptions import E131TimerError
from pye131.models._base import format_cid

_logger = logging.getLogger(__name__)

ExpiryHandler = Callable[[bytes], None]

# Minimum heap size before superseded entries are compacted away.
_COMPACT_THRESHOLD = 64


@dataclass(slots=True, eq=False)
class TimerHandle:
    """A single source's liveness timer.

    Handles are owned by the scheduler that issued them; ``active`` turns
    ``False`` once the timer is cancelled or has fired.
    """

    cid: bytes
    deadline: float
    active: bool = True
    version: int = 0
    _loop_handle: asyncio.TimerHandle | None = field(default=None, repr=False)


class TimerScheduler(Protocol):
    """Scheduler interface consumed by the universe engine."""

    def set_expiry_handler(self, handler: ExpiryHandler) -> None: ...

    def schedule(self, cid: bytes, duration: float) -> TimerHandle: ...

    def reset(self, handle: TimerHandle, duration: float) -> None: ...

    def cancel(self, handle: TimerHandle) -> None: ...


class _BaseScheduler:
    def __init__(self) -> None:
        self._handler: ExpiryHandler | None = None
        self._timers: dict[bytes, TimerHandle] = {}

    def set_expiry_handler(self, handler: ExpiryHandler) -> None:
        """Route expiry notifications to *handler*."""
        self._handler = handler

    @property
    def pending(self) -> int:
        """Number of timers currently armed."""
        return len(self._timers)

    def is_scheduled(self, cid: bytes) -> bool:
        return cid in self._timers

    def _register(self, cid: bytes, deadline: float) -> TimerHandle:
        if self._handler is None:
            raise E131TimerError("no expiry handler installed", cid=cid)
        if cid in self._timers:
            raise E131TimerError(f"timer already scheduled for source {format_cid(cid)}", cid=cid)
        handle = TimerHandle(cid=cid, deadline=deadline)
        self._timers[cid] = handle
        return handle

    def _check_active(self, handle: TimerHandle) -> None:
        if not handle.active or self._timers.get(handle.cid) is not handle:
            raise E131TimerError(f"timer for source {format_cid(handle.cid)} is not active", cid=handle.cid)

    def _release(self, handle: TimerHandle) -> None:
        handle.active = False
        self._timers.pop(handle.cid, None)

    def _expire(self, handle: TimerHandle) -> None:
        self._release(handle)
        _logger.debug("Timer expired for source %s", format_cid(handle.cid))
        assert self._handler is not None
        self._handler(handle.cid)


class AsyncioTimerScheduler(_BaseScheduler):
    """Liveness timers on an asyncio event loop.

    Expiry handlers run on the loop thread, like any other loop callback.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        super().__init__()
        self._loop = loop

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            try:
                self._loop = asyncio.get_running_loop()
            except RuntimeError as exc:
                raise E131TimerError("no running event loop to schedule timers on") from exc
        return self._loop

    def schedule(self, cid: bytes, duration: float) -> TimerHandle:
        loop = self._get_loop()
        handle = self._register(cid, loop.time() + duration)
        handle._loop_handle = loop.call_later(duration, self._expire, handle)
        _logger.debug("Scheduled timer for source %s in %.3fs", format_cid(cid), duration)
        return handle

    def reset(self, handle: TimerHandle, duration: float) -> None:
        self._check_active(handle)
        loop = self._get_loop()
        if handle._loop_handle is not None:
            handle._loop_handle.cancel()
        handle.deadline = loop.time() + duration
        handle.version += 1
        handle._loop_handle = loop.call_later(duration, self._expire, handle)

    def cancel(self, handle: TimerHandle) -> None:
        self._check_active(handle)
        if handle._loop_handle is not None:
            handle._loop_handle.cancel()
            handle._loop_handle = None
        self._release(handle)
        _logger.debug("Cancelled timer for source %s", format_cid(handle.cid))

    def cancel_all(self) -> None:
        """Cancel every armed timer without notifying the handler."""
        for handle in list(self._timers.values()):
            self.cancel(handle)


class ManualTimerScheduler(_BaseScheduler):
    """Liveness timers driven by an explicit clock.

    Deadlines live in a heap; resets push a new entry and leave the old
    one to be skipped when it surfaces, or dropped when superseded entries
    outnumber the armed timers. Nothing fires until the caller
    moves time forward with :meth:`advance` or polls :meth:`run_due`.
    """

    def __init__(self, start: float = 0.0) -> None:
        super().__init__()
        self._now = start
        self._heap: list[tuple[float, int, int, TimerHandle]] = []
        self._counter = itertools.count()

    @property
    def now(self) -> float:
        return self._now

    def _push(self, handle: TimerHandle) -> None:
        heapq.heappush(self._heap, (handle.deadline, next(self._counter), handle.version, handle))
        if len(self._heap) > _COMPACT_THRESHOLD and len(self._heap) > 2 * len(self._timers):
            self._compact()

    def _compact(self) -> None:
        """Drop heap entries left behind by resets and cancellations."""
        self._heap = [entry for entry in self._heap if entry[3].active and entry[2] == entry[3].version]
        heapq.heapify(self._heap)

    @property
    def heap_size(self) -> int:
        """Number of heap entries, including superseded ones not yet dropped."""
        return len(self._heap)

    def schedule(self, cid: bytes, duration: float) -> TimerHandle:
        handle = self._register(cid, self._now + duration)
        self._push(handle)
        return handle

    def reset(self, handle: TimerHandle, duration: float) -> None:
        self._check_active(handle)
        handle.deadline = self._now + duration
        handle.version += 1
        self._push(handle)

    def cancel(self, handle: TimerHandle) -> None:
        self._check_active(handle)
        self._release(handle)

    def next_deadline(self) -> float | None:
        """Earliest deadline of an armed timer, if any."""
        while self._heap:
            _deadline, _seq, version, handle = self._heap[0]
            if handle.active and version == handle.version:
                return handle.deadline
            heapq.heappop(self._heap)
        return None

    def run_due(self, now: float | None = None) -> int:
        """Fire every timer whose deadline is at or before *now*.

        Returns the number of timers fired.
        """
        if now is not None:
            if now < self._now:
                raise ValueError("clock must not move backwards")
            self._now = now
        fired = 0
        while self._heap and self._heap[0][0] <= self._now:
            _deadline, _seq, version, handle = heapq.heappop(self._heap)
            if not handle.active or version != handle.version:
                continue
            self._expire(handle)
            fired += 1
        return fired

    def advance(self, seconds: float) -> int:
        """Move the clock forward by *seconds* and fire due timers."""
        if seconds < 0:
            raise ValueError("cannot advance by a negative duration")
        return self.run_due(self._now + seconds)
