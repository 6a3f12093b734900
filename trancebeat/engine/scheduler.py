"""Cancellable timer layer for the speech track.

Every wait in a session (transition delay, inter-item gap, clip progress
poll, timer fallback) is a :class:`ScheduledCall` issued by a
:class:`Scheduler`. The scheduler keeps track of every pending call so a
single ``cancel_all()`` tears down all outstanding waits at once, and tests
can assert ``pending_count() == 0`` after a stop. ``scope()`` narrows that to
the calls issued through one owner.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional


logger = logging.getLogger(__name__)


class ScheduledCall:
    """Handle for a single pending callback.

    Wraps the loop-level timer handle so the owning scheduler can forget it as
    soon as it fires or is cancelled.
    """

    __slots__ = ("_scheduler", "_handle", "_callback", "_args", "when", "cancelled", "fired")

    def __init__(self, scheduler: "Scheduler", when: float, callback: Callable[..., Any], args: tuple) -> None:
        self._scheduler = scheduler
        self._handle: Any = None
        self._callback = callback
        self._args = args
        self.when = when
        self.cancelled = False
        self.fired = False

    def _run(self) -> None:
        if self.cancelled or self.fired:
            return
        self.fired = True
        self._scheduler._forget(self)  # pylint: disable=protected-access
        try:
            self._callback(*self._args)
        except Exception as exc:
            logger.error("[scheduler] Callback %r failed: %s", self._callback, exc, exc_info=True)

    def cancel(self) -> None:
        if self.cancelled or self.fired:
            return
        self.cancelled = True
        if self._handle is not None:
            self._handle.cancel()
        self._scheduler._forget(self)  # pylint: disable=protected-access

    @property
    def pending(self) -> bool:
        return not (self.cancelled or self.fired)


class Scheduler:
    """Tracks cancellable timers on an asyncio event loop.

    Args:
        loop: Event loop to schedule on (default: the running loop at first use)
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop
        self._pending: set[ScheduledCall] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def time(self) -> float:
        """Current scheduler clock in seconds."""
        return self.loop.time()

    def call_later(self, delay_s: float, callback: Callable[..., Any], *args: Any) -> ScheduledCall:
        """Run ``callback(*args)`` after ``delay_s`` seconds (clamped at 0)."""
        delay = max(0.0, float(delay_s))
        call = ScheduledCall(self, self.time() + delay, callback, args)
        call._handle = self._arm(delay, call._run)  # pylint: disable=protected-access
        self._pending.add(call)
        return call

    def _arm(self, delay_s: float, fire: Callable[[], None]) -> Any:
        """Arm the underlying loop timer; returns an object with ``cancel()``."""
        return self.loop.call_later(delay_s, fire)

    def create_future(self) -> asyncio.Future:
        return self.loop.create_future()

    def sleep(self, delay_s: float) -> asyncio.Future:
        """Return a future resolved after ``delay_s``; cancelling it cancels the timer."""
        future = self.create_future()

        def _resolve() -> None:
            if not future.done():
                future.set_result(None)

        call = self.call_later(delay_s, _resolve)
        future.add_done_callback(lambda _f: call.cancel())
        return future

    def _forget(self, call: ScheduledCall) -> None:
        self._pending.discard(call)

    def pending_count(self) -> int:
        return len(self._pending)

    def cancel_all(self) -> int:
        """Cancel every pending call. Returns how many were cancelled."""
        calls = list(self._pending)
        for call in calls:
            call.cancel()
        self._pending.clear()
        if calls:
            logger.debug("[scheduler] Cancelled %d pending call(s)", len(calls))
        return len(calls)

    def scope(self, label: str = "") -> "ScopedScheduler":
        """Return a view on this scheduler whose ``cancel_all`` only reaches its own calls."""
        return ScopedScheduler(self, label)


class ScopedScheduler(Scheduler):
    """Issues calls on a parent scheduler and remembers which ones it issued.

    A session tears down through its scope, so timers other owners armed on
    the same parent (a debounced settings save, say) keep running.
    """

    def __init__(self, parent: Scheduler, label: str = "") -> None:
        super().__init__()
        self._parent = parent
        self.label = label

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        return self._parent.loop

    def time(self) -> float:
        return self._parent.time()

    def call_later(self, delay_s: float, callback: Callable[..., Any], *args: Any) -> ScheduledCall:
        self._prune()
        call = self._parent.call_later(delay_s, callback, *args)
        self._pending.add(call)
        return call

    def _prune(self) -> None:
        self._pending = {call for call in self._pending if call.pending}

    def pending_count(self) -> int:
        self._prune()
        return len(self._pending)

    def cancel_all(self) -> int:
        self._prune()
        calls = list(self._pending)
        for call in calls:
            call.cancel()
        self._pending.clear()
        if calls:
            logger.debug("[scheduler] Cancelled %d pending call(s) in scope %s", len(calls), self.label or "?")
        return len(calls)
