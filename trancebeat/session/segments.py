"""Awaitable units of speech-track time.

A segment is one thing the session waits on: a fixed timer, or a clip that
falls back to a timer when it cannot be played. Each exposes a single
completion future and a ``progress`` fraction, so the state machine and the
sequencer never need to know which kind they are waiting on.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from ..engine.clip_player import ClipPlayer
from ..engine.scheduler import ScheduledCall, Scheduler


logger = logging.getLogger(__name__)


class SegmentResult(Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Segment:
    """Base class: a future plus a non-decreasing progress fraction."""

    def __init__(self, scheduler: Scheduler, label: str = "") -> None:
        self._scheduler = scheduler
        self.label = label
        self._future: asyncio.Future = scheduler.create_future()
        self._high = 0.0
        self.started = False

    @property
    def done(self) -> bool:
        return self._future.done()

    @property
    def progress(self) -> float:
        if self._future.done() and not self._future.cancelled() and self._future.result() is SegmentResult.COMPLETED:
            self._high = 1.0
        else:
            self._high = max(self._high, max(0.0, min(1.0, self._current_progress())))
        return self._high

    def _current_progress(self) -> float:
        return 0.0

    def start(self) -> "Segment":
        if not self.started:
            self.started = True
            self._begin()
        return self

    def _begin(self) -> None:
        raise NotImplementedError

    async def wait(self) -> SegmentResult:
        self.start()
        return await self._future

    def _resolve(self, result: SegmentResult) -> None:
        if not self._future.done():
            self._future.set_result(result)

    def cancel(self) -> None:
        """Stop the segment and release what it holds. Idempotent."""
        self._release()
        self._resolve(SegmentResult.CANCELLED)

    def _release(self) -> None:
        pass


class TimerSegment(Segment):
    """Completes after ``duration_s`` on the scheduler clock."""

    def __init__(self, scheduler: Scheduler, duration_s: float, label: str = "timer") -> None:
        super().__init__(scheduler, label)
        self.duration_s = max(0.0, float(duration_s))
        self._started_at: Optional[float] = None
        self._call: Optional[ScheduledCall] = None

    def _begin(self) -> None:
        self._started_at = self._scheduler.time()
        self._call = self._scheduler.call_later(self.duration_s, self._finish)

    def _finish(self) -> None:
        self._call = None
        self._resolve(SegmentResult.COMPLETED)

    def _current_progress(self) -> float:
        if self._started_at is None:
            return 0.0
        if self.duration_s <= 0:
            return 1.0 if self.done else 0.0
        return (self._scheduler.time() - self._started_at) / self.duration_s

    def _release(self) -> None:
        if self._call is not None:
            self._call.cancel()
            self._call = None


class ClipSegment(Segment):
    """Plays one clip; on failure waits ``fallback_s`` instead.

    Args:
        scheduler: Scheduler owning the fallback timer
        player: The shared clip player
        handle: Clip handle to play
        fallback_s: Timer length used when the clip cannot be played
        volume: Initial voice volume
        rate: Initial playback rate
        on_error: Called with the failure reason before the fallback starts
    """

    def __init__(
        self,
        scheduler: Scheduler,
        player: ClipPlayer,
        handle: str,
        *,
        fallback_s: float,
        volume: Optional[float] = None,
        rate: Optional[float] = None,
        on_error: Optional[Callable[[str, str], None]] = None,
        label: str = "clip",
    ) -> None:
        super().__init__(scheduler, label)
        self._player = player
        self.handle = handle
        self.fallback_s = max(0.0, float(fallback_s))
        self._volume = volume
        self._rate = rate
        self._on_error = on_error
        self._clip_fraction = 0.0
        self._playing = False
        self._fallback: Optional[TimerSegment] = None
        self.error: Optional[str] = None

    @property
    def fell_back(self) -> bool:
        return self._fallback is not None

    def _begin(self) -> None:
        self._playing = True
        started = self._player.play(
            self.handle,
            volume=self._volume,
            rate=self._rate,
            on_progress=self._handle_progress,
            on_ended=self._handle_ended,
            on_error=self._handle_error,
        )
        if not started:
            self._playing = False

    def _handle_progress(self, fraction: float) -> None:
        self._clip_fraction = max(self._clip_fraction, fraction)

    def _handle_ended(self) -> None:
        self._playing = False
        self._clip_fraction = 1.0
        self._resolve(SegmentResult.COMPLETED)

    def _handle_error(self, reason: str) -> None:
        self._playing = False
        if self.done or self._fallback is not None:
            return
        self.error = reason
        logger.warning(
            "[session] Clip %s unavailable (%s); waiting %.1fs instead", self.handle, reason, self.fallback_s
        )
        if self._on_error:
            self._on_error(self.handle, reason)
        fallback = TimerSegment(self._scheduler, self.fallback_s, label=f"{self.label}-fallback")
        self._fallback = fallback
        fallback.start()
        fallback._future.add_done_callback(self._fallback_done)  # pylint: disable=protected-access

    def _fallback_done(self, future: asyncio.Future) -> None:
        if not future.cancelled() and future.result() is SegmentResult.COMPLETED:
            self._resolve(SegmentResult.COMPLETED)

    def _current_progress(self) -> float:
        if self._fallback is not None:
            return self._fallback.progress
        return self._clip_fraction

    def _release(self) -> None:
        if self._playing:
            self._playing = False
            if self._player.current_handle == self.handle:
                self._player.stop()
        if self._fallback is not None:
            self._fallback.cancel()
