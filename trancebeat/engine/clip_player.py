"""Single-voice speech clip player.

At most one clip sounds at a time. Starting a new clip first releases the
current one; volume and rate changes always target whichever clip is current
when they are made, so a settings change mid-clip is heard immediately.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from ..errors import ResourceLoadError
from .audio import LoadedClip, clamp
from .clip_cache import ClipCache
from .scheduler import ScheduledCall, Scheduler


logger = logging.getLogger(__name__)

RATE_RANGE = (0.5, 1.5)
VOLUME_RANGE = (0.0, 1.0)
DEFAULT_PROGRESS_INTERVAL_S = 0.1
END_EPSILON_S = 0.01

ProgressFn = Callable[[float], None]
EndedFn = Callable[[], None]
ErrorFn = Callable[[str], None]


class _Playback:
    """Bookkeeping for the one live clip (the playback handle)."""

    __slots__ = ("handle", "clip", "voice", "on_progress", "on_ended", "on_error", "poll")

    def __init__(
        self,
        handle: str,
        clip: LoadedClip,
        voice: Any,
        on_progress: Optional[ProgressFn],
        on_ended: Optional[EndedFn],
        on_error: Optional[ErrorFn],
    ) -> None:
        self.handle = handle
        self.clip = clip
        self.voice = voice
        self.on_progress = on_progress
        self.on_ended = on_ended
        self.on_error = on_error
        self.poll: Optional[ScheduledCall] = None


class ClipPlayer:
    """Plays one clip at a time through a mixer backend.

    Args:
        backend: Clip backend (``start(clip, offset_s=, rate=, volume=)``)
        cache: Cache used to resolve handles to decoded clips
        scheduler: Scheduler for the progress poll timer
        progress_interval_s: Seconds between progress polls
    """

    def __init__(
        self,
        backend: Any,
        cache: ClipCache,
        scheduler: Scheduler,
        *,
        progress_interval_s: float = DEFAULT_PROGRESS_INTERVAL_S,
    ) -> None:
        self._backend = backend
        self._cache = cache
        self._scheduler = scheduler
        self.progress_interval_s = max(0.01, float(progress_interval_s))
        self._current: Optional[_Playback] = None
        self._volume = 0.8
        self._rate = 1.0

    # ===== State =====

    @property
    def is_playing(self) -> bool:
        return self._current is not None

    @property
    def current_handle(self) -> Optional[str]:
        return self._current.handle if self._current else None

    @property
    def active_handles(self) -> int:
        return 1 if self._current is not None else 0

    @property
    def volume(self) -> float:
        return self._volume

    @property
    def rate(self) -> float:
        return self._rate

    @property
    def progress(self) -> float:
        current = self._current
        if current is None:
            return 0.0
        return self._fraction(current)

    # ===== Commands =====

    def play(
        self,
        handle: str,
        *,
        volume: Optional[float] = None,
        rate: Optional[float] = None,
        on_progress: Optional[ProgressFn] = None,
        on_ended: Optional[EndedFn] = None,
        on_error: Optional[ErrorFn] = None,
    ) -> bool:
        """Start ``handle``, replacing any current clip.

        A load or start failure calls ``on_error(reason)`` once and returns
        False; the caller picks the fallback.
        """
        self.stop()
        if volume is not None:
            self._volume = clamp(volume, *VOLUME_RANGE)
        if rate is not None:
            self._rate = clamp(rate, *RATE_RANGE)

        try:
            clip = self._cache.load(handle)
            voice = self._backend.start(clip, offset_s=0.0, rate=self._rate, volume=self._volume)
        except ResourceLoadError as exc:
            logger.warning("[clip] %s", exc)
            if on_error:
                on_error(exc.reason)
            return False

        self._current = _Playback(handle, clip, voice, on_progress, on_ended, on_error)
        logger.debug("[clip] Playing %s (%.2fs, rate=%.2f)", handle, clip.duration_s, self._rate)
        self._schedule_poll(self._current)
        return True

    def stop(self) -> None:
        """Halt playback, release the handle and cancel the poll. Safe when idle."""
        current = self._current
        self._current = None
        if current is None:
            return
        if current.poll is not None:
            current.poll.cancel()
        self._stop_voice(current)
        logger.debug("[clip] Stopped %s", current.handle)

    def set_volume(self, volume: float) -> None:
        self._volume = clamp(volume, *VOLUME_RANGE)
        current = self._current
        if current is not None:
            current.voice.set_volume(self._volume)

    def set_rate(self, rate: float) -> None:
        """Change the rate of the current clip, continuing from its position."""
        new_rate = clamp(rate, *RATE_RANGE)
        if new_rate == self._rate:
            return
        self._rate = new_rate
        current = self._current
        if current is None:
            return
        position = current.voice.position
        if position >= current.clip.duration_s - END_EPSILON_S:
            # Already played out; the next poll would have reported the end
            self._finish(current)
            return
        self._stop_voice(current)
        try:
            current.voice = self._backend.start(
                current.clip, offset_s=position, rate=self._rate, volume=self._volume
            )
        except ResourceLoadError as exc:
            if position > 0.0:
                logger.warning("[clip] Rate change failed at %.2fs; ending %s: %s", position, current.handle, exc)
                self._finish(current)
            else:
                logger.warning("[clip] Rate change failed: %s", exc)
                self._fail(current, exc.reason)

    # ===== Internals =====

    def _fraction(self, current: _Playback) -> float:
        duration = current.clip.duration_s
        if duration <= 0:
            return 1.0
        return max(0.0, min(1.0, current.voice.position / duration))

    def _schedule_poll(self, current: _Playback) -> None:
        current.poll = self._scheduler.call_later(self.progress_interval_s, self._poll, current)

    def _poll(self, current: _Playback) -> None:
        if current is not self._current:
            return
        if current.voice.busy():
            if current.on_progress:
                current.on_progress(self._fraction(current))
            self._schedule_poll(current)
            return
        # Voice finished on its own
        self._finish(current)

    def _finish(self, current: _Playback) -> None:
        if current is self._current:
            self._current = None
        if current.poll is not None:
            current.poll.cancel()
            current.poll = None
        self._stop_voice(current)
        if current.on_progress:
            current.on_progress(1.0)
        logger.debug("[clip] Ended %s", current.handle)
        if current.on_ended:
            current.on_ended()

    def _fail(self, current: _Playback, reason: str) -> None:
        if current is self._current:
            self._current = None
        if current.poll is not None:
            current.poll.cancel()
            current.poll = None
        on_error, current.on_error = current.on_error, None
        if on_error:
            on_error(reason)

    @staticmethod
    def _stop_voice(current: _Playback) -> None:
        try:
            current.voice.stop()
        except Exception as exc:
            logger.debug("[clip] Voice stop error (non-critical): %s", exc)
