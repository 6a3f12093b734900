"""
Affirmation playlist sequencing.

Owns the working playlist derived from the session's items: the original
order, or a Fisher-Yates permutation of it when shuffle is on. Plays items
one at a time with the configured gap between them, wraps when loop is on,
and substitutes a timer for items that have no audio or whose clip fails.
"""

from __future__ import annotations

import logging
import random
from typing import Iterable, List, Optional

from ..engine.clip_cache import ClipCache
from ..engine.clip_player import ClipPlayer
from ..engine.scheduler import Scheduler
from .events import SessionEventEmitter, SessionEventType
from .models import AffirmationItem
from .segments import ClipSegment, Segment, SegmentResult, TimerSegment
from .settings import PlaybackSettings, SessionTiming


logger = logging.getLogger(__name__)


def fisher_yates(items: Iterable[AffirmationItem], rng: random.Random) -> List[AffirmationItem]:
    """Return a uniformly shuffled copy of ``items``."""
    out = list(items)
    for i in range(len(out) - 1, 0, -1):
        j = rng.randint(0, i)
        out[i], out[j] = out[j], out[i]
    return out


class AffirmationSequencer:
    """
    Plays the affirmation playlist.

    Example:
        sequencer = AffirmationSequencer(player, cache, scheduler, settings)
        sequencer.prepare(config.items, shuffle=True)
        await sequencer.run()   # returns when the last item (and its gap) is done

    Args:
        player: Shared clip player
        cache: Clip cache used to preload the playlist
        scheduler: Scheduler for gap and fallback timers
        settings: Live settings (gap, voice volume and rate are read at use time)
        timing: Timing constants (text hold for items without audio)
        rng: Random source for shuffling (injectable for tests)
        events: Optional emitter for AFFIRMATION_START / CLIP_ERROR
    """

    def __init__(
        self,
        player: ClipPlayer,
        cache: ClipCache,
        scheduler: Scheduler,
        settings: PlaybackSettings,
        *,
        timing: Optional[SessionTiming] = None,
        rng: Optional[random.Random] = None,
        events: Optional[SessionEventEmitter] = None,
    ):
        self._player = player
        self._cache = cache
        self._scheduler = scheduler
        self.settings = settings
        self.timing = timing or SessionTiming()
        self._rng = rng or random.Random()
        self._events = events

        self._original: tuple[AffirmationItem, ...] = ()
        self.working_playlist: List[AffirmationItem] = []
        self.current_index = 0
        self.shuffle_enabled = False
        self.loop_enabled = False

        self.running = False
        self._segment: Optional[Segment] = None
        self._item_fraction = 0.0
        self._restart_requested = False

    # ===== Playlist =====

    @property
    def original_items(self) -> tuple[AffirmationItem, ...]:
        return self._original

    def __len__(self) -> int:
        return len(self.working_playlist)

    @property
    def is_empty(self) -> bool:
        return not self.working_playlist

    @property
    def current_item(self) -> Optional[AffirmationItem]:
        if 0 <= self.current_index < len(self.working_playlist):
            return self.working_playlist[self.current_index]
        return None

    def prepare(self, items: Iterable[AffirmationItem], shuffle: bool = False, *, preload: bool = True) -> None:
        """Set the playlist, reset to the first item and preload its audio."""
        self._original = tuple(items)
        self.shuffle_enabled = bool(shuffle)
        self._rebuild()
        self.current_index = 0
        self._item_fraction = 0.0
        if preload:
            self._cache.preload_all(item.audio_handle for item in self._original)
        logger.info(
            "[sequencer] Prepared %d item(s) (shuffle=%s, loop=%s)",
            len(self.working_playlist),
            self.shuffle_enabled,
            self.loop_enabled,
        )

    def _rebuild(self) -> None:
        if self.shuffle_enabled:
            self.working_playlist = fisher_yates(self._original, self._rng)
        else:
            self.working_playlist = list(self._original)

    def ids(self) -> List[str]:
        return [item.id for item in self.working_playlist]

    def reset(self) -> None:
        self.current_index = 0
        self._item_fraction = 0.0

    def set_shuffle(self, enabled: bool) -> None:
        """Re-derive the playlist from the original order and restart at index 0.

        While running, the current item is interrupted and playback restarts
        with the first item of the new order.
        """
        self.shuffle_enabled = bool(enabled)
        self._rebuild()
        self.reset()
        logger.info("[sequencer] Shuffle %s", "on" if self.shuffle_enabled else "off")
        if self.running:
            self._restart_requested = True
            if self._segment is not None:
                self._segment.cancel()

    def toggle_shuffle(self) -> bool:
        self.set_shuffle(not self.shuffle_enabled)
        return self.shuffle_enabled

    def set_loop(self, enabled: bool) -> None:
        self.loop_enabled = bool(enabled)

    def toggle_loop(self) -> bool:
        self.loop_enabled = not self.loop_enabled
        return self.loop_enabled

    def advance(self) -> bool:
        """Move to the next item.

        Returns:
            False when the sequence is complete (last item, loop off)
        """
        if self.current_index < len(self.working_playlist) - 1:
            self.current_index += 1
        elif self.loop_enabled and self.working_playlist:
            self.current_index = 0
        else:
            return False
        self._item_fraction = 0.0
        return True

    @property
    def progress(self) -> float:
        """(index + current item fraction) / playlist length, 0 when empty."""
        if not self.working_playlist:
            return 0.0
        fraction = self._item_fraction
        if self._segment is not None:
            fraction = max(fraction, self._segment.progress)
        value = (self.current_index + min(1.0, fraction)) / len(self.working_playlist)
        return max(0.0, min(1.0, value))

    # ===== Playback =====

    async def run(self) -> None:
        """Play from the current index until the sequence completes."""
        if not self.working_playlist:
            logger.info("[sequencer] Empty playlist; nothing to play")
            return
        self.running = True
        self._restart_requested = False
        try:
            while True:
                if not await self._play_current():
                    if self._restart_requested:
                        self._restart_requested = False
                        continue
                    return
                if not self.advance():
                    logger.info("[sequencer] Sequence complete")
                    return
        finally:
            self.running = False
            self.cancel()

    async def _play_current(self) -> bool:
        """Play one item and its gap. Returns False if interrupted."""
        item = self.current_item
        if item is None:
            return False
        self._item_fraction = 0.0
        gap = self.settings.gap_between_sec
        if self._events:
            self._events.emit_type(
                SessionEventType.AFFIRMATION_START,
                index=self.current_index,
                id=item.id,
                text=item.text,
                has_audio=item.has_audio,
            )

        if not item.has_audio:
            logger.debug("[sequencer] %s has no audio; holding text", item.id)
            segment: Segment = TimerSegment(self._scheduler, self.timing.text_hold_s + gap, label=f"hold:{item.id}")
            return await self._await(segment)

        clip = ClipSegment(
            self._scheduler,
            self._player,
            item.audio_handle or "",
            fallback_s=item.estimated_duration_ms / 1000.0 + gap,
            volume=self.settings.voice_volume,
            rate=self.settings.playback_rate,
            on_error=self._clip_error,
            label=f"item:{item.id}",
        )
        if not await self._await(clip):
            return False
        if clip.fell_back:
            # Fallback duration already includes the gap
            return True

        self._item_fraction = 1.0
        gap_segment = TimerSegment(self._scheduler, self.settings.gap_between_sec, label="gap")
        return await self._await(gap_segment)

    async def _await(self, segment: Segment) -> bool:
        self._segment = segment
        try:
            result = await segment.wait()
        finally:
            if self._segment is segment:
                self._segment = None
        if self._restart_requested:
            return False
        if result is SegmentResult.COMPLETED:
            self._item_fraction = max(self._item_fraction, segment.progress)
            return True
        return False

    def _clip_error(self, handle: str, reason: str) -> None:
        if self._events:
            item = self.current_item
            self._events.emit_type(
                SessionEventType.CLIP_ERROR,
                handle=handle,
                reason=reason,
                id=item.id if item else None,
            )

    def cancel(self) -> None:
        """Interrupt the current item or gap. Safe when idle."""
        segment = self._segment
        self._segment = None
        if segment is not None:
            segment.cancel()
