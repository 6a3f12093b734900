"""
Session state machine - phase flow for one session run.

Phases run in a fixed order (PREPARING, INDUCTION, DEEPENING, AFFIRMATIONS,
AWAKENING, COMPLETE); phases without content are passed over. A single
driver coroutine per run owns the flow:

    transition delay (label shows target) -> enter phase -> play segment(s)
    -> next phase with content -> ... -> COMPLETE

Every wait is a segment or a scheduler timer, so ``stop()`` can tear the whole
run down in one step: cancel the driver, cancel the active segment, stop the
clip player and cancel every pending timer.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from ..engine.clip_player import ClipPlayer
from ..engine.scheduler import Scheduler
from ..errors import EmptyInputError
from .events import SessionEventEmitter, SessionEventType
from .models import PHASE_INFO, Phase, ScriptRole, SessionConfig
from .segments import ClipSegment, Segment, SegmentResult, TimerSegment
from .sequencer import AffirmationSequencer
from .settings import PlaybackSettings, SessionTiming


logger = logging.getLogger(__name__)

PHASE_ORDER: tuple[Phase, ...] = (
    Phase.PREPARING,
    Phase.INDUCTION,
    Phase.DEEPENING,
    Phase.AFFIRMATIONS,
    Phase.AWAKENING,
    Phase.COMPLETE,
)

_SCRIPT_ROLES = {
    Phase.INDUCTION: ScriptRole.INDUCTION,
    Phase.DEEPENING: ScriptRole.DEEPENING,
    Phase.AWAKENING: ScriptRole.AWAKENING,
}


@dataclass(frozen=True)
class SessionSnapshot:
    """Point-in-time view of a session for display."""

    phase: Phase
    title: str
    icon: str
    transitioning: bool
    phase_progress: float
    total_progress: float
    current_text: Optional[str]
    script_text: Optional[str]
    shuffle: bool
    loop: bool
    running: bool
    current_index: int
    playlist_length: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "phase": self.phase.value,
            "title": self.title,
            "icon": self.icon,
            "transitioning": self.transitioning,
            "phase_progress": round(self.phase_progress, 4),
            "total_progress": round(self.total_progress, 2),
            "current_text": self.current_text,
            "script_text": self.script_text,
            "shuffle": self.shuffle,
            "loop": self.loop,
            "running": self.running,
            "current_index": self.current_index,
            "playlist_length": self.playlist_length,
        }


class SessionStateMachine:
    """
    Drives phases, transition delays and progress for one session config.

    Args:
        config: Session content (never mutated)
        player: Shared clip player for script phases
        sequencer: Affirmation sequencer (already prepared with the config items)
        scheduler: Scheduler for every wait
        settings: Live playback settings
        timing: Timing constants
        events: Event emitter for phase and session events
        tone: Optional tone generator, stopped when COMPLETE is reached
    """

    def __init__(
        self,
        config: SessionConfig,
        *,
        player: ClipPlayer,
        sequencer: AffirmationSequencer,
        scheduler: Scheduler,
        settings: PlaybackSettings,
        timing: Optional[SessionTiming] = None,
        events: Optional[SessionEventEmitter] = None,
        tone: Any = None,
    ):
        self.config = config
        self._player = player
        self.sequencer = sequencer
        self._scheduler = scheduler
        self.settings = settings
        self.timing = timing or SessionTiming()
        self.events = events or SessionEventEmitter()
        self._tone = tone

        self.phase = Phase.PREPARING
        self.transitioning = False
        self.running = False
        self._task: Optional[asyncio.Task] = None
        self._segment: Optional[Segment] = None
        self._segment_fraction = 0.0
        self._run_id = 0

    # ===== Content =====

    def has_content(self, phase: Phase) -> bool:
        if phase is Phase.AFFIRMATIONS:
            return not self.sequencer.is_empty
        role = _SCRIPT_ROLES.get(phase)
        if role is not None:
            return self.config.has_script(role)
        return phase is Phase.COMPLETE

    def next_phase(self, phase: Phase) -> Phase:
        """First phase after ``phase`` that has content (COMPLETE at the end)."""
        idx = PHASE_ORDER.index(phase)
        for candidate in PHASE_ORDER[idx + 1:]:
            if self.has_content(candidate):
                return candidate
        return Phase.COMPLETE

    def resolve(self, phase: Phase) -> Phase:
        """``phase`` itself if it has content, else the next one that does."""
        if phase is Phase.PREPARING:
            return self.next_phase(Phase.PREPARING)
        return phase if self.has_content(phase) else self.next_phase(phase)

    @staticmethod
    def needs_delay(source: Phase, target: Phase) -> bool:
        """Entry into AFFIRMATIONS straight from a script phase is immediate."""
        return not (target is Phase.AFFIRMATIONS and source in _SCRIPT_ROLES)

    # ===== Commands =====

    @property
    def is_running(self) -> bool:
        return self.running

    def start(self) -> bool:
        """Begin a run from PREPARING. No-op while running."""
        if self.running:
            return True
        self._teardown()
        self.sequencer.reset()
        self.running = True
        self.events.emit_type(SessionEventType.SESSION_START, items=len(self.sequencer))
        logger.info("[session] Started (%d affirmation(s))", len(self.sequencer))
        self._launch(self.next_phase(Phase.PREPARING), delay=True)
        return True

    def stop(self) -> None:
        """Stop the run and reset to PREPARING. Safe when idle."""
        was_running = self.running
        self._teardown()
        if was_running:
            self.events.emit_type(SessionEventType.SESSION_STOP)
            logger.info("[session] Stopped")

    def skip_to_phase(self, phase: Phase | str) -> Phase:
        """Jump straight to ``phase`` (or the next phase with content), no delay.

        Returns:
            The phase actually entered
        """
        target = self.resolve(Phase.parse(phase))
        self._teardown()
        if target is Phase.AFFIRMATIONS:
            self.sequencer.reset()
        self.running = True
        logger.info("[session] Skipping to %s", target.name)
        self._launch(target, delay=False)
        return target

    def _launch(self, target: Phase, *, delay: bool) -> None:
        self._run_id += 1
        run_id = self._run_id
        self._task = self._scheduler.loop.create_task(self._drive(run_id, target, delay))

    def _teardown(self) -> None:
        """Single cleanup path for stop, skip and restart."""
        self._run_id += 1
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        segment, self._segment = self._segment, None
        if segment is not None:
            segment.cancel()
        self.sequencer.cancel()
        self._player.stop()
        self._scheduler.cancel_all()
        self.phase = Phase.PREPARING
        self.transitioning = False
        self.running = False
        self._segment_fraction = 0.0

    def dispose(self) -> None:
        self._teardown()

    # ===== Driver =====

    async def _drive(self, run_id: int, target: Phase, delay: bool) -> None:
        source = self.phase
        try:
            while run_id == self._run_id:
                if delay and self.needs_delay(source, target):
                    if not await self._transition(run_id, target):
                        return
                self._enter(target)
                if target is Phase.COMPLETE:
                    self._complete()
                    return
                try:
                    await self._run_phase(target)
                except EmptyInputError as exc:
                    logger.info("[session] Skipping %s: %s", target.name, exc)
                if run_id != self._run_id:
                    return
                source, target, delay = target, self.next_phase(target), True
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.error("[session] Driver failed in %s: %s", self.phase.name, exc, exc_info=True)
            if run_id == self._run_id:
                self._teardown()

    async def _transition(self, run_id: int, target: Phase) -> bool:
        self.phase = target
        self.transitioning = True
        self.events.emit_type(
            SessionEventType.PHASE_TRANSITION_START,
            phase=target.value,
            delay_s=self.timing.transition_delay_s,
        )
        result = await self._await(TimerSegment(self._scheduler, self.timing.transition_delay_s, label="transition"))
        return result is SegmentResult.COMPLETED and run_id == self._run_id

    def _enter(self, phase: Phase) -> None:
        self.phase = phase
        self.transitioning = False
        self._segment_fraction = 0.0
        logger.info("[session] Phase -> %s", phase.name)
        self.events.emit_type(SessionEventType.PHASE_CHANGED, phase=phase.value, title=PHASE_INFO[phase].title)

    def _complete(self) -> None:
        self.running = False
        self._task = None
        if self._tone is not None:
            self._tone.stop()
        self.events.emit_type(SessionEventType.SESSION_END)
        logger.info("[session] Complete")

    async def _run_phase(self, phase: Phase) -> None:
        if phase is Phase.AFFIRMATIONS:
            if self.sequencer.is_empty:
                raise EmptyInputError("empty affirmation playlist")
            await self.sequencer.run()
            return
        role = _SCRIPT_ROLES.get(phase)
        if role is None:
            return
        script = self.config.script_for(role)
        if script is None:
            raise EmptyInputError(f"no {role.value} script")
        duration = script.duration_or(self.timing.default_duration(role))
        if script.has_audio:
            segment: Segment = ClipSegment(
                self._scheduler,
                self._player,
                script.audio_handle or "",
                fallback_s=duration,
                volume=self.settings.voice_volume,
                rate=self.settings.playback_rate,
                on_error=self._clip_error,
                label=role.value,
            )
        else:
            logger.debug("[session] %s script has no audio; timing %.1fs", role.value, duration)
            segment = TimerSegment(self._scheduler, duration, label=role.value)
        await self._await(segment)

    async def _await(self, segment: Segment) -> SegmentResult:
        self._segment = segment
        try:
            return await segment.wait()
        finally:
            if self._segment is segment:
                self._segment_fraction = segment.progress
                self._segment = None

    def _clip_error(self, handle: str, reason: str) -> None:
        self.events.emit_type(SessionEventType.CLIP_ERROR, handle=handle, reason=reason, phase=self.phase.value)

    # ===== Progress =====

    @property
    def phase_progress(self) -> float:
        if self.transitioning:
            return 0.0
        if self.phase is Phase.AFFIRMATIONS:
            return self.sequencer.progress
        if self.phase is Phase.COMPLETE:
            return 1.0
        if self.phase in _SCRIPT_ROLES:
            if self._segment is not None:
                return self._segment.progress
            return self._segment_fraction
        return 0.0

    @property
    def total_progress(self) -> float:
        """Aggregate progress in percent (0-100)."""
        if self.phase is Phase.PREPARING:
            return 0.0
        if self.phase is Phase.COMPLETE and not self.transitioning:
            return 100.0
        return PHASE_INFO[self.phase].total_progress(self.phase_progress)

    def snapshot(self) -> SessionSnapshot:
        info = PHASE_INFO[self.phase]
        item = self.sequencer.current_item if self.phase is Phase.AFFIRMATIONS else None
        role = _SCRIPT_ROLES.get(self.phase)
        script = self.config.script_for(role) if role is not None else None
        return SessionSnapshot(
            phase=self.phase,
            title=info.title,
            icon=info.icon,
            transitioning=self.transitioning,
            phase_progress=self.phase_progress,
            total_progress=self.total_progress,
            current_text=item.text if item else None,
            script_text=script.text if script and not self.transitioning else None,
            shuffle=self.sequencer.shuffle_enabled,
            loop=self.sequencer.loop_enabled,
            running=self.running,
            current_index=self.sequencer.current_index,
            playlist_length=len(self.sequencer),
        )
