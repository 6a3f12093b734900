"""Public command surface for a session.

The controller owns every engine instance for one session (tone generator,
clip cache and player, sequencer, state machine) and forwards live settings
changes to whichever of them is affected. All commands are synchronous; their
effects play out on the running asyncio loop.
"""

from __future__ import annotations

import logging
import random
from typing import Any, Callable, Optional

from ..engine.audio import PygameClipBackend
from ..engine.clip_cache import ClipCache
from ..engine.clip_player import ClipPlayer
from ..engine.presets import get_preset
from ..engine.scheduler import Scheduler
from ..engine.tone import ToneGenerator, ToneParameters
from ..logging_utils import PerfTracer
from .events import SessionEventEmitter, SessionEventType
from .models import Phase, SessionConfig
from .sequencer import AffirmationSequencer
from .settings import PlaybackSettings, SessionTiming, SettingsStore
from .state_machine import SessionSnapshot, SessionStateMachine


logger = logging.getLogger(__name__)

ExitCallback = Callable[[str], None]


class SessionController:
    """
    Composes the engines for one session and exposes its commands.

    Args:
        config: Session content
        settings: Live playback settings (default values when omitted)
        timing: Timing constants
        scheduler: Scheduler the session scope is taken from; may be shared (default: asyncio loop timers)
        tone: Tone generator (default: sounddevice output)
        backend: Clip backend (default: pygame mixer)
        events: Event emitter shared with the state machine
        rng: Random source for shuffling
        on_exit: Called with "back" or "end" when the user leaves the session
        preload: Preload all clip audio up front
        enable_tone: Play the binaural beat under the session
    """

    def __init__(
        self,
        config: SessionConfig,
        *,
        settings: Optional[PlaybackSettings] = None,
        timing: Optional[SessionTiming] = None,
        scheduler: Optional[Scheduler] = None,
        tone: Optional[ToneGenerator] = None,
        backend: Any = None,
        events: Optional[SessionEventEmitter] = None,
        rng: Optional[random.Random] = None,
        on_exit: Optional[ExitCallback] = None,
        preload: bool = True,
        enable_tone: bool = True,
    ):
        self.config = config
        self.settings = settings or PlaybackSettings()
        self.timing = timing or SessionTiming()
        self.scheduler = scheduler or Scheduler()
        # Teardown cancels only the calls issued through this scope
        self.session_scheduler = self.scheduler.scope("session")
        self.events = events or SessionEventEmitter()
        self.on_exit = on_exit
        self.enable_tone = enable_tone

        self.tone = tone or ToneGenerator(
            ToneParameters(self.settings.base_freq, self.settings.beat_freq, self.settings.binaural_volume)
        )
        self.tone.configure(self.settings.base_freq, self.settings.beat_freq, self.settings.binaural_volume)

        self.backend = backend or PygameClipBackend()
        self.cache = ClipCache(self.backend, perf_tracer=PerfTracer("clip-cache"))
        self.player = ClipPlayer(
            backend=self.backend,
            cache=self.cache,
            scheduler=self.session_scheduler,
            progress_interval_s=self.timing.progress_interval_s,
        )
        self.player.set_volume(self.settings.voice_volume)
        self.player.set_rate(self.settings.playback_rate)

        self.sequencer = AffirmationSequencer(
            self.player,
            self.cache,
            self.session_scheduler,
            self.settings,
            timing=self.timing,
            rng=rng,
            events=self.events,
        )
        self.sequencer.prepare(config.items, shuffle=False, preload=preload)
        if preload:
            script_handles = [
                s.audio_handle for s in (config.induction, config.deepening, config.awakening) if s is not None
            ]
            self.cache.preload_all(script_handles)

        self.machine = SessionStateMachine(
            config,
            player=self.player,
            sequencer=self.sequencer,
            scheduler=self.session_scheduler,
            settings=self.settings,
            timing=self.timing,
            events=self.events,
            tone=self.tone,
        )
        self.settings.add_listener(self._on_setting_changed)
        self._disposed = False

    @classmethod
    def create(
        cls,
        config: SessionConfig,
        settings: Optional[PlaybackSettings] = None,
        *,
        store: Optional[SettingsStore] = None,
        **kwargs: Any,
    ) -> "SessionController":
        """Build a controller on the real audio engines.

        When ``store`` is given and no ``settings`` are passed, settings are
        loaded from it and saved back (debounced) on every change.
        """
        if settings is None and store is not None:
            settings = store.load()
        controller = cls(config, settings=settings, **kwargs)
        if store is not None:
            store.attach(controller.settings)
        return controller

    # ===== State =====

    @property
    def phase(self) -> Phase:
        return self.machine.phase

    @property
    def is_running(self) -> bool:
        return self.machine.running

    @property
    def total_progress(self) -> float:
        return self.machine.total_progress

    def snapshot(self) -> SessionSnapshot:
        return self.machine.snapshot()

    # ===== Lifecycle =====

    def start(self) -> bool:
        """Start the session and the tone. Returns False for an empty playlist."""
        if self.sequencer.is_empty:
            logger.warning("[session] Nothing to play; start ignored")
            return False
        if self.machine.running:
            return True
        self._start_tone()
        return self.machine.start()

    def stop(self) -> None:
        """Cancel timers, release the clip, stop the tone and reset to PREPARING."""
        self.machine.stop()
        self.tone.stop()

    def back(self) -> None:
        self._exit("back")

    def end_session(self) -> None:
        self._exit("end")

    def _exit(self, reason: str) -> None:
        self.stop()
        self.events.emit_type(SessionEventType.EXIT_REQUESTED, reason=reason)
        if self.on_exit:
            self.on_exit(reason)

    def skip_to_phase(self, phase: Phase | str) -> Phase:
        if not self.tone.is_playing:
            self._start_tone()
        return self.machine.skip_to_phase(phase)

    def dispose(self) -> None:
        if self._disposed:
            return
        self._disposed = True
        self.stop()
        self.tone.dispose()
        self.settings.remove_listener(self._on_setting_changed)
        self.cache.clear()
        logger.debug("[session] Disposed")

    def _start_tone(self) -> None:
        if not self.enable_tone:
            return
        self.tone.configure(self.settings.base_freq, self.settings.beat_freq, self.settings.binaural_volume)
        if not self.tone.start():
            logger.warning("[session] Binaural tone unavailable; continuing without it")

    # ===== Playlist controls =====

    def toggle_shuffle(self) -> bool:
        return self.sequencer.toggle_shuffle()

    def toggle_loop(self) -> bool:
        return self.sequencer.toggle_loop()

    # ===== Live settings =====

    def set_voice_volume(self, volume: float) -> None:
        self.settings.voice_volume = volume

    def set_playback_rate(self, rate: float) -> None:
        self.settings.playback_rate = rate

    def set_binaural_volume(self, volume: float) -> None:
        self.settings.binaural_volume = volume

    def set_base_freq(self, freq: float) -> None:
        self.settings.base_freq = freq

    def set_beat_freq(self, freq: float) -> None:
        self.settings.beat_freq = freq

    def set_gap_between_sec(self, seconds: float) -> None:
        self.settings.gap_between_sec = seconds

    def apply_preset(self, key: str) -> bool:
        """Set the beat frequency to a brainwave preset's default."""
        preset = get_preset(key)
        if preset is None:
            logger.warning("[session] Unknown preset: %s", key)
            return False
        self.set_beat_freq(preset.beat_frequency_hz)
        return True

    def _on_setting_changed(self, name: str, value: float) -> None:
        if name == "voice_volume":
            self.player.set_volume(value)
        elif name == "playback_rate":
            self.player.set_rate(value)
        elif name == "binaural_volume":
            self.tone.set_volume(value)
        elif name == "base_freq":
            self.tone.set_base_freq(value)
        elif name == "beat_freq":
            self.tone.set_beat_freq(value)
        # gap_between_sec is read live by the sequencer
        self.events.emit_type(SessionEventType.SETTINGS_CHANGED, name=name, value=value)
