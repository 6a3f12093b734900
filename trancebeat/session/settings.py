"""Live playback settings, timing constants and JSON persistence."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Callable, Dict, Optional

from ..engine.scheduler import ScheduledCall, Scheduler
from ..errors import ConfigError
from ..platform_paths import get_settings_path
from .models import ScriptRole


logger = logging.getLogger(__name__)

SettingsListener = Callable[[str, float], None]

SETTING_RANGES: Dict[str, tuple[float, float]] = {
    "gap_between_sec": (0.0, 10.0),
    "voice_volume": (0.0, 1.0),
    "playback_rate": (0.5, 1.5),
    "base_freq": (100.0, 500.0),
    "beat_freq": (1.0, 30.0),
    "binaural_volume": (0.0, 1.0),
}

DEFAULT_SAVE_DEBOUNCE_S = 0.5


@dataclass
class PlaybackSettings:
    """User-adjustable values read live by the engines.

    Every write is clamped to its range. Listeners receive ``(name, value)``
    after a value actually changes.
    """

    gap_between_sec: float = 2.0
    voice_volume: float = 0.8
    playback_rate: float = 1.0
    base_freq: float = 200.0
    beat_freq: float = 10.0
    binaural_volume: float = 0.5
    _listeners: list = field(default_factory=list, init=False, repr=False, compare=False)

    def __setattr__(self, name: str, value: Any) -> None:
        bounds = SETTING_RANGES.get(name)
        if bounds is None:
            super().__setattr__(name, value)
            return
        lo, hi = bounds
        value = max(lo, min(hi, float(value)))
        previous = self.__dict__.get(name)
        super().__setattr__(name, value)
        if previous is not None and previous != value:
            self._notify(name, value)

    def _notify(self, name: str, value: float) -> None:
        for listener in list(self.__dict__.get("_listeners", ())):
            try:
                listener(name, value)
            except Exception as exc:
                logger.error("[settings] Listener error for %s: %s", name, exc, exc_info=True)

    def add_listener(self, listener: SettingsListener) -> None:
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove_listener(self, listener: SettingsListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def update(self, **values: float) -> None:
        for name, value in values.items():
            if name not in SETTING_RANGES:
                raise AttributeError(f"Unknown setting: {name}")
            setattr(self, name, value)

    def to_dict(self) -> Dict[str, float]:
        return {name: getattr(self, name) for name in SETTING_RANGES}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PlaybackSettings":
        """Build settings from a mapping; unknown keys are ignored."""
        settings = cls()
        for name in SETTING_RANGES:
            if name in data and data[name] is not None:
                try:
                    setattr(settings, name, data[name])
                except (TypeError, ValueError):
                    raise ConfigError(f"Invalid value for {name}: {data[name]!r}") from None
        return settings


@dataclass(frozen=True)
class SessionTiming:
    """Timing constants of a session, in seconds."""

    transition_delay_s: float = 3.0
    text_hold_s: float = 3.0
    progress_interval_s: float = 0.1
    induction_default_s: float = 60.0
    deepening_default_s: float = 60.0
    awakening_default_s: float = 45.0

    def default_duration(self, role: ScriptRole) -> float:
        return {
            ScriptRole.INDUCTION: self.induction_default_s,
            ScriptRole.DEEPENING: self.deepening_default_s,
            ScriptRole.AWAKENING: self.awakening_default_s,
        }[role]

    @classmethod
    def field_names(cls) -> list[str]:
        return [f.name for f in fields(cls)]


class SettingsStore:
    """Persists :class:`PlaybackSettings` as JSON with debounced saves.

    Args:
        path: JSON file (default: per-user settings path)
        scheduler: Scheduler for the debounce timer; saves are immediate without one
        debounce_s: Quiet period before a pending save is written
    """

    def __init__(
        self,
        path: Optional[Path] = None,
        *,
        scheduler: Optional[Scheduler] = None,
        debounce_s: float = DEFAULT_SAVE_DEBOUNCE_S,
    ) -> None:
        self.path = Path(path) if path else get_settings_path()
        self._scheduler = scheduler
        self.debounce_s = float(debounce_s)
        self._pending: Optional[ScheduledCall] = None
        self._settings: Optional[PlaybackSettings] = None
        self.saves = 0

    def load(self) -> PlaybackSettings:
        """Read settings from disk; a missing file yields defaults.

        Raises:
            ConfigError: The file exists but is not valid settings JSON
        """
        if not self.path.exists():
            logger.debug("[settings] No settings file at %s; using defaults", self.path)
            return PlaybackSettings()
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(f"Cannot read settings from {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"Settings file {self.path} must contain a JSON object")
        return PlaybackSettings.from_dict(data)

    def save(self, settings: PlaybackSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(settings.to_dict(), f, indent=2)
        self.saves += 1
        logger.debug("[settings] Saved to %s", self.path)

    def attach(self, settings: PlaybackSettings) -> None:
        """Save ``settings`` (debounced) whenever any value changes."""
        if self._settings is not None:
            self._settings.remove_listener(self._on_change)
        self._settings = settings
        settings.add_listener(self._on_change)

    def detach(self) -> None:
        if self._settings is not None:
            self._settings.remove_listener(self._on_change)
        self.cancel_pending()
        self._settings = None

    def _on_change(self, _name: str, _value: float) -> None:
        if self._scheduler is None:
            self.flush()
            return
        self.cancel_pending()
        self._pending = self._scheduler.call_later(self.debounce_s, self._write_pending)

    def _write_pending(self) -> None:
        self._pending = None
        self._write_attached()

    def _write_attached(self) -> None:
        if self._settings is None:
            return
        try:
            self.save(self._settings)
        except OSError as exc:
            logger.warning("[settings] Failed to save %s: %s", self.path, exc)

    @property
    def has_pending_save(self) -> bool:
        return self._pending is not None

    def cancel_pending(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None

    def flush(self) -> None:
        """Write any pending change immediately."""
        self.cancel_pending()
        self._write_attached()
