"""Session data model: affirmation items, scripts, phases and the session config.

A :class:`SessionConfig` is immutable once built. Playback never mutates it;
the sequencer derives its own working playlist from ``config.items``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from ..errors import ConfigError


DEFAULT_ITEM_DURATION_MS = 3000


class Phase(Enum):
    """Ordered phases of a session."""

    PREPARING = "preparing"
    INDUCTION = "induction"
    DEEPENING = "deepening"
    AFFIRMATIONS = "affirmations"
    AWAKENING = "awakening"
    COMPLETE = "complete"

    @classmethod
    def parse(cls, value: "Phase | str") -> "Phase":
        if isinstance(value, Phase):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            try:
                return cls[str(value).strip().upper()]
            except KeyError:
                raise ValueError(f"Unknown phase: {value!r}") from None


class ScriptRole(Enum):
    """Phases that play a single spoken script."""

    INDUCTION = "induction"
    DEEPENING = "deepening"
    AWAKENING = "awakening"

    @property
    def phase(self) -> Phase:
        return Phase(self.value)


@dataclass(frozen=True)
class PhaseInfo:
    """Display metadata and progress band (percent) for one phase."""

    title: str
    icon: str
    band_start: float
    band_end: float

    def total_progress(self, intra: float) -> float:
        intra = max(0.0, min(1.0, intra))
        return self.band_start + (self.band_end - self.band_start) * intra


PHASE_INFO: Dict[Phase, PhaseInfo] = {
    Phase.PREPARING: PhaseInfo("Preparing", "self_improvement", 0.0, 0.0),
    Phase.INDUCTION: PhaseInfo("Induction", "self_improvement", 0.0, 20.0),
    Phase.DEEPENING: PhaseInfo("Deepening", "spa", 20.0, 40.0),
    Phase.AFFIRMATIONS: PhaseInfo("Affirmations", "record_voice_over", 40.0, 90.0),
    Phase.AWAKENING: PhaseInfo("Awakening", "wb_sunny", 90.0, 100.0),
    Phase.COMPLETE: PhaseInfo("Session Complete", "check_circle", 100.0, 100.0),
}

_missing = [phase.name for phase in Phase if phase not in PHASE_INFO]
if _missing:  # pragma: no cover - import-time guard
    raise RuntimeError(f"PHASE_INFO is missing entries for: {', '.join(_missing)}")
del _missing


def phase_info(phase: Phase) -> PhaseInfo:
    return PHASE_INFO[phase]


def _first(data: Dict[str, Any], *keys: str, default: Any = None) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None:
            return value
    return default


@dataclass(frozen=True)
class AffirmationItem:
    """One spoken affirmation. ``id`` is stable across shuffles."""

    id: str
    text: str
    audio_handle: Optional[str] = None
    estimated_duration_ms: int = DEFAULT_ITEM_DURATION_MS

    @property
    def has_audio(self) -> bool:
        return bool(self.audio_handle)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"id": self.id, "text": self.text}
        if self.audio_handle:
            data["audio"] = self.audio_handle
        data["duration_ms"] = self.estimated_duration_ms
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AffirmationItem":
        if "id" not in data:
            raise ConfigError(f"Affirmation item is missing an id: {data!r}")
        duration = _first(data, "duration_ms", "audioDurationMs", default=DEFAULT_ITEM_DURATION_MS)
        try:
            duration_ms = int(duration) if duration else DEFAULT_ITEM_DURATION_MS
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid duration for item {data['id']!r}: {duration!r}") from None
        return cls(
            id=str(data["id"]),
            text=str(data.get("text", "")),
            audio_handle=_first(data, "audio", "audio_url", "audioUrl") or None,
            estimated_duration_ms=duration_ms,
        )


@dataclass(frozen=True)
class Script:
    """A spoken script for induction, deepening or awakening."""

    text: str
    audio_handle: Optional[str] = None
    estimated_duration_sec: Optional[float] = None
    premium: bool = False

    @property
    def has_audio(self) -> bool:
        return bool(self.audio_handle)

    def duration_or(self, default_s: float) -> float:
        if self.estimated_duration_sec and self.estimated_duration_sec > 0:
            return float(self.estimated_duration_sec)
        return float(default_s)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"text": self.text}
        if self.audio_handle:
            data["audio_url"] = self.audio_handle
        if self.estimated_duration_sec is not None:
            data["duration_estimate_sec"] = self.estimated_duration_sec
        if self.premium:
            data["premium"] = True
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Script":
        duration = _first(data, "duration_estimate_sec", "estimated_duration_sec")
        try:
            duration_sec = float(duration) if duration is not None else None
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid script duration: {duration!r}") from None
        return cls(
            text=str(data.get("text", "")),
            audio_handle=_first(data, "audio_url", "audio", "audioUrl") or None,
            estimated_duration_sec=duration_sec,
            premium=bool(data.get("premium", False)),
        )


@dataclass(frozen=True)
class SessionConfig:
    """Immutable description of one session."""

    items: Tuple[AffirmationItem, ...] = ()
    induction: Optional[Script] = None
    deepening: Optional[Script] = None
    awakening: Optional[Script] = None
    name: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        if not isinstance(self.items, tuple):
            object.__setattr__(self, "items", tuple(self.items))

    def script_for(self, role: ScriptRole) -> Optional[Script]:
        return getattr(self, role.value)

    def has_script(self, role: ScriptRole) -> bool:
        return self.script_for(role) is not None

    def audio_handles(self) -> list[str]:
        """Every distinct audio handle in play order (scripts around items)."""
        handles: list[str] = []
        candidates = [self.induction, self.deepening, *self.items, self.awakening]
        for entry in candidates:
            handle = getattr(entry, "audio_handle", None) if entry is not None else None
            if handle and handle not in handles:
                handles.append(handle)
        return handles

    def estimated_duration_ms(self, gap_between_sec: float) -> int:
        """Estimated affirmation-phase length: each item plus one gap."""
        gap_ms = max(0.0, float(gap_between_sec)) * 1000.0
        return int(sum(item.estimated_duration_ms + gap_ms for item in self.items))

    def validate(self) -> tuple[bool, str]:
        """
        Validate session configuration.

        Returns:
            (is_valid, error_message)
        """
        if not self.items:
            return False, "Session must contain at least one affirmation"

        ids = [item.id for item in self.items]
        if len(ids) != len(set(ids)):
            duplicates = sorted({i for i in ids if ids.count(i) > 1})
            return False, f"Duplicate affirmation ids found: {duplicates}"

        for i, item in enumerate(self.items):
            if not item.id.strip():
                return False, f"Affirmation {i} has an empty id"
            if item.estimated_duration_ms < 0:
                return False, f"Affirmation {item.id!r}: duration must be >= 0"

        for role in ScriptRole:
            script = self.script_for(role)
            if script is not None and script.estimated_duration_sec is not None and script.estimated_duration_sec < 0:
                return False, f"{role.value} script: duration must be >= 0"

        return True, ""

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.name:
            data["name"] = self.name
        data["items"] = [item.to_dict() for item in self.items]
        for role in ScriptRole:
            script = self.script_for(role)
            if script is not None:
                data[role.value] = script.to_dict()
        if self.metadata:
            data["metadata"] = dict(self.metadata)
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionConfig":
        if not isinstance(data, dict):
            raise ConfigError("Session data must be a JSON object")
        raw_items = _first(data, "items", "affirmations", "playlist", default=[])
        if not isinstance(raw_items, list):
            raise ConfigError("'items' must be a list")
        scripts: Dict[str, Optional[Script]] = {}
        for role in ScriptRole:
            raw = data.get(role.value)
            scripts[role.value] = Script.from_dict(raw) if isinstance(raw, dict) else None
        return cls(
            items=tuple(AffirmationItem.from_dict(item) for item in raw_items),
            name=str(data.get("name", "")),
            metadata=dict(data.get("metadata", {}) or {}),
            **scripts,
        )

    def save(self, path: Path) -> None:
        """Save the session to a JSON file.

        Raises:
            ConfigError: If the session is invalid
        """
        is_valid, msg = self.validate()
        if not is_valid:
            raise ConfigError(f"Cannot save invalid session: {msg}")
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)

    @classmethod
    def load(cls, path: Path, *, validate: bool = True) -> "SessionConfig":
        """
        Load a session from a JSON file.

        Args:
            path: Path to the session JSON file
            validate: Reject sessions that fail :meth:`validate`

        Raises:
            ConfigError: Missing file, malformed JSON or failed validation
        """
        path = Path(path)
        if not path.exists():
            raise ConfigError(f"Session file not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as exc:
            raise ConfigError(f"Invalid JSON in {path}: {exc}") from exc

        config = cls.from_dict(data)
        if validate:
            is_valid, msg = config.validate()
            if not is_valid:
                raise ConfigError(f"Invalid session in {path}: {msg}")
        return config
