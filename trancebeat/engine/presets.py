"""Brainwave band presets for the binaural beat frequency.

Each band names a beat-frequency range and the mental state associated with
it. Band edges are half-open (``min <= f < max``); only the default frequency
is used when a preset is applied to the tone generator, clamped to the
generator's beat range.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .tone import BEAT_FREQ_RANGE, clamp


@dataclass(frozen=True)
class BrainwavePreset:
    key: str
    name: str
    description: str
    min_freq: float
    max_freq: float
    default_freq: float

    def contains(self, freq: float) -> bool:
        return self.min_freq <= freq < self.max_freq

    @property
    def beat_frequency_hz(self) -> float:
        """Default frequency clamped to what the tone generator accepts."""
        return clamp(self.default_freq, *BEAT_FREQ_RANGE)

    def to_dict(self) -> dict:
        return {
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "min_freq": self.min_freq,
            "max_freq": self.max_freq,
            "default_freq": self.default_freq,
        }


BRAINWAVE_PRESETS: tuple[BrainwavePreset, ...] = (
    BrainwavePreset("delta", "Delta", "Deep sleep", 0.5, 4.0, 2.0),
    BrainwavePreset("theta", "Theta", "Meditation", 4.0, 8.0, 6.0),
    BrainwavePreset("alpha", "Alpha", "Relaxation", 8.0, 12.0, 10.0),
    BrainwavePreset("beta", "Beta", "Focus", 12.0, 30.0, 20.0),
    BrainwavePreset("gamma", "Gamma", "High cognition", 30.0, 100.0, 40.0),
)


def get_preset(key: str) -> Optional[BrainwavePreset]:
    key = (key or "").strip().lower()
    for preset in BRAINWAVE_PRESETS:
        if preset.key == key:
            return preset
    return None


def preset_for_frequency(freq: float) -> Optional[BrainwavePreset]:
    """Return the band containing ``freq`` or None when outside all bands."""
    for preset in BRAINWAVE_PRESETS:
        if preset.contains(freq):
            return preset
    return None


def presets_in_range(lo: float, hi: float) -> list[BrainwavePreset]:
    """Presets whose default frequency lies within ``[lo, hi]``."""
    return [p for p in BRAINWAVE_PRESETS if lo <= p.default_freq <= hi]
