"""Audio engines for TranceBeat: binaural tone, speech clips and timers."""

from .audio import LoadedClip, PygameClipBackend, PygameVoice, clamp
from .clip_cache import ClipCache
from .clip_player import ClipPlayer
from .presets import BRAINWAVE_PRESETS, BrainwavePreset, preset_for_frequency, presets_in_range
from .scheduler import ScheduledCall, Scheduler
from .tone import ToneGenerator, ToneParameters

__all__ = [
    'LoadedClip', 'PygameClipBackend', 'PygameVoice', 'clamp',
    'ClipCache', 'ClipPlayer',
    'BRAINWAVE_PRESETS', 'BrainwavePreset', 'preset_for_frequency', 'presets_in_range',
    'ScheduledCall', 'Scheduler',
    'ToneGenerator', 'ToneParameters',
]
