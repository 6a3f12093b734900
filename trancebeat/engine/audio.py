"""pygame mixer backend for speech clips.

The backend decodes clips into ``pygame.mixer.Sound`` objects and starts them
on a free mixer channel. pygame has no live playback-rate control, so a
non-unit rate (or a non-zero start offset) is realised by resampling the
decoded samples with numpy and playing the resulting buffer; the
:class:`~trancebeat.engine.clip_player.ClipPlayer` uses that to continue from
the current position when the rate changes mid-clip.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from threading import Lock
from typing import Any, Callable, Optional
from urllib.parse import unquote, urlparse

import numpy as np

try:
    import pygame
except Exception:  # pragma: no cover - pygame may be unavailable in headless docs builds
    pygame = None  # type: ignore

from ..errors import ResourceLoadError


logger = logging.getLogger(__name__)

MIXER_FREQUENCY = 44100
MIXER_SIZE = -16
MIXER_CHANNELS = 2
MIXER_BUFFER = 512

_mixer_lock = Lock()


def clamp(x: float, a: float, b: float) -> float:
    return max(a, min(b, float(x)))


def handle_to_path(handle: str) -> Path:
    """Resolve a clip handle (plain path or ``file://`` URL) to a local path.

    Raises:
        ResourceLoadError: For empty handles and non-file URL schemes
    """
    text = str(handle or "").strip()
    if not text:
        raise ResourceLoadError(text, "empty handle")
    parsed = urlparse(text)
    if parsed.scheme == "file":
        return Path(unquote(parsed.path))
    # Single letters are Windows drive prefixes, not schemes
    if parsed.scheme and len(parsed.scheme) > 1:
        raise ResourceLoadError(text, f"unsupported scheme '{parsed.scheme}'")
    return Path(text)


def ensure_mixer() -> bool:
    """Initialize the pygame mixer lazily. Returns True when the mixer is ready."""
    if pygame is None:
        logger.debug("[clip] pygame not available; clip playback disabled")
        return False
    with _mixer_lock:
        try:
            if not pygame.mixer.get_init():
                pygame.mixer.pre_init(MIXER_FREQUENCY, MIXER_SIZE, MIXER_CHANNELS, MIXER_BUFFER)
                pygame.mixer.init()
                logger.info("[clip] pygame mixer initialized")
            return True
        except Exception as exc:  # pragma: no cover - depends on host audio stack
            logger.error("[clip] pygame mixer init failed: %s", exc)
            return False


@dataclass
class LoadedClip:
    """A decoded clip resident in memory."""

    handle: str
    duration_s: float
    sound: Any = None
    path: Optional[Path] = None
    size_bytes: Optional[int] = None


class PygameVoice:
    """A clip sounding on one mixer channel.

    Position is derived from wall-clock time since start because pygame does
    not expose a channel play head.
    """

    def __init__(
        self,
        channel: Any,
        *,
        offset_s: float,
        rate: float,
        duration_s: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._channel = channel
        self._offset_s = offset_s
        self._rate = rate
        self._duration_s = duration_s
        self._clock = clock
        self._started_at = clock()
        self._stopped = False

    @property
    def position(self) -> float:
        if self._stopped:
            return 0.0
        elapsed = (self._clock() - self._started_at) * self._rate
        return min(self._duration_s, self._offset_s + elapsed)

    def set_volume(self, volume: float) -> None:
        if self._channel is not None:
            self._channel.set_volume(clamp(volume, 0.0, 1.0))

    def busy(self) -> bool:
        if self._stopped or self._channel is None:
            return False
        try:
            return bool(self._channel.get_busy())
        except Exception:
            return False

    def stop(self) -> None:
        if self._stopped:
            return
        self._stopped = True
        if self._channel is not None:
            try:
                self._channel.stop()
            except Exception as exc:
                logger.debug("[clip] Channel stop error (non-critical): %s", exc)


class PygameClipBackend:
    """Loads and starts clips on the pygame mixer."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock

    def load(self, handle: str) -> LoadedClip:
        """Decode ``handle`` fully into memory.

        Raises:
            ResourceLoadError: Missing file, unsupported handle or decode failure
        """
        path = handle_to_path(handle)
        if not path.exists():
            raise ResourceLoadError(handle, "file not found")
        if not ensure_mixer():
            raise ResourceLoadError(handle, "audio mixer unavailable")
        try:
            sound = pygame.mixer.Sound(str(path))
        except Exception as exc:
            raise ResourceLoadError(handle, str(exc)) from exc
        try:
            size = path.stat().st_size
        except OSError:
            size = None
        return LoadedClip(
            handle=handle,
            duration_s=float(sound.get_length()),
            sound=sound,
            path=path,
            size_bytes=size,
        )

    def start(self, clip: LoadedClip, *, offset_s: float = 0.0, rate: float = 1.0, volume: float = 1.0) -> PygameVoice:
        """Start ``clip`` at ``offset_s`` seconds with the given rate and volume.

        Raises:
            ResourceLoadError: No channel available or the buffer cannot be built
        """
        rate = clamp(rate, 0.5, 1.5)
        offset_s = clamp(offset_s, 0.0, max(0.0, clip.duration_s))
        try:
            if offset_s <= 0.0 and rate == 1.0:
                sound = clip.sound
            else:
                sound = self._resampled(clip, offset_s, rate)
            channel = sound.play()
        except ResourceLoadError:
            raise
        except Exception as exc:
            raise ResourceLoadError(clip.handle, f"playback failed: {exc}") from exc
        if channel is None:
            raise ResourceLoadError(clip.handle, "no free mixer channel")
        channel.set_volume(clamp(volume, 0.0, 1.0))
        return PygameVoice(
            channel,
            offset_s=offset_s,
            rate=rate,
            duration_s=clip.duration_s,
            clock=self._clock,
        )

    def _resampled(self, clip: LoadedClip, offset_s: float, rate: float) -> Any:
        init = pygame.mixer.get_init()
        frequency = init[0] if init else MIXER_FREQUENCY
        samples = pygame.sndarray.array(clip.sound)
        start = int(offset_s * frequency)
        tail = samples[start:]
        if len(tail) == 0:
            raise ResourceLoadError(clip.handle, "offset beyond end of clip")
        if rate != 1.0:
            tail = _resample(tail, rate)
        return pygame.sndarray.make_sound(np.ascontiguousarray(tail))


def _resample(samples: np.ndarray, rate: float) -> np.ndarray:
    """Linear-interpolation resample so playback runs ``rate`` times faster."""
    count = len(samples)
    target = max(1, int(round(count / rate)))
    src = np.arange(count, dtype=np.float64)
    pos = np.linspace(0.0, count - 1, target)
    if samples.ndim == 1:
        return np.interp(pos, src, samples).astype(samples.dtype)
    out = np.empty((target, samples.shape[1]), dtype=samples.dtype)
    for ch in range(samples.shape[1]):
        out[:, ch] = np.interp(pos, src, samples[:, ch]).astype(samples.dtype)
    return out
