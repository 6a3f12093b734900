"""Real-time binaural beat generator.

Two sine oscillators, one per stereo channel: the left channel plays the base
frequency, the right channel plays ``base + beat``. Parameters may change at
any time; the audio callback ramps from the previous block's values to the new
targets across one block and carries oscillator phase between blocks, so live
changes never click and never restart the stream.
"""

from __future__ import annotations

import logging
import math
import threading
from dataclasses import dataclass
from typing import Any, Callable, Optional

import numpy as np

try:
    import sounddevice as sd
except Exception:  # pragma: no cover - PortAudio may be unavailable on headless hosts
    sd = None  # type: ignore

from ..errors import PlatformPolicyError


logger = logging.getLogger(__name__)

BASE_FREQ_RANGE = (100.0, 500.0)
BEAT_FREQ_RANGE = (1.0, 30.0)
VOLUME_RANGE = (0.0, 1.0)

DEFAULT_SAMPLE_RATE = 44100
DEFAULT_BLOCKSIZE = 512
_TWO_PI = 2.0 * math.pi


def clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, float(x)))


@dataclass
class ToneParameters:
    """Binaural tone settings, clamped to their valid ranges on every write."""

    base_frequency_hz: float = 200.0
    beat_frequency_hz: float = 10.0
    volume: float = 0.5

    def __setattr__(self, name: str, value: Any) -> None:
        if name == "base_frequency_hz":
            value = clamp(value, *BASE_FREQ_RANGE)
        elif name == "beat_frequency_hz":
            value = clamp(value, *BEAT_FREQ_RANGE)
        elif name == "volume":
            value = clamp(value, *VOLUME_RANGE)
        super().__setattr__(name, value)

    @property
    def left_frequency_hz(self) -> float:
        return self.base_frequency_hz

    @property
    def right_frequency_hz(self) -> float:
        return self.base_frequency_hz + self.beat_frequency_hz


StreamFactory = Callable[..., Any]


class ToneGenerator:
    """Dual-channel sine synthesis on a ``sounddevice`` output stream.

    The output stream plays the role of the audio "context": it is created
    lazily, resumed by :meth:`start` if it exists but is not running, and fully
    closed by :meth:`stop` so repeated start/stop cycles never leak streams.

    Args:
        params: Initial tone parameters (defaults: 200 Hz base, 10 Hz beat, 0.5 volume)
        sample_rate: Output sample rate in Hz
        blocksize: Frames per audio callback
        stream_factory: Callable creating the output stream; defaults to
            ``sounddevice.OutputStream``. Injected by tests.
    """

    def __init__(
        self,
        params: Optional[ToneParameters] = None,
        *,
        sample_rate: int = DEFAULT_SAMPLE_RATE,
        blocksize: int = DEFAULT_BLOCKSIZE,
        stream_factory: Optional[StreamFactory] = None,
    ) -> None:
        self.params = params or ToneParameters()
        self.sample_rate = int(sample_rate)
        self.blocksize = int(blocksize)
        self._stream_factory = stream_factory
        self._stream: Any = None
        self._playing = False
        self._lock = threading.Lock()
        self.last_error: Optional[PlatformPolicyError] = None

        # Oscillator state, touched only by the render path
        self._phase_left = 0.0
        self._phase_right = 0.0
        self._applied_left = self.params.left_frequency_hz
        self._applied_right = self.params.right_frequency_hz
        self._applied_volume = self.params.volume

        self.streams_opened = 0
        self.streams_closed = 0

    # ===== Parameters =====

    def configure(self, base_freq: float, beat_freq: float, volume: float) -> None:
        with self._lock:
            self.params.base_frequency_hz = base_freq
            self.params.beat_frequency_hz = beat_freq
            self.params.volume = volume
        logger.debug(
            "[tone] Configured base=%.1fHz beat=%.1fHz volume=%.2f",
            self.params.base_frequency_hz,
            self.params.beat_frequency_hz,
            self.params.volume,
        )

    def set_base_freq(self, freq: float) -> None:
        with self._lock:
            self.params.base_frequency_hz = freq

    def set_beat_freq(self, freq: float) -> None:
        with self._lock:
            self.params.beat_frequency_hz = freq

    def set_volume(self, volume: float) -> None:
        with self._lock:
            self.params.volume = volume

    @property
    def base_freq(self) -> float:
        return self.params.base_frequency_hz

    @property
    def beat_freq(self) -> float:
        return self.params.beat_frequency_hz

    @property
    def volume(self) -> float:
        return self.params.volume

    @property
    def left_frequency_hz(self) -> float:
        return self.params.left_frequency_hz

    @property
    def right_frequency_hz(self) -> float:
        return self.params.right_frequency_hz

    # ===== Lifecycle =====

    @property
    def is_playing(self) -> bool:
        return self._playing

    @property
    def has_context(self) -> bool:
        return self._stream is not None

    def prepare(self) -> bool:
        """Create the output stream without starting it.

        Useful to front-load device negotiation; the stream stays suspended
        until :meth:`start` resumes it.
        """
        if self._stream is not None:
            return True
        try:
            self._stream = self._open_stream()
        except PlatformPolicyError as exc:
            logger.error("[tone] Output stream unavailable: %s", exc)
            self.last_error = exc
            self._stream = None
            return False
        self.last_error = None
        return True

    def start(self) -> bool:
        """Start emitting the binaural beat. No-op while already playing.

        Returns:
            True when the tone is playing, False if the output is unavailable
        """
        if self._playing:
            return True

        self._reset_oscillators()
        if not self.prepare():
            return False

        stream = self._stream
        try:
            if not getattr(stream, "active", False):
                # Suspended context (created but not running): resume before sound
                stream.start()
        except Exception as exc:
            self.last_error = PlatformPolicyError(f"output stream could not be resumed: {exc}", exc)
            logger.error("[tone] %s", self.last_error)
            self._release_stream()
            return False

        self._playing = True
        logger.info(
            "[tone] Started L=%.1fHz R=%.1fHz volume=%.2f",
            self.left_frequency_hz,
            self.right_frequency_hz,
            self.volume,
        )
        return True

    def stop(self) -> None:
        """Stop and release the output stream entirely. Safe when idle."""
        was_playing = self._playing
        self._playing = False
        self._release_stream()
        self._reset_oscillators()
        if was_playing:
            logger.info("[tone] Stopped")

    def toggle(self) -> bool:
        if self._playing:
            self.stop()
        else:
            self.start()
        return self._playing

    def dispose(self) -> None:
        self.stop()

    def _open_stream(self) -> Any:
        factory = self._stream_factory
        if factory is None:
            if sd is None:
                raise PlatformPolicyError("sounddevice is not available (PortAudio missing?)")
            factory = sd.OutputStream
        try:
            stream = factory(
                samplerate=self.sample_rate,
                blocksize=self.blocksize,
                channels=2,
                dtype="float32",
                callback=self._callback,
            )
        except Exception as exc:
            raise PlatformPolicyError(f"cannot open output stream: {exc}", exc) from exc
        self.streams_opened += 1
        return stream

    def _release_stream(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            stream.stop()
        except Exception as exc:
            logger.debug("[tone] Stream stop error (non-critical): %s", exc)
        try:
            stream.close()
        except Exception as exc:
            logger.debug("[tone] Stream close error (non-critical): %s", exc)
        self.streams_closed += 1

    def _reset_oscillators(self) -> None:
        with self._lock:
            self._phase_left = 0.0
            self._phase_right = 0.0
            self._applied_left = self.params.left_frequency_hz
            self._applied_right = self.params.right_frequency_hz
            self._applied_volume = self.params.volume

    # ===== Synthesis =====

    def render(self, frames: int) -> np.ndarray:
        """Render the next ``frames`` stereo samples as float32 ``(frames, 2)``."""
        frames = int(frames)
        out = np.zeros((max(0, frames), 2), dtype=np.float32)
        if frames <= 0:
            return out

        with self._lock:
            target_left = self.params.left_frequency_hz
            target_right = self.params.right_frequency_hz
            target_volume = self.params.volume
            start_left = self._applied_left
            start_right = self._applied_right
            start_volume = self._applied_volume
            phase_left = self._phase_left
            phase_right = self._phase_right

        ramp = np.arange(1, frames + 1, dtype=np.float64) / float(frames)
        freq_left = start_left + (target_left - start_left) * ramp
        freq_right = start_right + (target_right - start_right) * ramp
        gain = start_volume + (target_volume - start_volume) * ramp

        step = _TWO_PI / float(self.sample_rate)
        phases_left = phase_left + np.cumsum(freq_left * step)
        phases_right = phase_right + np.cumsum(freq_right * step)

        out[:, 0] = (np.sin(phases_left) * gain).astype(np.float32)
        out[:, 1] = (np.sin(phases_right) * gain).astype(np.float32)

        with self._lock:
            self._phase_left = float(phases_left[-1] % _TWO_PI)
            self._phase_right = float(phases_right[-1] % _TWO_PI)
            self._applied_left = target_left
            self._applied_right = target_right
            self._applied_volume = target_volume
        return out

    def _callback(self, outdata, frames, time_info, status) -> None:  # pragma: no cover - audio thread
        if status:
            logger.debug("[tone] Stream status: %s", status)
        try:
            outdata[:] = self.render(frames)
        except Exception as exc:
            logger.error("[tone] Render error: %s", exc)
            outdata.fill(0)
