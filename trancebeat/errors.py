"""Exception types shared across the TranceBeat engine.

None of these are fatal to a running session: the state machine and the
sequencer recover from each of them with a deterministic fallback so the phase
sequence always reaches COMPLETE.
"""

from __future__ import annotations

from typing import Optional


class TranceBeatError(Exception):
    """Base class for all TranceBeat errors."""


class ResourceLoadError(TranceBeatError):
    """A clip or script audio resource failed to load, decode, or play.

    Attributes:
        handle: The resource handle that failed (path or URL string)
        reason: Short human-readable failure reason
    """

    def __init__(self, handle: str, reason: str = "") -> None:
        self.handle = handle
        self.reason = reason or "unknown error"
        super().__init__(f"Failed to load audio '{handle}': {self.reason}")


class EmptyInputError(TranceBeatError):
    """A phase or playlist that requires content has none."""


class PlatformPolicyError(TranceBeatError):
    """Audio output is blocked or unavailable on the host.

    Attributes:
        cause: Original exception raised by the audio backend (if any)
    """

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        self.cause = cause
        super().__init__(message)


class ConfigError(TranceBeatError):
    """Session or settings data is missing or malformed."""
