"""Logging setup for TranceBeat sessions.

``setup_logging`` is called once by the CLI before a session is built. It
attaches a rotating file handler under the per-user data directory plus a
console handler, and records the active :class:`LogMode`. In perf mode the
clip cache times every preload with a :class:`PerfTracer` and logs the
timings when a preload batch finishes.
"""

from __future__ import annotations

import json
import logging
import logging.handlers
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from .platform_paths import ensure_dir, get_user_data_dir


DEFAULT_LOG_FILENAME = "trancebeat.log"
LOG_MAX_BYTES = 1_000_000
LOG_BACKUP_COUNT = 3

_PLAIN_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
_DATE_FORMAT = "%H:%M:%S"


class LogMode(str, Enum):
    """How chatty a run is.

    QUIET keeps the console at WARNING and above, PERF forces DEBUG and turns
    on preload timing.
    """

    QUIET = "quiet"
    NORMAL = "normal"
    PERF = "perf"

    @classmethod
    def parse(cls, value: "LogMode | str | None") -> "LogMode":
        if isinstance(value, LogMode):
            return value
        if not value:
            return cls.NORMAL
        try:
            return cls(str(value).lower())
        except ValueError:
            return cls.NORMAL


_active_mode = LogMode.NORMAL


def set_log_mode(mode: LogMode | str | None) -> LogMode:
    global _active_mode
    _active_mode = LogMode.parse(mode)
    return _active_mode


def get_log_mode() -> LogMode:
    return _active_mode


def is_perf_logging_enabled() -> bool:
    return _active_mode is LogMode.PERF


def get_default_log_path() -> Path:
    """``trancebeat.log`` in the user data dir, or the cwd if that can't be created."""
    try:
        folder = ensure_dir(get_user_data_dir())
    except OSError:
        folder = Path.cwd()
    return folder / DEFAULT_LOG_FILENAME


class _JsonLineFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "time": self.formatTime(record, _DATE_FORMAT),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _level_from(level: str | int) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    return value if isinstance(value, int) else logging.INFO


def _open_file_handler(path: Path) -> Optional[logging.Handler]:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        return logging.handlers.RotatingFileHandler(
            path, maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUP_COUNT, encoding="utf-8"
        )
    except OSError:
        # Console-only when the log location is not writable
        return None


def setup_logging(
    *,
    level: str | int = "INFO",
    log_file: Optional[str | Path] = None,
    json_format: bool = False,
    logger_name: Optional[str] = None,
    log_mode: LogMode | str | None = None,
    add_console: bool = True,
) -> logging.Logger:
    """Configure file and console logging.

    Calling it again on an already configured logger only re-levels the
    existing handlers.

    Args:
        level: Level name or number for the file handler and the logger
        log_file: Rotating log file (default: :func:`get_default_log_path`)
        json_format: Write one JSON object per line instead of plain text
        logger_name: Logger to configure (default: root)
        log_mode: quiet/normal/perf; omitted keeps the current mode
        add_console: Also log to stderr
    """
    mode = set_log_mode(log_mode) if log_mode is not None else get_log_mode()
    file_level = _level_from(level)
    if mode is LogMode.PERF:
        file_level = min(file_level, logging.DEBUG)
    console_level = max(file_level, logging.WARNING) if mode is LogMode.QUIET else file_level

    logger = logging.getLogger(logger_name)
    logger.setLevel(file_level)

    if logger.handlers:
        for handler in logger.handlers:
            is_console = type(handler) is logging.StreamHandler
            handler.setLevel(console_level if is_console else file_level)
        return logger

    formatter = (
        _JsonLineFormatter() if json_format else logging.Formatter(_PLAIN_FORMAT, datefmt=_DATE_FORMAT)
    )
    file_handler = _open_file_handler(Path(log_file) if log_file else get_default_log_path())
    if file_handler is not None:
        file_handler.setLevel(file_level)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    if add_console:
        console = logging.StreamHandler()
        console.setLevel(console_level)
        console.setFormatter(formatter)
        logger.addHandler(console)
    return logger


# ===== Preload timing =====

@dataclass
class PerfRecord:
    name: str
    duration_ms: float
    metadata: dict[str, Any] = field(default_factory=dict)


class _Span:
    __slots__ = ("_tracer", "_name", "_metadata", "_started")

    def __init__(self, tracer: "PerfTracer", name: str, metadata: dict[str, Any]) -> None:
        self._tracer = tracer
        self._name = name
        self._metadata = metadata
        self._started = 0.0

    def __enter__(self) -> "_Span":
        self._started = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc, exc_tb) -> None:
        if self._tracer.enabled:
            elapsed_ms = (time.perf_counter() - self._started) * 1000.0
            self._tracer.records.append(PerfRecord(self._name, elapsed_ms, self._metadata))

    def annotate(self, **metadata: Any) -> "_Span":
        self._metadata.update(metadata)
        return self


class PerfTracer:
    """Collects named timing spans while perf logging is on.

    Args:
        label: Shown when the records are reported
        enabled: Force on or off (default: follow the active log mode)
    """

    def __init__(self, label: str, *, enabled: Optional[bool] = None) -> None:
        self.label = label
        self.enabled = is_perf_logging_enabled() if enabled is None else bool(enabled)
        self.records: list[PerfRecord] = []

    def span(self, name: str, **metadata: Any) -> _Span:
        return _Span(self, name, dict(metadata))

    def drain(self) -> list[PerfRecord]:
        """Return the recorded spans and start over."""
        records, self.records = self.records, []
        return records

    def report(self, log: logging.Logger) -> int:
        """Log and drop the recorded spans at DEBUG, slowest first. Returns how many."""
        records = self.drain()
        if not records:
            return 0
        total = sum(r.duration_ms for r in records)
        log.debug("[perf] %s: %d span(s), %.1fms total", self.label, len(records), total)
        for record in sorted(records, key=lambda r: r.duration_ms, reverse=True):
            extra = " ".join(f"{k}={v}" for k, v in record.metadata.items())
            log.debug("[perf] %s %s %.1fms %s", self.label, record.name, record.duration_ms, extra)
        return len(records)
