"""Idempotent, handle-keyed cache of decoded speech clips."""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

from ..errors import ResourceLoadError
from ..logging_utils import PerfTracer
from .audio import LoadedClip, handle_to_path

ProgressCallback = Callable[[int, int, str, bool], None]

logger = logging.getLogger(__name__)

SLOW_DECODE_MS = 750.0


def normalize_handle(handle: Path | str) -> str:
    """Map equivalent handles (relative path, ``file://`` URL) to one key."""
    try:
        return str(handle_to_path(str(handle)).resolve())
    except Exception:
        return str(handle)


class ClipCache:
    """Keeps decoded clips resident for the lifetime of a session.

    Nothing is evicted while a session runs; the controller clears the cache on
    teardown. Failed loads are never cached, so a later ``load()`` at play time
    makes a fresh attempt.

    Args:
        backend: Object with ``load(handle) -> LoadedClip``
        perf_tracer: Optional tracer recording one span per preload; its
            timings are logged at DEBUG after each ``preload_all``
    """

    def __init__(self, backend: Any, *, perf_tracer: Optional[PerfTracer] = None) -> None:
        self._backend = backend
        self._clips: dict[str, LoadedClip] = {}
        self._tracer = perf_tracer if perf_tracer is not None else PerfTracer("clip-cache", enabled=False)
        self.loads = 0

    def __contains__(self, handle: object) -> bool:
        return isinstance(handle, str) and normalize_handle(handle) in self._clips

    def __len__(self) -> int:
        return len(self._clips)

    def get(self, handle: str) -> Optional[LoadedClip]:
        return self._clips.get(normalize_handle(handle))

    def load(self, handle: str) -> LoadedClip:
        """Return the resident clip or decode it now and keep it.

        Raises:
            ResourceLoadError: The backend could not load the clip
        """
        key = normalize_handle(handle)
        clip = self._clips.get(key)
        if clip is not None:
            return clip
        self.loads += 1
        try:
            clip = self._backend.load(key)
        except ResourceLoadError:
            raise
        except Exception as exc:
            raise ResourceLoadError(handle, str(exc)) from exc
        self._clips[key] = clip
        return clip

    def preload(self, handle: str) -> bool:
        """Load ``handle`` unless already resident. Never raises."""
        key = normalize_handle(handle)
        if key in self._clips:
            return True
        start = time.perf_counter()
        with self._tracer.span("clip_preload", path=Path(key).name) as span:
            try:
                self.load(key)
                ok = True
            except ResourceLoadError as exc:
                logger.warning("[cache] Preload failed for %s: %s", handle, exc.reason)
                span.annotate(error=exc.reason)
                ok = False
            elapsed_ms = (time.perf_counter() - start) * 1000.0
            span.annotate(result="ok" if ok else "fail")
        if elapsed_ms >= SLOW_DECODE_MS:
            logger.warning("[cache] Clip %s took %.1fms to decode", Path(key).name, elapsed_ms)
        return ok

    def preload_all(
        self,
        handles: Iterable[Optional[str]],
        progress_callback: Optional[ProgressCallback] = None,
    ) -> dict[str, bool]:
        """Preload every distinct handle in order.

        Returns:
            Mapping of original handle to preload success (duplicates and
            empty handles are skipped)
        """
        ordered: list[str] = []
        seen: set[str] = set()
        for handle in handles:
            if not handle:
                continue
            key = normalize_handle(handle)
            if key in seen:
                continue
            seen.add(key)
            ordered.append(handle)

        results: dict[str, bool] = {}
        total = len(ordered)
        for idx, handle in enumerate(ordered, start=1):
            ok = self.preload(handle)
            results[handle] = ok
            if progress_callback:
                progress_callback(idx, total, handle, ok)
        if total:
            logger.debug(
                "[cache] Preloaded %d/%d clip(s)", sum(1 for ok in results.values() if ok), total
            )
            self._tracer.report(logger)
        return results

    def clear(self) -> None:
        count = len(self._clips)
        self._clips.clear()
        if count:
            logger.debug("[cache] Cleared %d clip(s)", count)
