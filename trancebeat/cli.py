"""TranceBeat command-line interface.

Argparse-based CLI that initializes logging early and runs sessions headlessly
on asyncio. Exposed via ``python -m trancebeat``.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
from typing import Optional

# Suppress pygame support prompt so JSON outputs remain clean.
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")

from .engine.audio import handle_to_path
from .engine.presets import BRAINWAVE_PRESETS, get_preset
from .engine.scheduler import Scheduler
from .engine.tone import ToneGenerator, ToneParameters
from .errors import ConfigError, ResourceLoadError
from .logging_utils import LogMode, get_default_log_path, setup_logging
from .session.events import SessionEvent, SessionEventType
from .session.models import PHASE_INFO, Phase, ScriptRole, SessionConfig
from .session.settings import PlaybackSettings, SessionTiming, SettingsStore


def _add_logging_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="WARNING",
        help="Set log level (default: WARNING)",
    )
    parser.add_argument(
        "--log-mode",
        choices=[mode.value for mode in LogMode],
        default=LogMode.NORMAL.value,
        help="Logging preset: quiet suppresses console info, perf forces DEBUG",
    )
    parser.add_argument(
        "--log-file",
        default=str(get_default_log_path()),
        help="Path to log file (default: per-user TranceBeat directory)",
    )
    parser.add_argument(
        "--log-format",
        choices=["plain", "json"],
        default="plain",
        help="Log format (plain or json)",
    )


def _build_logging_parent() -> argparse.ArgumentParser:
    parent = argparse.ArgumentParser(add_help=False)
    _add_logging_args(parent)
    return parent


def _add_tone_args(parser: argparse.ArgumentParser, *, volume_flag: str) -> None:
    parser.add_argument("--base-freq", type=float, default=None, help="Carrier frequency in Hz (100-500)")
    parser.add_argument("--beat-freq", type=float, default=None, help="Beat frequency in Hz (1-30)")
    parser.add_argument(volume_flag, dest="tone_volume", type=float, default=None, help="Binaural volume (0-1)")
    parser.add_argument(
        "--preset",
        choices=[p.key for p in BRAINWAVE_PRESETS],
        default=None,
        help="Brainwave preset for the beat frequency (overrides --beat-freq)",
    )


def format_duration(seconds: float) -> str:
    """Format seconds as m:ss."""
    total = max(0, int(round(seconds)))
    return f"{total // 60}:{total % 60:02d}"


def _load_config(path: str, *, validate: bool = True) -> SessionConfig:
    return SessionConfig.load(path, validate=validate)


# ===== play =====


def _settings_from_args(args) -> PlaybackSettings:
    if getattr(args, "settings", None):
        settings = SettingsStore(args.settings).load()
    else:
        settings = PlaybackSettings()
    overrides = {
        "gap_between_sec": args.gap,
        "voice_volume": args.voice_volume,
        "playback_rate": args.rate,
        "base_freq": args.base_freq,
        "beat_freq": args.beat_freq,
        "binaural_volume": args.tone_volume,
    }
    settings.update(**{k: v for k, v in overrides.items() if v is not None})
    if args.preset:
        settings.beat_freq = get_preset(args.preset).beat_frequency_hz
    return settings


def _timing_from_args(args) -> SessionTiming:
    defaults = SessionTiming()
    return SessionTiming(
        transition_delay_s=args.transition_delay if args.transition_delay is not None else defaults.transition_delay_s,
        text_hold_s=args.text_hold if args.text_hold is not None else defaults.text_hold_s,
    )


def _status_line(snapshot) -> str:
    text = snapshot.current_text or snapshot.script_text or ""
    state = " (transition)" if snapshot.transitioning else ""
    line = f"[{snapshot.total_progress:5.1f}%] {snapshot.title}{state}"
    if snapshot.phase is Phase.AFFIRMATIONS and snapshot.playlist_length:
        line += f" {snapshot.current_index + 1}/{snapshot.playlist_length}"
    if text:
        line += f" - {text[:60]}"
    return line


async def _run_session(config: SessionConfig, settings: PlaybackSettings, timing: SessionTiming, args) -> int:
    from .session.controller import SessionController

    scheduler = Scheduler()
    store = SettingsStore(args.settings, scheduler=scheduler) if getattr(args, "settings", None) else None
    done = asyncio.Event()
    controller = SessionController.create(
        config,
        settings,
        store=store,
        timing=timing,
        scheduler=scheduler,
        enable_tone=not args.no_tone,
        on_exit=lambda _reason: done.set(),
    )

    def _on_phase(event: SessionEvent) -> None:
        print(f"Phase: {event.get('title')}", flush=True)

    def _on_clip_error(event: SessionEvent) -> None:
        print(f"Warning: audio unavailable ({event.get('handle')}): {event.get('reason')}", flush=True)

    controller.events.subscribe(SessionEventType.PHASE_CHANGED, _on_phase)
    controller.events.subscribe(SessionEventType.CLIP_ERROR, _on_clip_error)
    controller.events.subscribe(SessionEventType.SESSION_END, lambda _e: done.set())

    if args.shuffle:
        controller.toggle_shuffle()
    if args.loop:
        controller.toggle_loop()

    try:
        if args.skip_to:
            controller.skip_to_phase(args.skip_to)
        elif not controller.start():
            print("Error: session has no affirmations to play")
            return 1
        interval = max(0.1, float(args.status_interval))
        while not done.is_set():
            try:
                await asyncio.wait_for(done.wait(), timeout=interval)
            except asyncio.TimeoutError:
                print(_status_line(controller.snapshot()), flush=True)
        print("Session complete")
        return 0
    finally:
        controller.dispose()
        if store is not None:
            store.flush()


def cmd_play(args) -> int:
    log = logging.getLogger(__name__)
    try:
        config = _load_config(args.config)
        settings = _settings_from_args(args)
    except ConfigError as exc:
        log.error("Failed to load session: %s", exc)
        print(f"Error: {exc}")
        return 1
    timing = _timing_from_args(args)
    try:
        return asyncio.run(_run_session(config, settings, timing, args))
    except KeyboardInterrupt:
        log.info("Interrupted; session stopped")
        print("Stopped")
        return 0


# ===== validate / estimate =====


def _validation_report(config: SessionConfig) -> dict:
    ok, message = config.validate()
    warnings: list[str] = []
    for handle in config.audio_handles():
        try:
            path = handle_to_path(handle)
        except ResourceLoadError as exc:
            warnings.append(f"unsupported audio handle {handle!r}: {exc.reason}")
            continue
        if not path.exists():
            warnings.append(f"audio file not found: {handle}")
    scripts = {role.value: config.has_script(role) for role in ScriptRole}
    return {
        "valid": ok,
        "error": message or None,
        "items": len(config.items),
        "items_with_audio": sum(1 for item in config.items if item.has_audio),
        "scripts": scripts,
        "warnings": warnings,
    }


def cmd_validate(args) -> int:
    try:
        config = _load_config(args.config, validate=False)
    except ConfigError as exc:
        print(f"Error: {exc}")
        return 1
    report = _validation_report(config)
    if args.json:
        print(json.dumps(report, indent=2))
    else:
        status = "valid" if report["valid"] else f"INVALID: {report['error']}"
        print(f"Session {args.config}: {status}")
        print(f"  Affirmations: {report['items']} ({report['items_with_audio']} with audio)")
        present = [name for name, has in report["scripts"].items() if has]
        print(f"  Scripts: {', '.join(present) if present else 'none'}")
        for warning in report["warnings"]:
            print(f"  Warning: {warning}")
    return 0 if report["valid"] else 1


def cmd_estimate(args) -> int:
    try:
        config = _load_config(args.config, validate=False)
    except ConfigError as exc:
        print(f"Error: {exc}")
        return 1
    gap = PlaybackSettings(gap_between_sec=args.gap).gap_between_sec
    seconds = config.estimated_duration_ms(gap) / 1000.0
    print(f"Affirmations: {format_duration(seconds)} ({len(config.items)} items, gap {gap:g}s)")
    return 0


# ===== tone / presets =====


async def _cli_tone(generator: ToneGenerator, seconds: float) -> int:
    log = logging.getLogger(__name__)
    if not generator.start():
        print("Error: audio output unavailable")
        return 1
    log.info("CLI tone L=%.1fHz R=%.1fHz for %.1fs", generator.left_frequency_hz, generator.right_frequency_hz, seconds)
    try:
        await asyncio.sleep(max(0.0, seconds))
    finally:
        generator.stop()
    return 0


def cmd_tone(args) -> int:
    params = ToneParameters()
    if args.base_freq is not None:
        params.base_frequency_hz = args.base_freq
    if args.beat_freq is not None:
        params.beat_frequency_hz = args.beat_freq
    if args.tone_volume is not None:
        params.volume = args.tone_volume
    if args.preset:
        params.beat_frequency_hz = get_preset(args.preset).beat_frequency_hz
    generator = ToneGenerator(params)
    print(
        f"Tone: L={params.left_frequency_hz:g}Hz R={params.right_frequency_hz:g}Hz "
        f"beat={params.beat_frequency_hz:g}Hz volume={params.volume:g}"
    )
    try:
        return asyncio.run(_cli_tone(generator, args.seconds))
    except KeyboardInterrupt:
        generator.stop()
        return 0


def cmd_presets(args) -> int:
    if args.json:
        print(json.dumps([p.to_dict() for p in BRAINWAVE_PRESETS], indent=2))
        return 0
    for p in BRAINWAVE_PRESETS:
        print(f"{p.key:<6} {p.min_freq:g}-{p.max_freq:g} Hz (default {p.default_freq:g} Hz)  {p.description}")
    return 0


def selftest() -> int:
    """Fast import-and-init smoke test. Returns exit code."""
    try:
        from .engine import audio, clip_cache, clip_player, tone  # noqa: F401
        from .session import controller, sequencer, state_machine  # noqa: F401

        block = ToneGenerator(stream_factory=lambda **_kw: None).render(256)
        if block.shape != (256, 2):
            raise RuntimeError(f"Unexpected render shape {block.shape}")
        if set(PHASE_INFO) != set(Phase):
            raise RuntimeError("Phase table incomplete")

        msg = "Selftest OK: imports + tone render + phase table"
        logging.getLogger(__name__).info(msg)
        print(msg)
        return 0
    except Exception as e:
        logging.getLogger(__name__).error("Selftest failed: %s", e)
        print(f"Selftest failed: {e}")
        return 1


def build_parser() -> argparse.ArgumentParser:
    logging_parent = _build_logging_parent()
    parser = argparse.ArgumentParser(
        description="TranceBeat CLI",
        parents=[logging_parent],
    )
    sub = parser.add_subparsers(dest="command", required=False)

    def add_subparser(name: str, **kwargs: object) -> argparse.ArgumentParser:
        parents = list(kwargs.pop("parents", []))
        parents.insert(0, logging_parent)
        return sub.add_parser(name, parents=parents, **kwargs)

    p_play = add_subparser("play", help="Play a session over the binaural beat")
    p_play.add_argument("--config", required=True, help="Session JSON file")
    p_play.add_argument("--settings", default=None, help="Settings JSON file to load and update")
    p_play.add_argument("--shuffle", action="store_true", help="Shuffle affirmations")
    p_play.add_argument("--loop", action="store_true", help="Loop affirmations until interrupted")
    p_play.add_argument("--gap", type=float, default=None, help="Seconds between affirmations (0-10)")
    p_play.add_argument("--voice-volume", type=float, default=None, help="Voice volume (0-1)")
    p_play.add_argument("--rate", type=float, default=None, help="Voice playback rate (0.5-1.5)")
    _add_tone_args(p_play, volume_flag="--binaural-volume")
    p_play.add_argument("--transition-delay", type=float, default=None, help="Seconds between phases (default 3)")
    p_play.add_argument("--text-hold", type=float, default=None, help="Seconds to hold affirmations without audio")
    p_play.add_argument(
        "--skip-to",
        choices=[p.value for p in Phase if p is not Phase.PREPARING],
        default=None,
        help="Start directly at a phase",
    )
    p_play.add_argument("--status-interval", type=float, default=1.0, help="Seconds between status lines")
    p_play.add_argument("--no-tone", action="store_true", help="Do not play the binaural beat")

    p_val = add_subparser("validate", help="Validate a session file")
    p_val.add_argument("--config", required=True, help="Session JSON file")
    p_val.add_argument("--json", action="store_true", help="Print the report as JSON")

    p_est = add_subparser("estimate", help="Estimate the affirmation phase duration")
    p_est.add_argument("--config", required=True, help="Session JSON file")
    p_est.add_argument("--gap", type=float, default=2.0, help="Seconds between affirmations (default 2)")

    p_tone = add_subparser("tone", help="Play the binaural beat alone")
    _add_tone_args(p_tone, volume_flag="--volume")
    p_tone.add_argument("--seconds", type=float, default=10.0, help="How long to play (default 10)")

    p_pre = add_subparser("presets", help="List brainwave presets")
    p_pre.add_argument("--json", action="store_true", help="Print presets as JSON")

    add_subparser("selftest", help="Quick environment/import check")
    return parser


def main(argv: Optional[list[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    # Configure logging before doing any work
    setup_logging(
        level=args.log_level,
        log_file=args.log_file,
        json_format=(args.log_format == "json"),
        log_mode=args.log_mode,
        add_console=True,
    )

    cmd = args.command
    if cmd == "play":
        return cmd_play(args)
    if cmd == "validate":
        return cmd_validate(args)
    if cmd == "estimate":
        return cmd_estimate(args)
    if cmd == "tone":
        return cmd_tone(args)
    if cmd == "presets":
        return cmd_presets(args)
    if cmd == "selftest":
        return selftest()
    parser.print_help()
    return 0


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
