"""Convenience launcher for the TranceBeat CLI.

``python run.py session.json`` plays a session file; any other arguments are
passed to ``python -m trancebeat`` unchanged.
"""

from __future__ import annotations

from pathlib import Path
import os
import sys


def main(argv: list[str] | None = None) -> int:
    args = list(sys.argv[1:] if argv is None else argv)

    # Must be set before pygame is first imported
    os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")

    from trancebeat.cli import main as cli_main

    if args:
        candidate = Path(args[0])
        if candidate.suffix.lower() == ".json" and candidate.is_file():
            return cli_main(["play", "--config", str(candidate), *args[1:]])
    return cli_main(args)


if __name__ == "__main__":
    raise SystemExit(main())
