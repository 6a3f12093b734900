"""Entry point for ``python -m trancebeat``."""

from .cli import main

raise SystemExit(main())
