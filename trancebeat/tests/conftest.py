"""pytest configuration file."""

import logging
import os

import pytest

# Set before pygame is first imported by the modules under test
os.environ.setdefault("PYGAME_HIDE_SUPPORT_PROMPT", "1")
os.environ.setdefault("SDL_AUDIODRIVER", "dummy")


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (may take several seconds)"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests that spawn the CLI in a subprocess"
    )


@pytest.fixture(autouse=True, scope="session")
def _quiet_logs():
    logging.getLogger("trancebeat").setLevel(logging.WARNING)
    logging.getLogger("asyncio").setLevel(logging.ERROR)
    yield


@pytest.fixture(autouse=True)
def _isolated_user_dir(tmp_path, monkeypatch):
    """Keep settings and log files out of the real per-user directory."""
    monkeypatch.setenv("TRANCEBEAT_HOME", str(tmp_path / "home"))
    yield
