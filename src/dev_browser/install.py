"""Playwright Chromium install check."""

from __future__ import annotations

import logging
import os
import subprocess
import sys
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


def playwright_cache_dir() -> Path:
    override = os.environ.get("PLAYWRIGHT_BROWSERS_PATH")
    if override and override != "0":
        return Path(override).expanduser()
    return Path.home() / ".cache" / "ms-playwright"


def is_chromium_installed(cache_dir: Optional[Path] = None) -> bool:
    root = cache_dir or playwright_cache_dir()
    if not root.is_dir():
        return False
    return any(entry.is_dir() and entry.name.startswith("chromium") for entry in root.iterdir())


def ensure_chromium_installed(cache_dir: Optional[Path] = None) -> bool:
    """Install Playwright Chromium when missing. Returns whether it is available."""
    if is_chromium_installed(cache_dir):
        logger.info("Playwright Chromium already installed.")
        return True

    logger.info("Playwright Chromium not found. Installing (this may take a minute)...")
    try:
        subprocess.run(
            [sys.executable, "-m", "playwright", "install", "chromium"],
            check=True,
        )
    except (OSError, subprocess.CalledProcessError) as exc:
        logger.warning("Failed to install Playwright browsers: %s", exc)
        logger.warning("You may need to run: python -m playwright install chromium")
        return False
    logger.info("Chromium installed successfully.")
    return True
