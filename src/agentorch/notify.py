"""Cross-platform desktop helpers, best-effort."""

from __future__ import annotations

import subprocess
import sys


def _run_quiet(*cmd: str) -> None:
    """Fire-and-forget subprocess, ignore failures."""
    try:
        subprocess.Popen(
            cmd,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        )
    except (FileNotFoundError, OSError):
        pass


def open_browser(url: str) -> None:
    """Open *url* in the default browser."""
    if sys.platform == "darwin":
        _run_quiet("open", url)
    elif sys.platform.startswith("linux"):
        _run_quiet("xdg-open", url)
    elif sys.platform == "win32":
        _run_quiet("cmd", "/c", "start", "", url)
