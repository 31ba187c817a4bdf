"""Locate a Chrome/Chromium/Edge executable for the login browser."""

import os
import sys
from typing import Iterable, List, Mapping, Optional

from loguru import logger

from ...core.exceptions import BrowserNotFoundError

MACOS_CANDIDATES = [
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/Applications/Chromium.app/Contents/MacOS/Chromium",
    "/Applications/Google Chrome Canary.app/Contents/MacOS/Google Chrome Canary",
    "/Applications/Microsoft Edge.app/Contents/MacOS/Microsoft Edge",
]

LINUX_CANDIDATES = [
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
    "/usr/bin/chromium",
    "/usr/bin/chromium-browser",
    "/usr/bin/chromium-browser-unstable",
    "/snap/bin/chromium",
    "/usr/bin/microsoft-edge",
    "/usr/bin/microsoft-edge-stable",
    # Amazon Linux / RHEL
    "/usr/lib64/chromium-browser/chromium-browser",
]


def windows_candidates(environ: Mapping[str, str]) -> List[str]:
    """Chrome then Edge under Program Files, Program Files (x86) and LocalAppData."""
    roots = [
        environ.get("PROGRAMFILES"),
        environ.get("PROGRAMFILES(X86)"),
        environ.get("LOCALAPPDATA"),
    ]
    paths = []
    for relative in (
        "Google\\Chrome\\Application\\chrome.exe",
        "Microsoft\\Edge\\Application\\msedge.exe",
    ):
        paths.extend(f"{root}\\{relative}" for root in roots if root)
    return paths


def candidate_paths(platform: str, environ: Mapping[str, str]) -> List[str]:
    """Well-known install locations for the given ``sys.platform`` value."""
    if platform == "darwin":
        return list(MACOS_CANDIDATES)
    if platform.startswith("win"):
        return windows_candidates(environ)
    return list(LINUX_CANDIDATES)


def first_existing_path(paths: Iterable[Optional[str]]) -> Optional[str]:
    """Return the first path that exists, skipping blanks and unreadable entries."""
    for path in paths:
        if not path or not path.strip():
            continue
        try:
            if os.path.exists(path):
                return path
        except OSError:
            continue
    return None


def find_browser_executable(
    explicit_path: Optional[str] = None,
    platform: Optional[str] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """
    Find the browser used for the interactive login.

    Args:
        explicit_path: Configured override, used when it exists
        platform: ``sys.platform`` value (defaults to the running platform)
        environ: Environment mapping (defaults to ``os.environ``)

    Returns:
        Path to the browser executable

    Raises:
        BrowserNotFoundError: If no supported browser is installed
    """
    platform = platform or sys.platform
    environ = os.environ if environ is None else environ

    if explicit_path and explicit_path.strip():
        found = first_existing_path([explicit_path.strip()])
        if found:
            return found
        logger.warning(f"Configured browser executable not found: {explicit_path}")

    found = first_existing_path(candidate_paths(platform, environ))
    if not found:
        logger.error("No Chrome/Chromium/Edge executable found")
        raise BrowserNotFoundError()
    return found
