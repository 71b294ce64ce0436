"""Terminate web browser processes (e.g. before a browser update or profile cleanup)."""

import csv
import io
import logging
import platform
import subprocess
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

# Short name -> Windows image name
KNOWN_BROWSERS: Dict[str, str] = {
    "chrome": "chrome.exe",
    "msedge": "msedge.exe",
    "firefox": "firefox.exe",
    "iexplore": "iexplore.exe",
    "brave": "brave.exe",
    "opera": "opera.exe",
    "vivaldi": "vivaldi.exe",
}

ALIASES = {"edge": "msedge", "ie": "iexplore", "internet explorer": "iexplore", "google chrome": "chrome"}


@dataclass
class BrowserKillResult:
    name: str
    image: str
    was_running: bool = False
    process_count: int = 0
    killed: bool = False
    dry_run: bool = False
    error: Optional[str] = None


def resolve_browsers(names: Optional[Sequence[str]] = None) -> List[str]:
    """Normalize browser names; None means every known browser."""
    if not names:
        return list(KNOWN_BROWSERS)

    resolved = []
    for name in names:
        key = name.strip().lower()
        if key.endswith(".exe"):
            key = key[:-4]
        key = ALIASES.get(key, key)
        if key not in KNOWN_BROWSERS:
            raise ValueError(f"Unknown browser {name!r}. Known browsers: {', '.join(KNOWN_BROWSERS)}")
        if key not in resolved:
            resolved.append(key)
    return resolved


def _is_windows() -> bool:
    return platform.system() == "Windows"


def find_running(names: Sequence[str]) -> Dict[str, int]:
    """Return {browser: process_count} for the given browsers."""
    counts = {name: 0 for name in names}

    if _is_windows():
        result = subprocess.run(
            ["tasklist", "/FO", "CSV", "/NH"],
            capture_output=True,
            text=True,
            timeout=30,
        )
        images = {KNOWN_BROWSERS[n]: n for n in names}
        for row in csv.reader(io.StringIO(result.stdout)):
            if row and row[0].lower() in images:
                counts[images[row[0].lower()]] += 1
    else:
        for name in names:
            result = subprocess.run(["pgrep", "-x", name], capture_output=True, text=True, timeout=10)
            counts[name] = len([line for line in result.stdout.splitlines() if line.strip()])

    return counts


def kill_browsers(
    names: Optional[Sequence[str]] = None,
    force: bool = True,
    dry_run: bool = False,
) -> List[BrowserKillResult]:
    """
    Kill the given browsers (all known browsers by default), including child processes.

    Browsers that are not running are reported with was_running=False and left alone.
    """
    browsers = resolve_browsers(names)
    running = find_running(browsers)
    results: List[BrowserKillResult] = []

    for name in browsers:
        image = KNOWN_BROWSERS[name]
        result = BrowserKillResult(name=name, image=image, process_count=running.get(name, 0))
        result.was_running = result.process_count > 0
        results.append(result)

        if not result.was_running:
            logger.debug("%s is not running", name)
            continue

        if dry_run:
            logger.info("DRY RUN: would kill %d %s process(es)", result.process_count, image)
            result.dry_run = True
            continue

        # taskkill 128 / pkill 1: nothing left to kill (exited in the meantime)
        if _is_windows():
            cmd = ["taskkill", "/IM", image, "/T"]
            if force:
                cmd.append("/F")
            ok_codes = (0, 128)
        else:
            cmd = ["pkill", "-KILL" if force else "-TERM", "-x", name]
            ok_codes = (0, 1)

        try:
            proc = subprocess.run(cmd, capture_output=True, text=True, timeout=30)
            result.killed = proc.returncode in ok_codes
            if not result.killed:
                result.error = (proc.stderr or proc.stdout or "").strip() or f"Exit code {proc.returncode}"
        except subprocess.TimeoutExpired:
            result.error = "Timed out waiting for the kill command"
        except OSError as e:
            result.error = str(e)

        if result.killed:
            logger.info("Killed %s (%d process(es))", image, result.process_count)
        else:
            logger.error("Failed to kill %s: %s", image, result.error)

    return results
