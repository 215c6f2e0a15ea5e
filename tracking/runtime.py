"""Runtime helpers that record which functions actually execute."""

from __future__ import annotations

import os
import threading
from pathlib import Path
from typing import Optional, Set

# Guards the seen cache and appends to the tracking file.
_LOCK = threading.RLock()
_TRACKING_FILE = Path(__file__).resolve().parents[1] / "logs" / "functions_in_use.txt"
_SEEN: Set[str] = set()
_ENABLED: Optional[bool] = None


def _tracking_enabled() -> bool:
    global _ENABLED
    if _ENABLED is None:
        _ENABLED = os.getenv("FUNCTION_TRACKING", "true").strip().lower() in {"1", "true", "yes", "on"}
        if _ENABLED:
            _load_seen()
    return _ENABLED


def _load_seen() -> None:
    if not _TRACKING_FILE.exists():
        return
    try:
        with _TRACKING_FILE.open("r", encoding="utf-8") as handle:
            _SEEN.update(line.strip() for line in handle if line.strip())
    except OSError:
        # Unreadable file: start with an empty cache.
        pass


def t(func_name: str) -> None:
    """Record ``func_name`` the first time it runs in this process."""
    if not func_name:
        return

    with _LOCK:
        if not _tracking_enabled() or func_name in _SEEN:
            return

        try:
            _TRACKING_FILE.parent.mkdir(parents=True, exist_ok=True)
            with _TRACKING_FILE.open("a", encoding="utf-8") as handle:
                handle.write(f"{func_name}\n")
        except OSError:
            return

        _SEEN.add(func_name)


def seen_functions() -> Set[str]:
    """Return a copy of the function names recorded so far."""
    with _LOCK:
        return set(_SEEN)
