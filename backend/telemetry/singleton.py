from __future__ import annotations

import logging
import threading

from engine.config import telemetry_enabled, telemetry_path
from telemetry.store import TelemetryStore

logger = logging.getLogger(__name__)

_current: TelemetryStore | None = None
_guard = threading.RLock()


def get_store() -> TelemetryStore | None:
    """
    Process-wide recompute store, or None when CRASHMAP_TELEMETRY switches it off.

    Follows CRASHMAP_TELEMETRY_PATH: when the path changes the old file is closed and the new
    one opened.
    """
    global _current
    if not telemetry_enabled():
        return None
    path = telemetry_path().resolve()
    with _guard:
        if _current is not None and _current.path == path:
            return _current
        if _current is not None:
            _current.close()
        _current = TelemetryStore.open(path)
        logger.info("Recording recompute telemetry to %s", path)
        return _current


def reset_store() -> None:
    """
    Drop all recorded rows by deleting the database file; the next `get_store` recreates it.
    """
    global _current
    with _guard:
        if _current is None:
            telemetry_path().unlink(missing_ok=True)
            return
        _current.reset()
        _current = None
