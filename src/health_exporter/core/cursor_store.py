"""
Cursor storage for incremental exports.

Holds the last change cursor handed out by the provider together with the
time it was saved. The file is replaced atomically so a crash mid-write
leaves either the old cursor or the new one, never a torn value.
"""

import json
import logging
import os
import tempfile
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path

logger = logging.getLogger(__name__)

CURSOR_SCHEMA_VERSION = 1


@dataclass
class CursorState:
    """Persisted cursor record."""

    cursor: str
    saved_at: float
    version: int = CURSOR_SCHEMA_VERSION

    @staticmethod
    def create(cursor: str) -> "CursorState":
        """Create a state stamped with the current wall-clock time."""
        return CursorState(cursor=cursor, saved_at=time.time())

    def to_dict(self) -> dict:
        return asdict(self)


class CursorStore:
    """
    Durable single-key store for the change cursor.

    ``load()`` returning None is the bootstrap trigger. ``last_saved_at``
    is exposed for diagnostics only.
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def _read_state(self) -> CursorState | None:
        if not self.path.exists():
            return None

        try:
            with open(self.path) as f:
                data = json.load(f)
            if data.get("version") != CURSOR_SCHEMA_VERSION or not data.get("cursor"):
                logger.warning(f"Ignoring cursor file with unexpected content: {self.path}")
                return None
            return CursorState(**data)
        except (OSError, ValueError, TypeError) as e:
            logger.warning(f"Failed to load cursor: {e}")
            return None

    def load(self) -> str | None:
        """Return the stored cursor, or None on first run."""
        state = self._read_state()
        return state.cursor if state else None

    def save(self, cursor: str) -> None:
        """Persist a cursor, replacing the previous one atomically."""
        if not cursor:
            raise ValueError("Refusing to save an empty cursor")

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=self.path.parent, prefix=".cursor-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                json.dump(CursorState.create(cursor).to_dict(), f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            raise
        logger.debug(f"Cursor saved to {self.path}")

    def clear(self) -> None:
        """Forget the stored cursor; the next run bootstraps."""
        try:
            self.path.unlink()
            logger.info(f"Cursor cleared: {self.path}")
        except FileNotFoundError:
            pass

    @property
    def last_saved_at(self) -> datetime | None:
        """Wall-clock time of the last successful save."""
        state = self._read_state()
        if state is None:
            return None
        return datetime.fromtimestamp(state.saved_at, tz=timezone.utc)
