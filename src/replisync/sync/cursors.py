"""
Per-entity pull cursors, persisted as small files outside the database.

Each entity type gets `<cursor_dir>/<entity_type>_last_sync.dat` holding
the time of the last pull that applied at least one record, in
`YYYY-MM-DD HH:MM:SS` form. A missing or unreadable file means "never
pulled" and yields the configured default start date.
"""
import logging
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Union

from replisync.timeutil import format_datetime, parse_datetime, utc_now

logger = logging.getLogger(__name__)

CURSOR_SUFFIX = "_last_sync.dat"


class CursorStore:
    """Reads and writes SyncCursor values, one file per entity type."""

    def __init__(self, cursor_dir: Union[str, Path], default_start: Union[str, datetime]):
        self.cursor_dir = Path(cursor_dir).expanduser()
        parsed = parse_datetime(default_start)
        if parsed is None:
            raise ValueError(f"Invalid default start date: {default_start!r}")
        self.default_start = parsed

    def _path(self, entity_type: str) -> Path:
        return self.cursor_dir / f"{entity_type}{CURSOR_SUFFIX}"

    def get(self, entity_type: str) -> datetime:
        path = self._path(entity_type)
        if not path.exists():
            return self.default_start
        try:
            value = parse_datetime(path.read_text().strip())
        except OSError as exc:
            logger.error("Failed reading sync time for %s: %s", entity_type, exc)
            return self.default_start
        return value or self.default_start

    def set(self, entity_type: str, value: Optional[datetime] = None) -> bool:
        """Persist the cursor. Returns False (and logs) if the write fails."""
        try:
            self.cursor_dir.mkdir(parents=True, exist_ok=True)
            self._path(entity_type).write_text(format_datetime(value or utc_now()))
            return True
        except OSError as exc:
            logger.error("Failed updating sync time for %s: %s", entity_type, exc)
            return False

    def all(self) -> Dict[str, datetime]:
        if not self.cursor_dir.exists():
            return {}
        return {
            p.name[: -len(CURSOR_SUFFIX)]: self.get(p.name[: -len(CURSOR_SUFFIX)])
            for p in sorted(self.cursor_dir.glob(f"*{CURSOR_SUFFIX}"))
        }

    def reset(self, entity_type: Optional[str] = None) -> int:
        """Delete one cursor, or all of them. Returns the number of files removed."""
        if entity_type:
            paths = [self._path(entity_type)]
        elif self.cursor_dir.exists():
            paths = list(self.cursor_dir.glob(f"*{CURSOR_SUFFIX}"))
        else:
            paths = []

        removed = 0
        for path in paths:
            if path.exists():
                path.unlink()
                removed += 1
        logger.info("Reset sync data for %s", entity_type or "all entities")
        return removed
