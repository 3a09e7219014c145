"""
PullEngine: merges master's records into local storage.

Flow for one entity type:
  1. Read the entity's SyncCursor
  2. GET <sync_url>/pull/<entity_type>
  3. For each row: validate → skip-or-upsert (own commit per row)
  4. If any row was applied, advance the cursor to the cycle start time

Merge rule: master is authoritative, last write wins by remote timestamp.
A row whose updated_at (or created_at) is not strictly newer than the
cursor is skipped, so replaying the same batch is a no-op. Rows without a
usable timestamp, or from tables without timestamp columns, always apply.

Rows are written through sync_session(), so pulled records are never
queued in the change log for pushing back.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, Mapping, Optional

from replisync.sync.cursors import CursorStore
from replisync.sync.registry import EntityDescriptor
from replisync.sync.results import EntityResult, PhaseResult
from replisync.sync.tracking import sync_session
from replisync.timeutil import parse_datetime, utc_now

logger = logging.getLogger(__name__)


class PullEngine:
    """Pulls remote changes for each entity type and upserts them locally."""

    def __init__(
        self,
        client,
        engine,
        cursors: CursorStore,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Args:
            client: MasterClient (or AsyncMock in tests).
            engine: SQLAlchemy engine for the local store.
            cursors: Per-entity SyncCursor storage.
            clock: Cycle start time for cursors when pull_all() is not given one.
        """
        self.client = client
        self.engine = engine
        self.cursors = cursors
        self.clock = clock

    async def pull_all(
        self,
        descriptors: Mapping[str, EntityDescriptor],
        started_at: Optional[datetime] = None,
    ) -> PhaseResult:
        """Pull every entity; cursors advance to `started_at` (default: now)."""
        started_at = started_at or self.clock()
        details: Dict[str, EntityResult] = {}
        total = 0

        for entity_type, descriptor in descriptors.items():
            try:
                result = await self.pull_entity(descriptor, started_at=started_at)
            except Exception as exc:
                logger.error("Pull failed for %s: %s", entity_type, exc)
                result = EntityResult(success=False, message=str(exc))
            details[entity_type] = result
            if result.success:
                total += result.count

        return PhaseResult(
            success=True,
            message=f"Pulled {total} total records across {len(descriptors)} entities",
            count=total,
            details=details,
        )

    async def pull_entity(
        self, descriptor: EntityDescriptor, started_at: Optional[datetime] = None
    ) -> EntityResult:
        entity_type = descriptor.entity_type
        started_at = started_at or self.clock()

        try:
            rows = await self.client.pull(entity_type)
        except Exception as exc:
            logger.error("Pull failed for %s: %s", entity_type, exc)
            return EntityResult(success=False, message=str(exc))

        last_sync = self.cursors.get(entity_type)
        applied = skipped = 0

        with sync_session(self.engine) as s:
            for row in rows:
                if self._apply_row(s, descriptor, row, last_sync):
                    applied += 1
                else:
                    skipped += 1

        if applied > 0:
            self.cursors.set(entity_type, started_at)

        logger.info(
            "Pulled %d records for %s (%d skipped)", applied, entity_type, skipped
        )
        return EntityResult(
            success=True,
            message=f"Pulled {applied} records for {entity_type}",
            count=applied,
            skipped=skipped,
        )

    def _apply_row(
        self,
        session,
        descriptor: EntityDescriptor,
        row: Any,
        last_sync: datetime,
    ) -> bool:
        """Upsert one remote row. Returns True if it was written.

        Never raises; a bad row is logged and skipped.
        """
        store = descriptor.store
        try:
            if not isinstance(row, dict):
                raise ValueError(f"expected an object, got {type(row).__name__}")
            if row.get(store.primary_key) in (None, ""):
                raise ValueError(f"missing {store.primary_key}")

            if descriptor.has_timestamps and not is_newer(row, last_sync):
                logger.debug(
                    "Skipping %s#%s - not newer than last sync",
                    descriptor.entity_type, row[store.primary_key],
                )
                return False

            store.upsert(session, store.normalize_incoming(row))
            session.commit()
            return True

        except Exception as exc:
            session.rollback()
            logger.warning("Upsert failed for %s: %s", descriptor.entity_type, exc)
            return False


def record_timestamp(row: Dict[str, Any]) -> Optional[datetime]:
    """Effective timestamp of a remote row: updated_at, falling back to created_at."""
    return parse_datetime(row.get("updated_at")) or parse_datetime(row.get("created_at"))


def is_newer(row: Dict[str, Any], last_sync: datetime) -> bool:
    """False only when the row has a timestamp at or before the cursor."""
    ts = record_timestamp(row)
    return ts is None or ts > last_sync
