"""
PushEngine: drains the change log to master.

Flow for one entity type:
  1. Claim pending/failed entries (→ syncing) in one transaction
  2. Build one outbound record per entry:
       delete         → {id, action, data: <stored snapshot>, sync_log_id}
       create/update  → current row fields + action + sync_log_id
                        (re-read now, so the latest local state is sent)
  3. POST the whole batch to <sync_url>/push/<entity_type>
  4. Success → all claimed entries completed; failure → all failed

Acknowledgement is batch-level: a 2xx response completes every entry in
the batch, even if master applied only some of them.
"""
import logging
from typing import Any, Dict, List, Mapping, Optional

from sqlmodel import Session

from replisync.models.change_log import ChangeAction, ChangeLogEntry
from replisync.sync.change_log import ChangeLogStore
from replisync.sync.registry import EntityDescriptor
from replisync.sync.results import EntityResult, PhaseResult

logger = logging.getLogger(__name__)

RECORD_NOT_FOUND = "Record not found"


class PushEngine:
    """Pushes actionable change-log entries to master, one batch per entity type."""

    def __init__(self, client, engine, change_log: ChangeLogStore):
        self.client = client
        self.engine = engine
        self.change_log = change_log

    async def push_all(self, descriptors: Mapping[str, EntityDescriptor]) -> PhaseResult:
        details: Dict[str, EntityResult] = {}
        total = 0

        for entity_type, descriptor in descriptors.items():
            try:
                result = await self.push_entity(descriptor)
            except Exception as exc:
                logger.error("Push failed for %s: %s", entity_type, exc)
                result = EntityResult(success=False, message=str(exc))
            details[entity_type] = result
            if result.success:
                total += result.count

        return PhaseResult(
            success=True,
            message=f"Pushed {total} total records across {len(descriptors)} entities",
            count=total,
            details=details,
        )

    async def push_entity(self, descriptor: EntityDescriptor) -> EntityResult:
        entity_type = descriptor.entity_type

        entries = self.change_log.claim_actionable(entity_type)
        if not entries:
            return EntityResult(
                success=True, message=f"No changes to push for {entity_type}", count=0
            )

        records = self._build_records(descriptor, entries)
        if not records:
            message = f"Failed to build {len(entries)} records for {entity_type}"
            logger.error("Failed to build %d records for %s", len(entries), entity_type)
            return EntityResult(success=False, message=message, count=0)

        log_ids = [r["sync_log_id"] for r in records]
        try:
            await self.client.push(entity_type, records)
        except Exception as exc:
            self.change_log.mark_failed(log_ids, str(exc))
            logger.error("Push failed for %s: %s", entity_type, exc)
            return EntityResult(success=False, message=str(exc))

        self.change_log.mark_completed(log_ids)
        logger.info("Pushed %d records for %s", len(records), entity_type)
        return EntityResult(
            success=True,
            message=f"Pushed {len(records)} records for {entity_type}",
            count=len(records),
        )

    def _build_records(
        self, descriptor: EntityDescriptor, entries: List[ChangeLogEntry]
    ) -> List[Dict[str, Any]]:
        records = []
        with Session(self.engine) as s:
            for entry in entries:
                try:
                    record = self._build_record(s, descriptor, entry)
                except Exception as exc:
                    logger.error("Failed building record for sync log %s: %s", entry.id, exc)
                    self.change_log.mark_failed([entry.id], str(exc))
                    continue
                if record is None:
                    logger.warning("Record not found for sync log: %s", entry.id)
                    self.change_log.mark_failed([entry.id], RECORD_NOT_FOUND)
                    continue
                records.append(record)
        return records

    @staticmethod
    def _build_record(
        session: Session, descriptor: EntityDescriptor, entry: ChangeLogEntry
    ) -> Optional[Dict[str, Any]]:
        if entry.action == ChangeAction.DELETE:
            return {
                "id": descriptor.store.coerce_id(entry.entity_id),
                "action": ChangeAction.DELETE.value,
                "data": entry.payload,
                "sync_log_id": entry.id,
            }

        current = descriptor.store.get(session, entry.entity_id)
        if current is None:
            return None
        record = descriptor.store.serialize(current)
        record["action"] = ChangeAction(entry.action).value
        record["sync_log_id"] = entry.id
        return record
