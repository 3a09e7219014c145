"""
ChangeLogStore: durable, deduplicated log of local changes awaiting push.

Entry state machine:

    pending  --claim-->            syncing
    syncing  --transport ok-->     completed
    syncing  --transport error-->  failed
    syncing  --error, newer entry--> folded into the newer entry
    failed   --claim (next run)--> syncing
    completed --sweep(age)-->      deleted

At most one entry per (entity_type, entity_id) is actionable (pending or
failed) at any time. A later mutation of the same record rewrites that entry
instead of adding another, so a record changed many times between cycles is
pushed once, with its latest state.
A mutation that lands while the entry is syncing gets a fresh entry; if the
syncing one then fails, it is folded into that fresh entry.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import delete, func, update
from sqlmodel import Session, col, select

from replisync.models.change_log import (
    ACTIONABLE_STATUSES,
    ChangeAction,
    ChangeLogEntry,
    ChangeStatus,
)
from replisync.timeutil import utc_now

logger = logging.getLogger(__name__)

STALE_SYNCING_REASON = "Sync attempt interrupted; requeued"


def collapse_action(existing: ChangeAction, incoming: ChangeAction) -> ChangeAction:
    """Resolve the action of an unsent entry that receives a newer mutation.

    Create followed by update stays a create (master has never seen the
    record); everything else takes the newer action.
    """
    if existing == ChangeAction.CREATE and incoming == ChangeAction.UPDATE:
        return ChangeAction.CREATE
    return incoming


class ChangeLogStore:
    """Persistence and status transitions for ChangeLogEntry rows."""

    def __init__(self, engine, enabled: bool = True):
        """
        Args:
            engine: SQLAlchemy engine holding the sync_logs table.
            enabled: When False, record_change() is a no-op.
        """
        self.engine = engine
        self.enabled = enabled

    def _session(self) -> Session:
        return Session(self.engine, expire_on_commit=False)

    # ─── Recording ────────────────────────────────────────────────────────────

    def record_change(
        self,
        entity_type: str,
        entity_id: Any,
        action: ChangeAction,
        payload: Optional[Dict[str, Any]] = None,
        session: Optional[Session] = None,
    ) -> Optional[ChangeLogEntry]:
        """Upsert the single actionable entry for a record.

        With `session`, the entry joins that session's transaction and is
        flushed with it; otherwise a private session is opened and committed.

        Never raises: a failure here must not break the business write that
        triggered it. Returns the entry, or None when disabled or on error.
        """
        if not self.enabled:
            return None

        action = ChangeAction(action)
        try:
            if session is not None:
                with session.no_autoflush:
                    return self._upsert_entry(session, entity_type, entity_id, action, payload)
            with self._session() as s:
                entry = self._upsert_entry(s, entity_type, entity_id, action, payload)
                s.commit()
                s.refresh(entry)
                return entry
        except Exception:
            logger.exception(
                "Failed to record %s of %s#%s", action.value, entity_type, entity_id
            )
            return None

    def _upsert_entry(
        self,
        session: Session,
        entity_type: str,
        entity_id: Any,
        action: ChangeAction,
        payload: Optional[Dict[str, Any]],
    ) -> ChangeLogEntry:
        entity_id = str(entity_id)
        now = utc_now()
        entry = self._actionable_query(session, entity_type, entity_id).first()

        if entry is None:
            # The same record may also be mid-flight in session.new
            for obj in session.new:
                if (
                    isinstance(obj, ChangeLogEntry)
                    and obj.entity_type == entity_type
                    and obj.entity_id == entity_id
                    and obj.status in ACTIONABLE_STATUSES
                ):
                    entry = obj
                    break

        if entry is None:
            entry = ChangeLogEntry(
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                status=ChangeStatus.PENDING,
                attempts=0,
                created_at=now,
                updated_at=now,
            )
        else:
            entry.action = collapse_action(entry.action, action)
            entry.status = ChangeStatus.PENDING
            entry.error_message = None
            entry.updated_at = now

        entry.set_payload(payload)
        session.add(entry)
        return entry

    @staticmethod
    def _actionable_query(session: Session, entity_type: str, entity_id: str):
        return session.exec(
            select(ChangeLogEntry)
            .where(ChangeLogEntry.entity_type == entity_type)
            .where(ChangeLogEntry.entity_id == entity_id)
            .where(col(ChangeLogEntry.status).in_(ACTIONABLE_STATUSES))
        )

    # ─── Selection and transitions ───────────────────────────────────────────

    def select_actionable(
        self, entity_type: str, session: Optional[Session] = None
    ) -> List[ChangeLogEntry]:
        """Pending and failed entries for a type, oldest first."""
        stmt = (
            select(ChangeLogEntry)
            .where(ChangeLogEntry.entity_type == entity_type)
            .where(col(ChangeLogEntry.status).in_(ACTIONABLE_STATUSES))
            .order_by(col(ChangeLogEntry.created_at).asc(), col(ChangeLogEntry.id).asc())
        )
        if session is not None:
            return list(session.exec(stmt).all())
        with self._session() as s:
            return list(s.exec(stmt).all())

    def pending_for(self, entity_type: str, entity_id: Any) -> List[ChangeLogEntry]:
        """Actionable entries of one record (zero or one, by invariant)."""
        with self._session() as s:
            return list(self._actionable_query(s, entity_type, str(entity_id)).all())

    def mark_syncing(
        self, entry: ChangeLogEntry, session: Optional[Session] = None
    ) -> ChangeLogEntry:
        entry.status = ChangeStatus.SYNCING
        entry.attempts = (entry.attempts or 0) + 1
        entry.last_attempt_at = utc_now()
        entry.updated_at = entry.last_attempt_at
        if session is not None:
            session.add(entry)
            return entry
        with self._session() as s:
            s.add(entry)
            s.commit()
            s.refresh(entry)
        return entry

    def claim_actionable(self, entity_type: str) -> List[ChangeLogEntry]:
        """Select actionable entries and mark them syncing in one transaction."""
        with self._session() as s:
            entries = self.select_actionable(entity_type, session=s)
            for entry in entries:
                self.mark_syncing(entry, session=s)
            s.commit()
        return entries

    def mark_completed(self, entry_ids: Sequence[int]) -> int:
        ids = [i for i in entry_ids if i is not None]
        if not ids:
            return 0
        count = self._set_status(
            ids, status=ChangeStatus.COMPLETED, error_message=None
        )
        logger.info("Marked %d sync logs as completed", count)
        return count

    def mark_failed(self, entry_ids: Sequence[int], reason: Optional[str]) -> int:
        """Fail entries so the next claim retries them.

        An entry whose record picked up a newer pending entry while it was in
        flight is folded into that entry instead, keeping one actionable entry
        per record.
        """
        ids = [i for i in entry_ids if i is not None]
        if not ids:
            return 0
        with self._session() as s:
            entries = s.exec(
                select(ChangeLogEntry).where(col(ChangeLogEntry.id).in_(ids))
            ).all()
            count = self._fail_entries(s, entries, reason)
            s.commit()
        logger.info("Marked %d sync logs as failed", count)
        return count

    def _fail_entries(
        self, session: Session, entries: Sequence[ChangeLogEntry], reason: Optional[str]
    ) -> int:
        now = utc_now()
        failing_ids = {entry.id for entry in entries}
        for entry in entries:
            newer = next(
                (
                    other
                    for other in self._actionable_query(
                        session, entry.entity_type, entry.entity_id
                    ).all()
                    if other.id not in failing_ids
                ),
                None,
            )
            if newer is None:
                entry.status = ChangeStatus.FAILED
                entry.error_message = reason
                entry.updated_at = now
                session.add(entry)
                continue

            newer.action = collapse_action(entry.action, newer.action)
            newer.attempts = (newer.attempts or 0) + (entry.attempts or 0)
            newer.updated_at = now
            session.add(newer)
            session.delete(entry)
            logger.info(
                "Folded failed %s of %s#%s into entry %s",
                entry.action.value, entry.entity_type, entry.entity_id, newer.id,
            )
        return len(entries)

    def _set_status(self, ids: List[int], **values) -> int:
        with self._session() as s:
            result = s.exec(
                update(ChangeLogEntry)
                .where(col(ChangeLogEntry.id).in_(ids))
                .values(updated_at=utc_now(), **values)
            )
            s.commit()
            return result.rowcount

    def requeue_stale(self, older_than: timedelta) -> int:
        """Fail `syncing` entries whose last attempt is older than `older_than`.

        A cycle killed mid-push leaves its claimed entries in `syncing`;
        flipping them to `failed` makes the next claim pick them up again.
        """
        cutoff = utc_now() - older_than
        with self._session() as s:
            entries = s.exec(
                select(ChangeLogEntry)
                .where(ChangeLogEntry.status == ChangeStatus.SYNCING)
                .where(col(ChangeLogEntry.last_attempt_at) < cutoff)
            ).all()
            count = self._fail_entries(s, entries, STALE_SYNCING_REASON)
            s.commit()
        if count:
            logger.warning("Requeued %d stale syncing entries", count)
        return count

    def reset_failed(self, entity_type: Optional[str] = None) -> int:
        """Operator override: return failed entries to pending with a fresh attempt count."""
        stmt = update(ChangeLogEntry).where(ChangeLogEntry.status == ChangeStatus.FAILED)
        if entity_type:
            stmt = stmt.where(ChangeLogEntry.entity_type == entity_type)
        with self._session() as s:
            result = s.exec(
                stmt.values(
                    status=ChangeStatus.PENDING,
                    attempts=0,
                    error_message=None,
                    updated_at=utc_now(),
                )
            )
            s.commit()
            return result.rowcount

    # ─── Retention and reporting ─────────────────────────────────────────────

    def sweep(self, max_age_days: int = 7, now: Optional[datetime] = None) -> int:
        """Delete completed entries last touched more than `max_age_days` ago."""
        cutoff = (now or utc_now()) - timedelta(days=max_age_days)
        with self._session() as s:
            result = s.exec(
                delete(ChangeLogEntry)
                .where(ChangeLogEntry.status == ChangeStatus.COMPLETED)
                .where(col(ChangeLogEntry.updated_at) < cutoff)
            )
            s.commit()
            return result.rowcount

    def stats(self) -> Dict[str, int]:
        """Entry counts per status, plus the total."""
        counts = {status.value: 0 for status in ChangeStatus}
        with self._session() as s:
            rows = s.exec(
                select(ChangeLogEntry.status, func.count()).group_by(ChangeLogEntry.status)
            ).all()
        for status, n in rows:
            counts[ChangeStatus(status).value] = n
        counts["total"] = sum(counts.values())
        return counts

    def recent(
        self,
        status: Optional[ChangeStatus] = None,
        entity_type: Optional[str] = None,
        limit: int = 50,
    ) -> List[ChangeLogEntry]:
        stmt = select(ChangeLogEntry)
        if status is not None:
            stmt = stmt.where(ChangeLogEntry.status == status)
        if entity_type:
            stmt = stmt.where(ChangeLogEntry.entity_type == entity_type)
        stmt = stmt.order_by(col(ChangeLogEntry.updated_at).desc(), col(ChangeLogEntry.id).desc())
        with self._session() as s:
            return list(s.exec(stmt.limit(limit)).all())
