"""
ChangeTracker: feeds the change log from SQLAlchemy session events.

Any create/update/delete of a registered model that goes through a Session
is recorded in the *same* transaction as the business write:

  1. before_flush          snapshot tracked objects about to be deleted
                           (their rows are still readable here)
  2. after_flush           capture new and dirty tracked objects
                           (ids are assigned at this point)
  3. after_flush_postexec  upsert their ChangeLogEntry rows into the session;
                           Session.commit() flushes them before committing

Writes made by the sync engines themselves run in a session whose
info[SUPPRESS_KEY] is set (see sync_session()), so pulling a record from
master never queues it to be pushed straight back.
"""
import logging
from typing import Any, Dict, List, Tuple

from sqlalchemy import event
from sqlmodel import Session

from replisync.models.change_log import ChangeAction
from replisync.sync.change_log import ChangeLogStore
from replisync.sync.registry import EntityRegistry
from replisync.sync.storage import ModelStore

logger = logging.getLogger(__name__)

SUPPRESS_KEY = "replisync.suppress_changes"
_PENDING_KEY = "replisync.pending_changes"
_DELETED_KEY = "replisync.pending_deletes"


def sync_session(engine, **kwargs) -> Session:
    """A Session whose writes are not recorded in the change log."""
    info = dict(kwargs.pop("info", None) or {})
    info[SUPPRESS_KEY] = True
    return Session(engine, info=info, **kwargs)


class ChangeTracker:
    """Installs flush listeners that call ChangeLogStore.record_change()."""

    def __init__(self, registry: EntityRegistry, store: ChangeLogStore, target=Session):
        """
        Args:
            registry: Decides which model instances are tracked.
            store: Where entries are written.
            target: Session class, sessionmaker or Session instance to listen on.
        """
        self.registry = registry
        self.store = store
        self.target = target
        self._installed = False

    def install(self) -> None:
        if self._installed:
            return
        event.listen(self.target, "before_flush", self._before_flush)
        event.listen(self.target, "after_flush", self._after_flush)
        event.listen(self.target, "after_flush_postexec", self._after_flush_postexec)
        self._installed = True

    def uninstall(self) -> None:
        if not self._installed:
            return
        event.remove(self.target, "before_flush", self._before_flush)
        event.remove(self.target, "after_flush", self._after_flush)
        event.remove(self.target, "after_flush_postexec", self._after_flush_postexec)
        self._installed = False

    def _tracking(self, session) -> bool:
        return not session.info.get(SUPPRESS_KEY) and self.store.enabled

    def _before_flush(self, session, flush_context, instances) -> None:
        # Overwritten, not extended: a flush that failed must not leak its deletes
        session.info[_DELETED_KEY] = (
            self._collect(session, ChangeAction.DELETE, session.deleted)
            if self._tracking(session)
            else []
        )

    def _after_flush(self, session, flush_context) -> None:
        deletes = session.info.pop(_DELETED_KEY, [])
        if not self._tracking(session):
            return
        changes = (
            self._collect(session, ChangeAction.CREATE, session.new)
            + self._collect(session, ChangeAction.UPDATE, session.dirty)
            + deletes
        )
        if changes:
            session.info.setdefault(_PENDING_KEY, []).extend(changes)

    def _after_flush_postexec(self, session, flush_context) -> None:
        changes: List[Tuple[str, Any, ChangeAction, Dict]] = session.info.pop(_PENDING_KEY, [])
        for entity_type, entity_id, action, payload in changes:
            self.store.record_change(entity_type, entity_id, action, payload, session=session)

    def _collect(
        self, session, action: ChangeAction, objects
    ) -> List[Tuple[str, Any, ChangeAction, Dict]]:
        changes = []
        for obj in objects:
            entity_type = self.registry.entity_type_for(obj)
            if entity_type is None:
                continue
            try:
                if action == ChangeAction.UPDATE and not session.is_modified(obj):
                    continue
                store = ModelStore(type(obj))
                payload = store.serialize(obj)
            except Exception:
                logger.exception("Failed to snapshot %s for the change log", entity_type)
                continue
            entity_id = payload.get(store.primary_key)
            if entity_id is not None:
                changes.append((entity_type, entity_id, action, payload))
        return changes
