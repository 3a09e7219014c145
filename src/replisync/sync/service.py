"""Process-wide sync wiring: engine, registry, change tracking, orchestrator."""
import logging
from typing import Optional

from replisync.config import get_settings
from replisync.sync.change_log import ChangeLogStore
from replisync.sync.orchestrator import SyncOrchestrator, build_orchestrator
from replisync.sync.tracking import ChangeTracker

logger = logging.getLogger(__name__)

_orchestrator: Optional[SyncOrchestrator] = None
_tracker: Optional[ChangeTracker] = None


def get_sync_service() -> SyncOrchestrator:
    """Return the module-level orchestrator, creating it on first call.

    Creating it also installs the change hooks, so every Session write to a
    catalog model from then on is recorded in the change log.
    """
    global _orchestrator, _tracker
    if _orchestrator is None:
        from replisync.db.engine import get_engine
        from replisync.models.catalog import default_registry

        settings = get_settings()
        engine = get_engine()
        registry = default_registry(excluded=settings.excluded_entities)
        change_log = ChangeLogStore(engine, enabled=settings.change_logging_enabled)

        _tracker = ChangeTracker(registry, change_log)
        _tracker.install()

        _orchestrator = build_orchestrator(engine, settings, registry, change_log=change_log)
        logger.info("Sync service initialized (mode=%s)", settings.mode)
    return _orchestrator
