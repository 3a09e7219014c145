"""
SyncOrchestrator: one full pull+push cycle across all entity types.

    gate (probe) → requeue stale → discover → pull all → push all

Safe to call unconditionally on a timer: when offline it returns a
"postponed" result without touching any state, and no single entity's
failure aborts the cycle. The top-level `success` flag only says the
cycle ran; per-entity outcomes live in result.pull/push.details.
"""
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlmodel import Session

from replisync.config import Settings
from replisync.sync.change_log import ChangeLogStore
from replisync.sync.cursors import CursorStore
from replisync.sync.probe import ConnectivityProbe
from replisync.sync.pull import PullEngine
from replisync.sync.push import PushEngine
from replisync.sync.registry import EntityRegistry
from replisync.sync.results import CycleResult, PhaseResult
from replisync.timeutil import format_datetime, utc_now

logger = logging.getLogger(__name__)


class SyncOrchestrator:
    """Coordinates the probe, registry, pull and push engines."""

    def __init__(
        self,
        *,
        engine,
        registry: EntityRegistry,
        probe: ConnectivityProbe,
        pull: PullEngine,
        push: PushEngine,
        change_log: ChangeLogStore,
        cursors: CursorStore,
        retention_days: int = 7,
        stale_after: Optional[timedelta] = timedelta(minutes=10),
    ):
        self.engine = engine
        self.registry = registry
        self.probe = probe
        self.pull = pull
        self.push = push
        self.change_log = change_log
        self.cursors = cursors
        self.retention_days = retention_days
        self.stale_after = stale_after

    async def run_cycle(self) -> CycleResult:
        started_at = utc_now()

        if not await self.probe.is_online():
            logger.info("Sync postponed - offline")
            return CycleResult(
                success=False,
                postponed=True,
                message="Offline - sync postponed",
                started_at=started_at,
                finished_at=utc_now(),
            )

        logger.info("Sync started")

        if self.stale_after is not None:
            try:
                self.change_log.requeue_stale(self.stale_after)
            except Exception as exc:
                logger.error("Failed requeueing stale sync logs: %s", exc)

        descriptors = self.registry.discover(self.engine)
        if not descriptors:
            logger.warning("No syncable entities found - nothing to do")
            empty = "No entities to sync"
            return CycleResult(
                success=True,
                message=empty,
                pull=PhaseResult(success=True, message=empty),
                push=PhaseResult(success=True, message=empty),
                started_at=started_at,
                finished_at=utc_now(),
            )

        pull_result = await self.pull.pull_all(descriptors, started_at=started_at)
        push_result = await self.push.push_all(descriptors)

        result = CycleResult(
            success=True,
            message=f"{pull_result.message}; {push_result.message}",
            pull=pull_result,
            push=push_result,
            started_at=started_at,
            finished_at=utc_now(),
        )
        failed = sorted(set(pull_result.failed_entities) | set(push_result.failed_entities))
        if failed:
            logger.warning("Sync completed with failures in: %s", ", ".join(failed))
        else:
            logger.info("Sync completed: %s", result.message)
        return result

    def cleanup_old_logs(self, max_age_days: Optional[int] = None) -> int:
        """Delete completed change-log entries older than the retention window."""
        days = self.retention_days if max_age_days is None else max_age_days
        try:
            deleted = self.change_log.sweep(days)
        except Exception as exc:
            logger.error("Failed cleaning up old sync logs: %s", exc)
            return 0
        logger.info("Cleaned up %d old sync logs", deleted)
        return deleted

    def status(self) -> Dict[str, Any]:
        """Cursor and record counts per entity, plus change-log stats."""
        entities: Dict[str, Any] = {}
        descriptors = self.registry.discover(self.engine)

        with Session(self.engine) as s:
            for entity_type, descriptor in descriptors.items():
                last_sync = self.cursors.get(entity_type)
                info: Dict[str, Any] = {
                    "last_sync": format_datetime(last_sync),
                    "model": descriptor.model.__name__,
                }
                try:
                    info["total_records"] = descriptor.store.count(s)
                    info["changed_since_sync"] = descriptor.store.count_changed_since(s, last_sync)
                except Exception as exc:
                    info["error"] = str(exc)
                entities[entity_type] = info

        try:
            log_stats = self.change_log.stats()
        except Exception as exc:
            logger.error("Failed getting sync log stats: %s", exc)
            log_stats = {}

        return {"entities": entities, "change_log": log_stats}

    def reset_cursors(self, entity_type: Optional[str] = None) -> int:
        return self.cursors.reset(entity_type)


def build_orchestrator(
    engine,
    settings: Settings,
    registry: EntityRegistry,
    client=None,
    change_log: Optional[ChangeLogStore] = None,
) -> SyncOrchestrator:
    """Wire an orchestrator from settings. `client` defaults to a MasterClient."""
    from replisync.sync.transport import MasterClient

    if client is None:
        client = MasterClient(
            settings.sync_url,
            timeout=settings.sync_timeout,
            max_retries=settings.sync_max_retries,
        )
    if change_log is None:
        change_log = ChangeLogStore(engine, enabled=settings.change_logging_enabled)
    cursors = CursorStore(settings.cursor_dir, settings.default_start_date)

    return SyncOrchestrator(
        engine=engine,
        registry=registry,
        probe=ConnectivityProbe(
            settings.probe_hosts,
            port=settings.probe_port,
            timeout=settings.probe_timeout,
        ),
        pull=PullEngine(client, engine, cursors),
        push=PushEngine(client, engine, change_log),
        change_log=change_log,
        cursors=cursors,
        retention_days=settings.retention_days,
        stale_after=timedelta(minutes=settings.stale_syncing_minutes),
    )
