"""Sync trigger, status and maintenance routes."""
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from pydantic import BaseModel

from replisync.models.change_log import ChangeStatus
from replisync.sync.orchestrator import SyncOrchestrator
from replisync.sync.service import get_sync_service

router = APIRouter()


class ChangeLogEntryOut(BaseModel):
    id: int
    entity_type: str
    entity_id: str
    action: str
    status: str
    attempts: int
    last_attempt_at: Optional[datetime]
    error_message: Optional[str]
    created_at: datetime
    updated_at: datetime


class ResetRequest(BaseModel):
    entity_type: Optional[str] = None  # If None, resets every entity


class CleanupRequest(BaseModel):
    days: Optional[int] = None  # If None, uses the configured retention


async def _do_sync(service: SyncOrchestrator) -> None:
    """Background task: run one sync cycle."""
    await service.run_cycle()


@router.post("/trigger")
async def trigger_sync(
    background_tasks: BackgroundTasks,
    service: SyncOrchestrator = Depends(get_sync_service),
):
    """
    Trigger an on-demand sync cycle.
    Returns immediately; the cycle runs in the background.
    """
    background_tasks.add_task(_do_sync, service)
    return {"message": "Sync started"}


@router.get("/status")
def sync_status(service: SyncOrchestrator = Depends(get_sync_service)):
    """Per-entity cursors and record counts, plus change-log stats."""
    return service.status()


@router.get("/stats", response_model=Dict[str, int])
def sync_stats(service: SyncOrchestrator = Depends(get_sync_service)):
    return service.change_log.stats()


@router.get("/logs", response_model=List[ChangeLogEntryOut])
def sync_logs(
    status: Optional[ChangeStatus] = None,
    entity_type: Optional[str] = None,
    limit: int = 50,
    service: SyncOrchestrator = Depends(get_sync_service),
):
    """Most recently touched change-log entries, newest first."""
    entries = service.change_log.recent(status=status, entity_type=entity_type, limit=limit)
    return [
        ChangeLogEntryOut(
            id=e.id,
            entity_type=e.entity_type,
            entity_id=e.entity_id,
            action=e.action.value,
            status=e.status.value,
            attempts=e.attempts,
            last_attempt_at=e.last_attempt_at,
            error_message=e.error_message,
            created_at=e.created_at,
            updated_at=e.updated_at,
        )
        for e in entries
    ]


@router.post("/cleanup")
def cleanup_logs(
    request: CleanupRequest,
    service: SyncOrchestrator = Depends(get_sync_service),
):
    return {"deleted": service.cleanup_old_logs(request.days)}


@router.post("/reset")
def reset_cursors(
    request: ResetRequest,
    service: SyncOrchestrator = Depends(get_sync_service),
):
    """Forget pull cursors so the next cycle re-pulls from the default start date."""
    return {"reset": service.reset_cursors(request.entity_type)}


@router.post("/retry")
def retry_failed(
    request: ResetRequest,
    service: SyncOrchestrator = Depends(get_sync_service),
):
    """Return failed change-log entries to pending with a fresh attempt count."""
    return {"requeued": service.change_log.reset_failed(request.entity_type)}
