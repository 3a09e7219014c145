"""Change log model: one row per pending or attempted sync of a local record."""
import json
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import NaiveDatetime
from sqlalchemy import DateTime, Index
from sqlmodel import Field, SQLModel

from replisync.timeutil import utc_now


class ChangeAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ChangeStatus(str, Enum):
    PENDING = "pending"
    SYNCING = "syncing"
    COMPLETED = "completed"
    FAILED = "failed"


# Statuses that the next push will pick up
ACTIONABLE_STATUSES = (ChangeStatus.PENDING, ChangeStatus.FAILED)


class ChangeLogEntry(SQLModel, table=True):
    """Tracks a local create/update/delete until master has accepted it."""

    __tablename__ = "sync_logs"
    __table_args__ = (
        Index("ix_sync_logs_type_status", "entity_type", "status"),
        Index("ix_sync_logs_type_entity", "entity_type", "entity_id"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    entity_type: str  # table name of the tracked entity, e.g. "customers"
    entity_id: str
    action: ChangeAction
    status: ChangeStatus = Field(default=ChangeStatus.PENDING, index=True)
    attempts: int = 0
    last_attempt_at: Optional[NaiveDatetime] = Field(default=None, sa_type=DateTime)
    error_message: Optional[str] = None

    # JSON snapshot of the record; the only source of data for deletes
    payload_json: Optional[str] = None

    # Naive UTC, see replisync.timeutil
    created_at: NaiveDatetime = Field(default_factory=utc_now, index=True, sa_type=DateTime)
    updated_at: NaiveDatetime = Field(default_factory=utc_now, sa_type=DateTime)

    @property
    def payload(self) -> Optional[Dict[str, Any]]:
        return json.loads(self.payload_json) if self.payload_json else None

    def set_payload(self, value: Optional[Dict[str, Any]]) -> None:
        self.payload_json = json.dumps(value, default=str) if value else None
