"""
ModelStore: the CRUD capability handle the sync engines use for one entity type.

Wraps a SQLModel table class. The engines never touch model classes
directly, only through this handle, so the storage layer stays swappable.
"""
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional, Type

from sqlalchemy import func, inspect as sa_inspect, or_
from sqlmodel import Session, SQLModel, select

from replisync.db.schema import TIMESTAMP_COLUMNS
from replisync.timeutil import format_datetime, parse_datetime


class ModelStore:
    """CRUD and existence checks for a single SQLModel table."""

    def __init__(self, model: Type[SQLModel], has_timestamps: bool = False):
        self.model = model
        self.has_timestamps = has_timestamps
        mapper = sa_inspect(model)
        self.primary_key = mapper.primary_key[0].name
        self.columns = {col.key for col in mapper.columns}

    def coerce_id(self, entity_id: Any) -> Any:
        """Convert a stored (string) id back to the primary key's Python type."""
        column = sa_inspect(self.model).primary_key[0]
        try:
            python_type = column.type.python_type
        except NotImplementedError:
            return entity_id
        if python_type is int and not isinstance(entity_id, int):
            return int(entity_id)
        return entity_id

    def get(self, session: Session, entity_id: Any) -> Optional[SQLModel]:
        return session.get(self.model, self.coerce_id(entity_id))

    def exists(self, session: Session, entity_id: Any) -> bool:
        return self.get(session, entity_id) is not None

    def upsert(self, session: Session, fields: Dict[str, Any]) -> SQLModel:
        """Insert or overwrite the row identified by fields[primary_key].

        Unknown keys are ignored. Does not commit.
        """
        values = {k: v for k, v in fields.items() if k in self.columns}
        existing = self.get(session, values[self.primary_key])
        if existing is not None:
            for k, v in values.items():
                setattr(existing, k, v)
            session.add(existing)
            return existing
        record = self.model(**values)
        session.add(record)
        return record

    def count(self, session: Session) -> int:
        return session.exec(select(func.count()).select_from(self.model)).one()

    def count_changed_since(self, session: Session, since: datetime) -> int:
        """Rows created or updated after `since`. Zero for tables without timestamps."""
        if not self.has_timestamps:
            return 0
        created, updated = (getattr(self.model, c) for c in TIMESTAMP_COLUMNS)
        stmt = (
            select(func.count())
            .select_from(self.model)
            .where(or_(updated > since, created > since))
        )
        return session.exec(stmt).one()

    def serialize(self, record: SQLModel) -> Dict[str, Any]:
        """Column values as a JSON-safe dict, dates in wire format."""
        return {c: _json_value(getattr(record, c)) for c in sorted(self.columns)}

    def normalize_incoming(self, row: Dict[str, Any]) -> Dict[str, Any]:
        """Convert a remote row into model-ready values.

        Timestamp fields that fail to parse are dropped rather than stored.
        """
        values = {k: v for k, v in row.items() if k in self.columns}
        for name in TIMESTAMP_COLUMNS:
            if name in values:
                parsed = parse_datetime(values[name])
                if parsed is None:
                    del values[name]
                else:
                    values[name] = parsed
        values[self.primary_key] = self.coerce_id(values[self.primary_key])
        return values


def _json_value(value: Any) -> Any:
    if isinstance(value, datetime):
        return format_datetime(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, Decimal):
        return str(value)
    return value
