"""
EntityRegistry: the static catalog of syncable entity types.

Models are registered explicitly at startup. `discover()` is rerun on every
sync cycle and returns only the types whose tables are actually present, so
an entity provisioned after startup is picked up on the next cycle.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Type

from sqlmodel import SQLModel

from replisync.db import schema
from replisync.sync.storage import ModelStore

logger = logging.getLogger(__name__)


@dataclass
class EntityDescriptor:
    """One syncable entity type, as resolved against the live database."""

    entity_type: str
    table_name: str
    model: Type[SQLModel]
    store: ModelStore

    @property
    def has_timestamps(self) -> bool:
        return self.store.has_timestamps


class EntityRegistry:
    """Maps entity-type names to SQLModel classes, minus a denylist."""

    def __init__(self, excluded: Iterable[str] = ()):
        self.excluded = set(excluded)
        self._models: Dict[str, Type[SQLModel]] = {}

    def register(self, model: Type[SQLModel], name: Optional[str] = None) -> None:
        """Register a model. The entity type defaults to its table name."""
        entity_type = name or _table_name(model)
        if entity_type is None:
            raise ValueError(f"{model.__name__} has no table name; pass name=")
        self._models[entity_type] = model

    @property
    def entity_types(self) -> List[str]:
        return list(self._models)

    def entity_type_for(self, obj) -> Optional[str]:
        """Entity type of a model instance, or None if it is not tracked."""
        cls = type(obj)
        for entity_type, model in self._models.items():
            if model is cls:
                return entity_type
        return None

    def is_excluded(self, entity_type: str) -> bool:
        model = self._models.get(entity_type)
        names = {entity_type}
        if model is not None:
            names.add(model.__name__)
        return bool(names & self.excluded)

    def discover(self, engine) -> Dict[str, EntityDescriptor]:
        """Return usable entity types in registration order.

        Storage that cannot be reached yields an empty mapping rather than
        an exception; the caller simply skips the cycle.
        """
        descriptors: Dict[str, EntityDescriptor] = {}

        try:
            schema.ping(engine)
        except Exception as exc:
            logger.error("Database connection failed - cannot discover entities: %s", exc)
            return descriptors

        for entity_type, model in self._models.items():
            if self.is_excluded(entity_type):
                continue

            try:
                table = getattr(model, "__table__", None)
                if table is None:
                    logger.warning("Skipping %s: not a concrete table model", model.__name__)
                    continue

                if not schema.table_exists(engine, table.name):
                    logger.warning("Table not found for entity %s: %s", entity_type, table.name)
                    continue

                store = ModelStore(
                    model,
                    has_timestamps=schema.has_timestamp_columns(engine, table.name),
                )
                descriptors[entity_type] = EntityDescriptor(
                    entity_type=entity_type,
                    table_name=table.name,
                    model=model,
                    store=store,
                )
                logger.debug("Discovered entity: %s -> %s", model.__name__, table.name)
            except Exception as exc:
                logger.warning("Error processing entity %s: %s", entity_type, exc)

        logger.info("Total entities discovered: %d", len(descriptors))
        return descriptors


def _table_name(model) -> Optional[str]:
    table = getattr(model, "__table__", None)
    if table is not None:
        return table.name
    name = getattr(model, "__tablename__", None)
    return name if isinstance(name, str) else None
