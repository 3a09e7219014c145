"""Result types returned by the pull/push engines and the orchestrator."""
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class EntityResult:
    """Outcome of one phase (pull or push) for one entity type."""

    success: bool
    message: str
    count: int = 0
    skipped: int = 0


@dataclass
class PhaseResult:
    """Aggregate of one phase across all entity types.

    `success` reports whether the phase itself ran; a phase with failing
    entities is still successful. Inspect `details` for per-entity outcomes.
    """

    success: bool
    message: str
    count: int = 0
    details: Dict[str, EntityResult] = field(default_factory=dict)

    @property
    def failed_entities(self) -> list:
        return [name for name, r in self.details.items() if not r.success]


@dataclass
class CycleResult:
    """Outcome of SyncOrchestrator.run_cycle()."""

    success: bool
    message: str
    postponed: bool = False
    pull: Optional[PhaseResult] = None
    push: Optional[PhaseResult] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for key in ("started_at", "finished_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data
