# FILE: converter/pipeline/models.py
"""
Pipeline state models.

Design:
    - Dataclass-based with JSON round-trip via to_dict()/from_dict()
    - Wire shape uses camelCase keys (what the browser/CLI client consumes)
    - Artifact identity is the contract NAME, never the model-generated id

Generation output is a tagged variant decided once per session:

    SingleArtifact  - model answered with one monolithic `primaryContract`
    MultiArtifact   - model answered with a named `contracts` batch (+ deployment guide)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# STATUS
# =============================================================================


class ConversionStatus(str, Enum):
    IDLE = "idle"
    PHASE1 = "phase1"
    PHASE2 = "phase2"
    PHASE3 = "phase3"
    PHASE4 = "phase4"
    COMPLETE = "complete"
    ERROR = "error"

    @classmethod
    def for_phase(cls, phase: int) -> "ConversionStatus":
        return {
            1: cls.PHASE1,
            2: cls.PHASE2,
            3: cls.PHASE3,
            4: cls.PHASE4,
        }[phase]

    @property
    def is_terminal(self) -> bool:
        return self in (ConversionStatus.COMPLETE, ConversionStatus.ERROR)


# =============================================================================
# ARTIFACTS
# =============================================================================


@dataclass
class ContractArtifact:
    """One generated CashScript contract."""

    name: str
    code: str = ""
    id: str = ""
    purpose: str = ""
    role: str = "primary"  # primary | helper | state
    deployment_order: int = 0
    dependencies: List[str] = field(default_factory=list)
    constructor_params: List[Dict[str, Any]] = field(default_factory=list)
    validated: bool = False
    validation_error: Optional[str] = None
    bytecode_size: Optional[int] = None
    attempt: int = 1  # repair round that produced the code currently held

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "purpose": self.purpose,
            "code": self.code,
            "role": self.role,
            "deploymentOrder": self.deployment_order,
            "dependencies": list(self.dependencies),
            "constructorParams": [dict(p) for p in self.constructor_params],
            "validated": self.validated,
            "validationError": self.validation_error,
            "bytecodeSize": self.bytecode_size,
            "attempt": self.attempt,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], attempt: int = 1) -> "ContractArtifact":
        def pick(camel: str, snake: str, default: Any = None) -> Any:
            if camel in data:
                return data[camel]
            return data.get(snake, default)

        order = pick("deploymentOrder", "deployment_order", 0)
        try:
            order = int(order or 0)
        except (TypeError, ValueError):
            order = 0

        return cls(
            name=str(data.get("name") or "").strip(),
            code=str(data.get("code") or ""),
            id=str(data.get("id") or ""),
            purpose=str(data.get("purpose") or ""),
            role=str(data.get("role") or "primary"),
            deployment_order=order,
            dependencies=[str(d) for d in (data.get("dependencies") or [])],
            constructor_params=[dict(p) for p in (pick("constructorParams", "constructor_params") or [])],
            validated=bool(data.get("validated", False)),
            validation_error=pick("validationError", "validation_error"),
            bytecode_size=pick("bytecodeSize", "bytecode_size"),
            attempt=int(data.get("attempt") or attempt),
        )


@dataclass
class PendingSpec:
    """Placeholder for a contract the architecture promised but that has no code yet."""

    name: str
    custodies: str = ""
    validates: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "custodies": self.custodies, "validates": self.validates}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PendingSpec":
        return cls(
            name=str(data.get("name") or ""),
            custodies=_as_text(data.get("custodies")),
            validates=_as_text(data.get("validates")),
        )


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(v) for v in value if v)
    return str(value)


# =============================================================================
# GENERATION OUTPUT (tagged variant)
# =============================================================================


@dataclass(frozen=True)
class SingleArtifact:
    artifact: ContractArtifact
    kind: str = "single"

    @property
    def artifacts(self) -> List[ContractArtifact]:
        return [self.artifact]

    @property
    def deployment_guide(self) -> Optional[Dict[str, Any]]:
        return None


@dataclass(frozen=True)
class MultiArtifact:
    artifacts: List[ContractArtifact]
    deployment_guide: Optional[Dict[str, Any]] = None
    kind: str = "multi"


GenerationOutput = Union[SingleArtifact, MultiArtifact]


# =============================================================================
# REPAIR BOOKKEEPING
# =============================================================================


@dataclass
class RetryBatch:
    """Artifacts still failing after an attempt. Recomputed every attempt."""

    items: List[ContractArtifact] = field(default_factory=list)

    @property
    def names(self) -> List[str]:
        return [a.name for a in self.items]

    @property
    def first_error(self) -> str:
        for a in self.items:
            if a.validation_error:
                return f"{a.name}: {a.validation_error}"
        return "Unknown error"

    def __len__(self) -> int:
        return len(self.items)


@dataclass
class ArtifactResult:
    name: str
    validated: bool
    attempt: int

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "validated": self.validated, "attempt": self.attempt}


@dataclass
class ValidationSummary:
    """Outcome of one attempt, reported over the whole merged artifact set."""

    attempt: int
    results: List[ArtifactResult] = field(default_factory=list)
    first_error: Optional[str] = None

    @property
    def valid_count(self) -> int:
        return sum(1 for r in self.results if r.validated)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.validated)

    @property
    def passed(self) -> bool:
        return bool(self.results) and self.failed_count == 0


# =============================================================================
# SESSION
# =============================================================================


@dataclass
class ConversionSession:
    """One conversion attempt end-to-end. Mutated only by the orchestrator."""

    session_id: str
    source: str
    phase: int = 0
    status: ConversionStatus = ConversionStatus.IDLE
    attempt: int = 0
    error: Optional[str] = None
    started_at: str = ""
    completed_at: Optional[str] = None
    client_session: Optional[str] = None  # browser cookie / x-session-id, for audit only

    def __post_init__(self):
        if not self.started_at:
            self.started_at = _now_iso()

    @classmethod
    def create(cls, source: str, client_session: Optional[str] = None) -> "ConversionSession":
        return cls(session_id=uuid.uuid4().hex, source=source, client_session=client_session)

    def enter_phase(self, phase: int) -> None:
        if self.status.is_terminal:
            raise RuntimeError(f"Session {self.session_id} already {self.status.value}")
        if phase < self.phase:
            raise RuntimeError(f"Phase regression {self.phase} -> {phase}")
        self.phase = phase
        self.status = ConversionStatus.for_phase(phase)

    def complete(self) -> None:
        self.status = ConversionStatus.COMPLETE
        self.phase = 5
        self.completed_at = _now_iso()

    def fail(self, message: str) -> None:
        self.status = ConversionStatus.ERROR
        self.error = message
        self.completed_at = _now_iso()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "session_id": self.session_id,
            "phase": self.phase,
            "status": self.status.value,
            "attempt": self.attempt,
            "error": self.error,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }
