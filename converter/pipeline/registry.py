# FILE: converter/pipeline/registry.py
"""
Session-scoped artifact bookkeeping for phases 3-4.

One ArtifactRegistry per conversion session, created by the orchestrator and never
shared. It owns:

    - the generation mode (decided once from attempt 1)
    - original_order (authoritative names, fixed after attempt 1)
    - the accepted set (deep copies of artifacts that passed validation)
    - the latest held version of every artifact (for RetryBatch construction)
    - the sent set (names already announced with artifact_ready)
"""

from __future__ import annotations

import copy
import logging
from typing import Dict, Iterable, List, Optional, Set

from converter.errors import PhaseError
from converter.pipeline.models import (
    ArtifactResult,
    ContractArtifact,
    GenerationOutput,
    RetryBatch,
    ValidationSummary,
)

logger = logging.getLogger(__name__)


class ArtifactRegistry:
    def __init__(self):
        self._mode: Optional[GenerationOutput] = None
        self._order: List[str] = []
        self._accepted: Dict[str, ContractArtifact] = {}
        self._current: Dict[str, ContractArtifact] = {}
        self._sent: Set[str] = set()

    # -------------------------------------------------------------------------
    # Attempt 1
    # -------------------------------------------------------------------------

    def initialize(self, output: GenerationOutput) -> List[ContractArtifact]:
        """Fix mode and name order from attempt 1. Returns the artifacts to validate."""
        if self._mode is not None:
            raise RuntimeError("Generation mode already decided for this session")

        artifacts = list(output.artifacts)
        if not artifacts:
            raise PhaseError(3, "No contracts generated")

        names = [a.name for a in artifacts]
        if any(not n for n in names):
            raise PhaseError(3, "Generated contract without a name")
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise PhaseError(3, f"Duplicate contract names generated: {', '.join(duplicates)}")

        self._mode = output
        self._order = names
        self._current = {a.name: copy.deepcopy(a) for a in artifacts}
        logger.info("[registry] %s mode, order=%s", output.kind, names)
        return [copy.deepcopy(a) for a in artifacts]

    @property
    def mode(self) -> Optional[GenerationOutput]:
        return self._mode

    @property
    def is_multi(self) -> bool:
        return self._mode is not None and self._mode.kind == "multi"

    @property
    def deployment_guide(self) -> Optional[dict]:
        return self._mode.deployment_guide if self._mode is not None else None

    @property
    def original_order(self) -> List[str]:
        return list(self._order)

    @property
    def total_expected(self) -> int:
        return len(self._order)

    # -------------------------------------------------------------------------
    # Validation results
    # -------------------------------------------------------------------------

    def record(self, validated: Iterable[ContractArtifact]) -> None:
        """
        Store the outcome of validating one attempt's artifacts.

        Valid artifacts enter the accepted set as deep copies. Names already
        accepted are never overwritten.
        """
        for artifact in validated:
            if artifact.name not in self._current:
                logger.warning("[registry] Ignoring unknown contract '%s'", artifact.name)
                continue
            if artifact.name in self._accepted:
                continue
            self._current[artifact.name] = copy.deepcopy(artifact)
            if artifact.validated:
                self._accepted[artifact.name] = copy.deepcopy(artifact)

    def is_accepted(self, name: str) -> bool:
        return name in self._accepted

    @property
    def accepted_names(self) -> List[str]:
        return [n for n in self._order if n in self._accepted]

    def accepted_snapshot(self) -> Dict[str, ContractArtifact]:
        """Accepted artifacts by name. Callers must copy before mutating (the merger does)."""
        return dict(self._accepted)

    def failed_names(self) -> List[str]:
        return [n for n in self._order if n not in self._accepted]

    def is_complete(self) -> bool:
        return bool(self._order) and len(self._accepted) == len(self._order)

    def retry_batch(self) -> RetryBatch:
        return RetryBatch(items=[copy.deepcopy(self._current[n]) for n in self.failed_names()])

    def artifacts(self) -> List[ContractArtifact]:
        """Full artifact set in original order: accepted where available, latest otherwise."""
        return [
            copy.deepcopy(self._accepted.get(n) or self._current[n])
            for n in self._order
        ]

    def summary(self, attempt: int) -> ValidationSummary:
        results = []
        for name in self._order:
            held = self._accepted.get(name) or self._current[name]
            results.append(ArtifactResult(name=name, validated=name in self._accepted, attempt=held.attempt))
        first_error = None if self.is_complete() else self.retry_batch().first_error
        return ValidationSummary(attempt=attempt, results=results, first_error=first_error)

    # -------------------------------------------------------------------------
    # Sent set
    # -------------------------------------------------------------------------

    def mark_sent(self, name: str) -> bool:
        """Record an artifact_ready announcement. False if the name was already sent."""
        if name in self._sent:
            return False
        if name not in self._accepted:
            raise RuntimeError(f"Cannot announce unaccepted contract '{name}'")
        self._sent.add(name)
        return True

    def unsent_accepted(self) -> List[ContractArtifact]:
        """Accepted artifacts not yet announced, in original order."""
        return [copy.deepcopy(self._accepted[n]) for n in self.accepted_names if n not in self._sent]

    @property
    def sent_count(self) -> int:
        return len(self._sent)
