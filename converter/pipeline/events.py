# FILE: converter/pipeline/events.py
"""
Wire events for the conversion stream.

Each event is one SSE frame:

    event: <type>
    data: {"type": "<type>", ...payload}

The payload repeats the type so clients that only read `data:` lines still work.
Exactly one terminal event (done | error) closes a stream; encode_stream() drops
anything an upstream generator yields after it.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from converter.pipeline.models import ContractArtifact, PendingSpec, ValidationSummary

logger = logging.getLogger(__name__)

TERMINAL_EVENTS = frozenset({"done", "error"})


@dataclass
class PipelineEvent:
    type: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.type in TERMINAL_EVENTS

    def payload(self) -> Dict[str, Any]:
        return {"type": self.type, **self.data}

    def to_sse(self) -> str:
        return f"event: {self.type}\ndata: {json.dumps(self.payload())}\n\n"


# =============================================================================
# CONSTRUCTORS
# =============================================================================


def phase_start(phase: int, message: str) -> PipelineEvent:
    return PipelineEvent(f"phase{phase}_start", {"message": message})


def phase_complete(phase: int, message: str, **extra: Any) -> PipelineEvent:
    return PipelineEvent(f"phase{phase}_complete", {"message": message, **extra})


def transactions_ready(transactions: List[Dict[str, Any]], specs: Sequence[PendingSpec]) -> PipelineEvent:
    return PipelineEvent(
        "transactions_ready",
        {"transactions": transactions, "contractSpecs": [s.to_dict() for s in specs]},
    )


def validation(summary: ValidationSummary, max_attempts: int) -> PipelineEvent:
    return PipelineEvent(
        "validation",
        {
            "passed": summary.passed,
            "attempt": summary.attempt,
            "maxAttempts": max_attempts,
            "validCount": summary.valid_count,
            "failedCount": summary.failed_count,
            "contracts": [r.to_dict() for r in summary.results],
        },
    )


def artifact_ready(artifact: ContractArtifact, ready_so_far: int, total_expected: int) -> PipelineEvent:
    return PipelineEvent(
        "artifact_ready",
        {"contract": artifact.to_dict(), "readySoFar": ready_so_far, "totalExpected": total_expected},
    )


def retrying(attempt: int, failed_names: List[str]) -> PipelineEvent:
    return PipelineEvent(
        "retrying",
        {
            "attempt": attempt,
            "failedNames": list(failed_names),
            "message": f"Fixing {len(failed_names)} contract(s), attempt {attempt}",
        },
    )


def done(
    artifacts: Sequence[ContractArtifact],
    deployment_guide: Optional[Dict[str, Any]],
    session_id: str,
) -> PipelineEvent:
    return PipelineEvent(
        "done",
        {
            "contracts": [a.to_dict() for a in artifacts],
            "deploymentGuide": deployment_guide,
            "sessionId": session_id,
        },
    )


def error(message: str, phase: Optional[int] = None, details: Optional[str] = None) -> PipelineEvent:
    data: Dict[str, Any] = {"message": message}
    if phase is not None:
        data["phase"] = phase
    if details is not None:
        data["details"] = details
    return PipelineEvent("error", data)


# =============================================================================
# FRAMING
# =============================================================================


async def encode_stream(events: AsyncIterator[PipelineEvent]) -> AsyncIterator[str]:
    """Serialize events to SSE frames, stopping after the first terminal event."""
    try:
        async for event in events:
            yield event.to_sse()
            if event.is_terminal:
                break
    finally:
        aclose = getattr(events, "aclose", None)
        if aclose is not None:
            await aclose()
