# FILE: converter/pipeline/phases.py
"""
Phases 1-3: one completion call each, phase-fatal on failure.

Each runner validates the shape of the oracle answer, records the call with
the audit sink, and returns the parsed payload. Any CompletionError or shape
problem becomes PhaseError(phase, message) for the orchestrator to report.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from converter.audit.sink import AuditSink
from converter.errors import CompletionError, PhaseError
from converter.oracles.completion import CompletionOracle, CompletionResult
from converter.pipeline import prompts
from converter.pipeline.models import GenerationOutput
from converter.pipeline.normalize import classify_generation_payload

logger = logging.getLogger(__name__)


@dataclass
class PhaseResult:
    data: Dict[str, Any]
    duration_ms: int = 0
    completion: Optional[CompletionResult] = None


async def _call(
    oracle: CompletionOracle,
    audit: AuditSink,
    session_id: str,
    phase: int,
    system_prompt: str,
    schema: Dict[str, Any],
    user_message: str,
) -> CompletionResult:
    stage = f"phase{phase}"
    try:
        result = await oracle.complete(system_prompt, schema, user_message, stage=stage)
    except CompletionError as exc:
        logger.warning("[phase%d] Completion failed: %s", phase, exc)
        audit.completion_recorded(
            session_id, stage, 1,
            system_prompt=system_prompt, user_message=user_message, error=str(exc),
        )
        raise PhaseError(phase, f"Phase {phase} failed: {exc}") from exc

    audit.completion_recorded(
        session_id, stage, 1,
        system_prompt=system_prompt, user_message=user_message, result=result,
    )
    return result


async def run_domain_extraction(
    oracle: CompletionOracle,
    audit: AuditSink,
    session_id: str,
    source: str,
) -> PhaseResult:
    result = await _call(
        oracle, audit, session_id, 1,
        prompts.DOMAIN_SYSTEM_PROMPT, prompts.DOMAIN_SCHEMA, prompts.build_domain_user_message(source),
    )
    data = result.data
    if not isinstance(data.get("domain"), str) or not data["domain"].strip():
        raise PhaseError(1, "Domain model is missing 'domain'")
    for key in ("entities", "transitions"):
        if not isinstance(data.get(key), list):
            raise PhaseError(1, f"Domain model is missing '{key}' list")

    audit.phase_output(session_id, 1, data, result)
    logger.info(
        "[phase1] domain=%r entities=%d transitions=%d",
        data["domain"], len(data["entities"]), len(data["transitions"]),
    )
    return PhaseResult(data=data, duration_ms=result.duration_ms, completion=result)


async def run_architecture_design(
    oracle: CompletionOracle,
    audit: AuditSink,
    session_id: str,
    domain_model: Dict[str, Any],
) -> PhaseResult:
    result = await _call(
        oracle, audit, session_id, 2,
        prompts.ARCHITECTURE_SYSTEM_PROMPT,
        prompts.ARCHITECTURE_SCHEMA,
        prompts.build_architecture_user_message(domain_model),
    )
    data = result.data
    for key in ("contracts", "transactionTemplates"):
        if not isinstance(data.get(key), list):
            raise PhaseError(2, f"Architecture is missing '{key}' list")

    audit.phase_output(session_id, 2, data, result)
    logger.info(
        "[phase2] contracts=%d templates=%d",
        len(data["contracts"]), len(data["transactionTemplates"]),
    )
    return PhaseResult(data=data, duration_ms=result.duration_ms, completion=result)


async def run_code_generation(
    oracle: CompletionOracle,
    audit: AuditSink,
    session_id: str,
    domain_model: Dict[str, Any],
    architecture: Dict[str, Any],
    knowledge_base: str,
) -> GenerationOutput:
    result = await _call(
        oracle, audit, session_id, 3,
        prompts.build_generation_system_prompt(knowledge_base),
        prompts.GENERATION_SCHEMA,
        prompts.build_generation_user_message(domain_model, architecture),
    )
    try:
        output = classify_generation_payload(result.data, attempt=1)
    except CompletionError as exc:
        raise PhaseError(3, str(exc)) from exc

    if not output.artifacts:
        raise PhaseError(3, "No contracts generated")

    logger.info("[phase3] %s mode, %d contract(s)", output.kind, len(output.artifacts))
    return output
