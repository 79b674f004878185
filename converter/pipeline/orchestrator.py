# FILE: converter/pipeline/orchestrator.py
"""
PhaseOrchestrator: drives one conversion session end to end.

    phase1 -> phase2 -> phase3 -> phase4 (validate/repair) -> complete | error

run() is an async generator of PipelineEvents. It ends with exactly one
terminal event (done | error) unless the client cancels, in which case it
stops at the next checkpoint without emitting anything else.

Error mapping at the top level:

    PhaseError           -> error {message, phase}
    MergeIntegrityError  -> error {message: "Internal merge error", phase: 4}
    SessionTimedOut      -> error {message, details: "timeout"}
    SessionCancelled     -> nothing (audited as cancelled)
    anything else        -> error {message: "Internal server error", details}

All per-session state (registry, token, session) is created inside run(); the
orchestrator instance itself holds only collaborators and can serve many
sessions concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Dict, List, Optional

from converter.audit.sink import AuditSink
from converter.config import MAX_ATTEMPTS
from converter.errors import MergeIntegrityError, PhaseError, SessionCancelled, SessionTimedOut
from converter.oracles.completion import CompletionOracle
from converter.oracles.validation import ValidationOracle
from converter.pipeline import events, phases
from converter.pipeline.cancellation import CancellationToken
from converter.pipeline.events import PipelineEvent
from converter.pipeline.models import ConversionSession, PendingSpec
from converter.pipeline.normalize import (
    apply_name_mapping_to_specs,
    apply_name_mapping_to_templates,
    build_name_map,
    pending_specs_from_architecture,
)
from converter.pipeline.registry import ArtifactRegistry
from converter.pipeline.repair_loop import RepairLoop

logger = logging.getLogger(__name__)

PHASE4_START_MESSAGE = "Validating contracts... You'll be redirected to results as soon as we have something to show."


def _max_attempts_message(max_attempts: int) -> str:
    return (
        f"Contract validation failed after {max_attempts} attempts. "
        "This is not a deterministic system, so just try again - it's likely to work!"
    )


class PhaseOrchestrator:
    def __init__(
        self,
        completion: CompletionOracle,
        validation: ValidationOracle,
        *,
        audit: Optional[AuditSink] = None,
        knowledge_base: str = "",
        max_attempts: int = MAX_ATTEMPTS,
    ):
        self.completion = completion
        self.validation = validation
        self.audit = audit or AuditSink()
        self.knowledge_base = knowledge_base
        self.max_attempts = max_attempts

    async def run(
        self,
        source: str,
        *,
        token: Optional[CancellationToken] = None,
        metadata: Optional[Dict[str, Any]] = None,
        session: Optional[ConversionSession] = None,
    ) -> AsyncIterator[PipelineEvent]:
        token = token or CancellationToken()
        session = session or ConversionSession.create(source)
        registry = ArtifactRegistry()
        started = time.monotonic()
        status = "error"

        self.audit.session_started(session, metadata or {})
        logger.info("[orchestrator] Session %s started (%d chars)", session.session_id, len(source))

        stream = self._run_phases(session, registry, token)
        try:
            async for event in stream:
                await token.checkpoint("emit")
                if event.type == "done":
                    session.complete()
                    status = "success"
                elif event.type == "error":
                    session.fail(event.data.get("message", ""))
                    status = "failed"
                yield event
                if event.is_terminal:
                    return

        except (GeneratorExit, asyncio.CancelledError):
            if status not in ("success", "failed"):
                status = "cancelled"
            raise

        except SessionCancelled:
            status = "cancelled"
            logger.info("[orchestrator] Session %s cancelled in phase %d", session.session_id, session.phase)
            return

        except SessionTimedOut:
            status = "timeout"
            session.fail("timeout")
            yield events.error("Conversion timed out", phase=session.phase or None, details="timeout")

        except PhaseError as exc:
            session.fail(exc.message)
            yield events.error(exc.message, phase=exc.phase)

        except MergeIntegrityError as exc:
            logger.error("[orchestrator] Merge integrity failure in %s: %s", session.session_id, exc)
            session.fail(str(exc))
            yield events.error("Internal merge error", phase=4, details=str(exc))

        except Exception as exc:
            logger.exception("[orchestrator] Session %s failed: %s", session.session_id, exc)
            session.fail(str(exc))
            yield events.error("Internal server error", details=str(exc))

        finally:
            await stream.aclose()
            self.audit.session_finished(
                session.session_id,
                status,
                attempts=session.attempt,
                duration_ms=int((time.monotonic() - started) * 1000),
                error=session.error,
            )

    async def _run_phases(
        self,
        session: ConversionSession,
        registry: ArtifactRegistry,
        token: CancellationToken,
    ) -> AsyncIterator[PipelineEvent]:
        sid = session.session_id

        # Phase 1: domain extraction
        session.enter_phase(1)
        yield events.phase_start(1, "Extracting domain model...")
        await token.checkpoint("phase1")
        p1 = await phases.run_domain_extraction(self.completion, self.audit, sid, session.source)
        domain_model = p1.data
        yield events.phase_complete(
            1,
            "Domain extraction complete",
            domain=domain_model["domain"],
            entities=len(domain_model["entities"]),
            transitions=len(domain_model["transitions"]),
        )

        # Phase 2: UTXO architecture
        session.enter_phase(2)
        yield events.phase_start(2, "Designing UTXO architecture...")
        await token.checkpoint("phase2")
        p2 = await phases.run_architecture_design(self.completion, self.audit, sid, domain_model)
        architecture = p2.data
        patterns = [
            (p.get("name") if isinstance(p, dict) else None) or "unnamed"
            for p in architecture.get("patterns") or []
        ]
        yield events.phase_complete(
            2,
            "Architecture design complete",
            contracts=len(architecture["contracts"]),
            patterns=patterns,
            durationMs=p2.duration_ms,
        )

        templates: List[Dict[str, Any]] = list(architecture["transactionTemplates"])
        specs: List[PendingSpec] = pending_specs_from_architecture(architecture)
        if templates or specs:
            yield events.transactions_ready(templates, specs)

        # Phase 3: code generation (attempt 1)
        session.enter_phase(3)
        yield events.phase_start(3, "Generating CashScript...")
        await token.checkpoint("phase3")
        output = await phases.run_code_generation(
            self.completion, self.audit, sid, domain_model, architecture, self.knowledge_base,
        )
        initial = registry.initialize(output)
        yield events.phase_complete(3, "Code generation complete", contracts=registry.original_order)

        # Phase 4: validation + repair
        session.enter_phase(4)
        yield events.phase_start(4, PHASE4_START_MESSAGE)

        loop = RepairLoop(
            self.completion,
            self.validation,
            registry,
            session,
            token,
            self.audit,
            knowledge_base=self.knowledge_base,
            max_attempts=self.max_attempts,
        )
        async for event in loop.run(initial):
            yield event

        outcome = loop.outcome
        if outcome is None or not outcome.complete:
            self.audit.artifacts_persisted(sid, registry.artifacts(), multi=registry.is_multi, failed=True)
            first_error = outcome.first_error if outcome else None
            yield events.error(_max_attempts_message(self.max_attempts), phase=4, details=first_error)
            return

        self.audit.artifacts_persisted(sid, outcome.artifacts, multi=registry.is_multi)
        yield events.phase_complete(4, "Validation complete")

        if templates:
            arch_names = [s.name for s in specs]
            name_map = build_name_map(arch_names, [a.name for a in outcome.artifacts])
            if name_map:
                yield events.transactions_ready(
                    apply_name_mapping_to_templates(templates, name_map),
                    apply_name_mapping_to_specs(specs, name_map),
                )

        yield events.done(outcome.artifacts, registry.deployment_guide, sid)
