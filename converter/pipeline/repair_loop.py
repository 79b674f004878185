# FILE: converter/pipeline/repair_loop.py
"""
Phase 4: validate, announce, repair, merge, repeat.

Attempt 1 validates every generated contract. Each later attempt:

    1. builds a RetryBatch from the contracts that still fail
    2. asks the completion oracle to fix only that subset
    3. reconciles renamed contracts, merges with the accepted set
    4. validates only the contracts that came back in the fix batch

A contract that validates is accepted (deep copy) and announced with
artifact_ready exactly once. Accepted contracts are never re-validated,
re-sent or replaced. The loop ends when every contract is accepted or the
attempt budget is spent; the outcome is left on `self.outcome` for the
orchestrator, which owns the terminal event.

A repair call that fails (API error, malformed JSON) still consumes its
attempt: the batch carries over unchanged and the validation event for that
attempt reports the carried failures.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import AsyncIterator, List, Optional

from converter.audit.sink import AuditSink
from converter.errors import CompletionError, PhaseError
from converter.oracles.completion import CompletionOracle
from converter.oracles.validation import CashcNotAvailable, ValidationOracle, enhance_error_message
from converter.pipeline import events, prompts
from converter.pipeline.cancellation import CancellationToken
from converter.pipeline.events import PipelineEvent
from converter.pipeline.merger import merge_fix_batch, reconcile_name_drift
from converter.pipeline.models import ContractArtifact, ConversionSession
from converter.pipeline.normalize import artifacts_from_fix_payload
from converter.pipeline.registry import ArtifactRegistry

logger = logging.getLogger(__name__)


@dataclass
class RepairOutcome:
    complete: bool
    attempts: int
    first_error: Optional[str] = None
    artifacts: List[ContractArtifact] = field(default_factory=list)


class RepairLoop:
    def __init__(
        self,
        completion: CompletionOracle,
        validation: ValidationOracle,
        registry: ArtifactRegistry,
        session: ConversionSession,
        token: CancellationToken,
        audit: AuditSink,
        *,
        knowledge_base: str = "",
        max_attempts: int = 10,
    ):
        self.completion = completion
        self.validation = validation
        self.registry = registry
        self.session = session
        self.token = token
        self.audit = audit
        self.max_attempts = max(1, max_attempts)
        self.fix_system_prompt = prompts.build_fix_system_prompt(knowledge_base)
        self.outcome: Optional[RepairOutcome] = None

    async def run(self, initial: List[ContractArtifact]) -> AsyncIterator[PipelineEvent]:
        attempt = 1
        to_validate = list(initial)

        while True:
            self.session.attempt = attempt
            await self._validate(to_validate, attempt)

            summary = self.registry.summary(attempt)
            yield events.validation(summary, self.max_attempts)

            for artifact in self.registry.unsent_accepted():
                if self.registry.mark_sent(artifact.name):
                    yield events.artifact_ready(artifact, self.registry.sent_count, self.registry.total_expected)

            if self.registry.is_complete():
                logger.info("[repair] All %d contract(s) valid after attempt %d", self.registry.total_expected, attempt)
                self.outcome = RepairOutcome(complete=True, attempts=attempt, artifacts=self.registry.artifacts())
                return

            if attempt >= self.max_attempts:
                logger.warning(
                    "[repair] Giving up after %d attempts, still failing: %s",
                    attempt, self.registry.failed_names(),
                )
                self.outcome = RepairOutcome(
                    complete=False,
                    attempts=attempt,
                    first_error=summary.first_error,
                    artifacts=self.registry.artifacts(),
                )
                return

            batch = self.registry.retry_batch()
            attempt += 1
            yield events.retrying(attempt, batch.names)

            await self.token.checkpoint("repair")
            user_message = prompts.build_repair_message(batch)
            try:
                result = await self.completion.complete(
                    self.fix_system_prompt, prompts.FIX_SCHEMA, user_message, stage="phase4",
                )
                fixed = artifacts_from_fix_payload(result.data, attempt, batch.names)
            except CompletionError as exc:
                logger.warning("[repair] Attempt %d repair call failed: %s", attempt, exc)
                self.audit.completion_recorded(
                    self.session.session_id, "phase4", attempt,
                    system_prompt=self.fix_system_prompt, user_message=user_message, error=str(exc),
                )
                to_validate = []
                continue

            self.audit.completion_recorded(
                self.session.session_id, "phase4", attempt,
                system_prompt=self.fix_system_prompt, user_message=user_message, result=result,
            )

            fixed = reconcile_name_drift(fixed, batch.names, self.registry.accepted_names)
            merged = merge_fix_batch(self.registry.accepted_snapshot(), fixed, self.registry.original_order)
            to_validate = [a for a in merged if not self.registry.is_accepted(a.name)]

    async def _validate(self, artifacts: List[ContractArtifact], attempt: int) -> None:
        for artifact in artifacts:
            await self.token.checkpoint("validate")
            try:
                outcome = await self.validation.validate(artifact.code)
            except CashcNotAvailable as exc:
                logger.error("[repair] Validator unavailable: %s", exc)
                raise PhaseError(4, f"Validation failed: {exc}") from exc
            artifact.attempt = attempt
            artifact.validated = outcome.valid
            if outcome.valid:
                artifact.validation_error = None
                artifact.bytecode_size = outcome.bytecode_size
            else:
                artifact.validation_error = enhance_error_message(outcome.error or "Unknown error", artifact.code)
                artifact.bytecode_size = None
                logger.info("[repair] %s failed (attempt %d): %s", artifact.name, attempt, outcome.error)
            self.audit.validation_recorded(self.session.session_id, artifact, attempt)
        self.registry.record(artifacts)
