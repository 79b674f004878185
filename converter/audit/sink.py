# FILE: converter/audit/sink.py
"""
Audit sink interface used by the pipeline.

Every method is fire-and-forget: it must return immediately and never raise into
the conversion stream. The base class records nothing and doubles as the sink
for tests and for deployments without a database.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Sequence

from converter.pipeline.models import ContractArtifact, ConversionSession


class AuditSink:
    def session_started(self, session: ConversionSession, metadata: Dict[str, Any]) -> None:
        pass

    def completion_recorded(
        self,
        session_id: str,
        stage: str,
        attempt: int,
        *,
        system_prompt: str,
        user_message: str,
        result: Any = None,
        error: Optional[str] = None,
    ) -> None:
        pass

    def phase_output(self, session_id: str, phase: int, data: Dict[str, Any], result: Any = None) -> None:
        pass

    def validation_recorded(self, session_id: str, artifact: ContractArtifact, attempt: int) -> None:
        pass

    def artifacts_persisted(
        self,
        session_id: str,
        artifacts: Sequence[ContractArtifact],
        *,
        multi: bool,
        failed: bool = False,
    ) -> None:
        pass

    def session_finished(
        self,
        session_id: str,
        status: str,
        *,
        attempts: int,
        duration_ms: int,
        error: Optional[str] = None,
    ) -> None:
        pass


NullAuditSink = AuditSink
