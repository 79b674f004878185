# FILE: converter/audit/service.py
"""
Conversion audit - CRUD and the database-backed AuditSink.

The plain functions take a SQLAlchemy Session (same shape as the FastAPI
`get_db` dependency) and are used both by the history router and by
DatabaseAuditSink.

DatabaseAuditSink never blocks the conversion stream: every write is handed to
a single worker thread through loop.run_in_executor(), which also keeps the
writes for one process in submission order (parent row before child rows).
Write failures are logged and dropped.
"""

from __future__ import annotations

import asyncio
import copy
import hashlib
import json
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from converter.audit import models
from converter.audit.sink import AuditSink
from converter.pipeline.models import ContractArtifact, ConversionSession

logger = logging.getLogger(__name__)


def code_hash(code: str) -> str:
    return hashlib.sha256((code or "").encode("utf-8")).hexdigest()


# =============================================================================
# WRITES
# =============================================================================


def record_conversion_start(
    db: Session,
    session_id: str,
    source: str,
    metadata: Optional[Dict[str, Any]] = None,
) -> models.Conversion:
    metadata = metadata or {}
    row = models.Conversion(
        id=session_id,
        client_session=metadata.get("session_id"),
        ip_address=metadata.get("ip_address"),
        user_agent=(metadata.get("user_agent") or "")[:512] or None,
        source_code=source,
        source_hash=code_hash(source),
        source_lines=len(source.split("\n")),
    )
    db.add(row)
    db.commit()
    return row


def record_api_attempt(
    db: Session,
    session_id: str,
    stage: str,
    attempt_number: int,
    *,
    system_prompt: Optional[str] = None,
    user_message: Optional[str] = None,
    result: Any = None,
    error: Optional[str] = None,
) -> models.ApiAttempt:
    row = models.ApiAttempt(
        conversion_id=session_id,
        stage=stage,
        attempt_number=attempt_number,
        success=result is not None and error is None,
        system_prompt=system_prompt,
        user_message=user_message,
        error_message=error,
    )
    if result is not None:
        row.model = result.model
        row.response_time_ms = result.duration_ms
        row.input_tokens = result.usage.input_tokens
        row.output_tokens = result.usage.output_tokens
        row.cache_read_tokens = result.usage.cache_read_tokens
        row.cache_write_tokens = result.usage.cache_write_tokens
        row.response_json = json.dumps(result.data)
    db.add(row)
    db.commit()
    return row


def record_phase_output(
    db: Session,
    session_id: str,
    phase: int,
    data: Dict[str, Any],
    result: Any = None,
) -> None:
    model = getattr(result, "model", None)
    duration_ms = getattr(result, "duration_ms", None)
    if phase == 1:
        db.add(models.SemanticAnalysis(
            conversion_id=session_id,
            domain=str(data.get("domain") or "")[:255],
            analysis_json=data,
            model=model,
            duration_ms=duration_ms,
        ))
    elif phase == 2:
        db.add(models.ArchitectureDesign(
            conversion_id=session_id,
            contract_count=len(data.get("contracts") or []),
            template_count=len(data.get("transactionTemplates") or []),
            architecture_json=data,
            model=model,
            duration_ms=duration_ms,
        ))
    else:
        return
    db.commit()


def record_validation(db: Session, session_id: str, artifact: ContractArtifact, attempt: int) -> None:
    db.add(models.ValidationAttempt(
        conversion_id=session_id,
        contract_name=artifact.name,
        attempt_number=attempt,
        passed=artifact.validated,
        validation_error=artifact.validation_error,
        code_hash=code_hash(artifact.code),
        bytecode_size=artifact.bytecode_size,
    ))
    db.commit()


def persist_contracts(
    db: Session,
    session_id: str,
    artifacts: Sequence[ContractArtifact],
    *,
    multi: bool,
    failed: bool = False,
) -> int:
    conversion = db.query(models.Conversion).filter(models.Conversion.id == session_id).first()
    if conversion is not None:
        conversion.is_multi_contract = multi
        conversion.contract_count = len(artifacts)

    for artifact in artifacts:
        db.add(models.ContractRecord(
            conversion_id=session_id,
            contract_uuid=str(uuid.uuid4()),
            name=artifact.name,
            role=artifact.role,
            purpose=artifact.purpose,
            deployment_order=artifact.deployment_order,
            cashscript_code=artifact.code,
            code_hash=code_hash(artifact.code),
            line_count=len(artifact.code.split("\n")),
            bytecode_size=artifact.bytecode_size,
            is_validated=artifact.validated,
            validation_error=artifact.validation_error,
            attempt=artifact.attempt,
        ))
    db.commit()
    if failed:
        logger.info("[audit] Persisted %d contracts with failures for debugging", len(artifacts))
    return len(artifacts)


def record_conversion_end(
    db: Session,
    session_id: str,
    status: str,
    *,
    attempts: int,
    duration_ms: int,
    error: Optional[str] = None,
) -> Optional[models.Conversion]:
    conversion = db.query(models.Conversion).filter(models.Conversion.id == session_id).first()
    if conversion is None:
        logger.warning("[audit] No conversion row for session %s", session_id)
        return None
    conversion.final_status = status
    conversion.total_attempts = attempts
    conversion.duration_ms = duration_ms
    conversion.error_message = error
    conversion.completed_at = datetime.utcnow()
    db.commit()
    return conversion


# =============================================================================
# READS (history endpoints)
# =============================================================================


def list_conversions(db: Session, limit: int = 50, offset: int = 0) -> List[models.Conversion]:
    return (
        db.query(models.Conversion)
        .order_by(models.Conversion.created_at.desc())
        .offset(offset)
        .limit(limit)
        .all()
    )


def count_conversions(db: Session) -> int:
    return db.query(func.count(models.Conversion.id)).scalar() or 0


def get_conversion(db: Session, session_id: str) -> Optional[models.Conversion]:
    return db.query(models.Conversion).filter(models.Conversion.id == session_id).first()


def get_stats(db: Session) -> Dict[str, Any]:
    total = count_conversions(db)
    by_status = dict(
        db.query(models.Conversion.final_status, func.count(models.Conversion.id))
        .group_by(models.Conversion.final_status)
        .all()
    )
    avg_duration = (
        db.query(func.avg(models.Conversion.duration_ms))
        .filter(models.Conversion.final_status == "success")
        .scalar()
    )
    avg_attempts = (
        db.query(func.avg(models.Conversion.total_attempts))
        .filter(models.Conversion.final_status == "success")
        .scalar()
    )
    contracts = db.query(func.count(models.ContractRecord.id)).scalar() or 0
    validated = (
        db.query(func.count(models.ContractRecord.id))
        .filter(models.ContractRecord.is_validated.is_(True))
        .scalar()
        or 0
    )
    successes = by_status.get("success", 0)
    return {
        "totalConversions": total,
        "byStatus": {str(k or "running"): v for k, v in by_status.items()},
        "successRate": round(successes / total, 4) if total else 0.0,
        "avgDurationMs": int(avg_duration) if avg_duration is not None else None,
        "avgAttempts": round(float(avg_attempts), 2) if avg_attempts is not None else None,
        "totalContracts": contracts,
        "validatedContracts": validated,
    }


def conversion_to_dict(conversion: models.Conversion, include_contracts: bool = False) -> Dict[str, Any]:
    data = {
        "id": conversion.id,
        "createdAt": conversion.created_at.isoformat() if conversion.created_at else None,
        "completedAt": conversion.completed_at.isoformat() if conversion.completed_at else None,
        "durationMs": conversion.duration_ms,
        "finalStatus": conversion.final_status,
        "errorMessage": conversion.error_message,
        "totalAttempts": conversion.total_attempts,
        "isMultiContract": conversion.is_multi_contract,
        "contractCount": conversion.contract_count,
        "sourceLines": conversion.source_lines,
    }
    if include_contracts:
        data["sourceCode"] = conversion.source_code
        data["contracts"] = [
            {
                "name": c.name,
                "role": c.role,
                "purpose": c.purpose,
                "code": c.cashscript_code,
                "validated": c.is_validated,
                "validationError": c.validation_error,
                "bytecodeSize": c.bytecode_size,
                "attempt": c.attempt,
            }
            for c in sorted(conversion.contracts, key=lambda c: c.id)
        ]
    return data


# =============================================================================
# SINK
# =============================================================================


class DatabaseAuditSink(AuditSink):
    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        if session_factory is None:
            from converter.db import SessionLocal

            session_factory = SessionLocal
        self._session_factory = session_factory
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="audit")

    def close(self) -> None:
        """Wait for queued writes and stop the worker."""
        self._executor.shutdown(wait=True)

    def _write(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        db = self._session_factory()
        try:
            fn(db, *args, **kwargs)
        except Exception as exc:
            db.rollback()
            logger.error("[audit] %s failed: %s", fn.__name__, exc)
        finally:
            db.close()

    def _submit(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._executor.submit(self._write, fn, *args, **kwargs).result()
            return
        loop.run_in_executor(self._executor, lambda: self._write(fn, *args, **kwargs))

    def session_started(self, session: ConversionSession, metadata: Dict[str, Any]) -> None:
        self._submit(record_conversion_start, session.session_id, session.source, metadata)

    def completion_recorded(self, session_id, stage, attempt, *, system_prompt, user_message, result=None, error=None):
        self._submit(
            record_api_attempt, session_id, stage, attempt,
            system_prompt=system_prompt, user_message=user_message, result=result, error=error,
        )

    def phase_output(self, session_id, phase, data, result=None):
        self._submit(record_phase_output, session_id, phase, data, result)

    def validation_recorded(self, session_id, artifact, attempt):
        self._submit(record_validation, session_id, copy.deepcopy(artifact), attempt)

    def artifacts_persisted(self, session_id, artifacts, *, multi, failed=False):
        self._submit(persist_contracts, session_id, list(artifacts), multi=multi, failed=failed)

    def session_finished(self, session_id, status, *, attempts, duration_ms, error=None):
        self._submit(
            record_conversion_end, session_id, status,
            attempts=attempts, duration_ms=duration_ms, error=error,
        )
