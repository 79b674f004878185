# FILE: converter/api/router.py
"""
Conversion API.

Endpoints:
    POST /api/convert-stream   Solidity in, SSE conversion events out
    POST /api/log-error        client-side error reports (logged only)
    GET  /health               liveness + active conversion count

Rejections happen before the stream opens and never reach an oracle:

    400  invalid input          {"error": "Invalid input", "message"}
    413  source too large       {"error": "Contract too large", "message"}
    429  rate limited           {"error", "message", "retryAfter"} + Retry-After
    503  at concurrency ceiling {"error", "message", "retryAfter"} + Retry-After
"""

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse
from starlette.background import BackgroundTask

from converter.api.admission import ConcurrencyLimiter, RateLimiter, get_limiter, get_rate_limiter
from converter.api.schemas import ClientErrorReport, ConvertRequest, HealthResponse, validate_source
from converter.config import SESSION_TIMEOUT_SECONDS, TRUSTED_PROXIES
from converter.errors import AdmissionRejected, InputRejected, RateLimited
from converter.pipeline.cancellation import CancellationToken
from converter.pipeline.events import encode_stream
from converter.pipeline.models import ConversionSession
from converter.pipeline.orchestrator import PhaseOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter(tags=["conversion"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_orchestrator(request: Request) -> PhaseOrchestrator:
    """Build a PhaseOrchestrator from the collaborators set up at startup."""
    state = request.app.state
    return PhaseOrchestrator(
        state.completion_oracle,
        state.validation_oracle,
        audit=getattr(state, "audit_sink", None),
        knowledge_base=getattr(state, "knowledge_base", ""),
    )


def client_ip(request: Request, trusted_proxies: Optional[List[str]] = None) -> str:
    """
    Address used as the rate-limit key.

    Proxy headers are only read when the socket peer is a trusted proxy. The
    X-Forwarded-For chain is walked right to left and the first hop that is
    not itself a trusted proxy is the client.
    """
    trusted = TRUSTED_PROXIES if trusted_proxies is None else trusted_proxies
    peer = request.client.host if request.client else "unknown"
    if peer not in trusted:
        return peer

    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        hops = [h.strip() for h in forwarded.split(",") if h.strip()]
        for hop in reversed(hops):
            if hop not in trusted:
                return hop
        if hops:
            return hops[0]
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()
    return peer


def request_metadata(request: Request) -> Dict[str, Any]:
    return {
        "ip_address": client_ip(request),
        "user_agent": request.headers.get("user-agent"),
        "session_id": request.headers.get("x-session-id") or request.cookies.get("session_id"),
    }


def _rejection(status_code: int, error: str, message: str, retry_after: Optional[int] = None) -> JSONResponse:
    content: Dict[str, Any] = {"error": error, "message": message}
    headers = None
    if retry_after is not None:
        content["retryAfter"] = retry_after
        headers = {"Retry-After": str(retry_after)}
    return JSONResponse(status_code=status_code, content=content, headers=headers)


# =============================================================================
# ENDPOINTS
# =============================================================================


@router.post("/api/convert-stream")
async def convert_stream(
    request: Request,
    orchestrator: PhaseOrchestrator = Depends(get_orchestrator),
    limiter: ConcurrencyLimiter = Depends(get_limiter),
    rate_limiter: RateLimiter = Depends(get_rate_limiter),
):
    """Run one conversion and stream its events as SSE."""
    try:
        payload = await request.json()
    except ValueError:
        payload = None
    body = ConvertRequest(contract=payload.get("contract") if isinstance(payload, dict) else None)
    metadata = request_metadata(request)

    try:
        rate_limiter.check(metadata["ip_address"])
        source = validate_source(body.contract)
        lease = limiter.acquire()
    except RateLimited as exc:
        return _rejection(429, "Too many requests", str(exc), exc.retry_after)
    except InputRejected as exc:
        logger.info("[convert] Rejected input from %s: %s", metadata["ip_address"], exc.message)
        return _rejection(exc.status_code, exc.error, exc.message)
    except AdmissionRejected as exc:
        return _rejection(
            503,
            "Server busy",
            f"{exc} in progress. Please retry shortly.",
            exc.retry_after,
        )

    token = CancellationToken(request.is_disconnected, timeout_seconds=SESSION_TIMEOUT_SECONDS)
    session = ConversionSession.create(source, client_session=metadata["session_id"])
    logger.info("[convert] Session %s from %s (%d chars)", session.session_id, metadata["ip_address"], len(source))

    async def event_stream():
        with lease:
            events = orchestrator.run(source, token=token, metadata=metadata, session=session)
            async for frame in encode_stream(events):
                yield frame

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
        background=BackgroundTask(lease.release),
    )


@router.post("/api/log-error")
async def log_client_error(report: ClientErrorReport, request: Request):
    logger.error(
        "[client-error] %s | url=%s ua=%s ip=%s\n%s",
        report.message,
        report.url,
        report.userAgent,
        client_ip(request),
        report.stack or "",
    )
    return {"logged": True}


@router.get("/health", response_model=HealthResponse)
def health(limiter: ConcurrencyLimiter = Depends(get_limiter)):
    return HealthResponse(activeConversions=limiter.active)
