# FILE: main.py
"""
Solidity -> CashScript Converter - FastAPI Application
Version: 0.4.0

Pipeline:
- Phase 1: domain extraction (Anthropic)
- Phase 2: UTXO architecture design (Anthropic)
- Phase 3: CashScript generation (Anthropic)
- Phase 4: cashc validation + artifact-scoped repair loop

Endpoints:
- POST /api/convert-stream  (SSE)
- POST /api/log-error
- GET  /health
- GET  /api/conversions, /api/conversions/{id}, /api/stats  (localhost only)

v0.4.0 Changes:
- Repair rounds only resend the failing contracts; accepted contracts are frozen
- Admission control (503 + Retry-After) and per-IP rate limiting (429)
- Audit writes moved off the stream path
"""
import os
import logging
import shutil

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from dotenv import load_dotenv

# Load .env FIRST before any other imports that might need env vars
load_dotenv()

from converter import __version__
from converter.config import CASHC_BINARY, CORS_ORIGINS, KNOWLEDGE_BASE_PATHS, SERVER_HOST, SERVER_PORT, get_stage_config
from converter.db import init_db
from converter.api.router import router as conversion_router
from converter.audit.router import router as history_router
from converter.audit.service import DatabaseAuditSink
from converter.oracles import AnthropicCompletionOracle, CashcValidationOracle
from converter.pipeline.prompts import load_knowledge_base

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Solidity to CashScript Converter",
    version=__version__,
    description="Multi-phase Solidity to CashScript conversion with streamed progress",
)

# ====== CORS ======

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ====== STARTUP ======

@app.on_event("startup")
def on_startup():
    init_db()

    print("[startup] Checking environment variables...")
    if os.getenv("ANTHROPIC_API_KEY"):
        print("[startup] ANTHROPIC_API_KEY: [OK] set")
    else:
        print("[startup] ANTHROPIC_API_KEY: [X] NOT SET - every conversion will fail in phase 1")

    if shutil.which(CASHC_BINARY):
        print(f"[startup] cashc: [OK] {CASHC_BINARY}")
    else:
        print(f"[startup] cashc: [X] {CASHC_BINARY} NOT FOUND - every conversion will fail in phase 4")

    for stage in ("phase1", "phase2", "phase3", "phase4"):
        print(f"[startup] {get_stage_config(stage)}")

    app.state.knowledge_base = load_knowledge_base(KNOWLEDGE_BASE_PATHS)
    if not app.state.knowledge_base:
        print("[startup] Knowledge base: [X] EMPTY - generation prompts carry no language reference")

    app.state.completion_oracle = AnthropicCompletionOracle()
    app.state.validation_oracle = CashcValidationOracle()
    app.state.audit_sink = DatabaseAuditSink()


@app.on_event("shutdown")
def on_shutdown():
    sink = getattr(app.state, "audit_sink", None)
    if sink is not None:
        sink.close()


# ====== ROUTERS ======

app.include_router(conversion_router)
app.include_router(history_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=SERVER_HOST, port=SERVER_PORT, reload=False)
