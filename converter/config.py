# FILE: converter/config.py
"""
Centralized configuration for the conversion service.

Each pipeline phase has its own model configured via env vars:

    {STAGE}_MODEL              - Anthropic model ID
    {STAGE}_MAX_OUTPUT_TOKENS  - token limit for this stage
    {STAGE}_TIMEOUT_SECONDS    - per-request timeout for this stage

Stages: PHASE1 (domain extraction), PHASE2 (architecture design),
PHASE3 (code generation), PHASE4 (validation + repair).

Example .env:
    ANTHROPIC_API_KEY=sk-ant-...
    PHASE3_MODEL=claude-sonnet-4-5-20250929
    PHASE3_MAX_OUTPUT_TOKENS=21333
    PHASE4_MAX_RETRIES=10
    MAX_CONCURRENT_CONVERSIONS=100
"""

import os
import logging
from dataclasses import dataclass
from typing import Dict, List, Tuple

logger = logging.getLogger(__name__)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("[config] Invalid int for %s=%r, using %d", name, raw, default)
        return default


# =============================================================================
# STAGE CONFIGURATION
# =============================================================================

@dataclass
class StageConfig:
    """Configuration for a pipeline stage."""
    provider: str
    model: str
    stage_name: str
    max_output_tokens: int = 21000
    timeout_seconds: int = 300

    def __str__(self) -> str:
        return f"{self.stage_name}: {self.provider}/{self.model}"

    def to_dict(self) -> dict:
        return {
            "stage": self.stage_name,
            "provider": self.provider,
            "model": self.model,
            "max_output_tokens": self.max_output_tokens,
            "timeout_seconds": self.timeout_seconds,
        }


DEFAULT_MODEL = os.getenv("ANTHROPIC_DEFAULT_MODEL", "claude-sonnet-4-5-20250929")

# Default (model, max_tokens, timeout) per stage
# max_tokens above 21333 requires streaming mode on the Messages API
STAGE_DEFAULTS: Dict[str, Tuple[str, int, int]] = {
    "PHASE1": (DEFAULT_MODEL, 21000, 300),
    "PHASE2": (DEFAULT_MODEL, 21000, 300),
    "PHASE3": (DEFAULT_MODEL, 21333, 600),
    "PHASE4": (DEFAULT_MODEL, 21000, 300),
}


def get_stage_config(stage: str) -> StageConfig:
    """
    Get model configuration for a pipeline stage.

    Reads {STAGE}_MODEL, {STAGE}_MAX_OUTPUT_TOKENS, {STAGE}_TIMEOUT_SECONDS and
    falls back to STAGE_DEFAULTS.

    Example:
        >>> get_stage_config("phase4").max_output_tokens
        21000
    """
    stage_upper = stage.upper().replace("-", "_").replace(" ", "_")
    default_model, default_tokens, default_timeout = STAGE_DEFAULTS.get(
        stage_upper, (DEFAULT_MODEL, 21000, 300)
    )

    model = os.getenv(f"{stage_upper}_MODEL", "").strip() or default_model
    max_tokens = _env_int(f"{stage_upper}_MAX_OUTPUT_TOKENS", default_tokens)
    timeout = _env_int(f"{stage_upper}_TIMEOUT_SECONDS", default_timeout)

    return StageConfig(
        provider="anthropic",
        model=model,
        stage_name=stage_upper,
        max_output_tokens=max_tokens,
        timeout_seconds=timeout,
    )


# =============================================================================
# REPAIR LOOP
# =============================================================================

# Total generation attempts including the initial one
MAX_ATTEMPTS: int = _env_int("PHASE4_MAX_RETRIES", 10)


# =============================================================================
# INPUT LIMITS
# =============================================================================

MIN_INPUT_CHARS: int = _env_int("MIN_INPUT_CHARS", 10)
MAX_INPUT_CHARS: int = _env_int("MAX_INPUT_CHARS", 50000)


# =============================================================================
# SERVER
# =============================================================================

SERVER_HOST: str = os.getenv("HOST", "localhost")
SERVER_PORT: int = _env_int("PORT", 3001)

MAX_CONCURRENT_CONVERSIONS: int = _env_int("MAX_CONCURRENT_CONVERSIONS", 100)

# Wall-clock budget for one whole conversion session
SESSION_TIMEOUT_SECONDS: int = _env_int("SESSION_TIMEOUT_SECONDS", 600)

# Seconds suggested to clients rejected by admission control
BUSY_RETRY_AFTER_SECONDS: int = _env_int("BUSY_RETRY_AFTER_SECONDS", 5)

CORS_ORIGINS: List[str] = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "http://localhost:5173,http://127.0.0.1:5173").split(",")
    if o.strip()
]

# History/stats endpoints are restricted to these client addresses
ALLOWED_HISTORY_IPS: List[str] = [
    ip.strip()
    for ip in os.getenv("ALLOWED_HISTORY_IPS", "127.0.0.1,::1,::ffff:127.0.0.1").split(",")
    if ip.strip()
]


# =============================================================================
# RATE LIMITING
# =============================================================================

# Peers whose X-Forwarded-For / X-Real-IP headers are honoured. Empty means the
# rate-limit key is always the socket peer address.
TRUSTED_PROXIES: List[str] = [
    p.strip()
    for p in os.getenv("TRUSTED_PROXIES", "").split(",")
    if p.strip()
]

RATE_LIMIT_WINDOW_SECONDS: int = _env_int("RATE_LIMIT_WINDOW_SECONDS", 300)
RATE_LIMIT_MAX_REQUESTS: int = _env_int("RATE_LIMIT_MAX_REQUESTS", 20)


# =============================================================================
# VALIDATION ORACLE (cashc)
# =============================================================================

CASHC_BINARY: str = os.getenv("CASHC_BINARY", "cashc")
CASHC_TIMEOUT_SECONDS: int = _env_int("CASHC_TIMEOUT_SECONDS", 30)


# =============================================================================
# KNOWLEDGE BASE
# =============================================================================

KNOWLEDGE_BASE_PATHS: List[str] = [
    p.strip()
    for p in os.getenv(
        "KNOWLEDGE_BASE_PATHS",
        "knowledge_base/language-reference.md,knowledge_base/multi-contract-architecture.md",
    ).split(",")
    if p.strip()
]
