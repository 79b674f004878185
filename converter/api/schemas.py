# FILE: converter/api/schemas.py
"""
Request/response schemas for the conversion API.

ConvertRequest accepts any JSON type for `contract` so that a wrong type is
reported through validate_source() as a 400 with the service's own error
shape, instead of FastAPI's generic 422.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from converter.config import MAX_INPUT_CHARS, MIN_INPUT_CHARS
from converter.errors import InputRejected


class ConvertRequest(BaseModel):
    contract: Any = None


class ClientErrorReport(BaseModel):
    message: str = ""
    stack: Optional[str] = None
    url: Optional[str] = None
    userAgent: Optional[str] = None
    context: Dict[str, Any] = Field(default_factory=dict)


class HealthResponse(BaseModel):
    status: str = "ok"
    service: str = "converter"
    activeConversions: int = 0


class ConversionListResponse(BaseModel):
    conversions: List[Dict[str, Any]]
    total: int
    limit: int
    offset: int


def validate_source(contract: Any) -> str:
    """Check a submitted Solidity source. Returns it unchanged or raises InputRejected."""
    if not isinstance(contract, str):
        raise InputRejected("Contract must be a string")
    if not contract.strip():
        raise InputRejected("Contract cannot be empty")
    if len(contract) < MIN_INPUT_CHARS:
        raise InputRejected(f"Contract too short (minimum {MIN_INPUT_CHARS} characters)")
    if len(contract) > MAX_INPUT_CHARS:
        raise InputRejected(
            f"Contract too large (maximum {MAX_INPUT_CHARS} characters, got {len(contract)})",
            status_code=413,
            error="Contract too large",
        )
    return contract
