# FILE: converter/oracles/validation.py
"""
Validation oracle: compile one CashScript contract.

CashcValidationOracle shells out to the `cashc` compiler:

    cashc <tmpdir>/Contract.cash   -> artifact JSON on stdout, exit 0
                                   -> diagnostics on stderr, exit != 0

The oracle reports the raw compiler message. enhance_error_message() adds the
three surrounding code lines to messages that point at "Line N, Column M"; the
repair loop applies it before the error reaches a repair prompt.
"""

from __future__ import annotations

import asyncio
import json
import logging
import re
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from converter.config import CASHC_BINARY, CASHC_TIMEOUT_SECONDS
from converter.errors import ConverterError

logger = logging.getLogger(__name__)

_LINE_REF = re.compile(r"at Line (\d+), Column (\d+)")


@dataclass
class ValidationOutcome:
    valid: bool
    error: Optional[str] = None
    bytecode_size: Optional[int] = None
    metadata: Dict[str, Any] = field(default_factory=dict)


class ValidationOracle(Protocol):
    async def validate(self, code: str) -> ValidationOutcome:
        ...


# =============================================================================
# ERROR CONTEXT
# =============================================================================


def get_code_context(code: str, error_line: int) -> str:
    """Lines error_line-1 .. error_line+1, with the failing one marked '> '."""
    lines = code.split("\n")
    if error_line < 1 or error_line > len(lines):
        raise ValueError(f"Line number {error_line} is out of bounds (code has {len(lines)} lines)")

    start = max(1, error_line - 1)
    end = min(len(lines), error_line + 1)
    out = []
    for i in range(start, end + 1):
        prefix = "> " if i == error_line else "  "
        out.append(f"{prefix}Line {i}: {lines[i - 1].strip()}")
    return "\n".join(out)


def enhance_error_message(error: str, code: str) -> str:
    match = _LINE_REF.search(error or "")
    if not match:
        return error
    try:
        context = get_code_context(code, int(match.group(1)))
    except ValueError as exc:
        logger.warning("[cashc] %s", exc)
        return error
    return f"{error}\n{context}"


# =============================================================================
# CASHC
# =============================================================================


class CashcNotAvailable(ConverterError):
    """The cashc binary could not be executed."""


class CashcValidationOracle:
    def __init__(self, binary: str = CASHC_BINARY, timeout_seconds: float = CASHC_TIMEOUT_SECONDS):
        self.binary = binary
        self.timeout_seconds = timeout_seconds

    async def validate(self, code: str) -> ValidationOutcome:
        with tempfile.TemporaryDirectory(prefix="cashc_") as tmpdir:
            source = Path(tmpdir) / "Contract.cash"
            source.write_text(code, encoding="utf-8")

            try:
                proc = await asyncio.create_subprocess_exec(
                    self.binary,
                    str(source),
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                )
            except FileNotFoundError as exc:
                raise CashcNotAvailable(f"cashc binary not found: {self.binary}") from exc
            except OSError as exc:
                raise CashcNotAvailable(f"cashc binary could not be started: {self.binary} ({exc})") from exc

            try:
                stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout_seconds)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
                logger.warning("[cashc] Timed out after %ss", self.timeout_seconds)
                return ValidationOutcome(valid=False, error=f"Compiler timed out after {self.timeout_seconds}s")

        out_text = stdout.decode("utf-8", errors="replace")
        err_text = stderr.decode("utf-8", errors="replace").strip()

        if proc.returncode != 0:
            message = _clean_compiler_error(err_text or out_text) or f"cashc exited with {proc.returncode}"
            return ValidationOutcome(valid=False, error=message)

        return _outcome_from_artifact(out_text)


def _clean_compiler_error(text: str) -> str:
    # cashc prints "Error: <message>" plus a node stack for uncaught errors
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("at "):
            continue
        return line[len("Error: "):] if line.startswith("Error: ") else line
    return text.strip()


def _outcome_from_artifact(out_text: str) -> ValidationOutcome:
    try:
        artifact = json.loads(out_text)
    except json.JSONDecodeError:
        artifact = None
    if not isinstance(artifact, dict):
        logger.warning("[cashc] Compiled but stdout is not an artifact JSON")
        return ValidationOutcome(valid=True)

    hex_bytecode = None
    debug = artifact.get("debug")
    if isinstance(debug, dict) and isinstance(debug.get("bytecode"), str):
        hex_bytecode = debug["bytecode"]

    metadata = {
        "contractName": artifact.get("contractName"),
        "abi": artifact.get("abi", []),
        "compiler": artifact.get("compiler", {}),
    }
    return ValidationOutcome(
        valid=True,
        bytecode_size=len(hex_bytecode) // 2 if hex_bytecode else None,
        metadata=metadata,
    )
