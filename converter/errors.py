# FILE: converter/errors.py
"""
Conversion error taxonomy.

Every failure in the pipeline maps to exactly one of these types:

    InputRejected        - malformed / empty / oversized source (no oracle calls made)
    CompletionError      - completion oracle transport or parse failure
    PhaseError           - phase-fatal failure (phases 1-3, or phase 4 when cashc cannot run)
    MergeIntegrityError  - repair merge could not fill every expected slot (orchestrator bug)
    AdmissionRejected    - concurrency ceiling reached (503, retryable)
    RateLimited          - per-client request window exhausted (429)
    SessionCancelled     - client went away; not an error, never surfaced as an event
"""

from __future__ import annotations

from typing import Optional


class ConverterError(Exception):
    """Base class for all conversion errors."""


class InputRejected(ConverterError):
    def __init__(self, message: str, status_code: int = 400, error: str = "Invalid input"):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error = error


class CompletionError(ConverterError):
    """Completion call failed (network, API error, or malformed/truncated JSON)."""

    def __init__(self, message: str, stage: str = "", raw_text: Optional[str] = None):
        super().__init__(message)
        self.stage = stage
        self.raw_text = raw_text


class PhaseError(ConverterError):
    def __init__(self, phase: int, message: str):
        super().__init__(message)
        self.phase = phase
        self.message = message


class MergeIntegrityError(ConverterError):
    """
    Repair merge produced an inconsistent artifact set.

    Indicates an orchestrator bug (or an oracle answer that cannot be reconciled),
    not a bad artifact, so it is never reported as a validation failure.
    """

    def __init__(self, message: str, missing: Optional[list] = None):
        super().__init__(message)
        self.missing = list(missing or [])


class AdmissionRejected(ConverterError):
    def __init__(self, limit: int, retry_after: int = 5):
        super().__init__(f"Maximum {limit} concurrent conversions")
        self.limit = limit
        self.retry_after = retry_after


class RateLimited(ConverterError):
    def __init__(self, max_requests: int, window_seconds: int, retry_after: int):
        super().__init__(
            f"Rate limit exceeded. Maximum {max_requests} requests per {window_seconds // 60} minutes."
        )
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.retry_after = retry_after


class SessionCancelled(ConverterError):
    """Raised at a cancellation checkpoint once the client has disconnected."""


class SessionTimedOut(ConverterError):
    """Raised at a checkpoint once the session's wall-clock budget is spent."""


__all__ = [
    "ConverterError",
    "InputRejected",
    "CompletionError",
    "PhaseError",
    "MergeIntegrityError",
    "AdmissionRejected",
    "RateLimited",
    "SessionCancelled",
    "SessionTimedOut",
]
