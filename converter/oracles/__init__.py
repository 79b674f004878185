# FILE: converter/oracles/__init__.py
"""External oracles: completion (Anthropic) and validation (cashc)."""

from converter.oracles.completion import AnthropicCompletionOracle, CompletionOracle, CompletionResult
from converter.oracles.validation import CashcValidationOracle, ValidationOracle, ValidationOutcome

__all__ = [
    "AnthropicCompletionOracle",
    "CompletionOracle",
    "CompletionResult",
    "CashcValidationOracle",
    "ValidationOracle",
    "ValidationOutcome",
]
