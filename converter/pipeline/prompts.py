# FILE: converter/pipeline/prompts.py
"""
Prompts and output schemas for the four pipeline phases.

Phase 1  domain extraction      Solidity -> platform-agnostic domain model
Phase 2  architecture design    domain model -> UTXO contracts + transaction templates
Phase 3  code generation        domain model + architecture -> CashScript
Phase 4  repair                 failing contracts + compiler errors -> fixed CashScript

The knowledge base (CashScript language reference) is appended to the phase 3/4
system prompts. It is loaded once at startup by load_knowledge_base().
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Iterable

from converter.pipeline.models import RetryBatch

logger = logging.getLogger(__name__)


def load_knowledge_base(paths: Iterable[str]) -> str:
    parts = []
    for p in paths:
        path = Path(p)
        if not path.is_file():
            logger.warning("[prompts] Knowledge base file missing: %s", path)
            continue
        parts.append(path.read_text(encoding="utf-8"))
    kb = "\n\n---\n\n".join(parts)
    logger.info("[prompts] Knowledge base loaded (%d files, %d chars)", len(parts), len(kb))
    return kb


# =============================================================================
# OUTPUT SCHEMAS
# =============================================================================

DOMAIN_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "domain": {"type": "string"},
        "summary": {"type": "string"},
        "entities": {"type": "array", "items": {"type": "object"}},
        "transitions": {"type": "array", "items": {"type": "object"}},
        "invariants": {"type": "array", "items": {"type": "object"}},
        "roles": {"type": "array", "items": {"type": "object"}},
    },
    "required": ["domain", "entities", "transitions"],
}

ARCHITECTURE_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "patterns": {"type": "array", "items": {"type": "object"}},
        "transactionTemplates": {"type": "array", "items": {"type": "object"}},
        "contracts": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "role": {"type": "string"},
                    "custodies": {"type": "string"},
                    "validates": {"type": "string"},
                    "functions": {"type": "array", "items": {"type": "object"}},
                },
                "required": ["name"],
            },
        },
        "deploymentOrder": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["contracts", "transactionTemplates"],
}

_CONTRACT_ITEM: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "id": {"type": "string"},
        "name": {"type": "string"},
        "purpose": {"type": "string"},
        "code": {"type": "string"},
        "role": {"type": "string", "enum": ["primary", "helper", "state"]},
        "deploymentOrder": {"type": "integer"},
        "dependencies": {"type": "array", "items": {"type": "string"}},
        "constructorParams": {"type": "array", "items": {"type": "object"}},
    },
    "required": ["name", "code"],
}

GENERATION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {
        "primaryContract": {"type": "string"},
        "contracts": {"type": "array", "items": _CONTRACT_ITEM},
        "deploymentGuide": {
            "type": "object",
            "properties": {
                "steps": {"type": "array", "items": {"type": "object"}},
                "warnings": {"type": "array", "items": {"type": "string"}},
                "testingNotes": {"type": "array", "items": {"type": "string"}},
            },
        },
    },
}

FIX_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "properties": {"contracts": {"type": "array", "items": _CONTRACT_ITEM}},
    "required": ["contracts"],
}


# =============================================================================
# SYSTEM PROMPTS
# =============================================================================

DOMAIN_SYSTEM_PROMPT = """You analyze Solidity smart contracts and extract a platform-agnostic domain model.

Describe WHAT the system does, never HOW Ethereum implements it:
- domain: one short label for the business domain (e.g. "voting", "escrow", "token sale")
- entities: the things with identity and state (name, properties, lifecycle)
- transitions: every state change (name, who may trigger it, preconditions, effects)
- invariants: rules that must always hold
- roles: the actors and their permissions

Ignore Solidity mechanics (mappings, storage slots, modifiers, events, gas) except where they
encode a business rule. Return the result through the provided tool."""

ARCHITECTURE_SYSTEM_PROMPT = """You design UTXO architectures for Bitcoin Cash covenants (CashScript).

Transactions are primary; contracts are derived from them.
1. Write transactionTemplates first: for every domain transition, the inputs (index, from,
   utxoType) and outputs (index, to, utxoType) of the transaction that performs it.
2. Derive contracts from the templates. Each contract gets a name, a role, what it custodies
   (BCH, NFTs, fungible tokens, nothing) and what it validates.
3. Every contract must validate something. Do not create contracts that only forward.
4. Keep state in NFT commitments; a contract that mutates state must replicate itself.

Return the result through the provided tool."""

_GENERATION_SYSTEM_PROMPT = """You write CashScript contracts from a domain model and a UTXO architecture.

Rules:
- Use the contract names, roles and validation purposes from the architecture exactly.
- Every function parameter must be used. Every function must add constraints.
- Validate output locking bytecode, token category, value and commitment for every covenant output.
- Use tx.time >= deadline for time checks.
- No placeholders, no TODOs, no pseudo-code.
- Use \\n for newlines inside code strings.

For one contract answer with {"primaryContract": "<code>"}. For several answer with
{"contracts": [{id, name, purpose, code, role, deploymentOrder, dependencies, constructorParams}],
"deploymentGuide": {steps, warnings, testingNotes}}.

CashScript language reference:
"""

_FIX_SYSTEM_PROMPT = """You fix CashScript compilation errors. That is your only job.

Rules for fixing:
1. Make MINIMAL changes: only fix the specific compilation error.
2. Do NOT restructure contracts, change function logic or modify working code.
3. Every function parameter MUST be used in the function body.
4. Unused variable: remove ONLY that variable. Missing parameter: add ONLY that parameter.
5. Keep each contract's name exactly as given.
6. Return only the contracts you were asked to fix, as {"contracts": [...]}.

CashScript language reference:
"""


def build_generation_system_prompt(knowledge_base: str) -> str:
    return _GENERATION_SYSTEM_PROMPT + (knowledge_base or "")


def build_fix_system_prompt(knowledge_base: str) -> str:
    return _FIX_SYSTEM_PROMPT + (knowledge_base or "")


# =============================================================================
# USER MESSAGES
# =============================================================================


def build_domain_user_message(source: str) -> str:
    return f"Extract the domain model from this Solidity source:\n\n{source}"


def build_architecture_user_message(domain_model: Dict[str, Any]) -> str:
    return (
        "DOMAIN MODEL (what the system does, platform-agnostic):\n"
        f"{json.dumps(domain_model, indent=2)}\n\n"
        "Design the UTXO architecture: transaction templates first, then the contracts they need."
    )


def build_generation_user_message(domain_model: Dict[str, Any], architecture: Dict[str, Any]) -> str:
    return (
        "DOMAIN MODEL (what the system does, platform-agnostic):\n"
        f"{json.dumps(domain_model, indent=2)}\n\n"
        "UTXO ARCHITECTURE (how to implement it):\n"
        f"{json.dumps(architecture, indent=2)}\n\n"
        "Generate CashScript contracts based on the UTXO architecture above. Follow the contract "
        "specifications exactly:\n"
        "- Use the contract names, roles, and validation purposes from the architecture\n"
        "- Implement the functions as specified with their validation requirements\n"
        "- Follow the transaction templates for input/output positions\n\n"
        "Every contract must validate something. Every function must add constraints. No placeholders."
    )


def build_repair_message(batch: RetryBatch) -> str:
    """Repair request for exactly the failing subset of a session's contracts."""
    count = len(batch)
    noun = "contract" if count == 1 else "contracts"
    parts = [f"Fix ONLY the specific compilation errors in the following {count} {noun}:\n"]

    for artifact in batch.items:
        parts.append(
            f"CONTRACT: {artifact.name}\n"
            f"CURRENT CODE:\n{artifact.code}\n\n"
            f"COMPILATION ERROR:\n{artifact.validation_error}\n\n"
            "INSTRUCTIONS: Make MINIMAL changes to fix ONLY this specific error. Do NOT restructure "
            "the contract, change function logic, or modify working code.\n\n"
            "---\n"
        )

    parts.append(
        "CRITICAL RULES:\n"
        f"1. Return ONLY these {count} {noun}: {', '.join(batch.names)}\n"
        "2. Do NOT include any already-validated contracts in your response\n"
        "3. Keep every contract name exactly as listed above\n"
        "4. Make MINIMAL changes - only fix the specific compilation error\n"
        "5. Do NOT rewrite functions, change business logic, or alter contract behavior"
    )
    return "\n".join(parts)
