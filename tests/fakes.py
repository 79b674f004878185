# FILE: tests/fakes.py
"""
Fake oracles, audit sink and payload builders shared by the test suite.

ScriptedCompletionOracle  - returns queued payloads per stage; queued exceptions are raised
MarkerValidationOracle    - code containing BROKEN fails, everything else compiles
RecordingAuditSink        - keeps every audit call in memory
"""

import json
from collections import deque
from typing import Any, Dict, Iterable, List, Optional

from converter.audit.sink import AuditSink
from converter.oracles.completion import CompletionResult, CompletionUsage
from converter.oracles.validation import ValidationOutcome

BROKEN_MARKER = "BROKEN"
BROKEN_ERROR = "Unused variable 'x' at Line 5, Column 5"

SOLIDITY_SOURCE = """pragma solidity ^0.8.0;

contract Ballot {
    mapping(address => bool) public voted;
    function vote() public { voted[msg.sender] = true; }
}
"""


# =============================================================================
# PAYLOAD BUILDERS
# =============================================================================


def contract_code(name: str, broken: bool = False) -> str:
    check = f"{BROKEN_MARKER}(x)" if broken else "true"
    return (
        "pragma cashscript ^0.13.0;\n"
        "\n"
        f"contract {name}() {{\n"
        "  function spend() {\n"
        f"    require({check});\n"
        "  }\n"
        "}"
    )


def contract_dict(name: str, broken: bool = False, **extra: Any) -> Dict[str, Any]:
    data = {
        "id": name.lower(),
        "name": name,
        "purpose": f"{name} purpose",
        "code": contract_code(name, broken),
        "role": "primary",
    }
    data.update(extra)
    return data


def domain_payload() -> Dict[str, Any]:
    return {
        "domain": "voting",
        "entities": [{"name": "Voter"}, {"name": "Ballot"}],
        "transitions": [{"name": "vote"}],
    }


def architecture_payload(names: Iterable[str]) -> Dict[str, Any]:
    names = list(names)
    return {
        "patterns": [{"name": "sidecar"}],
        "contracts": [
            {"name": n, "custodies": "NFT state", "validates": f"{n} rules"} for n in names
        ],
        "transactionTemplates": [
            {
                "name": "vote",
                "participatingContracts": names,
                "inputs": [{"index": i, "from": n, "contract": n} for i, n in enumerate(names)],
                "outputs": [{"index": i, "to": n, "contract": n} for i, n in enumerate(names)],
            }
        ],
    }


def multi_payload(names: Iterable[str], broken: Iterable[str] = ()) -> Dict[str, Any]:
    broken = set(broken)
    return {
        "contracts": [contract_dict(n, n in broken) for n in names],
        "deploymentGuide": {"steps": [{"order": 1}], "warnings": [], "testingNotes": []},
    }


def single_payload(name: str, broken: bool = False) -> Dict[str, Any]:
    return {"primaryContract": contract_code(name, broken)}


def fix_payload(names: Iterable[str], broken: Iterable[str] = ()) -> Dict[str, Any]:
    broken = set(broken)
    return {"contracts": [contract_dict(n, n in broken) for n in names]}


# =============================================================================
# ORACLES
# =============================================================================


class ScriptedCompletionOracle:
    def __init__(
        self,
        phase1: Any = None,
        phase2: Any = None,
        phase3: Any = None,
        repairs: Optional[List[Any]] = None,
    ):
        self.queues = {
            "phase1": deque([phase1 if phase1 is not None else domain_payload()]),
            "phase2": deque([phase2 if phase2 is not None else architecture_payload(["Ballot"])]),
            "phase3": deque([phase3 if phase3 is not None else single_payload("Ballot")]),
            "phase4": deque(repairs or []),
        }
        self.calls: List[Dict[str, Any]] = []

    def stage_calls(self, stage: str) -> List[Dict[str, Any]]:
        return [c for c in self.calls if c["stage"] == stage]

    async def complete(self, system_prompt, output_schema, user_message, *, stage):
        self.calls.append({"stage": stage, "user_message": user_message, "system_prompt": system_prompt})
        queue = self.queues[stage]
        if not queue:
            raise AssertionError(f"No scripted response left for {stage}")
        item = queue.popleft()
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            item = item(user_message)
        return CompletionResult(
            data=item,
            raw_text=json.dumps(item),
            usage=CompletionUsage(input_tokens=100, output_tokens=50),
            model="fake-model",
            duration_ms=7,
        )


class MarkerValidationOracle:
    def __init__(self):
        self.validated: List[str] = []

    async def validate(self, code: str) -> ValidationOutcome:
        self.validated.append(code)
        if BROKEN_MARKER in code:
            return ValidationOutcome(valid=False, error=BROKEN_ERROR)
        return ValidationOutcome(valid=True, bytecode_size=len(code) // 4)

    def validated_names(self) -> List[str]:
        names = []
        for code in self.validated:
            line = next(l for l in code.split("\n") if l.startswith("contract "))
            names.append(line.split()[1].split("(")[0])
        return names


class RecordingAuditSink(AuditSink):
    def __init__(self):
        self.calls: List[tuple] = []

    def session_started(self, session, metadata):
        self.calls.append(("session_started", session.session_id, dict(metadata)))

    def completion_recorded(self, session_id, stage, attempt, *, system_prompt, user_message, result=None, error=None):
        self.calls.append(("completion_recorded", stage, attempt, error))

    def phase_output(self, session_id, phase, data, result=None):
        self.calls.append(("phase_output", phase))

    def validation_recorded(self, session_id, artifact, attempt):
        self.calls.append(("validation_recorded", artifact.name, attempt, artifact.validated))

    def artifacts_persisted(self, session_id, artifacts, *, multi, failed=False):
        self.calls.append(("artifacts_persisted", [a.name for a in artifacts], multi, failed))

    def session_finished(self, session_id, status, *, attempts, duration_ms, error=None):
        self.calls.append(("session_finished", status, attempts))

    def named(self, name: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == name]


async def collect(events) -> list:
    return [e async for e in events]
