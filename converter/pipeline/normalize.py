# FILE: converter/pipeline/normalize.py
"""
Normalization of raw completion payloads into pipeline models.

The code generation model answers in one of two shapes:

    {"primaryContract": "<code>"}                          -> SingleArtifact
    {"contracts": [{name, code, ...}], "deploymentGuide"}  -> MultiArtifact

Contract names come back with tokenization damage now and then
("Ball ot Initial izer"), so the `contract <Name>` declaration in the code is
treated as the real name whenever it disagrees with the `name` field.
"""

from __future__ import annotations

import copy
import logging
import re
from typing import Any, Dict, List, Mapping, Optional, Sequence

from converter.errors import CompletionError
from converter.pipeline.models import (
    ContractArtifact,
    GenerationOutput,
    MultiArtifact,
    PendingSpec,
    SingleArtifact,
)

logger = logging.getLogger(__name__)

_CONTRACT_DECL = re.compile(r"contract\s+(\w+)")


def extract_contract_name(code: str) -> Optional[str]:
    match = _CONTRACT_DECL.search(code or "")
    return match.group(1) if match else None


def normalize_contract_names(artifacts: Sequence[ContractArtifact]) -> None:
    """Rename artifacts in place to the name declared in their code."""
    for artifact in artifacts:
        declared = extract_contract_name(artifact.code)
        if declared and declared != artifact.name:
            logger.info("[normalize] Fixing contract name: %r -> %r", artifact.name, declared)
            artifact.name = declared


def classify_generation_payload(payload: Mapping[str, Any], attempt: int = 1) -> GenerationOutput:
    """Decide the generation mode from a phase 3 payload."""
    contracts = payload.get("contracts")
    if isinstance(contracts, list):
        artifacts = [
            ContractArtifact.from_dict(item, attempt=attempt)
            for item in contracts
            if isinstance(item, dict)
        ]
        normalize_contract_names(artifacts)
        guide = payload.get("deploymentGuide")
        return MultiArtifact(artifacts=artifacts, deployment_guide=guide if isinstance(guide, dict) else None)

    primary = payload.get("primaryContract")
    if isinstance(primary, str) and primary.strip():
        name = extract_contract_name(primary) or "PrimaryContract"
        artifact = ContractArtifact(
            name=name,
            code=primary,
            id="primary",
            purpose="Primary contract",
            role="primary",
            attempt=attempt,
        )
        return SingleArtifact(artifact=artifact)

    raise CompletionError(
        "Generation response has neither 'contracts' nor 'primaryContract'",
        stage="phase3",
    )


def artifacts_from_fix_payload(
    payload: Mapping[str, Any],
    attempt: int,
    batch_names: Sequence[str],
) -> List[ContractArtifact]:
    """
    Parse a repair response into artifacts.

    A single-shape answer (`primaryContract`) is accepted when exactly one
    contract was being repaired and takes that contract's name unless the code
    declares another.
    """
    contracts = payload.get("contracts")
    if isinstance(contracts, list):
        artifacts = [
            ContractArtifact.from_dict(item, attempt=attempt)
            for item in contracts
            if isinstance(item, dict)
        ]
        for artifact in artifacts:
            artifact.attempt = attempt
            artifact.validated = False
            artifact.validation_error = None
            artifact.bytecode_size = None
        normalize_contract_names(artifacts)
        return artifacts

    primary = payload.get("primaryContract")
    if isinstance(primary, str) and primary.strip() and len(batch_names) == 1:
        name = extract_contract_name(primary) or batch_names[0]
        return [ContractArtifact(name=name, code=primary, id="primary", attempt=attempt)]

    raise CompletionError("Repair response has no 'contracts' array", stage="phase4")


def pending_specs_from_architecture(architecture: Mapping[str, Any]) -> List[PendingSpec]:
    specs = []
    for item in architecture.get("contracts") or []:
        if isinstance(item, dict) and item.get("name"):
            specs.append(PendingSpec.from_dict(item))
    return specs


def build_name_map(architecture_names: Sequence[str], final_names: Sequence[str]) -> Dict[str, str]:
    """Positional mapping of architecture names to the names the code ended up with."""
    name_map: Dict[str, str] = {}
    for arch_name, final_name in zip(architecture_names, final_names):
        if arch_name and final_name and arch_name != final_name:
            logger.info("[transactions] Name drift: %r -> %r", arch_name, final_name)
            name_map[arch_name] = final_name
    return name_map


def apply_name_mapping_to_templates(
    templates: Sequence[Dict[str, Any]],
    name_map: Mapping[str, str],
) -> List[Dict[str, Any]]:
    """Rewrite contract references in transaction templates. Returns new dicts."""
    if not name_map:
        return [copy.deepcopy(t) for t in templates]

    def rename(value: Any) -> Any:
        return name_map.get(value, value) if isinstance(value, str) else value

    mapped = []
    for template in templates:
        tx = copy.deepcopy(template)
        if isinstance(tx.get("participatingContracts"), list):
            tx["participatingContracts"] = [rename(n) for n in tx["participatingContracts"]]
        for key, ref in (("inputs", "from"), ("outputs", "to")):
            entries = tx.get(key)
            if not isinstance(entries, list):
                continue
            for entry in entries:
                if not isinstance(entry, dict):
                    continue
                if entry.get("contract"):
                    entry["contract"] = rename(entry["contract"])
                if ref in entry:
                    entry[ref] = rename(entry[ref])
        mapped.append(tx)
    return mapped


def apply_name_mapping_to_specs(specs: Sequence[PendingSpec], name_map: Mapping[str, str]) -> List[PendingSpec]:
    return [
        PendingSpec(name=name_map.get(s.name, s.name), custodies=s.custodies, validates=s.validates)
        for s in specs
    ]
