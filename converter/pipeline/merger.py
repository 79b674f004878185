# FILE: converter/pipeline/merger.py
"""
Retry merge for the repair loop.

Pure functions, no I/O. Given the accepted artifacts of a session, the fix batch
returned by one repair call, and the authoritative name order fixed after attempt 1,
produce the next full artifact set:

    - accepted artifacts are carried over as deep copies, even when the fix batch
      resends them (the resent copy is discarded)
    - every other slot is filled from the fix batch
    - a slot that is neither accepted nor fixed is a MergeIntegrityError
    - output order == original order, always
"""

from __future__ import annotations

import copy
import logging
from typing import Dict, Iterable, List, Mapping, Sequence

from converter.errors import MergeIntegrityError
from converter.pipeline.models import ContractArtifact

logger = logging.getLogger(__name__)


def _index_fix_batch(fix_batch: Iterable[ContractArtifact]) -> Dict[str, ContractArtifact]:
    indexed: Dict[str, ContractArtifact] = {}
    for artifact in fix_batch:
        if artifact.name in indexed:
            logger.warning("[merge] Duplicate '%s' in fix batch, keeping first", artifact.name)
            continue
        indexed[artifact.name] = artifact
    return indexed


def merge_fix_batch(
    accepted: Mapping[str, ContractArtifact],
    fix_batch: Sequence[ContractArtifact],
    original_order: Sequence[str],
) -> List[ContractArtifact]:
    """
    Merge one repair response into the accepted set.

    Args:
        accepted: name -> accepted artifact. Never mutated, never aliased by the result.
        fix_batch: artifacts returned by the repair call (names already reconciled).
        original_order: names fixed after attempt 1.

    Returns:
        One artifact per name in original_order, in that order.

    Raises:
        MergeIntegrityError: a name is neither accepted nor present in the fix batch.
    """
    fixes = _index_fix_batch(fix_batch)
    merged: List[ContractArtifact] = []
    missing: List[str] = []

    for name in original_order:
        if name in accepted:
            if name in fixes:
                logger.info("[merge] Discarding resent copy of accepted contract '%s'", name)
            merged.append(copy.deepcopy(accepted[name]))
        elif name in fixes:
            merged.append(copy.deepcopy(fixes[name]))
        else:
            missing.append(name)

    if missing:
        raise MergeIntegrityError(
            f"Fix batch is missing contracts: {', '.join(missing)}",
            missing=missing,
        )

    extra = [n for n in fixes if n not in set(original_order)]
    if extra:
        logger.warning("[merge] Ignoring unexpected contracts in fix batch: %s", extra)

    return merged


def reconcile_name_drift(
    fix_batch: Sequence[ContractArtifact],
    expected_missing: Sequence[str],
    accepted_names: Iterable[str],
) -> List[ContractArtifact]:
    """
    Map renamed artifacts in a fix batch back onto the names they replace.

    A returned name that is neither accepted nor expected is reassigned to the one
    expected name that no other returned artifact covers. Zero or several such
    candidates cannot be resolved and raise MergeIntegrityError.

    Returns copies; the input batch is left untouched.
    """
    accepted_set = set(accepted_names)
    expected = list(expected_missing)
    returned = {a.name for a in fix_batch}

    unexpected = [a for a in fix_batch if a.name not in accepted_set and a.name not in expected]
    if not unexpected:
        return [copy.deepcopy(a) for a in fix_batch]

    if len(unexpected) > 1:
        logger.warning(
            "[merge] %d renamed contracts in one fix batch, matching by elimination is unreliable: %s",
            len(unexpected),
            [a.name for a in unexpected],
        )

    uncovered = [n for n in expected if n not in returned]
    renames: Dict[int, str] = {}

    for artifact in unexpected:
        candidates = [n for n in uncovered if n not in renames.values()]
        if len(candidates) != 1:
            raise MergeIntegrityError(
                f"Cannot match renamed contract '{artifact.name}' "
                f"({len(candidates)} candidates: {candidates})",
                missing=candidates,
            )
        renames[id(artifact)] = candidates[0]
        logger.warning("[merge] Contract renamed '%s' -> '%s'", artifact.name, candidates[0])

    reconciled: List[ContractArtifact] = []
    for artifact in fix_batch:
        clone = copy.deepcopy(artifact)
        if id(artifact) in renames:
            clone.name = renames[id(artifact)]
        reconciled.append(clone)
    return reconciled
