# FILE: tests/test_merger.py
"""
Tests for converter/pipeline/merger.py
Retry merge: order preservation, immutability of accepted artifacts, name drift.
"""

import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest

from converter.errors import MergeIntegrityError
from converter.pipeline.merger import merge_fix_batch, reconcile_name_drift
from converter.pipeline.models import ContractArtifact


def _artifact(name, code=None, validated=False, attempt=1):
    return ContractArtifact(
        name=name,
        code=code or f"contract {name}() {{}}",
        validated=validated,
        dependencies=["Shared"],
        constructor_params=[{"name": "owner", "type": "pubkey"}],
        attempt=attempt,
    )


class TestMergeFixBatch:
    """Test merge_fix_batch ordering and integrity."""

    def test_output_follows_original_order(self):
        """Test merged list matches original order regardless of fix batch order."""
        accepted = {"B": _artifact("B", validated=True)}
        fix = [_artifact("C", attempt=2), _artifact("A", attempt=2)]

        merged = merge_fix_batch(accepted, fix, ["A", "B", "C"])

        assert [a.name for a in merged] == ["A", "B", "C"]
        assert merged[1].validated is True
        assert merged[0].attempt == 2

    def test_accepted_are_deep_copies(self):
        """Test mutating merged output never reaches the accepted set."""
        original = _artifact("A", validated=True)
        accepted = {"A": original}

        merged = merge_fix_batch(accepted, [_artifact("B")], ["A", "B"])
        merged[0].code = "mutated"
        merged[0].dependencies.append("Other")
        merged[0].constructor_params[0]["name"] = "changed"

        assert original.code == "contract A() {}"
        assert original.dependencies == ["Shared"]
        assert original.constructor_params[0]["name"] == "owner"
        assert merged[0] is not original

    def test_resent_accepted_artifact_is_discarded(self):
        """Test an accepted name resent by the oracle keeps the accepted code."""
        accepted = {"A": _artifact("A", code="accepted code", validated=True)}
        fix = [_artifact("A", code="rewritten by model"), _artifact("B", code="fixed")]

        merged = merge_fix_batch(accepted, fix, ["A", "B"])

        assert merged[0].code == "accepted code"
        assert merged[0].validated is True
        assert merged[1].code == "fixed"

    def test_missing_slot_raises(self):
        """Test a name neither accepted nor fixed is an integrity error."""
        accepted = {"A": _artifact("A", validated=True)}

        with pytest.raises(MergeIntegrityError) as exc_info:
            merge_fix_batch(accepted, [_artifact("B")], ["A", "B", "C"])

        assert exc_info.value.missing == ["C"]

    def test_duplicate_in_fix_batch_keeps_first(self):
        """Test duplicates inside one fix batch: first wins."""
        fix = [_artifact("A", code="first"), _artifact("A", code="second")]

        merged = merge_fix_batch({}, fix, ["A"])

        assert len(merged) == 1
        assert merged[0].code == "first"

    def test_fix_batch_entries_are_copied(self):
        """Test merged entries do not alias the fix batch objects."""
        fixed = _artifact("A")
        merged = merge_fix_batch({}, [fixed], ["A"])

        merged[0].validated = True
        assert fixed.validated is False

    def test_unexpected_names_are_ignored(self):
        """Test names outside the original order never enter the output."""
        merged = merge_fix_batch({}, [_artifact("A"), _artifact("Stray")], ["A"])

        assert [a.name for a in merged] == ["A"]


class TestReconcileNameDrift:
    """Test reconcile_name_drift elimination rules."""

    def test_no_drift_returns_copies(self):
        """Test expected names pass through unchanged (as copies)."""
        fix = [_artifact("B")]
        result = reconcile_name_drift(fix, ["B"], ["A"])

        assert [a.name for a in result] == ["B"]
        assert result[0] is not fix[0]

    def test_single_rename_maps_to_missing_name(self):
        """Test one renamed artifact is reassigned to the one uncovered name."""
        fix = [_artifact("B"), _artifact("VoteCounter")]

        result = reconcile_name_drift(fix, ["B", "Counter"], ["A"])

        assert [a.name for a in result] == ["B", "Counter"]
        assert fix[1].name == "VoteCounter"

    def test_ambiguous_rename_raises(self):
        """Test a rename with two uncovered candidates cannot be resolved."""
        fix = [_artifact("Renamed")]

        with pytest.raises(MergeIntegrityError):
            reconcile_name_drift(fix, ["B", "C"], ["A"])

    def test_rename_with_no_candidate_raises(self):
        """Test a rename when every expected name is already covered."""
        fix = [_artifact("B"), _artifact("Extra")]

        with pytest.raises(MergeIntegrityError):
            reconcile_name_drift(fix, ["B"], ["A"])

    def test_accepted_names_are_not_drift(self):
        """Test a resent accepted name is left for the merger to discard."""
        fix = [_artifact("A"), _artifact("B")]

        result = reconcile_name_drift(fix, ["B"], ["A"])

        assert [a.name for a in result] == ["A", "B"]
