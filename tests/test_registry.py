# FILE: tests/test_registry.py
"""
Tests for converter/pipeline/registry.py
Session-scoped accepted set, retry batch and sent set.
"""

import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest

from converter.errors import PhaseError
from converter.pipeline.models import ContractArtifact, MultiArtifact, SingleArtifact
from converter.pipeline.registry import ArtifactRegistry


def _multi(*names):
    return MultiArtifact(artifacts=[ContractArtifact(name=n, code=f"contract {n}() {{}}") for n in names])


def _validated(artifact, ok, error=None):
    artifact.validated = ok
    artifact.validation_error = None if ok else (error or "boom")
    return artifact


class TestInitialize:
    """Test mode and order fixed from attempt 1."""

    def test_order_and_mode(self):
        """Test original order and multi mode are recorded."""
        reg = ArtifactRegistry()
        initial = reg.initialize(_multi("A", "B", "C"))

        assert reg.original_order == ["A", "B", "C"]
        assert reg.total_expected == 3
        assert reg.is_multi is True
        assert [a.name for a in initial] == ["A", "B", "C"]

    def test_single_mode(self):
        """Test a single-artifact output is not multi."""
        reg = ArtifactRegistry()
        reg.initialize(SingleArtifact(artifact=ContractArtifact(name="Solo", code="contract Solo() {}")))

        assert reg.is_multi is False
        assert reg.deployment_guide is None

    def test_mode_decided_once(self):
        """Test a second initialize is refused."""
        reg = ArtifactRegistry()
        reg.initialize(_multi("A"))

        with pytest.raises(RuntimeError):
            reg.initialize(_multi("B"))

    def test_empty_output_is_phase_error(self):
        """Test zero artifacts is phase-fatal."""
        with pytest.raises(PhaseError) as exc_info:
            ArtifactRegistry().initialize(MultiArtifact(artifacts=[]))
        assert exc_info.value.phase == 3

    def test_duplicate_names_are_phase_error(self):
        """Test duplicate names in attempt 1 are phase-fatal."""
        with pytest.raises(PhaseError):
            ArtifactRegistry().initialize(_multi("A", "A"))

    def test_initial_artifacts_are_copies(self):
        """Test mutating the returned list does not touch registry state."""
        reg = ArtifactRegistry()
        initial = reg.initialize(_multi("A"))
        initial[0].code = "changed"

        assert reg.retry_batch().items[0].code == "contract A() {}"


class TestRecord:
    """Test acceptance rules."""

    def test_valid_artifacts_are_accepted(self):
        """Test valid artifacts enter the accepted set and leave the retry batch."""
        reg = ArtifactRegistry()
        a, b = reg.initialize(_multi("A", "B"))
        reg.record([_validated(a, True), _validated(b, False, "bad")])

        assert reg.accepted_names == ["A"]
        assert reg.failed_names() == ["B"]
        assert reg.retry_batch().names == ["B"]
        assert reg.retry_batch().first_error == "B: bad"
        assert reg.is_complete() is False

    def test_accepted_never_overwritten(self):
        """Test a later record for an accepted name is ignored."""
        reg = ArtifactRegistry()
        (a,) = reg.initialize(_multi("A"))
        reg.record([_validated(a, True)])

        replacement = ContractArtifact(name="A", code="different", validated=True)
        reg.record([replacement])

        assert reg.accepted_snapshot()["A"].code == "contract A() {}"

    def test_accepted_is_deep_copy(self):
        """Test mutating the recorded object does not change the accepted copy."""
        reg = ArtifactRegistry()
        (a,) = reg.initialize(_multi("A"))
        reg.record([_validated(a, True)])
        a.code = "mutated after acceptance"

        assert reg.accepted_snapshot()["A"].code == "contract A() {}"

    def test_summary_reports_whole_set(self):
        """Test summary covers every name with held attempt numbers."""
        reg = ArtifactRegistry()
        a, b = reg.initialize(_multi("A", "B"))
        reg.record([_validated(a, True), _validated(b, False)])

        summary = reg.summary(1)

        assert [r.to_dict() for r in summary.results] == [
            {"name": "A", "validated": True, "attempt": 1},
            {"name": "B", "validated": False, "attempt": 1},
        ]
        assert summary.valid_count == 1
        assert summary.failed_count == 1
        assert summary.passed is False


class TestSentSet:
    """Test at-most-once announcement bookkeeping."""

    def test_mark_sent_once(self):
        """Test a name can be marked sent only once."""
        reg = ArtifactRegistry()
        (a,) = reg.initialize(_multi("A"))
        reg.record([_validated(a, True)])

        assert reg.mark_sent("A") is True
        assert reg.mark_sent("A") is False
        assert reg.sent_count == 1
        assert reg.unsent_accepted() == []

    def test_cannot_announce_unaccepted(self):
        """Test announcing a failing artifact is refused."""
        reg = ArtifactRegistry()
        reg.initialize(_multi("A"))

        with pytest.raises(RuntimeError):
            reg.mark_sent("A")

    def test_unsent_in_original_order(self):
        """Test unsent accepted artifacts come back in original order."""
        reg = ArtifactRegistry()
        a, b, c = reg.initialize(_multi("A", "B", "C"))
        reg.record([_validated(c, True), _validated(a, True), _validated(b, False)])

        assert [x.name for x in reg.unsent_accepted()] == ["A", "C"]
