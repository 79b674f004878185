# FILE: tests/test_normalize.py
"""
Tests for converter/pipeline/normalize.py
Payload classification, contract name repair, transaction template mapping.
"""

import sys
from pathlib import Path

_project_root = Path(__file__).parent.parent
if str(_project_root) not in sys.path:
    sys.path.insert(0, str(_project_root))

import pytest

from fakes import architecture_payload, contract_code, contract_dict, multi_payload, single_payload

from converter.errors import CompletionError
from converter.pipeline.models import MultiArtifact, PendingSpec, SingleArtifact
from converter.pipeline.normalize import (
    apply_name_mapping_to_specs,
    apply_name_mapping_to_templates,
    artifacts_from_fix_payload,
    build_name_map,
    classify_generation_payload,
    extract_contract_name,
    pending_specs_from_architecture,
)


class TestClassify:
    """Test generation mode classification."""

    def test_multi_payload(self):
        """Test a contracts array yields MultiArtifact with its guide."""
        output = classify_generation_payload(multi_payload(["A", "B"]))

        assert isinstance(output, MultiArtifact)
        assert [a.name for a in output.artifacts] == ["A", "B"]
        assert output.deployment_guide["steps"] == [{"order": 1}]

    def test_single_payload(self):
        """Test primaryContract yields SingleArtifact named from the code."""
        output = classify_generation_payload(single_payload("Ballot"))

        assert isinstance(output, SingleArtifact)
        assert output.artifacts[0].name == "Ballot"
        assert output.deployment_guide is None

    def test_single_payload_without_declaration(self):
        """Test a primaryContract with no declaration gets a fallback name."""
        output = classify_generation_payload({"primaryContract": "pragma cashscript ^0.13.0;"})
        assert output.artifacts[0].name == "PrimaryContract"

    def test_unrecognized_payload(self):
        """Test a payload with neither shape is a completion error."""
        with pytest.raises(CompletionError):
            classify_generation_payload({"something": "else"})

    def test_damaged_name_is_repaired_from_code(self):
        """Test the declared contract name overrides a damaged name field."""
        damaged = contract_dict("BallotInitializer")
        damaged["name"] = "Ball ot Initial izer"
        payload = {"contracts": [damaged]}

        output = classify_generation_payload(payload)

        assert output.artifacts[0].name == "BallotInitializer"

    def test_non_dict_guide_is_dropped(self):
        """Test a malformed deployment guide is treated as absent."""
        payload = {"contracts": [contract_dict("A")], "deploymentGuide": "see docs"}
        assert classify_generation_payload(payload).deployment_guide is None


class TestFixPayload:
    """Test repair response parsing."""

    def test_contracts_reset_validation_state(self):
        """Test fix artifacts arrive unvalidated and tagged with the attempt."""
        payload = {"contracts": [contract_dict("A", validated=True, validationError="old")]}

        (artifact,) = artifacts_from_fix_payload(payload, attempt=3, batch_names=["A"])

        assert artifact.attempt == 3
        assert artifact.validated is False
        assert artifact.validation_error is None

    def test_primary_contract_for_single_item_batch(self):
        """Test a primaryContract answer is accepted for a one-contract batch."""
        (artifact,) = artifacts_from_fix_payload(
            {"primaryContract": contract_code("Ballot")}, attempt=2, batch_names=["Ballot"]
        )
        assert artifact.name == "Ballot"
        assert artifact.attempt == 2

    def test_primary_contract_for_multi_item_batch(self):
        """Test a primaryContract answer is rejected when several contracts were sent."""
        with pytest.raises(CompletionError):
            artifacts_from_fix_payload(
                {"primaryContract": contract_code("A")}, attempt=2, batch_names=["A", "B"]
            )


class TestNames:
    """Test name extraction and drift mapping."""

    def test_extract_contract_name(self):
        assert extract_contract_name(contract_code("Vault")) == "Vault"
        assert extract_contract_name("") is None

    def test_pending_specs(self):
        """Test architecture contracts become pending specs, joining list fields."""
        arch = {"contracts": [{"name": "A", "custodies": ["NFT", "BCH"], "validates": "rules"}, {"custodies": "x"}]}

        specs = pending_specs_from_architecture(arch)

        assert specs == [PendingSpec(name="A", custodies="NFT, BCH", validates="rules")]

    def test_build_name_map_positional(self):
        """Test only differing positions produce a mapping."""
        assert build_name_map(["A", "B", "C"], ["A", "Bee", "C"]) == {"B": "Bee"}

    def test_templates_are_rewritten(self):
        """Test every contract reference in a template follows the mapping."""
        templates = architecture_payload(["A", "B"])["transactionTemplates"]

        mapped = apply_name_mapping_to_templates(templates, {"B": "Bee"})

        tx = mapped[0]
        assert tx["participatingContracts"] == ["A", "Bee"]
        assert [i["contract"] for i in tx["inputs"]] == ["A", "Bee"]
        assert [i["from"] for i in tx["inputs"]] == ["A", "Bee"]
        assert [o["to"] for o in tx["outputs"]] == ["A", "Bee"]
        assert templates[0]["participatingContracts"] == ["A", "B"]

    def test_specs_are_rewritten(self):
        specs = [PendingSpec(name="B", custodies="c")]
        assert apply_name_mapping_to_specs(specs, {"B": "Bee"})[0].name == "Bee"
