"""
Unit Tests for deployer identifiers and boundary input.
"""

import pytest

from deployer.errors import ValidationError
from deployer.model import (
    BranchName,
    BuildStatus,
    CommitRef,
    ControllerInput,
    DeployStatus,
    StageName,
)


class TestIdentifiers:
    """Nominal identifier validation."""

    def test_parse_returns_nominal_type(self):
        ref = CommitRef.parse("abc123")
        assert isinstance(ref, CommitRef)
        assert ref == "abc123"

    def test_identifier_types_are_distinct(self):
        assert not isinstance(StageName.parse("dev"), BranchName)
        assert not isinstance(BranchName.parse("main"), CommitRef)

    @pytest.mark.parametrize("value", ["", "has space", "tab\tbed", None, 42])
    def test_parse_rejects_malformed_values(self, value):
        with pytest.raises(ValidationError) as exc:
            CommitRef.parse(value)
        assert exc.value.code == "VALIDATION_FAILED"

    def test_branch_names_may_contain_slashes(self):
        assert BranchName.parse("deployer/pr/dev") == "deployer/pr/dev"

    def test_try_parse_returns_none_instead_of_raising(self):
        assert StageName.try_parse("") is None
        assert StageName.try_parse("prod") == "prod"

    def test_repr_names_the_type(self):
        assert repr(StageName("dev")) == "StageName('dev')"

    def test_identifiers_work_as_json_keys(self):
        mapping = {StageName("dev"): "x"}
        assert mapping["dev"] == "x"


class TestStatuses:
    """Two-valued build/deploy outcomes."""

    def test_recognized_conclusions(self):
        assert BuildStatus.parse("success") is BuildStatus.SUCCESS
        assert DeployStatus.parse("failure") is DeployStatus.FAILURE

    @pytest.mark.parametrize("conclusion", ["cancelled", "skipped", "timed_out", None, ""])
    def test_other_conclusions_are_discarded(self, conclusion):
        assert BuildStatus.parse(conclusion) is None
        assert DeployStatus.parse(conclusion) is None


class TestControllerInput:
    """Validated process input."""

    def test_create_wraps_identifiers(self):
        controller_input = ControllerInput.create(branch_name="main", commit_ref="abc123")
        assert isinstance(controller_input.branch_name, BranchName)
        assert isinstance(controller_input.commit_ref, CommitRef)

    def test_missing_branch_is_rejected(self):
        with pytest.raises(ValidationError) as exc:
            ControllerInput.create(branch_name=None, commit_ref="abc123")
        assert any("branch_name" in e for e in exc.value.details["errors"])

    def test_empty_commit_is_rejected(self):
        with pytest.raises(ValidationError):
            ControllerInput.create(branch_name="main", commit_ref="")

    def test_input_is_immutable(self):
        controller_input = ControllerInput.create(branch_name="main", commit_ref="abc123")
        with pytest.raises(Exception):
            controller_input.branch_name = BranchName("other")
