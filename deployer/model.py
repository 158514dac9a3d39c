"""
Deployer Model

Nominal identifier types and the controller's boundary input.

CommitRef, BranchName and StageName are distinct `str` subclasses. They are
validated exactly once, where a raw string enters the controller (process
input, workflow run payloads, JSON documents). Code past that boundary takes
the types as given and never re-validates.
"""

from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import core_schema

from .errors import ValidationError


class Identifier(str):
    """Base for validated, non-empty identifier strings."""

    kind = "identifier"

    @classmethod
    def problems(cls, value: Any) -> List[str]:
        if not isinstance(value, str):
            return [f"{cls.kind} must be a string, got {type(value).__name__}"]
        if value == "":
            return [f"{cls.kind} must not be empty"]
        if any(ch.isspace() for ch in value):
            return [f"{cls.kind} must not contain whitespace: {value!r}"]
        return []

    @classmethod
    def parse(cls, value: Any):
        """Validate a raw value and wrap it, raising ValidationError."""
        errors = cls.problems(value)
        if errors:
            raise ValidationError(errors)
        return cls(value)

    @classmethod
    def try_parse(cls, value: Any):
        """Like parse(), but returns None for invalid input."""
        if cls.problems(value):
            return None
        return cls(value)

    @classmethod
    def _validate_for_model(cls, value: str):
        errors = cls.problems(value)
        if errors:
            raise ValueError("; ".join(errors))
        return cls(value)

    @classmethod
    def __get_pydantic_core_schema__(cls, source_type, handler):
        return core_schema.no_info_after_validator_function(
            cls._validate_for_model,
            core_schema.str_schema(),
            serialization=core_schema.to_string_ser_schema(),
        )

    def __repr__(self) -> str:
        return f"{type(self).__name__}({str.__repr__(self)})"


class CommitRef(Identifier):
    kind = "commit ref"


class BranchName(Identifier):
    kind = "branch name"


class StageName(Identifier):
    kind = "stage name"


class BuildStatus(str, Enum):
    """Outcome of a build workflow run for a commit."""
    SUCCESS = "success"
    FAILURE = "failure"

    @classmethod
    def parse(cls, conclusion: Optional[str]) -> Optional["BuildStatus"]:
        """Map a run conclusion; anything but success/failure is None."""
        try:
            return cls(conclusion)
        except ValueError:
            return None


class DeployStatus(str, Enum):
    """Outcome of a deploy workflow run for a (commit, stage) pair."""
    SUCCESS = "success"
    FAILURE = "failure"

    @classmethod
    def parse(cls, conclusion: Optional[str]) -> Optional["DeployStatus"]:
        try:
            return cls(conclusion)
        except ValueError:
            return None


class ControllerInput(BaseModel):
    """Branch and commit the controller was invoked for."""
    model_config = ConfigDict(frozen=True)

    branch_name: BranchName
    commit_ref: CommitRef

    @classmethod
    def create(cls, branch_name: Any, commit_ref: Any) -> "ControllerInput":
        """Build from raw values, raising the deployer ValidationError."""
        try:
            return cls(branch_name=branch_name, commit_ref=commit_ref)
        except PydanticValidationError as e:
            raise ValidationError([
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
                for err in e.errors()
            ])
