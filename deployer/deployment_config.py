"""
Deployment Config - desired-state document

`deployment.json` maps each stage to the commit it should run:

    {"deployments": {"dev": "3f2a...", "prod": null}}

The canonical copy lives on the target branch and is only changed by humans
merging a proposal PR. The controller writes the working copy on the proposal
branch, with the same compare-and-swap discipline as the ledger.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from .errors import NotFoundError
from .github_client import GitHubClient
from .model import BranchName, CommitRef, StageName

logger = logging.getLogger("deployment_config")


class DeploymentConfig(BaseModel):
    """Desired commit per stage. Unknown top-level keys are kept on write."""
    model_config = ConfigDict(frozen=True, extra="allow")

    deployments: Dict[StageName, Optional[CommitRef]] = {}

    @field_validator("deployments", mode="before")
    @classmethod
    def _blank_means_absent(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {k: (v if v != "" else None) for k, v in value.items()}
        return value

    def stages(self) -> List[StageName]:
        return sorted(self.deployments)

    def get_desired_commit(self, stage_name: StageName) -> Optional[CommitRef]:
        return self.deployments.get(stage_name)

    def is_desired_commit_for_stage(self, commit_ref: CommitRef, stage_name: StageName) -> bool:
        return self.deployments.get(stage_name) == commit_ref

    def set_desired_commit_for_stage(
        self,
        commit_ref: CommitRef,
        stage_name: StageName,
    ) -> "DeploymentConfig":
        """Return a new config; this one is left untouched."""
        deployments = dict(self.deployments)
        deployments[stage_name] = commit_ref
        return self.model_copy(update={"deployments": deployments})

    def to_json(self) -> str:
        return json.dumps(self.model_dump(mode="json"), indent=2) + "\n"

    @classmethod
    def from_json(cls, text: str) -> "DeploymentConfig":
        return cls.model_validate_json(text)


@dataclass(frozen=True)
class ConfigSnapshot:
    config: DeploymentConfig
    version: str


class DeploymentConfigStore:
    """Reads and CAS-writes deployment.json on a given branch."""

    def __init__(self, github: GitHubClient, path: str):
        self.github = github
        self.path = path

    async def load(self, branch_name: Optional[BranchName] = None) -> Optional[ConfigSnapshot]:
        """
        Config and version on `branch_name` (default branch if None).

        Returns None if the file does not exist there.
        """
        try:
            text, sha = await self.github.get_file(
                self.path,
                ref=str(branch_name) if branch_name else None,
            )
        except NotFoundError:
            return None
        return ConfigSnapshot(config=DeploymentConfig.from_json(text), version=sha)

    async def get(self, branch_name: Optional[BranchName] = None) -> Optional[DeploymentConfig]:
        snapshot = await self.load(branch_name)
        return snapshot.config if snapshot else None

    async def save(
        self,
        config: DeploymentConfig,
        version: str,
        branch_name: BranchName,
        message: str,
    ) -> None:
        """Write `config` only if the file is still at `version`."""
        await self.github.put_file(
            self.path,
            config.to_json(),
            message=message,
            branch=str(branch_name),
            sha=version,
        )
        logger.info(f"Wrote {self.path} on {branch_name}")
