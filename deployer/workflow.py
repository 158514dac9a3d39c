"""
Workflow Runs - build/deploy run reconstruction

Build and deploy outcomes are never stored as records of their own. Each
cycle they are rebuilt from the workflow run history of the branch:

- BuildRun: a build workflow run whose conclusion is success or failure
- DeployRun: a finished deploy workflow run whose name carries `stage=<name>`
  (and usually `commit=<sha>`), e.g. "Deploy stage=dev commit=3f2a..."

Deploy workflows must set their `run-name` accordingly; runs that don't are
skipped with a warning.
"""

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from .errors import NotFoundError
from .github_client import GitHubClient
from .model import BranchName, BuildStatus, CommitRef, DeployStatus, StageName

logger = logging.getLogger("workflow")

STAGE_PATTERN = re.compile(r"stage=(\w+)")
COMMIT_PATTERN = re.compile(r"commit=(\w+)")

# Live statuses of a run that has not finished yet
IN_PROGRESS_STATUSES = frozenset({
    "queued",
    "in_progress",
    "pending",
    "waiting",
    "requested",
})


def parse_stage_name(run_name: str) -> Optional[StageName]:
    match = STAGE_PATTERN.search(run_name or "")
    if match is None:
        return None
    return StageName.try_parse(match.group(1))


def parse_commit_ref(run_name: str) -> Optional[CommitRef]:
    match = COMMIT_PATTERN.search(run_name or "")
    if match is None:
        return None
    return CommitRef.try_parse(match.group(1))


def parse_timestamp(value: str) -> datetime:
    """Parse GitHub's ISO-8601 timestamps ("2024-05-01T10:00:00Z")."""
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


def _warn_unparseable_stage(run: Dict[str, Any]) -> None:
    logger.warning(
        f"Could not parse stage name from deploy workflow name \"{run.get('name')}\". "
        f"This usually means the deploy workflow is not configured correctly to work with deployer."
    )


@dataclass(frozen=True)
class BuildRun:
    commit_ref: CommitRef
    build_status: BuildStatus


@dataclass(frozen=True)
class DeployRun:
    commit_ref: CommitRef
    stage_name: StageName
    deploy_status: DeployStatus
    started_at: datetime
    finished_at: datetime


def build_run_from_payload(run: Dict[str, Any]) -> Optional[BuildRun]:
    build_status = BuildStatus.parse(run.get("conclusion"))
    if build_status is None:
        return None
    return BuildRun(
        commit_ref=CommitRef.parse(run["head_sha"]),
        build_status=build_status,
    )


def deploy_run_from_payload(run: Dict[str, Any]) -> Optional[DeployRun]:
    """Rebuild a finished DeployRun; None for unfinished or unparseable runs."""
    deploy_status = DeployStatus.parse(run.get("conclusion"))
    if deploy_status is None:
        return None

    stage_name = parse_stage_name(run.get("name"))
    if stage_name is None:
        _warn_unparseable_stage(run)
        return None

    # Deploys are dispatched on the branch head; the deployed commit is in the name
    commit_ref = parse_commit_ref(run.get("name")) or CommitRef.parse(run["head_sha"])

    return DeployRun(
        commit_ref=commit_ref,
        stage_name=stage_name,
        deploy_status=deploy_status,
        started_at=parse_timestamp(run["created_at"]),
        finished_at=parse_timestamp(run["updated_at"]),
    )


class WorkflowRuns:
    """Reads build and deploy workflow runs for a branch."""

    def __init__(self, github: GitHubClient, build_workflow: str, deploy_workflow: str):
        self.github = github
        self.build_workflow = build_workflow
        self.deploy_workflow = deploy_workflow

    async def _list_runs(self, workflow: str, branch_name: BranchName) -> List[Dict[str, Any]]:
        try:
            return await self.github.list_workflow_runs(workflow, branch_name)
        except NotFoundError:
            logger.info(f"Workflow {workflow} not found, treating as no runs")
            return []

    async def fetch_build_runs(self, branch_name: BranchName) -> List[BuildRun]:
        runs = await self._list_runs(self.build_workflow, branch_name)
        build_runs = []
        for run in runs:
            build_run = build_run_from_payload(run)
            if build_run is not None:
                build_runs.append(build_run)
        return build_runs

    async def fetch_finished_deploy_runs(self, branch_name: BranchName) -> List[DeployRun]:
        runs = await self._list_runs(self.deploy_workflow, branch_name)
        deploy_runs = []
        for run in runs:
            deploy_run = deploy_run_from_payload(run)
            if deploy_run is not None:
                deploy_runs.append(deploy_run)
        return deploy_runs

    async def is_deployment_in_progress(
        self,
        branch_name: BranchName,
        stage_name: StageName,
    ) -> bool:
        """True if any deploy run for the stage is queued or running."""
        runs = await self._list_runs(self.deploy_workflow, branch_name)
        for run in runs:
            run_stage = parse_stage_name(run.get("name"))
            if run_stage is None:
                _warn_unparseable_stage(run)
                continue
            if run_stage != stage_name:
                continue
            if run.get("status") in IN_PROGRESS_STATUSES:
                return True
        return False

    async def dispatch_deployment(
        self,
        branch_name: BranchName,
        stage_name: StageName,
        commit_ref: CommitRef,
    ) -> None:
        await self.github.dispatch_workflow(
            self.deploy_workflow,
            branch_name,
            {"stage": str(stage_name), "commit": str(commit_ref)},
        )
