"""
Deployment Gate

Decides, per stage, whether a new deploy workflow run should be dispatched.

Guard chain (evaluated in order, first halt wins):
- no_deployment_config: no deployment.json on the branch
- no_desired_commit: stage has no desired commit
- build_not_passed: desired commit's build is not recorded as success
- already_deployed: desired commit is the stage's current commit and deployed successfully
- deployment_in_progress: a deploy run for the stage is queued or running
- deployed_and_failed: desired commit is current on the stage but its deploy failed
- previous_deployment_failed: desired commit failed a deploy to the stage before

If no guard halts, the deploy workflow is dispatched with {stage, commit} and
the outcome is picked up by the commit reconciler on a later cycle.

The two failure guards are pass-through unless `contain_failed_deployments`
is enabled. With them passing, a failed deploy leaves the stage's current
commit at the failed commit with status failure, `already_deployed` never
matches, and the same commit is dispatched again every cycle.
"""

import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from .deployment_config import DeploymentConfig, DeploymentConfigStore
from .errors import DeployerError
from .ledger import Ledger, LedgerStore
from .model import BranchName, BuildStatus, ControllerInput, DeployStatus, StageName
from .workflow import WorkflowRuns

logger = logging.getLogger("deployment_gate")


@dataclass(frozen=True)
class GuardContext:
    """Everything a guard may look at for one stage."""
    branch_name: BranchName
    config: Optional[DeploymentConfig]
    ledger: Ledger
    stage_name: Optional[StageName] = None

    @property
    def desired_commit(self):
        if self.config is None or self.stage_name is None:
            return None
        return self.config.get_desired_commit(self.stage_name)


@dataclass(frozen=True)
class Guard:
    name: str
    check: Callable[[GuardContext], Awaitable[Optional[str]]]


@dataclass(frozen=True)
class GateDecision:
    stage_name: Optional[StageName]
    dispatch: bool
    guard: Optional[str] = None
    reason: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stage": self.stage_name,
            "dispatch": self.dispatch,
            "guard": self.guard,
            "reason": self.reason,
        }


class DeploymentGate:
    """Runs the guard chain for every configured stage."""

    def __init__(
        self,
        config_store: DeploymentConfigStore,
        ledger_store: LedgerStore,
        workflow_runs: WorkflowRuns,
        contain_failed_deployments: bool = False,
    ):
        self.config_store = config_store
        self.ledger_store = ledger_store
        self.workflow_runs = workflow_runs
        self.contain_failed_deployments = contain_failed_deployments
        self.guards: List[Guard] = [
            Guard("no_deployment_config", self._check_no_deployment_config),
            Guard("no_desired_commit", self._check_no_desired_commit),
            Guard("build_not_passed", self._check_build_not_passed),
            Guard("already_deployed", self._check_already_deployed),
            Guard("deployment_in_progress", self._check_deployment_in_progress),
            Guard("deployed_and_failed", self._check_deployed_and_failed),
            Guard("previous_deployment_failed", self._check_previous_deployment_failed),
        ]

    async def run(self, controller_input: ControllerInput) -> List[GateDecision]:
        logger.info("## Control deployment")

        branch_name = controller_input.branch_name
        config = await self.config_store.get(branch_name)
        snapshot = await self.ledger_store.load()
        ledger = snapshot.ledger if snapshot else Ledger()

        if config is None:
            return [await self.evaluate(GuardContext(branch_name, None, ledger))]

        decisions = []
        errors = []
        for stage_name in config.stages():
            context = GuardContext(branch_name, config, ledger, stage_name)
            try:
                decision = await self.evaluate(context)
                if decision.dispatch:
                    logger.info(
                        f"Starting deployment of commit \"{context.desired_commit}\" on stage \"{stage_name}\""
                    )
                    await self.workflow_runs.dispatch_deployment(
                        branch_name, stage_name, context.desired_commit
                    )
            except DeployerError as e:
                # Other stages still get their turn; the phase fails below
                logger.error(f"Error while controlling stage \"{stage_name}\": {e}")
                errors.append(e)
                continue
            decisions.append(decision)

        if errors:
            raise errors[0]
        return decisions

    async def evaluate(self, context: GuardContext) -> GateDecision:
        """Walk the guard chain; no side effects."""
        for guard in self.guards:
            reason = await guard.check(context)
            if reason is not None:
                logger.info(f"{reason} Doing nothing.")
                return GateDecision(context.stage_name, False, guard.name, reason)
        return GateDecision(context.stage_name, True)

    # -------------------------------------------------------------------------
    # Guards
    # -------------------------------------------------------------------------
    async def _check_no_deployment_config(self, context: GuardContext) -> Optional[str]:
        if context.config is None:
            logger.warning("No deployment config found.")
            return "No deployment config found."
        return None

    async def _check_no_desired_commit(self, context: GuardContext) -> Optional[str]:
        # TODO: undeploy the stage instead once the deploy workflow supports it
        if context.desired_commit is None:
            return f"No commit ref found for stage \"{context.stage_name}\"."
        return None

    async def _check_build_not_passed(self, context: GuardContext) -> Optional[str]:
        commit_ref = context.desired_commit
        if context.ledger.build_status(commit_ref) != BuildStatus.SUCCESS:
            return f"Commit \"{commit_ref}\" is not marked as build passed and cannot be deployed."
        return None

    async def _check_already_deployed(self, context: GuardContext) -> Optional[str]:
        commit_ref = context.desired_commit
        deployed = context.ledger.deployed_commit(context.stage_name)
        logger.info(f"Deployed commit ref on stage \"{context.stage_name}\": \"{deployed}\"")
        if deployed != commit_ref:
            return None
        if context.ledger.deploy_status(commit_ref, context.stage_name) == DeployStatus.SUCCESS:
            return f"Commit \"{commit_ref}\" is already deployed on stage \"{context.stage_name}\"."
        return None

    async def _check_deployment_in_progress(self, context: GuardContext) -> Optional[str]:
        if await self.workflow_runs.is_deployment_in_progress(context.branch_name, context.stage_name):
            return f"Another deployment is already in progress on stage \"{context.stage_name}\"."
        return None

    async def _check_deployed_and_failed(self, context: GuardContext) -> Optional[str]:
        if not self.contain_failed_deployments:
            return None
        commit_ref = context.desired_commit
        if context.ledger.deployed_commit(context.stage_name) != commit_ref:
            return None
        if context.ledger.deploy_status(commit_ref, context.stage_name) == DeployStatus.FAILURE:
            return (
                f"Commit \"{commit_ref}\" is already deployed on stage "
                f"\"{context.stage_name}\" but failed."
            )
        return None

    async def _check_previous_deployment_failed(self, context: GuardContext) -> Optional[str]:
        if not self.contain_failed_deployments:
            return None
        commit_ref = context.desired_commit
        if context.ledger.deploy_status(commit_ref, context.stage_name) == DeployStatus.FAILURE:
            return (
                f"Commit \"{commit_ref}\" cannot be deployed on stage "
                f"\"{context.stage_name}\" because it failed previous deployment."
            )
        return None
