"""
Controller - one reconciliation cycle

Runs the three phases in a fixed order:
1. Commit reconciler (ledger <- workflow runs)
2. Proposal manager (proposal branch/PR <- ledger + config)
3. Deployment gate (deploy dispatch <- ledger + config)

Each phase is isolated: an exception is logged and the next phase still
runs, so a failing PR call cannot hold back a deployment that is ready.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List

from .ancestry import GitAncestry
from .commits import CommitReconciler
from .deployment import DeploymentGate
from .deployment_config import DeploymentConfigStore
from .github_client import GitHubClient
from .ledger import LedgerStore
from .model import BranchName, ControllerInput, StageName
from .pull_request import ProposalManager
from .settings import Settings
from .workflow import WorkflowRuns

logger = logging.getLogger("deployer_controller")


@dataclass
class ControlReport:
    """Which phases ran clean in a cycle. Logged, never raised."""
    completed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    def to_dict(self) -> Dict[str, Any]:
        return {"completed": self.completed, "failed": self.failed, "ok": self.ok}


class Controller:
    """Wires the phases together and runs them once per invocation."""

    def __init__(
        self,
        reconciler: CommitReconciler,
        proposal_manager: ProposalManager,
        gate: DeploymentGate,
    ):
        self.reconciler = reconciler
        self.proposal_manager = proposal_manager
        self.gate = gate

    @classmethod
    def from_settings(cls, settings: Settings, github: GitHubClient) -> "Controller":
        ledger_store = LedgerStore(
            github,
            branch=settings.ledger_branch,
            path=settings.ledger_path,
            flatten_history=settings.ledger_flatten_history,
        )
        config_store = DeploymentConfigStore(github, settings.config_path)
        workflow_runs = WorkflowRuns(github, settings.build_workflow, settings.deploy_workflow)
        stage_name = StageName.parse(settings.proposal_stage)

        return cls(
            reconciler=CommitReconciler(ledger_store, workflow_runs, GitAncestry(settings.git_dir)),
            proposal_manager=ProposalManager(
                github,
                ledger_store,
                config_store,
                stage_name=stage_name,
                proposal_branch=BranchName.parse(settings.proposal_branch(stage_name)),
                max_attempts=settings.max_config_commit_attempts,
            ),
            gate=DeploymentGate(
                config_store,
                ledger_store,
                workflow_runs,
                contain_failed_deployments=settings.contain_failed_deployments,
            ),
        )

    async def control(self, controller_input: ControllerInput) -> ControlReport:
        logger.info(
            f"# Control started for branch \"{controller_input.branch_name}\" "
            f"and commit \"{controller_input.commit_ref}\""
        )

        report = ControlReport()
        phases = [
            ("commits", self.reconciler.reconcile, logging.WARNING),
            ("pull request", self.proposal_manager.run, logging.WARNING),
            ("deployment", self.gate.run, logging.ERROR),
        ]
        for name, phase, level in phases:
            await self._run_phase(report, name, phase, controller_input, level)

        logger.info(f"# Control finished: {report.to_dict()}")
        return report

    async def _run_phase(
        self,
        report: ControlReport,
        name: str,
        phase: Callable[[ControllerInput], Awaitable[Any]],
        controller_input: ControllerInput,
        level: int,
    ) -> None:
        try:
            await phase(controller_input)
        except Exception as e:
            logger.log(level, f"Error while controlling {name}: {e}", exc_info=True)
            report.failed[name] = str(e)
            return
        report.completed.append(name)
