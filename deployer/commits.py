"""
Commit Reconciler

Folds this cycle's build and deploy workflow runs into the ledger:
1. Re-sort the union of known and newly observed commits by ancestry
2. Upsert build status per commit
3. Upsert deploy status per (commit, stage)
4. Point each stage with a finished deploy run at its latest run's commit
5. CAS-write the ledger once

Ordering caveat: when one fetch holds several runs for the same commit, the
last one applied wins. The provider lists runs newest first, so that is the
oldest of them. This is known, order-dependent behavior; a later cycle does
not fix it either, since it sees the same listing.
"""

import logging
from typing import Dict, List, Optional

from .ancestry import GitAncestry
from .errors import ProviderError
from .ledger import CommitEntry, Ledger, LedgerStore, StageEntry
from .model import CommitRef, ControllerInput, StageName
from .workflow import BuildRun, DeployRun, WorkflowRuns

logger = logging.getLogger("commit_reconciler")


def latest_deploy_runs_by_stage(deploy_runs: List[DeployRun]) -> Dict[StageName, DeployRun]:
    """Latest finished run per stage; on equal finish times the first listed wins."""
    latest: Dict[StageName, DeployRun] = {}
    for run in deploy_runs:
        current = latest.get(run.stage_name)
        if current is None or run.finished_at > current.finished_at:
            latest[run.stage_name] = run
    return latest


def apply_runs(
    ledger: Ledger,
    ordered_commits: List[CommitRef],
    build_runs: List[BuildRun],
    deploy_runs: List[DeployRun],
) -> Ledger:
    """Merge one cycle's observations into `ledger` (mutated and returned)."""
    ledger.commits = list(ordered_commits)

    for build_run in build_runs:
        entry = ledger.commit_by_ref.setdefault(build_run.commit_ref, CommitEntry())
        entry.build_status = build_run.build_status

    for deploy_run in deploy_runs:
        entry = ledger.commit_by_ref.setdefault(deploy_run.commit_ref, CommitEntry())
        entry.deploy_status[deploy_run.stage_name] = deploy_run.deploy_status

    for stage_name, deploy_run in latest_deploy_runs_by_stage(deploy_runs).items():
        ledger.stage_by_name[stage_name] = StageEntry(current=deploy_run.commit_ref)

    return ledger


class CommitReconciler:
    """Keeps the ledger in step with the branch's workflow run history."""

    def __init__(
        self,
        ledger_store: LedgerStore,
        workflow_runs: WorkflowRuns,
        ancestry: GitAncestry,
    ):
        self.ledger_store = ledger_store
        self.workflow_runs = workflow_runs
        self.ancestry = ancestry

    async def reconcile(self, controller_input: ControllerInput) -> Optional[Ledger]:
        """Run one reconciliation; returns the written ledger or None if idle."""
        logger.info("Control commits")

        branch_name = controller_input.branch_name
        build_runs = await self.workflow_runs.fetch_build_runs(branch_name)
        deploy_runs = await self.workflow_runs.fetch_finished_deploy_runs(branch_name)
        logger.info(f"Observed {len(build_runs)} build runs and {len(deploy_runs)} finished deploy runs")

        snapshot = await self.ledger_store.load()
        known_commits = snapshot.ledger.commits if snapshot else []

        commit_refs = list(dict.fromkeys([
            *known_commits,
            *(run.commit_ref for run in build_runs),
            *(run.commit_ref for run in deploy_runs),
        ]))

        if not commit_refs:
            logger.info("No commits observed yet, nothing to reconcile")
            return None

        ordered_commits = await self.ancestry.order(commit_refs)

        unresolved = set(commit_refs) - set(ordered_commits)
        if unresolved:
            raise ProviderError(
                f"Could not order {len(unresolved)} commits by ancestry",
                details={"unresolved": sorted(unresolved)},
            )

        return await self.ledger_store.save(
            lambda ledger: apply_runs(ledger, ordered_commits, build_runs, deploy_runs),
            snapshot,
        )
