"""
Desired-State Proposal Manager

Keeps one proposal branch (`deployer/pr/<stage>`) and one open pull request
that would move the stage's desired commit in deployment.json to the most
recent deployable commit. Merging the PR is the human approval step.

Each cycle:
1. Pick the most recent commit whose build passed and which is not a
   config-only commit (those are the proposals themselves; promoting them
   would feed the loop)
2. Nothing to pick, or already desired -> tear the proposal down
3. Reset the proposal branch to the target branch head
4. Write the new desired commit into the proposal branch's config (CAS,
   retried on conflict only)
5. Make sure a PR from the proposal branch exists
"""

import logging
from typing import List, Optional

from .deployment_config import DeploymentConfigStore
from .errors import ConflictError, NotFoundError
from .github_client import GitHubClient
from .ledger import LedgerStore
from .model import BranchName, BuildStatus, CommitRef, ControllerInput, StageName
from .retry import retry

logger = logging.getLogger("proposal_manager")


class ProposalManager:
    """Maintains the desired-state proposal branch and PR for one stage."""

    def __init__(
        self,
        github: GitHubClient,
        ledger_store: LedgerStore,
        config_store: DeploymentConfigStore,
        stage_name: StageName,
        proposal_branch: BranchName,
        max_attempts: int = 5,
    ):
        self.github = github
        self.ledger_store = ledger_store
        self.config_store = config_store
        self.stage_name = stage_name
        self.proposal_branch = proposal_branch
        self.max_attempts = max_attempts

    @property
    def title(self) -> str:
        return f"Update deployment config for \"{self.stage_name}\" stage"

    async def run(self, controller_input: ControllerInput) -> None:
        logger.info("Control pull request")

        target_branch = controller_input.branch_name
        candidate = await self.find_deployable_commit()

        if candidate is None:
            logger.info("No deployable commit found")
            await self.tear_down(target_branch)
            return

        config = await self.config_store.get(target_branch)
        if config is None:
            logger.warning(f"No deployment config found on \"{target_branch}\". Nothing to propose against.")
            return

        logger.info(f"Current deployment config: {config.to_json().strip()}")

        if config.is_desired_commit_for_stage(candidate, self.stage_name):
            logger.info(f"Commit \"{candidate}\" is already desired on stage \"{self.stage_name}\"")
            await self.tear_down(target_branch)
            return

        await self.propose(target_branch, candidate)

    async def find_deployable_commit(self) -> Optional[CommitRef]:
        """Most recent built commit that changes more than the deployment config."""
        snapshot = await self.ledger_store.load()
        if snapshot is None:
            return None
        ledger = snapshot.ledger

        # Ledger commits are ancestors-first; most recent is last
        for commit_ref in reversed(ledger.commits):
            if ledger.build_status(commit_ref) != BuildStatus.SUCCESS:
                continue
            files = await self.github.get_commit_files(commit_ref)
            if self._is_config_only(files):
                logger.info(f"Skipping config-only commit \"{commit_ref}\"")
                continue
            logger.info(f"Most recent deployable commit ref: \"{commit_ref}\"")
            return commit_ref
        return None

    def _is_config_only(self, files: List[str]) -> bool:
        return len(files) == 1 and files[0] == self.config_store.path

    async def propose(self, target_branch: BranchName, commit_ref: CommitRef) -> None:
        logger.info(f"Create PR with new desired commit ref \"{commit_ref}\"")

        await self.reset_branch(target_branch)

        def should_retry(error: Exception, attempt: int) -> bool:
            logger.warning(f"Failed to create deployment config commit on attempt #{attempt}: {error}")
            return isinstance(error, ConflictError)

        await retry(
            lambda: self.write_desired_commit(commit_ref),
            self.max_attempts,
            should_retry,
        )

        await self.ensure_pull_request(target_branch)

    async def reset_branch(self, target_branch: BranchName) -> None:
        """Point the proposal branch at the target branch head, dropping old proposals."""
        head = await self.github.get_branch_head(target_branch)

        if await self.github.branch_exists(self.proposal_branch):
            logger.info(f"Branch \"{self.proposal_branch}\" exists, resetting to {head}")
            await self.github.update_branch(self.proposal_branch, head, force=True)
        else:
            logger.info(f"Branch \"{self.proposal_branch}\" does not exist, creating at {head}")
            await self.github.create_branch(self.proposal_branch, head)

    async def write_desired_commit(self, commit_ref: CommitRef) -> None:
        logger.info(f"Update deployment config with new desired commit ref \"{commit_ref}\"")

        snapshot = await self.config_store.load(self.proposal_branch)
        if snapshot is None:
            raise NotFoundError(
                f"No deployment config found on \"{self.proposal_branch}\"",
                {"path": self.config_store.path, "branch": self.proposal_branch},
            )

        new_config = snapshot.config.set_desired_commit_for_stage(commit_ref, self.stage_name)

        await self.config_store.save(
            new_config,
            snapshot.version,
            self.proposal_branch,
            message=f"Update deployments.{self.stage_name}",
        )

    async def ensure_pull_request(self, target_branch: BranchName) -> int:
        number = await self.github.find_open_pull_request(self.proposal_branch, target_branch)
        if number is not None:
            logger.info(f"PR already exists: #{number}")
            return number

        logger.info("Create PR")
        number = await self.github.create_pull_request(
            title=self.title,
            head=self.proposal_branch,
            base=target_branch,
            body=self.title,
        )
        logger.info(f"Created PR #{number}")
        return number

    async def tear_down(self, target_branch: BranchName) -> None:
        """Delete the proposal branch and close its open PR, if any."""
        logger.info("Delete PR")

        if await self.github.branch_exists(self.proposal_branch):
            await self.github.delete_branch(self.proposal_branch)
            logger.info(f"Deleted branch \"{self.proposal_branch}\"")

        # GitHub usually closes the PR with its branch; look anyway
        number = await self.github.find_open_pull_request(self.proposal_branch, target_branch)
        if number is None:
            return

        await self.github.close_pull_request(number)
        logger.info(f"Closed PR #{number}")
