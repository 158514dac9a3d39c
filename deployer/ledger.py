"""
Ledger Store - versioned build/deploy history

The ledger is a single JSON document on a dedicated orphan branch:

    {
      "commits": ["<ancestor sha>", ..., "<descendant sha>"],
      "commitByRef": {"<sha>": {"buildStatus": "success", "deployStatus": {"dev": "failure"}}},
      "stageByName": {"dev": {"current": "<sha>"}}
    }

Writes are compare-and-swap on the document's blob sha: load a snapshot,
apply a pure transform, write back conditioned on the snapshot's version.
A concurrent writer makes the write fail with ConflictError. There is no
retry here; the next invocation re-observes the same workflow runs and
converges.
"""

import copy
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .errors import NotFoundError, ProviderError
from .github_client import EMPTY_TREE_SHA, GitHubClient
from .model import BranchName, BuildStatus, CommitRef, DeployStatus, StageName

logger = logging.getLogger("ledger")

LEDGER_COMMIT_MESSAGE = "Save deployer-db.json"


# -----------------------------------------------------------------------------
# Ledger Records
# -----------------------------------------------------------------------------
@dataclass
class CommitEntry:
    build_status: Optional[BuildStatus] = None
    deploy_status: Dict[StageName, DeployStatus] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        if self.build_status is not None:
            data["buildStatus"] = self.build_status.value
        data["deployStatus"] = {
            str(stage): status.value for stage, status in self.deploy_status.items()
        }
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CommitEntry":
        deploy_status = {}
        for stage, status in (data.get("deployStatus") or {}).items():
            parsed = DeployStatus.parse(status)
            if parsed is not None:
                deploy_status[StageName.parse(stage)] = parsed
        return cls(
            build_status=BuildStatus.parse(data.get("buildStatus")),
            deploy_status=deploy_status,
        )


@dataclass
class StageEntry:
    current: CommitRef

    def to_dict(self) -> Dict[str, Any]:
        return {"current": str(self.current)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "StageEntry":
        return cls(current=CommitRef.parse(data["current"]))


@dataclass
class Ledger:
    commits: List[CommitRef] = field(default_factory=list)
    commit_by_ref: Dict[CommitRef, CommitEntry] = field(default_factory=dict)
    stage_by_name: Dict[StageName, StageEntry] = field(default_factory=dict)

    def build_status(self, commit_ref: CommitRef) -> Optional[BuildStatus]:
        entry = self.commit_by_ref.get(commit_ref)
        return entry.build_status if entry else None

    def deploy_status(self, commit_ref: CommitRef, stage_name: StageName) -> Optional[DeployStatus]:
        entry = self.commit_by_ref.get(commit_ref)
        return entry.deploy_status.get(stage_name) if entry else None

    def deployed_commit(self, stage_name: StageName) -> Optional[CommitRef]:
        entry = self.stage_by_name.get(stage_name)
        return entry.current if entry else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "commits": [str(c) for c in self.commits],
            "commitByRef": {str(ref): e.to_dict() for ref, e in self.commit_by_ref.items()},
            "stageByName": {str(name): e.to_dict() for name, e in self.stage_by_name.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Ledger":
        return cls(
            commits=[CommitRef.parse(c) for c in data.get("commits") or []],
            commit_by_ref={
                CommitRef.parse(ref): CommitEntry.from_dict(e)
                for ref, e in (data.get("commitByRef") or {}).items()
            },
            stage_by_name={
                StageName.parse(name): StageEntry.from_dict(e)
                for name, e in (data.get("stageByName") or {}).items()
            },
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2) + "\n"

    @classmethod
    def from_json(cls, text: str) -> "Ledger":
        return cls.from_dict(json.loads(text))


@dataclass(frozen=True)
class LedgerSnapshot:
    """A loaded ledger plus the version token it was read at."""
    ledger: Ledger
    version: str


LedgerTransform = Callable[[Ledger], Ledger]


# -----------------------------------------------------------------------------
# Ledger Store
# -----------------------------------------------------------------------------
class LedgerStore:
    """Loads and CAS-writes the ledger document on its orphan branch."""

    def __init__(
        self,
        github: GitHubClient,
        branch: str,
        path: str,
        flatten_history: bool = True,
    ):
        self.github = github
        self.branch = BranchName.parse(branch)
        self.path = path
        self.flatten_history = flatten_history

    async def load(self) -> Optional[LedgerSnapshot]:
        """Current ledger and version, or None if it was never written."""
        try:
            text, sha = await self.github.get_file(self.path, ref=str(self.branch))
        except NotFoundError:
            return None
        return LedgerSnapshot(ledger=Ledger.from_json(text), version=sha)

    async def save(
        self,
        transform: LedgerTransform,
        snapshot: Optional[LedgerSnapshot],
    ) -> Ledger:
        """
        Apply `transform` to the snapshot (or an empty ledger) and CAS-write it.

        The transform gets a private copy, so it may mutate and return it.
        Raises ConflictError if the document moved since `snapshot` was read.
        """
        base = copy.deepcopy(snapshot.ledger) if snapshot else Ledger()
        new_ledger = transform(base)

        if not await self.github.branch_exists(self.branch):
            await self._create_empty_branch()

        result = await self.github.put_file(
            self.path,
            new_ledger.to_json(),
            message=LEDGER_COMMIT_MESSAGE,
            branch=str(self.branch),
            sha=snapshot.version if snapshot else None,
        )

        if self.flatten_history:
            await self._flatten(result)

        logger.info(f"Saved ledger with {len(new_ledger.commits)} commits")
        return new_ledger

    async def change(self, transform: LedgerTransform) -> Ledger:
        """Load, transform and write once. No retry on conflict."""
        return await self.save(transform, await self.load())

    async def _create_empty_branch(self) -> None:
        logger.info(f"Creating ledger branch {self.branch}")
        sha = await self.github.create_commit(LEDGER_COMMIT_MESSAGE, EMPTY_TREE_SHA)
        await self.github.create_branch(self.branch, sha)

    async def _flatten(self, put_result: Dict[str, Any]) -> None:
        # Re-point the branch at a parentless commit of the same tree
        commit = put_result.get("commit") or {}
        tree = (commit.get("tree") or {}).get("sha")
        if tree is None:
            raise ProviderError("Ledger write returned no commit tree")
        sha = await self.github.create_commit(commit.get("message", LEDGER_COMMIT_MESSAGE), tree)
        await self.github.update_branch(self.branch, sha, force=True)
