"""
GitHub Client - REST capabilities consumed by the controller

Thin async wrapper over the GitHub REST API. It exposes only what the
controller needs:
- File contents read/write (compare-and-swap on the blob sha)
- Ref management (exists / create / force-update / delete) and bare commits
- Workflow run listing and workflow dispatch
- Commit file inspection
- Pull request search / create / close

HTTP status mapping:
- 404 -> NotFoundError
- 409 -> ConflictError (stale sha on a contents write)
- anything else >= 400, or a transport failure -> ProviderError
"""

import base64
import logging
from typing import Any, Dict, List, Optional, Tuple

import httpx

from .errors import ConflictError, NotFoundError, ProviderError
from .model import BranchName, CommitRef
from .settings import Settings

logger = logging.getLogger("github_client")

# git's well-known empty tree object
EMPTY_TREE_SHA = "4b825dc642cb6eb9a060e54bf8d69288fbee4904"

WORKFLOW_RUNS_PAGE_SIZE = 100


class GitHubClient:
    """Async GitHub REST client bound to a single repository."""

    def __init__(
        self,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.settings = settings
        self.owner = settings.owner
        self.repo = settings.repo
        self.headers = {
            "Authorization": f"token {settings.github_token}",
            "Accept": "application/vnd.github.v3+json",
        }
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            base_url=settings.api_url,
            timeout=settings.http_timeout,
        )

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    # -------------------------------------------------------------------------
    # Transport
    # -------------------------------------------------------------------------
    def _repo_path(self, suffix: str) -> str:
        return f"/repos/{self.owner}/{self.repo}/{suffix}"

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method,
                path,
                params=params,
                json=json,
                headers=self.headers,
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"{method} {path} failed: {e}") from e

        if response.status_code == 404:
            raise NotFoundError(f"{method} {path}: not found", {"path": path})
        if response.status_code == 409:
            raise ConflictError(f"{method} {path}: conflict", {"path": path})
        if response.status_code >= 400:
            raise ProviderError(
                f"{method} {path} returned {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response

    # -------------------------------------------------------------------------
    # File contents
    # -------------------------------------------------------------------------
    async def get_file(
        self,
        path: str,
        ref: Optional[str] = None,
    ) -> Tuple[str, str]:
        """Return (decoded text, blob sha). Raises NotFoundError if absent."""
        params = {"ref": ref} if ref else None
        response = await self._request("GET", self._repo_path(f"contents/{path}"), params=params)
        data = response.json()

        if not isinstance(data, dict) or data.get("content") is None:
            raise NotFoundError(f"{path} is not a file", {"path": path, "ref": ref})

        text = base64.b64decode(data["content"]).decode("utf-8")
        return text, data["sha"]

    async def put_file(
        self,
        path: str,
        content: str,
        message: str,
        branch: str,
        sha: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create or update a file, conditioned on `sha`.

        A stale sha is answered with 409. Creating (no sha) over an existing
        file is answered with 422; both mean someone else wrote first.
        """
        body = {
            "message": message,
            "content": base64.b64encode(content.encode("utf-8")).decode("ascii"),
            "branch": branch,
            "committer": self.settings.committer,
        }
        if sha is not None:
            body["sha"] = sha

        try:
            response = await self._request("PUT", self._repo_path(f"contents/{path}"), json=body)
        except ProviderError as e:
            if sha is None and e.status_code == 422:
                raise ConflictError(
                    f"{path} on {branch} was created concurrently",
                    {"path": path, "branch": branch},
                ) from e
            raise

        return response.json()

    # -------------------------------------------------------------------------
    # Refs and commits
    # -------------------------------------------------------------------------
    async def branch_exists(self, branch: BranchName) -> bool:
        try:
            await self._request("GET", self._repo_path(f"git/ref/heads/{branch}"))
        except NotFoundError:
            return False
        return True

    async def get_branch_head(self, branch: BranchName) -> CommitRef:
        response = await self._request("GET", self._repo_path(f"branches/{branch}"))
        return CommitRef.parse(response.json()["commit"]["sha"])

    async def create_commit(
        self,
        message: str,
        tree: str,
        parents: Optional[List[str]] = None,
    ) -> CommitRef:
        response = await self._request(
            "POST",
            self._repo_path("git/commits"),
            json={"message": message, "tree": tree, "parents": parents or []},
        )
        return CommitRef.parse(response.json()["sha"])

    async def create_branch(self, branch: BranchName, sha: str) -> None:
        await self._request(
            "POST",
            self._repo_path("git/refs"),
            json={"ref": f"refs/heads/{branch}", "sha": sha},
        )

    async def update_branch(self, branch: BranchName, sha: str, force: bool = True) -> None:
        await self._request(
            "PATCH",
            self._repo_path(f"git/refs/heads/{branch}"),
            json={"sha": sha, "force": force},
        )

    async def delete_branch(self, branch: BranchName) -> None:
        await self._request("DELETE", self._repo_path(f"git/refs/heads/{branch}"))

    async def get_commit_files(self, ref: CommitRef) -> List[str]:
        """File names changed by a commit."""
        response = await self._request("GET", self._repo_path(f"commits/{ref}"))
        return [f["filename"] for f in response.json().get("files") or []]

    # -------------------------------------------------------------------------
    # Workflows
    # -------------------------------------------------------------------------
    async def list_workflow_runs(self, workflow: str, branch: BranchName) -> List[Dict[str, Any]]:
        """Most recent runs of a workflow on a branch, newest first."""
        response = await self._request(
            "GET",
            self._repo_path(f"actions/workflows/{workflow}/runs"),
            params={"branch": str(branch), "per_page": WORKFLOW_RUNS_PAGE_SIZE},
        )
        return response.json().get("workflow_runs", [])

    async def dispatch_workflow(
        self,
        workflow: str,
        ref: BranchName,
        inputs: Dict[str, str],
    ) -> None:
        await self._request(
            "POST",
            self._repo_path(f"actions/workflows/{workflow}/dispatches"),
            json={"ref": str(ref), "inputs": inputs},
        )

    # -------------------------------------------------------------------------
    # Pull requests
    # -------------------------------------------------------------------------
    async def find_open_pull_request(
        self,
        head: BranchName,
        base: BranchName,
    ) -> Optional[int]:
        response = await self._request(
            "GET",
            "/search/issues",
            params={"q": f"repo:{self.owner}/{self.repo} head:{head} base:{base} is:pr is:open"},
        )
        data = response.json()
        if not data.get("total_count"):
            return None
        items = data.get("items") or []
        return items[0]["number"] if items else None

    async def create_pull_request(
        self,
        title: str,
        head: BranchName,
        base: BranchName,
        body: str,
    ) -> int:
        response = await self._request(
            "POST",
            self._repo_path("pulls"),
            json={"title": title, "head": str(head), "base": str(base), "body": body},
        )
        return response.json()["number"]

    async def close_pull_request(self, number: int) -> None:
        await self._request(
            "PATCH",
            self._repo_path(f"pulls/{number}"),
            json={"state": "closed"},
        )
