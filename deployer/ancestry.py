"""
Ancestry ordering over the local git checkout.

The workflow checks out the full history (fetch-depth: 0), so git can order
any set of observed commits without touching the network.
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, Iterable, List

from .errors import ProviderError
from .model import CommitRef

logger = logging.getLogger("ancestry")


class GitAncestry:
    """Orders commit refs ancestors-first using `git rev-list`."""

    def __init__(self, git_dir: Path, git_executable: str = "git"):
        self.git_dir = Path(git_dir)
        self.git_executable = git_executable

    async def order(self, commit_refs: Iterable[CommitRef]) -> List[CommitRef]:
        """
        Sort exactly the given refs, ancestors before descendants.

        Refs are resolved to full SHAs first, so an abbreviated ref orders
        like any other and comes back as it was given. git walks the full
        ancestry so --topo-order applies, and the walk is filtered back down
        to the refs asked for. Refs go through stdin so large ledgers don't
        hit argv limits. Any ref git cannot resolve fails the whole call.
        """
        refs = list(dict.fromkeys(commit_refs))
        if not refs:
            return []

        refs_by_sha: Dict[str, List[CommitRef]] = {}
        for ref, sha in zip(refs, await self.resolve(refs)):
            refs_by_sha.setdefault(sha, []).append(CommitRef(ref))

        lines = await self._git(
            ["rev-list", "--topo-order", "--reverse", "--stdin"],
            list(refs_by_sha),
        )

        ordered = []
        for line in lines:
            ordered.extend(refs_by_sha.get(line, []))
        logger.debug(f"Ordered {len(ordered)} commits")
        return ordered

    async def resolve(self, refs: List[str]) -> List[str]:
        """Full commit SHA for each ref, in input order."""
        lines = await self._git(
            ["cat-file", "--batch-check"],
            [f"{ref}^{{commit}}" for ref in refs],
        )
        if len(lines) != len(refs):
            raise ProviderError(
                f"git resolved {len(lines)} of {len(refs)} commit refs",
                details={"refs": refs},
            )

        shas = []
        for ref, line in zip(refs, lines):
            # "<sha> commit <size>", or "<ref> missing" / "<ref> ambiguous"
            parts = line.split()
            if len(parts) != 3 or parts[1] != "commit":
                raise ProviderError(
                    f"Could not resolve commit ref \"{ref}\": {line}",
                    details={"ref": ref},
                )
            shas.append(parts[0])
        return shas

    async def _git(self, args: List[str], stdin_lines: List[str]) -> List[str]:
        process = await asyncio.create_subprocess_exec(
            self.git_executable, *args,
            cwd=str(self.git_dir),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, stderr = await process.communicate(("\n".join(stdin_lines) + "\n").encode("utf-8"))

        if process.returncode != 0:
            raise ProviderError(
                f"git {args[0]} failed ({process.returncode}): {stderr.decode(errors='replace').strip()}",
                details={"refs": stdin_lines},
            )
        return [line.strip() for line in stdout.decode("utf-8").splitlines() if line.strip()]
