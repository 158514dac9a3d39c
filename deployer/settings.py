"""
Deployer Settings

Resolution order (later wins):
1. Built-in defaults
2. Optional YAML file named by DEPLOYER_CONFIG
3. Environment variables

The GitHub Actions runner provides GITHUB_TOKEN, GITHUB_REPOSITORY and
GITHUB_API_URL; everything else has a working default.
"""

import logging
import os
import re
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .model import BranchName, StageName

logger = logging.getLogger("deployer_settings")

# -----------------------------------------------------------------------------
# Defaults
# -----------------------------------------------------------------------------
DEFAULT_API_URL = "https://api.github.com"
DEFAULT_CONFIG_PATH = "deployment.json"
DEFAULT_LEDGER_BRANCH = "deployer/db"
DEFAULT_LEDGER_PATH = "deployer-db.json"
DEFAULT_PROPOSAL_BRANCH_PREFIX = "deployer/pr"
MAX_CONFIG_COMMIT_ATTEMPTS = 5

# Settings field -> environment variable
ENV_VARS = {
    "github_token": "GITHUB_TOKEN",
    "repository": "GITHUB_REPOSITORY",
    "api_url": "GITHUB_API_URL",
    "build_workflow": "DEPLOYER_BUILD_WORKFLOW",
    "deploy_workflow": "DEPLOYER_DEPLOY_WORKFLOW",
    "config_path": "DEPLOYER_CONFIG_PATH",
    "ledger_branch": "DEPLOYER_LEDGER_BRANCH",
    "ledger_path": "DEPLOYER_LEDGER_PATH",
    "proposal_branch_prefix": "DEPLOYER_PROPOSAL_BRANCH_PREFIX",
    "proposal_stage": "DEPLOYER_PROPOSAL_STAGE",
    "max_config_commit_attempts": "DEPLOYER_MAX_CONFIG_COMMIT_ATTEMPTS",
    "contain_failed_deployments": "DEPLOYER_CONTAIN_FAILED_DEPLOYMENTS",
    "ledger_flatten_history": "DEPLOYER_LEDGER_FLATTEN_HISTORY",
    "git_dir": "DEPLOYER_GIT_DIR",
    "committer_name": "DEPLOYER_COMMITTER_NAME",
    "committer_email": "DEPLOYER_COMMITTER_EMAIL",
    "http_timeout": "DEPLOYER_HTTP_TIMEOUT",
}

REPOSITORY_PATTERN = re.compile(r"^[\w.-]+/[\w.-]+$")


@dataclass
class Settings:
    """Resolved controller settings."""
    github_token: str = ""
    repository: str = ""
    api_url: str = DEFAULT_API_URL
    build_workflow: str = "build.yaml"
    deploy_workflow: str = "deploy.yaml"
    config_path: str = DEFAULT_CONFIG_PATH
    ledger_branch: str = DEFAULT_LEDGER_BRANCH
    ledger_path: str = DEFAULT_LEDGER_PATH
    proposal_branch_prefix: str = DEFAULT_PROPOSAL_BRANCH_PREFIX
    proposal_stage: str = "dev"
    max_config_commit_attempts: int = MAX_CONFIG_COMMIT_ATTEMPTS
    # False keeps the failed-deployment guards as pass-through stubs
    contain_failed_deployments: bool = False
    ledger_flatten_history: bool = True
    git_dir: Path = field(default_factory=Path.cwd)
    committer_name: str = "github-actions[bot]"
    committer_email: str = "github-actions[bot]@users.noreply.github.com"
    http_timeout: float = 30.0

    @property
    def owner(self) -> str:
        return self.repository.split("/", 1)[0]

    @property
    def repo(self) -> str:
        return self.repository.split("/", 1)[-1]

    @property
    def committer(self) -> Dict[str, str]:
        return {"name": self.committer_name, "email": self.committer_email}

    def proposal_branch(self, stage: str) -> str:
        return f"{self.proposal_branch_prefix}/{stage}"

    def validate(self) -> List[str]:
        """Return a list of problems; empty means usable."""
        problems = []
        if not self.github_token:
            problems.append("No GitHub token found (GITHUB_TOKEN)")
        if not REPOSITORY_PATTERN.match(self.repository):
            problems.append(
                f"Repository must look like 'owner/repo', got {self.repository!r}"
            )
        if self.max_config_commit_attempts < 1:
            problems.append("max_config_commit_attempts must be at least 1")
        problems.extend(StageName.problems(self.proposal_stage))
        problems.extend(BranchName.problems(self.ledger_branch))
        if not StageName.problems(self.proposal_stage):
            problems.extend(BranchName.problems(self.proposal_branch(self.proposal_stage)))
        return problems

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        known = {f.name: f for f in fields(cls)}
        values = {}
        for key, raw in data.items():
            if key not in known:
                logger.warning(f"Ignoring unknown setting: {key}")
                continue
            values[key] = _coerce(known[key].type, raw)
        return cls(**values)


def _coerce(type_name: Any, raw: Any) -> Any:
    type_name = getattr(type_name, "__name__", type_name)
    if type_name == "bool":
        if isinstance(raw, bool):
            return raw
        return str(raw).strip().lower() in ("1", "true", "yes", "on")
    if type_name == "int":
        return int(raw)
    if type_name == "float":
        return float(raw)
    if type_name == "Path":
        return Path(raw)
    return str(raw)


def read_yaml_file(file_path: Path) -> dict:
    """Read and parse a YAML file."""
    if not file_path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")
    with open(file_path, 'r') as f:
        return yaml.safe_load(f) or {}


def load_settings(
    config_file: Optional[Path] = None,
    environ: Optional[Dict[str, str]] = None,
) -> Settings:
    """Resolve settings from defaults, YAML file and environment."""
    environ = os.environ if environ is None else environ

    data: Dict[str, Any] = {}

    if config_file is None and environ.get("DEPLOYER_CONFIG"):
        config_file = Path(environ["DEPLOYER_CONFIG"])
    if config_file is not None:
        data.update(read_yaml_file(config_file))
        logger.info(f"Loaded settings file: {config_file}")

    for name, env_var in ENV_VARS.items():
        value = environ.get(env_var)
        if value:
            data[name] = value

    return Settings.from_dict(data)
