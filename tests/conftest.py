"""
Pytest configuration for deployer tests.

This module provides:
1. Async test support without pytest-asyncio
2. Common fixtures (fake GitHub, fake ancestry, wired components)
3. Test session configuration
"""

import asyncio
import functools

import pytest

from deployer.commits import CommitReconciler
from deployer.deployment import DeploymentGate
from deployer.deployment_config import DeploymentConfigStore
from deployer.ledger import LedgerStore
from deployer.model import BranchName, ControllerInput, StageName
from deployer.pull_request import ProposalManager
from deployer.settings import Settings
from deployer.workflow import WorkflowRuns

from tests.fakes import FakeAncestry, FakeGitHub


# -----------------------------------------------------------------------------
# Async Test Support
# -----------------------------------------------------------------------------
def async_test(func):
    """
    Decorator to run async tests without pytest-asyncio.

    Usage:
        @async_test
        async def test_something(self):
            result = await some_async_function()
            assert result is not None
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        return asyncio.run(func(*args, **kwargs))
    return wrapper


# -----------------------------------------------------------------------------
# Common Fixtures
# -----------------------------------------------------------------------------
@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        github_token="test-token",
        repository="acme/shop",
        git_dir=tmp_path,
    )


@pytest.fixture
def github() -> FakeGitHub:
    fake = FakeGitHub(default_branch=TEST_BRANCH)
    fake.seed_file(TEST_BRANCH, "deployment.json", '{"deployments": {"dev": null}}\n')
    return fake


@pytest.fixture
def ancestry() -> FakeAncestry:
    return FakeAncestry(["c1", "c2", "c3", "c4"])


@pytest.fixture
def controller_input() -> ControllerInput:
    return ControllerInput.create(branch_name=TEST_BRANCH, commit_ref="c4")


@pytest.fixture
def ledger_store(github, settings) -> LedgerStore:
    return LedgerStore(github, settings.ledger_branch, settings.ledger_path)


@pytest.fixture
def config_store(github, settings) -> DeploymentConfigStore:
    return DeploymentConfigStore(github, settings.config_path)


@pytest.fixture
def workflow_runs(github, settings) -> WorkflowRuns:
    return WorkflowRuns(github, settings.build_workflow, settings.deploy_workflow)


@pytest.fixture
def reconciler(ledger_store, workflow_runs, ancestry) -> CommitReconciler:
    return CommitReconciler(ledger_store, workflow_runs, ancestry)


@pytest.fixture
def gate(config_store, ledger_store, workflow_runs) -> DeploymentGate:
    return DeploymentGate(config_store, ledger_store, workflow_runs)


@pytest.fixture
def proposal_manager(github, ledger_store, config_store) -> ProposalManager:
    return ProposalManager(
        github,
        ledger_store,
        config_store,
        stage_name=StageName("dev"),
        proposal_branch=BranchName("deployer/pr/dev"),
    )


# -----------------------------------------------------------------------------
# Test Constants
# -----------------------------------------------------------------------------
TEST_BRANCH = "main"
DEV = StageName("dev")


# -----------------------------------------------------------------------------
# Session Configuration
# -----------------------------------------------------------------------------
def pytest_configure(config):
    """Configure pytest session."""
    config.addinivalue_line(
        "markers", "asyncio: mark test as async (custom implementation)"
    )
