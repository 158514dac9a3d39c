"""
Unit Tests for the desired-state proposal manager.

Covers candidate selection, proposal branch reset, the bounded
compare-and-swap retry on the proposal config, and PR upkeep.
"""

import json

import pytest

from deployer.errors import ConflictError, NotFoundError, ProviderError
from deployer.ledger import Ledger
from deployer.model import CommitRef

from tests.conftest import TEST_BRANCH, async_test

PROPOSAL_BRANCH = "deployer/pr/dev"


async def set_ledger(ledger_store, builds):
    document = {
        "commits": list(builds),
        "commitByRef": {sha: {"buildStatus": status} for sha, status in builds.items()},
    }
    await ledger_store.change(lambda ledger: Ledger.from_dict(document))


def proposed_config(github):
    return json.loads(github.read(PROPOSAL_BRANCH, "deployment.json"))


class TestCandidateSelection:

    @async_test
    async def test_no_ledger_no_candidate(self, proposal_manager):
        assert await proposal_manager.find_deployable_commit() is None

    @async_test
    async def test_most_recent_built_commit(self, ledger_store, proposal_manager):
        await set_ledger(ledger_store, {"c1": "success", "c2": "success", "c3": "failure"})
        assert await proposal_manager.find_deployable_commit() == "c2"

    @async_test
    async def test_config_only_commits_are_skipped(self, github, ledger_store, proposal_manager):
        await set_ledger(ledger_store, {"c1": "success", "c2": "success"})
        github.commit_files["c2"] = ["deployment.json"]

        assert await proposal_manager.find_deployable_commit() == "c1"

    @async_test
    async def test_config_plus_code_change_is_deployable(self, github, ledger_store, proposal_manager):
        await set_ledger(ledger_store, {"c1": "success", "c2": "success"})
        github.commit_files["c2"] = ["deployment.json", "src/app.py"]

        assert await proposal_manager.find_deployable_commit() == "c2"


class TestProposal:

    @async_test
    async def test_proposes_new_desired_commit(self, github, ledger_store, proposal_manager, controller_input):
        await set_ledger(ledger_store, {"c1": "success", "c2": "success"})

        await proposal_manager.run(controller_input)

        assert proposed_config(github) == {"deployments": {"dev": "c2"}}
        assert github.put_calls[-1]["message"] == "Update deployments.dev"
        # the target branch is left alone
        assert json.loads(github.read(TEST_BRANCH, "deployment.json")) == {"deployments": {"dev": None}}
        [pr] = github.open_pull_requests()
        assert pr["head"] == PROPOSAL_BRANCH
        assert pr["base"] == TEST_BRANCH
        assert pr["title"] == 'Update deployment config for "dev" stage'

    @async_test
    async def test_stale_proposal_branch_is_reset(self, github, ledger_store, proposal_manager, controller_input):
        github.seed_file(PROPOSAL_BRANCH, "deployment.json", '{"deployments": {"dev": "c0"}}')
        github.seed_file(PROPOSAL_BRANCH, "stale.txt", "left over")
        await set_ledger(ledger_store, {"c1": "success"})

        await proposal_manager.run(controller_input)

        assert set(github.files(PROPOSAL_BRANCH)) == {"deployment.json"}
        assert proposed_config(github) == {"deployments": {"dev": "c1"}}

    @async_test
    async def test_existing_pull_request_is_kept(self, github, ledger_store, proposal_manager, controller_input):
        await github.create_pull_request(title="t", head=PROPOSAL_BRANCH, base=TEST_BRANCH, body="b")
        await set_ledger(ledger_store, {"c1": "success"})

        await proposal_manager.run(controller_input)

        assert len(github.pull_requests) == 1
        assert github.pull_requests[1]["state"] == "open"

    @async_test
    async def test_missing_target_config_leaves_proposal_alone(self, github, ledger_store, proposal_manager, controller_input, caplog):
        github.files(TEST_BRANCH).pop("deployment.json")
        github.seed_file(PROPOSAL_BRANCH, "deployment.json", "{}")
        await set_ledger(ledger_store, {"c1": "success"})

        await proposal_manager.run(controller_input)

        assert PROPOSAL_BRANCH in github.branches
        assert "No deployment config found" in caplog.text

    @async_test
    async def test_missing_proposal_config_is_not_retried(self, github, proposal_manager):
        github.seed_file(PROPOSAL_BRANCH, "README.md", "no config here")

        with pytest.raises(NotFoundError):
            await proposal_manager.write_desired_commit(CommitRef("c1"))

        assert github.put_calls == []


class TestBoundedRetry:

    @async_test
    async def test_conflicts_are_retried_until_success(self, github, ledger_store, proposal_manager, controller_input):
        await set_ledger(ledger_store, {"c1": "success"})
        github.fail("put_file", *[ConflictError("raced") for _ in range(4)])
        writes_before = len(github.put_calls)

        await proposal_manager.run(controller_input)

        assert len(github.put_calls) - writes_before == 5
        assert proposed_config(github) == {"deployments": {"dev": "c1"}}
        assert len(github.open_pull_requests()) == 1

    @async_test
    async def test_gives_up_after_five_attempts(self, github, ledger_store, proposal_manager, controller_input):
        await set_ledger(ledger_store, {"c1": "success"})
        github.fail("put_file", *[ConflictError("raced") for _ in range(6)])
        writes_before = len(github.put_calls)

        with pytest.raises(ConflictError):
            await proposal_manager.run(controller_input)

        assert len(github.put_calls) - writes_before == 5
        assert github.open_pull_requests() == []

    @async_test
    async def test_other_errors_are_not_retried(self, github, ledger_store, proposal_manager, controller_input):
        await set_ledger(ledger_store, {"c1": "success"})
        github.fail("put_file", ProviderError("server error", status_code=502))
        writes_before = len(github.put_calls)

        with pytest.raises(ProviderError):
            await proposal_manager.run(controller_input)

        assert len(github.put_calls) - writes_before == 1


class TestTearDown:

    @async_test
    async def test_nothing_to_tear_down(self, github, proposal_manager, controller_input):
        await proposal_manager.run(controller_input)

        assert PROPOSAL_BRANCH not in github.branches
        assert github.pull_requests == {}

    @async_test
    async def test_no_candidate_closes_proposal(self, github, proposal_manager, controller_input):
        github.seed_file(PROPOSAL_BRANCH, "deployment.json", "{}")
        await github.create_pull_request(title="t", head=PROPOSAL_BRANCH, base=TEST_BRANCH, body="b")

        await proposal_manager.run(controller_input)

        assert PROPOSAL_BRANCH not in github.branches
        assert github.open_pull_requests() == []

    @async_test
    async def test_already_desired_closes_proposal(self, github, ledger_store, proposal_manager, controller_input):
        github.seed_file(TEST_BRANCH, "deployment.json", '{"deployments": {"dev": "c2"}}')
        github.seed_file(PROPOSAL_BRANCH, "deployment.json", "{}")
        await github.create_pull_request(title="t", head=PROPOSAL_BRANCH, base=TEST_BRANCH, body="b")
        await set_ledger(ledger_store, {"c1": "success", "c2": "success"})

        await proposal_manager.run(controller_input)

        assert PROPOSAL_BRANCH not in github.branches
        assert github.open_pull_requests() == []

    @async_test
    async def test_pr_lookup_errors_propagate(self, github, proposal_manager, controller_input):
        github.fail("find_open_pull_request", ProviderError("search unavailable", status_code=503))

        with pytest.raises(ProviderError):
            await proposal_manager.run(controller_input)
