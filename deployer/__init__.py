"""
Deployer - Continuous Deployment Controller

Runs inside a GitHub Actions workflow on every push. Each invocation:
- Reconciles observed build/deploy workflow runs into the deployer ledger
  (a JSON document on the `deployer/db` orphan branch)
- Maintains a proposal branch and pull request promoting the most recent
  deployable commit into the desired-state config (`deployment.json`)
- Decides, per stage, whether a new deployment should be dispatched

State lives in exactly two remote documents (ledger and desired-state config).
Both are written with compare-and-swap on the blob sha; there are no locks
and no in-process state between invocations.
"""

__version__ = "0.4.0"
