"""
Deployer entry point.

Meant to run as a step of a GitHub Actions workflow triggered on push and on
completion of the build/deploy workflows:

    - uses: actions/checkout@v4
      with: {fetch-depth: 0}
    - run: python -m deployer
      env:
        GITHUB_TOKEN: ${{ secrets.GITHUB_TOKEN }}
"""

import asyncio
import logging
import os
import sys
from typing import Dict, Optional

from .controller import Controller
from .errors import ValidationError
from .github_client import GitHubClient
from .model import ControllerInput
from .settings import Settings, load_settings

logger = logging.getLogger("deployer")


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or os.getenv("DEPLOYER_LOG_LEVEL", "INFO")).upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


def read_controller_input(environ: Dict[str, str]) -> ControllerInput:
    """Branch and commit from the Actions runner environment."""
    return ControllerInput.create(
        branch_name=environ.get("GITHUB_REF_NAME"),
        commit_ref=environ.get("GITHUB_SHA"),
    )


async def run(settings: Settings, controller_input: ControllerInput) -> None:
    async with GitHubClient(settings) as github:
        controller = Controller.from_settings(settings, github)
        await controller.control(controller_input)


def main() -> int:
    configure_logging()

    settings = load_settings()
    problems = settings.validate()
    if problems:
        for problem in problems:
            logger.error(problem)
        return 1

    try:
        controller_input = read_controller_input(os.environ)
    except ValidationError as e:
        logger.error(f"Invalid controller input: {e.message}")
        return 1

    asyncio.run(run(settings, controller_input))
    return 0


if __name__ == "__main__":
    sys.exit(main())
