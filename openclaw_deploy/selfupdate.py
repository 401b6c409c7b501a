"""
Update a git checkout of the deployment repository in place.
"""

import logging
from collections.abc import Callable
from pathlib import Path

from openclaw_deploy.exceptions import DeploymentAbortedError, NotAGitRepositoryError
from openclaw_deploy.util.shell import CommandRunner

logger = logging.getLogger(__name__)


def has_local_changes(runner: CommandRunner, root: Path) -> bool:
    result = runner.query(["git", "-C", str(root), "diff-index", "--quiet", "HEAD", "--"])
    return not result.ok


def self_update(
    runner: CommandRunner,
    root: Path,
    confirm: Callable[[str], bool],
    assume_yes: bool = False,
) -> None:
    """
    Pull the latest changes, stashing local modifications if the user agrees.

    Raises:
        NotAGitRepositoryError: If ``root`` is not a git checkout
        DeploymentAbortedError: If the user declines to stash local changes
    """
    root = Path(root)
    if not (root / ".git").exists():
        raise NotAGitRepositoryError(str(root))

    logger.info("Checking for updates...")
    if has_local_changes(runner, root):
        logger.warning("You have local changes in this repository.")
        if not (assume_yes or confirm("Do you want to stash them and continue update?")):
            raise DeploymentAbortedError("Update aborted. Please handle local changes manually.")
        logger.info("Stashing changes...")
        runner.run(["git", "-C", str(root), "stash"])

    logger.info("Pulling latest changes...")
    runner.run(["git", "-C", str(root), "pull"])
    logger.info("Update complete.")
