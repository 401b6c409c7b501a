"""
Ansible invocation.
"""

import logging

from openclaw_deploy.provision.inventory import InstanceFiles
from openclaw_deploy.util.shell import CommandRunner
from openclaw_deploy.workspace import Workspace

logger = logging.getLogger(__name__)


def playbook_command(workspace: Workspace, files: InstanceFiles) -> list[str]:
    return [
        "ansible-playbook",
        "-i", str(files.inventory_path),
        str(workspace.playbook),
        "-e", f"@{files.vars_path}",
    ]


def install_requirements(runner: CommandRunner, workspace: Workspace) -> bool:
    """Install Galaxy collections listed in ansible/requirements.yml, if present."""
    if not workspace.requirements.exists():
        logger.debug("No %s, skipping collection install", workspace.requirements)
        return False
    logger.info("Installing Ansible requirements...")
    runner.run(["ansible-galaxy", "collection", "install", "-r", str(workspace.requirements)])
    return True


def run_playbook(runner: CommandRunner, workspace: Workspace, files: InstanceFiles) -> None:
    """Install requirements and run the deployment playbook against one host."""
    install_requirements(runner, workspace)
    logger.info("Running Playbook...")
    runner.run(playbook_command(workspace, files))
