"""
The ``create`` and ``update`` workflows.

Both are linear: every step either succeeds or raises, which aborts the
rest of the workflow. In dry-run mode the workflows describe what they
would do and touch nothing: no mutating command runs and no file is
written.
"""

import logging
import time
from collections.abc import Callable
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from openclaw_deploy import settings as defaults
from openclaw_deploy.exceptions import DeploymentAbortedError, InventoryNotFoundError
from openclaw_deploy.provision import ansible
from openclaw_deploy.provision.gcloud import GCloud
from openclaw_deploy.provision.inventory import InstanceFiles, list_instances
from openclaw_deploy.provision.ssh_config import configure_ssh_for_iap
from openclaw_deploy.settings import DeploySettings
from openclaw_deploy.util.files import ensure_dir
from openclaw_deploy.util.redact import redact_command
from openclaw_deploy.util.shell import CommandRunner
from openclaw_deploy.util.templates import TemplateLoader
from openclaw_deploy.workspace import Workspace

logger = logging.getLogger(__name__)


class Deployment:
    """Provisions and updates OpenClaw instances."""

    def __init__(
        self,
        workspace: Workspace,
        settings: DeploySettings,
        runner: CommandRunner,
        console: Console | None = None,
        confirm: Callable[[str], bool] | None = None,
        ssh_config_path: Path | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.workspace = workspace
        self.settings = settings
        self.runner = runner
        self.console = console or runner.console
        self.confirm = confirm or (lambda _prompt: False)
        self.ssh_config_path = ssh_config_path
        self.sleep = sleep
        self.gcloud = GCloud(runner, settings)
        self.templates = TemplateLoader(workspace.root)

    @property
    def dry_run(self) -> bool:
        return self.runner.dry_run

    def files_for(self, instance: str) -> InstanceFiles:
        return InstanceFiles(
            self.workspace.inventory_dir, self.settings.host_alias(instance), self.templates
        )

    def _dry(self, message: str) -> None:
        self.console.print(f"[DRY RUN] {escape(message)}", soft_wrap=True)

    # ------------------------------------------------------------------
    # create
    # ------------------------------------------------------------------
    def create(self, instance: str, assume_yes: bool = False) -> None:
        """Provision a VM, generate its inventory and run the playbook."""
        files = self.files_for(instance)

        if files.inventory_path.exists():
            self.console.print(
                f"[yellow]⚠ Inventory for '{escape(instance)}' already exists: "
                f"{escape(str(files.inventory_path))}[/yellow]"
            )
            if self.dry_run:
                self._dry("Would prompt for overwrite confirmation")
                return
            if not (assume_yes or self.confirm("Do you want to re-provision/overwrite?")):
                raise DeploymentAbortedError()

        if self.dry_run:
            self._print_create_plan(instance, files)
            return

        ensure_dir(self.workspace.inventory_dir)

        self.gcloud.setup_vpc()
        self.gcloud.setup_service_account()
        self.gcloud.setup_network_infrastructure()
        self.gcloud.create_instance(instance)

        logger.info("Waiting for VM to initialize...")
        self.sleep(self.settings.boot_wait_seconds)
        logger.info("VM Created (private IP only - no public exposure)")

        self._configure_ssh(instance)

        files.write_inventory()
        files.ensure_vars(self.settings.install_mode, self.settings.tailscale_key)
        logger.info("Instance configuration saved to %s/", self.workspace.inventory_dir)

        self.run_ansible(instance, apply_overrides=False)

    def _print_create_plan(self, instance: str, files: InstanceFiles) -> None:
        s = self.settings
        self._dry(f"Would create directory: {self.workspace.inventory_dir}")
        self._dry(
            f"Would setup VPC: {defaults.VPC_NAME} with subnet "
            f"{defaults.SUBNET_NAME} ({defaults.SUBNET_RANGE})"
        )
        self._dry(
            f"Would setup service account: {s.service_account_email} (logging + monitoring only)"
        )
        self._dry("Would setup network infrastructure (Cloud Router, NAT, IAP firewall)")
        self._dry(
            f"Would execute: {redact_command(self.gcloud.create_instance_command(instance))}"
        )
        self._dry("Would configure SSH for IAP tunnel access")
        self._dry(f"Would generate {files.inventory_path} and {files.vars_path}")

    # ------------------------------------------------------------------
    # update
    # ------------------------------------------------------------------
    def update(self, instance: str) -> None:
        """Re-run the playbook on an existing instance."""
        files = self.files_for(instance)
        if not files.inventory_path.exists():
            raise InventoryNotFoundError(
                instance,
                str(files.inventory_path),
                list_instances(self.workspace.inventory_dir),
            )

        if not self.dry_run:
            self._configure_ssh(instance)
        self.run_ansible(instance)

    # ------------------------------------------------------------------
    # shared steps
    # ------------------------------------------------------------------
    def _configure_ssh(self, instance: str) -> None:
        configure_ssh_for_iap(
            self.settings.host_alias(instance),
            instance,
            self.settings.project_id,
            self.settings.zone,
            config_path=self.ssh_config_path,
            templates=self.templates,
        )

    def run_ansible(self, instance: str, apply_overrides: bool = True) -> None:
        files = self.files_for(instance)

        if self.dry_run:
            self._dry(f"Would run: {redact_command(ansible.playbook_command(self.workspace, files))}")
            return

        logger.info("Starting Ansible Deployment...")
        if not files.inventory_path.exists():
            raise InventoryNotFoundError(
                instance,
                str(files.inventory_path),
                list_instances(self.workspace.inventory_dir),
            )

        if (apply_overrides and self.settings.has_vars_overrides) or not files.vars_path.exists():
            files.ensure_vars(self.settings.install_mode, self.settings.tailscale_key)
        files.load_vars()

        ansible.run_playbook(self.runner, self.workspace, files)
