"""
Thin wrapper around the ``gcloud`` CLI.

Infrastructure helpers are idempotent: each resource is looked up with a
``describe`` query first and only created when the lookup fails.
"""

import json
import logging
from typing import Any

from openclaw_deploy import settings as defaults
from openclaw_deploy.settings import DeploySettings
from openclaw_deploy.util.shell import CommandRunner

logger = logging.getLogger(__name__)

COMPUTE_API = "compute.googleapis.com"
OPTIONAL_APIS = [
    "gmail.googleapis.com",
    "drive.googleapis.com",
    "people.googleapis.com",
    "calendar.googleapis.com",
]

INSTANCE_FORMAT = (
    "json(status,machineType,networkInterfaces[0].accessConfigs[0].natIP,"
    "networkInterfaces[0].networkIP,creationTimestamp,lastStartTimestamp)"
)


def get_configured_project(runner: CommandRunner) -> str | None:
    """Return the project set with ``gcloud config set project``, if any."""
    result = runner.query(["gcloud", "config", "get-value", "project"])
    value = result.stdout.strip() if result.ok else ""
    # gcloud prints "(unset)" on some versions
    return value if value and value != "(unset)" else None


def _parse_json(text: str, fallback: Any) -> Any:
    try:
        return json.loads(text) if text.strip() else fallback
    except json.JSONDecodeError:
        logger.debug("Could not parse gcloud JSON output: %r", text[:200])
        return fallback


class GCloud:
    """gcloud operations bound to one project and zone."""

    def __init__(self, runner: CommandRunner, settings: DeploySettings):
        self.runner = runner
        self.settings = settings

    @property
    def project(self) -> str:
        return self.settings.project_id

    @property
    def zone(self) -> str:
        return self.settings.zone

    def _project_flag(self) -> str:
        return f"--project={self.project}"

    def exists(self, *describe_args: str) -> bool:
        """Check whether ``gcloud <describe_args> --project=...`` succeeds."""
        return self.runner.query(["gcloud", *describe_args, self._project_flag()]).ok

    # ------------------------------------------------------------------
    # Network and identity
    # ------------------------------------------------------------------
    def setup_vpc(self) -> None:
        """Create the custom-mode VPC and its subnet if missing."""
        logger.info("Setting up isolated VPC network...")
        region = self.settings.region

        if not self.exists("compute", "networks", "describe", defaults.VPC_NAME):
            logger.info("   Creating VPC: %s...", defaults.VPC_NAME)
            self.runner.run([
                "gcloud", "compute", "networks", "create", defaults.VPC_NAME,
                self._project_flag(),
                "--subnet-mode=custom",
            ])
        else:
            logger.debug("VPC %s already exists", defaults.VPC_NAME)

        if not self.exists(
            "compute", "networks", "subnets", "describe", defaults.SUBNET_NAME, f"--region={region}"
        ):
            logger.info("   Creating subnet: %s (%s)...", defaults.SUBNET_NAME, defaults.SUBNET_RANGE)
            self.runner.run([
                "gcloud", "compute", "networks", "subnets", "create", defaults.SUBNET_NAME,
                self._project_flag(),
                f"--network={defaults.VPC_NAME}",
                f"--region={region}",
                f"--range={defaults.SUBNET_RANGE}",
            ])
        else:
            logger.debug("Subnet %s already exists", defaults.SUBNET_NAME)

        logger.info("VPC network ready")

    def setup_network_infrastructure(self) -> None:
        """Cloud Router + Cloud NAT for egress and an IAP-only SSH firewall rule."""
        logger.info("Setting up network infrastructure for private VM access...")
        region = self.settings.region
        firewall_rule = f"allow-iap-ssh-{defaults.VPC_NAME}"

        if not self.exists("compute", "routers", "describe", defaults.ROUTER_NAME, f"--region={region}"):
            logger.info("   Creating Cloud Router...")
            self.runner.run([
                "gcloud", "compute", "routers", "create", defaults.ROUTER_NAME,
                self._project_flag(),
                f"--region={region}",
                f"--network={defaults.VPC_NAME}",
            ])
        else:
            logger.debug("Cloud Router already exists")

        if not self.exists(
            "compute", "routers", "nats", "describe", defaults.NAT_NAME,
            f"--router={defaults.ROUTER_NAME}", f"--region={region}",
        ):
            logger.info("   Creating Cloud NAT for outbound connectivity...")
            self.runner.run([
                "gcloud", "compute", "routers", "nats", "create", defaults.NAT_NAME,
                self._project_flag(),
                f"--router={defaults.ROUTER_NAME}",
                f"--region={region}",
                "--auto-allocate-nat-external-ips",
                "--nat-all-subnet-ip-ranges",
            ])
        else:
            logger.debug("Cloud NAT already exists")

        if not self.exists("compute", "firewall-rules", "describe", firewall_rule):
            logger.info("   Creating IAP SSH firewall rule...")
            self.runner.run([
                "gcloud", "compute", "firewall-rules", "create", firewall_rule,
                self._project_flag(),
                "--direction=INGRESS",
                "--priority=1000",
                f"--network={defaults.VPC_NAME}",
                "--action=ALLOW",
                "--rules=tcp:22",
                f"--source-ranges={defaults.IAP_SOURCE_RANGE}",
            ])
        else:
            logger.debug("IAP firewall rule already exists")

        logger.info("Network infrastructure ready")

    def setup_service_account(self) -> str:
        """Create the VM service account with logging/monitoring roles only."""
        email = self.settings.service_account_email
        logger.info("Setting up dedicated service account...")

        if not self.exists("iam", "service-accounts", "describe", email):
            logger.info("   Creating service account: %s...", defaults.SERVICE_ACCOUNT_NAME)
            self.runner.run([
                "gcloud", "iam", "service-accounts", "create", defaults.SERVICE_ACCOUNT_NAME,
                self._project_flag(),
                "--display-name=OpenClaw VM Service Account",
            ])
            for role in defaults.SERVICE_ACCOUNT_ROLES:
                logger.info("   Granting %s role...", role.removeprefix("roles/"))
                self.runner.run([
                    "gcloud", "projects", "add-iam-policy-binding", self.project,
                    f"--member=serviceAccount:{email}",
                    f"--role={role}",
                    "--quiet",
                ])
        else:
            logger.debug("Service account %s already exists", defaults.SERVICE_ACCOUNT_NAME)

        logger.info("Service account ready: %s", email)
        return email

    # ------------------------------------------------------------------
    # Instances
    # ------------------------------------------------------------------
    def create_instance_command(self, instance: str) -> list[str]:
        """The ``gcloud compute instances create`` command for a private VM."""
        s = self.settings
        return [
            "gcloud", "compute", "instances", "create", instance,
            self._project_flag(),
            f"--zone={s.zone}",
            f"--machine-type={s.machine_type}",
            f"--image-family={defaults.IMAGE_FAMILY}",
            f"--image-project={defaults.IMAGE_PROJECT}",
            f"--boot-disk-size={s.disk_size}",
            f"--boot-disk-type={s.disk_type}",
            f"--network={defaults.VPC_NAME}",
            f"--subnet={defaults.SUBNET_NAME}",
            "--no-address",
            f"--service-account={s.service_account_email}",
            "--scopes=logging-write,monitoring-write",
            "--metadata=enable-oslogin=TRUE",
        ]

    def create_instance(self, instance: str) -> None:
        logger.info(
            "Creating VM '%s' in project '%s' (Zone: %s)...", instance, self.project, self.zone
        )
        logger.debug(
            "Machine type: %s, Disk: %s (%s)",
            self.settings.machine_type,
            self.settings.disk_size,
            self.settings.disk_type,
        )
        self.runner.run(self.create_instance_command(instance))

    def describe_instance(self, instance: str) -> dict[str, Any] | None:
        """Instance status and network details, or None if the lookup fails."""
        result = self.runner.query([
            "gcloud", "compute", "instances", "describe", instance,
            "--project", self.project,
            "--zone", self.zone,
            f"--format={INSTANCE_FORMAT}",
        ])
        if not result.ok:
            return None
        return _parse_json(result.stdout, None)

    # ------------------------------------------------------------------
    # Remote access (always through the IAP tunnel: VMs have no public IP)
    # ------------------------------------------------------------------
    def _remote_flags(self) -> list[str]:
        return [self._project_flag(), f"--zone={self.zone}", "--tunnel-through-iap"]

    def scp(self, source: str, destination: str) -> None:
        """Copy a file; prefix remote paths with ``<instance>:``."""
        self.runner.run(["gcloud", "compute", "scp", source, destination, *self._remote_flags()])

    def ssh(self, instance: str, command: str, capture: bool = False) -> str:
        """Run a shell command on the instance and return its stdout when captured."""
        result = self.runner.run(
            ["gcloud", "compute", "ssh", instance, *self._remote_flags(), f"--command={command}"],
            capture=capture,
        )
        return result.stdout


class GCloudAccount:
    """Project-independent gcloud queries used by the dashboard and checks."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def active_account(self) -> str | None:
        result = self.runner.query(["gcloud", "auth", "list", "--format=json"])
        if not result.ok:
            return None
        accounts = _parse_json(result.stdout, [])
        for account in accounts:
            if account.get("status") == "ACTIVE":
                return account.get("account")
        return None

    def list_projects(self) -> list[dict[str, Any]]:
        result = self.runner.query(["gcloud", "projects", "list", "--format=json"])
        return _parse_json(result.stdout, []) if result.ok else []

    def project_accessible(self, project_id: str) -> bool:
        return self.runner.query(["gcloud", "projects", "describe", project_id]).ok

    def create_project(self, project_id: str, name: str | None = None) -> None:
        self.runner.run(
            ["gcloud", "projects", "create", project_id, "--name", name or project_id, "--format=json"],
            capture=True,
        )

    def enabled_services(self, project_id: str) -> set[str]:
        result = self.runner.query([
            "gcloud", "services", "list", "--enabled",
            "--project", project_id,
            "--format=json(config.name)",
        ])
        if not result.ok:
            return set()
        services = _parse_json(result.stdout, [])
        return {s.get("config", {}).get("name") for s in services if isinstance(s, dict)}

    def enable_services_command(self, project_id: str, services: list[str]) -> list[str]:
        return ["gcloud", "services", "enable", *services, "--project", project_id]
