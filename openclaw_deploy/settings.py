"""
Deployment settings: defaults, environment variables and CLI overrides.

Precedence, highest first: command-line options, environment variables,
the workspace ``openclaw-deploy.yaml``, built-in defaults.
"""

import os
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace

from openclaw_deploy.exceptions import (
    InvalidInstanceNameError,
    InvalidOptionError,
    InvalidUserNameError,
    ProjectNotConfiguredError,
)
from openclaw_deploy.workspace import Workspace

DEFAULT_ZONE = "us-central1-a"
DEFAULT_MACHINE_TYPE = "t2a-standard-2"
DEFAULT_DISK_SIZE = "50GB"
DEFAULT_DISK_TYPE = "pd-ssd"
DEFAULT_BOOT_WAIT_SECONDS = 20.0

DISK_TYPES = ["pd-ssd", "pd-standard"]
INSTALL_MODES = ["release", "development"]

IMAGE_FAMILY = "ubuntu-2204-lts"
IMAGE_PROJECT = "ubuntu-os-cloud"

# Network & security
VPC_NAME = "openclaw-vpc"
SUBNET_NAME = "openclaw-subnet"
SUBNET_RANGE = "10.0.0.0/24"
ROUTER_NAME = "openclaw-router"
NAT_NAME = "openclaw-nat"
IAP_SOURCE_RANGE = "35.235.240.0/20"
SERVICE_ACCOUNT_NAME = "openclaw-sa"
SERVICE_ACCOUNT_ROLES = ["roles/logging.logWriter", "roles/monitoring.metricWriter"]

INSTANCE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9-]+$")
USER_NAME_PATTERN = re.compile(r"^[a-z_][a-z0-9_-]*$")

# Environment variable -> settings field
ENV_VARS = {
    "GCP_PROJECT_ID": "project_id",
    "GCP_ZONE": "zone",
    "GCP_MACHINE_TYPE": "machine_type",
    "GCP_DISK_SIZE": "disk_size",
    "GCP_DISK_TYPE": "disk_type",
}


def validate_instance_name(name: str) -> str:
    """Reject instance names with anything but letters, digits and hyphens."""
    if not name or not INSTANCE_NAME_PATTERN.fullmatch(name):
        raise InvalidInstanceNameError(name)
    return name


def validate_user_name(name: str) -> str:
    """Reject remote user names that are not plain Linux account names."""
    if not name or not USER_NAME_PATTERN.fullmatch(name):
        raise InvalidUserNameError(name)
    return name


def validate_choice(option: str, value: str | None, choices: list[str]) -> str | None:
    """Reject a value that is not one of ``choices`` (None passes through)."""
    if value is not None and value not in choices:
        raise InvalidOptionError(option, value, choices)
    return value


def region_for_zone(zone: str) -> str:
    """Derive the region from a zone (us-central1-a -> us-central1)."""
    return zone.rsplit("-", 1)[0]


@dataclass(frozen=True)
class DeploySettings:
    """Resolved settings for one invocation."""

    project_id: str
    zone: str = DEFAULT_ZONE
    machine_type: str = DEFAULT_MACHINE_TYPE
    disk_size: str = DEFAULT_DISK_SIZE
    disk_type: str = DEFAULT_DISK_TYPE
    install_mode: str | None = None
    tailscale_key: str | None = None
    boot_wait_seconds: float = DEFAULT_BOOT_WAIT_SECONDS

    @property
    def region(self) -> str:
        return region_for_zone(self.zone)

    @property
    def service_account_email(self) -> str:
        return f"{SERVICE_ACCOUNT_NAME}@{self.project_id}.iam.gserviceaccount.com"

    @property
    def has_vars_overrides(self) -> bool:
        return bool(self.install_mode or self.tailscale_key)

    def host_alias(self, instance: str) -> str:
        """SSH host alias and inventory stem: ``<instance>.<zone>.<project>``."""
        return f"{instance}.{self.zone}.{self.project_id}"

    def with_overrides(self, **overrides) -> "DeploySettings":
        """Return a copy with the non-empty overrides applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v})

    @classmethod
    def resolve(
        cls,
        workspace: Workspace,
        overrides: Mapping[str, str | None] | None = None,
        environ: Mapping[str, str] | None = None,
        project_lookup: Callable[[], str | None] | None = None,
    ) -> "DeploySettings":
        """
        Resolve settings from all configuration sources.

        Args:
            workspace: Workspace whose config file provides defaults
            overrides: Values given on the command line (None = not given)
            environ: Environment (defaults to os.environ)
            project_lookup: Called when no project id is configured anywhere
                else, typically ``gcloud config get-value project``

        Raises:
            ProjectNotConfiguredError: If no project id can be determined
            InvalidOptionError: If disk type or install mode is invalid
        """
        environ = os.environ if environ is None else environ
        overrides = overrides or {}

        values: dict[str, object] = {
            "zone": DEFAULT_ZONE,
            "machine_type": DEFAULT_MACHINE_TYPE,
            "disk_size": DEFAULT_DISK_SIZE,
            "disk_type": DEFAULT_DISK_TYPE,
            "boot_wait_seconds": DEFAULT_BOOT_WAIT_SECONDS,
        }

        for key, value in workspace.load_config().get("gcp", {}).items():
            if value is not None:
                values[key] = value

        for env_name, key in ENV_VARS.items():
            if environ.get(env_name):
                values[key] = environ[env_name]

        for key, value in overrides.items():
            if value:
                values[key] = value

        if not values.get("project_id") and project_lookup is not None:
            values["project_id"] = (project_lookup() or "").strip()

        if not values.get("project_id"):
            raise ProjectNotConfiguredError()

        validate_choice("--disk-type", values.get("disk_type"), DISK_TYPES)
        validate_choice("--install-mode", values.get("install_mode"), INSTALL_MODES)

        return cls(**values)
