"""
Workspace management for openclaw-deploy.

A workspace is the directory the tool is run from. It holds the Ansible
playbook, the generated per-instance inventories and the local backups.
"""

import copy
import json
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validate

from openclaw_deploy.exceptions import InvalidConfigError

SCHEMA_DIR = Path(__file__).parent / "schema"


class Workspace:
    """Manages the openclaw-deploy workspace structure and configuration."""

    CONFIG_NAME = "openclaw-deploy.yaml"

    REQUIRED_DIRS = [
        "inventory",
        "deployments",
        "ansible",
    ]

    DEFAULT_CONFIG = {
        "gcp": {
            "zone": "us-central1-a",
            "machine_type": "t2a-standard-2",
            "disk_size": "50GB",
            "disk_type": "pd-ssd",
        },
        "backup": {
            "encrypt": False,
            "remote_user": "clawdbot",
        },
        "dashboard": {
            "host": "127.0.0.1",
            "port": 3888,
        },
    }

    def __init__(self, root: Path):
        self.root = Path(root)
        self.config_file = self.root / self.CONFIG_NAME
        self._config_cache: dict[str, Any] | None = None

    @property
    def inventory_dir(self) -> Path:
        return self.root / "inventory"

    @property
    def deployments_dir(self) -> Path:
        return self.root / "deployments"

    @property
    def ansible_dir(self) -> Path:
        return self.root / "ansible"

    @property
    def playbook(self) -> Path:
        return self.ansible_dir / "playbook.yml"

    @property
    def requirements(self) -> Path:
        return self.ansible_dir / "requirements.yml"

    def backups_dir(self, instance: str) -> Path:
        """Local directory holding backups of one instance."""
        return self.deployments_dir / instance / "backups"

    def is_initialized(self) -> bool:
        return self.config_file.exists() or self.playbook.exists()

    def initialize(self) -> None:
        """Initialize workspace directory structure and config."""
        for dir_path in self.REQUIRED_DIRS:
            (self.root / dir_path).mkdir(parents=True, exist_ok=True)

        if not self.config_file.exists():
            with open(self.config_file, "w") as f:
                yaml.safe_dump(self.DEFAULT_CONFIG, f, default_flow_style=False, sort_keys=False)
        self._config_cache = None

    def load_config(self) -> dict[str, Any]:
        """
        Load and validate workspace configuration (cached).

        A missing config file is not an error: every setting has a built-in
        default, so an empty mapping is returned.
        """
        if self._config_cache is not None:
            return self._config_cache

        if not self.config_file.exists():
            self._config_cache = {}
            return self._config_cache

        try:
            with open(self.config_file) as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise InvalidConfigError(f"{self.config_file}: {e}") from e

        if config is None:
            config = {}

        if not isinstance(config, dict):
            raise InvalidConfigError(f"expected a mapping, got {type(config).__name__}")

        self._validate_config_schema(config)

        self._config_cache = config
        return config

    def setting(self, section: str, key: str, default: Any = None) -> Any:
        """Look up ``section.key`` in the config, falling back to the built-in default."""
        value = self.load_config().get(section, {}).get(key)
        if value is not None:
            return value
        builtin = self.DEFAULT_CONFIG.get(section, {}).get(key)
        return copy.deepcopy(builtin) if builtin is not None else default

    def _validate_config_schema(self, config: dict) -> None:
        """Validate config against JSON schema."""
        schema = json.loads((SCHEMA_DIR / "config.schema.json").read_text())
        try:
            validate(instance=config, schema=schema)
        except ValidationError as e:
            path = ".".join(str(p) for p in e.path) or "(root)"
            raise InvalidConfigError(f"{e.message} (at {path})") from e
