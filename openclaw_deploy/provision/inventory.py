"""
Per-instance Ansible inventory and variables files.

Both files live in ``inventory/`` and are named after the host alias
(``<instance>.<zone>.<project>``). Once generated they belong to the user:
they are never regenerated, only the override lines are rewritten.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft7Validator

from openclaw_deploy.exceptions import InvalidVarsFileError
from openclaw_deploy.util.files import write_text, write_text_if_absent
from openclaw_deploy.util.templates import TemplateLoader

logger = logging.getLogger(__name__)

VARS_SCHEMA = Path(__file__).parent.parent / "schema" / "vars.schema.json"

INSTALL_MODE_KEY = "openclaw_install_mode"
TAILSCALE_KEY = "tailscale_authkey"

CREATED = "created"
UPDATED = "updated"
PRESERVED = "preserved"


def set_yaml_scalar(text: str, key: str, value: str) -> str:
    """
    Replace the top-level ``key:`` line of a YAML document.

    Comments and the rest of the file are left untouched. If the key is not
    present the line is appended.
    """
    line = f"{key}: {json.dumps(value)}"
    pattern = re.compile(rf"^{re.escape(key)}:.*$", re.MULTILINE)
    if pattern.search(text):
        return pattern.sub(lambda _: line, text, count=1)
    if text and not text.endswith("\n"):
        text += "\n"
    return text + line + "\n"


def list_instances(inventory_dir: Path) -> list[str]:
    """Host aliases that have an inventory file."""
    if not inventory_dir.is_dir():
        return []
    return sorted(p.stem for p in inventory_dir.glob("*.ini"))


class InstanceFiles:
    """Inventory and variables files of one instance."""

    def __init__(self, inventory_dir: Path, host_alias: str, templates: TemplateLoader | None = None):
        self.inventory_dir = Path(inventory_dir)
        self.host_alias = host_alias
        self.templates = templates or TemplateLoader()

    @property
    def inventory_path(self) -> Path:
        return self.inventory_dir / f"{self.host_alias}.ini"

    @property
    def vars_path(self) -> Path:
        return self.inventory_dir / f"{self.host_alias}.yml"

    @property
    def instance(self) -> str:
        return self.host_alias.split(".", 1)[0]

    def write_inventory(self) -> bool:
        """Write the inventory file unless it already exists."""
        content = self.templates.render("inventory.ini.j2", host_alias=self.host_alias)
        written = write_text_if_absent(self.inventory_path, content)
        if written:
            logger.info("Generating inventory file: %s", self.inventory_path)
        else:
            logger.debug("Inventory file %s already exists, leaving it untouched", self.inventory_path)
        return written

    def ensure_vars(self, install_mode: str | None = None, tailscale_key: str | None = None) -> str:
        """
        Create the documented variables file, or apply overrides to an existing one.

        Args:
            install_mode: 'release' or 'development'; None keeps the current value
            tailscale_key: Tailscale auth key; None keeps the current value

        Returns:
            CREATED, UPDATED or PRESERVED
        """
        if not self.vars_path.exists():
            logger.info("Generating variables file: %s", self.vars_path)
            content = self.templates.render(
                "vars.yml.j2",
                host_alias=self.host_alias,
                instance=self.instance,
                install_mode=install_mode or "release",
                tailscale_key=tailscale_key or "",
            )
            write_text(self.vars_path, content)
            return CREATED

        logger.info("%s already exists, preserving existing configuration", self.vars_path)
        if not (install_mode or tailscale_key):
            return PRESERVED

        text = self.vars_path.read_text()
        if install_mode:
            logger.info("   Updating %s to: %s", INSTALL_MODE_KEY, install_mode)
            text = set_yaml_scalar(text, INSTALL_MODE_KEY, install_mode)
        if tailscale_key:
            logger.info("   Updating %s", TAILSCALE_KEY)
            text = set_yaml_scalar(text, TAILSCALE_KEY, tailscale_key)
        write_text(self.vars_path, text)
        return UPDATED

    def load_vars(self) -> dict[str, Any]:
        """
        Parse and validate the variables file.

        Raises:
            InvalidVarsFileError: If the file is not valid YAML or fails the schema
        """
        try:
            data = yaml.safe_load(self.vars_path.read_text())
        except yaml.YAMLError as e:
            raise InvalidVarsFileError(str(self.vars_path), [str(e)]) from e

        if not isinstance(data, dict):
            raise InvalidVarsFileError(str(self.vars_path), ["expected a mapping of variables"])

        validator = Draft7Validator(json.loads(VARS_SCHEMA.read_text()))
        errors = [
            f"{'.'.join(str(p) for p in e.path) or '(root)'}: {e.message}"
            for e in sorted(validator.iter_errors(data), key=lambda e: list(e.path))
        ]
        if errors:
            raise InvalidVarsFileError(str(self.vars_path), errors)
        return data
