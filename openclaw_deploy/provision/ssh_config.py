"""
SSH client configuration for IAP-tunnelled hosts.

VMs have no public address, so Ansible reaches them through an SSH
``ProxyCommand`` that opens an IAP tunnel with gcloud.
"""

import logging
from pathlib import Path

from openclaw_deploy.util.files import ensure_dir, write_text
from openclaw_deploy.util.templates import TemplateLoader

logger = logging.getLogger(__name__)

MARKER = "# OpenClaw VM - IAP Tunnel (auto-generated)"


def default_ssh_config() -> Path:
    return Path.home() / ".ssh" / "config"


def remove_host_block(text: str, host_alias: str) -> str:
    """Drop the ``Host <alias>`` block (and its marker comment) from an ssh config."""
    lines = text.splitlines()
    kept: list[str] = []
    in_block = False

    for line in lines:
        stripped = line.strip()
        if stripped == f"Host {host_alias}":
            in_block = True
            if kept and kept[-1].strip() == MARKER:
                kept.pop()
            continue
        if in_block:
            if stripped.startswith("Host ") or stripped == MARKER:
                in_block = False
            else:
                continue
        kept.append(line)

    while kept and not kept[-1].strip():
        kept.pop()
    return "\n".join(kept) + "\n" if kept else ""


def configure_ssh_for_iap(
    host_alias: str,
    instance: str,
    project_id: str,
    zone: str,
    config_path: Path | None = None,
    templates: TemplateLoader | None = None,
) -> Path:
    """
    Write (or replace) the IAP host block for an instance.

    Returns:
        Path of the ssh config file
    """
    config_path = Path(config_path) if config_path else default_ssh_config()
    templates = templates or TemplateLoader()
    logger.info("Configuring SSH for IAP tunnel access...")

    ensure_dir(config_path.parent, mode=0o700)
    existing = config_path.read_text() if config_path.exists() else ""
    content = remove_host_block(existing, host_alias)

    block = templates.render(
        "ssh_host.j2",
        host_alias=host_alias,
        instance=instance,
        project_id=project_id,
        zone=zone,
    )
    if content:
        content += "\n"
    write_text(config_path, content + block, mode=0o600)

    logger.info("SSH configured for: %s", host_alias)
    return config_path
