"""
Tests for the IAP ssh host configuration.
"""

import stat

from openclaw_deploy.provision.ssh_config import MARKER, configure_ssh_for_iap, remove_host_block

ALIAS = "bot.us-central1-a.demo-project"


def configure(path):
    return configure_ssh_for_iap(ALIAS, "bot", "demo-project", "us-central1-a", config_path=path)


def test_creates_config_with_private_permissions(ssh_config):
    configure(ssh_config)

    text = ssh_config.read_text()
    assert MARKER in text
    assert f"Host {ALIAS}" in text
    assert (
        "ProxyCommand gcloud compute start-iap-tunnel bot %p --listen-on-stdin "
        "--project=demo-project --zone=us-central1-a"
    ) in text
    assert stat.S_IMODE(ssh_config.stat().st_mode) == 0o600
    assert stat.S_IMODE(ssh_config.parent.stat().st_mode) == 0o700


def test_replaces_existing_block_and_keeps_others(ssh_config):
    ssh_config.parent.mkdir(parents=True)
    ssh_config.write_text("Host github.com\n    User git\n")

    configure(ssh_config)
    configure(ssh_config)

    text = ssh_config.read_text()
    assert text.count(f"Host {ALIAS}") == 1
    assert text.count(MARKER) == 1
    assert "Host github.com\n    User git\n" in text


def test_remove_host_block():
    text = (
        "Host first\n    User a\n\n"
        f"{MARKER}\nHost {ALIAS}\n    HostName compute.bot\n\n"
        "Host last\n    User b\n"
    )

    result = remove_host_block(text, ALIAS)

    assert ALIAS not in result
    assert MARKER not in result
    assert "Host first" in result
    assert "Host last\n    User b" in result


def test_remove_host_block_from_empty():
    assert remove_host_block("", ALIAS) == ""
