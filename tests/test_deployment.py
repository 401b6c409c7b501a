"""
Tests for the create and update workflows.
"""

import logging

import pytest

from openclaw_deploy.exceptions import (
    CommandFailedError,
    DeploymentAbortedError,
    InventoryNotFoundError,
)
from openclaw_deploy.provision.deployment import Deployment
from conftest import FakeRunner, snapshot_tree

READ_ONLY_VERBS = {"describe", "list", "get-value"}


def make_deployment(workspace, settings, runner, ssh_config, confirm=None):
    return Deployment(
        workspace,
        settings,
        runner,
        confirm=confirm,
        ssh_config_path=ssh_config,
        sleep=lambda _seconds: None,
    )


def missing_infrastructure(runner):
    """Script every describe query to fail so that everything gets created."""
    for prefix in (
        ("gcloud", "compute", "networks", "describe"),
        ("gcloud", "compute", "networks", "subnets", "describe"),
        ("gcloud", "compute", "routers", "describe"),
        ("gcloud", "compute", "routers", "nats", "describe"),
        ("gcloud", "compute", "firewall-rules", "describe"),
        ("gcloud", "iam", "service-accounts", "describe"),
    ):
        runner.script(*prefix, returncode=1)


class TestCreate:
    def test_full_create(self, temp_workspace, settings, fake_runner, ssh_config):
        missing_infrastructure(fake_runner)
        settings = settings.with_overrides(tailscale_key="tskey-auth-abc")

        make_deployment(temp_workspace, settings, fake_runner, ssh_config).create("bot")

        alias = "bot.us-central1-a.demo-project"
        inventory = temp_workspace.inventory_dir / f"{alias}.ini"
        vars_file = temp_workspace.inventory_dir / f"{alias}.yml"
        assert inventory.read_text() == f"[openclaw_hosts]\n{alias}\n"
        assert 'tailscale_authkey: "tskey-auth-abc"' in vars_file.read_text()
        assert f"Host {alias}" in ssh_config.read_text()

        verbs = [args[:4] for args in fake_runner.run_calls]
        assert ["gcloud", "compute", "instances", "create"] in verbs
        assert fake_runner.run_calls[-2][:3] == ["ansible-galaxy", "collection", "install"]
        assert fake_runner.run_calls[-1][0] == "ansible-playbook"
        assert f"@{vars_file}" in fake_runner.run_calls[-1]

    def test_overrides_written_once(self, temp_workspace, settings, fake_runner, ssh_config, caplog):
        missing_infrastructure(fake_runner)
        settings = settings.with_overrides(install_mode="development", tailscale_key="tskey-auth-abc")

        with caplog.at_level(logging.INFO, logger="openclaw_deploy.provision.inventory"):
            make_deployment(temp_workspace, settings, fake_runner, ssh_config).create("bot")

        messages = [record.getMessage() for record in caplog.records]
        assert any("Generating variables file" in m for m in messages)
        assert not any("preserving existing configuration" in m for m in messages)
        vars_file = temp_workspace.inventory_dir / "bot.us-central1-a.demo-project.yml"
        assert 'openclaw_install_mode: "development"' in vars_file.read_text()

    def test_order_of_steps(self, temp_workspace, settings, fake_runner, ssh_config):
        missing_infrastructure(fake_runner)

        make_deployment(temp_workspace, settings, fake_runner, ssh_config).create("bot")

        steps = [" ".join(args[1:4]) for args in fake_runner.run_calls if args[0] == "gcloud"]
        assert steps.index("compute networks create") < steps.index("iam service-accounts create")
        assert steps.index("iam service-accounts create") < steps.index("compute routers create")
        assert steps.index("compute routers create") < steps.index("compute instances create")

    def test_existing_inventory_declined(self, temp_workspace, settings, fake_runner, ssh_config):
        inventory = temp_workspace.inventory_dir / "bot.us-central1-a.demo-project.ini"
        inventory.write_text("[openclaw_hosts]\nkept\n")
        prompts = []

        deployment = make_deployment(
            temp_workspace, settings, fake_runner, ssh_config,
            confirm=lambda prompt: prompts.append(prompt) or False,
        )
        with pytest.raises(DeploymentAbortedError):
            deployment.create("bot")

        assert prompts
        assert fake_runner.run_calls == []

    def test_existing_inventory_not_overwritten(self, temp_workspace, settings, fake_runner, ssh_config):
        inventory = temp_workspace.inventory_dir / "bot.us-central1-a.demo-project.ini"
        inventory.write_text("[openclaw_hosts]\nkept ansible_user=me\n")

        make_deployment(temp_workspace, settings, fake_runner, ssh_config).create("bot", assume_yes=True)

        assert inventory.read_text() == "[openclaw_hosts]\nkept ansible_user=me\n"

    def test_failure_aborts(self, temp_workspace, settings, fake_runner, ssh_config):
        missing_infrastructure(fake_runner)
        fake_runner.script("gcloud", "compute", "instances", "create", returncode=1, stderr="quota exceeded")

        with pytest.raises(CommandFailedError) as exc_info:
            make_deployment(temp_workspace, settings, fake_runner, ssh_config).create("bot")

        assert exc_info.value.stderr == "quota exceeded"
        assert not any(args[0].startswith("ansible") for args in fake_runner.run_calls)
        assert list(temp_workspace.inventory_dir.iterdir()) == []


class TestDryRun:
    """Dry-run mode performs no externally visible side effects."""

    def test_create_dry_run(self, temp_workspace, settings, ssh_config):
        runner = FakeRunner(dry_run=True)
        missing_infrastructure(runner)
        before = snapshot_tree(temp_workspace.root)
        settings = settings.with_overrides(tailscale_key="tskey-auth-secret")

        make_deployment(temp_workspace, settings, runner, ssh_config).create("bot")

        assert snapshot_tree(temp_workspace.root) == before
        assert not ssh_config.exists()
        for args in runner.executed:
            assert READ_ONLY_VERBS & set(args), args
        assert "Would setup VPC: openclaw-vpc" in runner.output
        assert "Would execute: gcloud compute instances create bot" in runner.output
        assert "tskey-auth-secret" not in runner.output

    def test_create_dry_run_with_existing_inventory(self, temp_workspace, settings, ssh_config):
        runner = FakeRunner(dry_run=True)
        (temp_workspace.inventory_dir / "bot.us-central1-a.demo-project.ini").write_text("x\n")

        make_deployment(temp_workspace, settings, runner, ssh_config).create("bot")

        assert "Would prompt for overwrite confirmation" in runner.output
        assert runner.executed == []

    def test_update_dry_run(self, temp_workspace, settings, ssh_config):
        runner = FakeRunner(dry_run=True)
        alias = "bot.us-central1-a.demo-project"
        (temp_workspace.inventory_dir / f"{alias}.ini").write_text("[openclaw_hosts]\n")
        before = snapshot_tree(temp_workspace.root)

        make_deployment(temp_workspace, settings.with_overrides(install_mode="development"), runner, ssh_config).update("bot")

        assert snapshot_tree(temp_workspace.root) == before
        assert not ssh_config.exists()
        assert runner.executed == []
        assert "Would run: ansible-playbook" in runner.output


class TestUpdate:
    def test_missing_inventory(self, temp_workspace, settings, fake_runner, ssh_config):
        (temp_workspace.inventory_dir / "other.us-central1-a.demo-project.ini").write_text("")

        with pytest.raises(InventoryNotFoundError) as exc_info:
            make_deployment(temp_workspace, settings, fake_runner, ssh_config).update("bot")

        assert "other.us-central1-a.demo-project" in exc_info.value.suggestion

    def test_update_runs_playbook(self, temp_workspace, settings, fake_runner, ssh_config):
        alias = "bot.us-central1-a.demo-project"
        (temp_workspace.inventory_dir / f"{alias}.ini").write_text(f"[openclaw_hosts]\n{alias}\n")

        make_deployment(temp_workspace, settings, fake_runner, ssh_config).update("bot")

        assert (temp_workspace.inventory_dir / f"{alias}.yml").exists()
        assert ssh_config.exists()
        assert fake_runner.run_calls[-1][0] == "ansible-playbook"
        assert not any(args[0] == "gcloud" for args in fake_runner.run_calls)

    def test_update_applies_overrides(self, temp_workspace, settings, fake_runner, ssh_config):
        alias = "bot.us-central1-a.demo-project"
        (temp_workspace.inventory_dir / f"{alias}.ini").write_text(f"[openclaw_hosts]\n{alias}\n")
        vars_file = temp_workspace.inventory_dir / f"{alias}.yml"
        vars_file.write_text("openclaw_install_mode: release\nnodejs_version: '20.x'\n")

        make_deployment(
            temp_workspace, settings.with_overrides(install_mode="development"), fake_runner, ssh_config
        ).update("bot")

        text = vars_file.read_text()
        assert 'openclaw_install_mode: "development"' in text
        assert "nodejs_version: '20.x'" in text

    def test_update_without_requirements(self, temp_workspace, settings, fake_runner, ssh_config):
        alias = "bot.us-central1-a.demo-project"
        temp_workspace.requirements.unlink()
        (temp_workspace.inventory_dir / f"{alias}.ini").write_text(f"[openclaw_hosts]\n{alias}\n")

        make_deployment(temp_workspace, settings, fake_runner, ssh_config).update("bot")

        assert [args[0] for args in fake_runner.run_calls] == ["ansible-playbook"]
