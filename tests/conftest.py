"""
Pytest configuration and shared fixtures.
"""

import io
import tarfile
from collections.abc import Callable
from pathlib import Path

import pytest
from rich.console import Console

from openclaw_deploy.settings import DeploySettings
from openclaw_deploy.util.shell import CommandResult, CommandRunner
from openclaw_deploy.workspace import Workspace

DEFAULT_TOOLS = {"gcloud", "ansible", "ansible-playbook", "ansible-galaxy", "gpg", "ssh", "git"}


class FakeRunner(CommandRunner):
    """
    Command runner that records commands instead of executing them.

    Responses are matched by argv prefix, most recently scripted first.
    Unscripted commands succeed with empty output.
    """

    def __init__(self, dry_run: bool = False, tools: set[str] | None = None):
        super().__init__(dry_run=dry_run, console=Console(file=io.StringIO(), width=200))
        self.tools = set(DEFAULT_TOOLS if tools is None else tools)
        self.run_calls: list[list[str]] = []
        self.executed: list[list[str]] = []
        self.inputs: list[str | None] = []
        self._scripts: list[tuple[list[str], Callable[[list[str]], CommandResult]]] = []

    def script(
        self,
        *prefix: str,
        stdout: str = "",
        returncode: int = 0,
        stderr: str = "",
        action: Callable[[list[str]], None] | None = None,
    ) -> None:
        def respond(args: list[str]) -> CommandResult:
            if action is not None:
                action(args)
            return CommandResult(args, returncode, stdout, stderr)

        self._scripts.append((list(prefix), respond))

    def run(self, args, *, capture=False, check=True, input_text=None):
        self.run_calls.append([str(a) for a in args])
        return super().run(args, capture=capture, check=check, input_text=input_text)

    def which(self, tool: str) -> str | None:
        return f"/usr/bin/{tool}" if tool in self.tools else None

    def _execute(self, args, *, capture, input_text):
        self.executed.append(args)
        self.inputs.append(input_text)
        for prefix, respond in reversed(self._scripts):
            if args[: len(prefix)] == prefix:
                return respond(args)
        return CommandResult(args, 0, "", "")

    @property
    def output(self) -> str:
        return self.console.file.getvalue()

    def commands_starting_with(self, *prefix: str) -> list[list[str]]:
        return [args for args in self.executed if args[: len(prefix)] == list(prefix)]


@pytest.fixture
def temp_workspace(tmp_path):
    """Create an initialized workspace with a playbook for testing."""
    workspace = Workspace(tmp_path / "workspace")
    workspace.initialize()
    workspace.playbook.write_text("- hosts: openclaw_hosts\n  roles: []\n")
    workspace.requirements.write_text("collections: []\n")
    return workspace


@pytest.fixture
def fake_runner():
    return FakeRunner()


@pytest.fixture
def settings():
    return DeploySettings(project_id="demo-project", zone="us-central1-a")


@pytest.fixture
def ssh_config(tmp_path):
    """Path to an ssh config file outside the real home directory."""
    return tmp_path / "ssh" / "config"


def build_backup_archive(path: Path, users: tuple[str, ...] = ("clawdbot",)) -> Path:
    """Write a small archive laid out like the remote backup script's output."""

    def add(tar: tarfile.TarFile, name: str, data: bytes) -> None:
        info = tarfile.TarInfo(name)
        info.size = len(data)
        tar.addfile(info, io.BytesIO(data))

    with tarfile.open(path, "w:gz") as tar:
        add(tar, "./installed_software_dpkg.txt", b"bash\tinstall\n")
        add(tar, "./installed_npm_global.txt", b"/usr/lib\n`-- openclaw@1.0.0\n")
        add(tar, "./system_files/clawdbot.service", b"[Unit]\nDescription=clawdbot\n")
        for user in users:
            add(tar, f"./files/home/{user}/.clawdbot/config.json", b'{"model": "default"}\n')
            add(tar, f"./files/home/{user}/.bashrc", b"export PATH=$PATH:~/.local/bin\n")
    return path


@pytest.fixture
def backup_archive(tmp_path):
    return build_backup_archive(tmp_path / "sample_backup.tar.gz")


def snapshot_tree(root: Path) -> dict[str, bytes]:
    """Relative path -> content of every file below ``root``."""
    return {
        str(path.relative_to(root)): path.read_bytes()
        for path in sorted(Path(root).rglob("*"))
        if path.is_file()
    }
