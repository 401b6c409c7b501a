"""
External command execution.

Every interaction with gcloud, ansible, gpg and git goes through
:class:`CommandRunner`. Commands come in two flavours:

- ``run`` for commands that change something (create a VM, upload a file,
  run a playbook). In dry-run mode they are printed and skipped.
- ``query`` for read-only commands (``describe``, ``list``,
  ``config get-value``). They always execute and never raise on a non-zero
  exit status; callers inspect ``CommandResult.ok``.

Failures of ``run`` abort the current operation by raising
:class:`~openclaw_deploy.exceptions.CommandFailedError`.
"""

import logging
import os
import shutil
import subprocess
from dataclasses import dataclass, field
from pathlib import Path

from rich.console import Console
from rich.markup import escape

from openclaw_deploy.exceptions import CommandFailedError, ToolNotFoundError
from openclaw_deploy.util.redact import redact_command

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Outcome of an external command."""

    args: list[str]
    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass
class CommandRunner:
    """Runs external commands, honouring dry-run mode."""

    dry_run: bool = False
    cwd: Path | None = None
    env: dict[str, str] | None = None
    console: Console = field(default_factory=Console)

    def run(
        self,
        args: list[str],
        *,
        capture: bool = False,
        check: bool = True,
        input_text: str | None = None,
    ) -> CommandResult:
        """
        Run a command that has externally visible effects.

        Args:
            args: Command and arguments
            capture: Capture stdout/stderr instead of streaming them
            check: Raise CommandFailedError on a non-zero exit status
            input_text: Text written to the command's stdin

        Returns:
            CommandResult (a synthetic success in dry-run mode)

        Raises:
            CommandFailedError: If check is set and the command fails
            ToolNotFoundError: If the executable is not installed
        """
        args = [str(a) for a in args]
        if self.dry_run:
            self.console.print(
                f"[DRY RUN] Would execute: {escape(redact_command(args))}", soft_wrap=True
            )
            return CommandResult(args, 0)

        result = self._execute(args, capture=capture, input_text=input_text)
        if check and not result.ok:
            raise CommandFailedError(args, result.returncode, result.stderr)
        return result

    def query(self, args: list[str], *, input_text: str | None = None) -> CommandResult:
        """Run a read-only command and capture its output (also in dry-run mode)."""
        args = [str(a) for a in args]
        try:
            return self._execute(args, capture=True, input_text=input_text)
        except ToolNotFoundError:
            logger.debug("Query skipped, %s is not installed", args[0])
            return CommandResult(args, 127, "", f"{args[0]}: command not found")

    def which(self, tool: str) -> str | None:
        """Return the path of an executable, or None if it is not installed."""
        return shutil.which(tool)

    def _execute(self, args: list[str], *, capture: bool, input_text: str | None) -> CommandResult:
        logger.debug("Running: %s", redact_command(args))

        env = None
        if self.env is not None:
            env = {**os.environ, **self.env}

        try:
            completed = subprocess.run(
                args,
                cwd=str(self.cwd) if self.cwd else None,
                env=env,
                input=input_text,
                capture_output=capture,
                text=True,
                check=False,
            )
        except FileNotFoundError as e:
            raise ToolNotFoundError(args[0]) from e

        logger.debug("Exit code %d: %s", completed.returncode, args[0])
        return CommandResult(
            args,
            completed.returncode,
            completed.stdout or "",
            completed.stderr or "",
        )
