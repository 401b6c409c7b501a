"""
Prerequisite checks run before provisioning.

Each check appends pass/fail/warn/info lines to a :class:`PrerequisiteReport`;
nothing here changes the environment.
"""

import re
from dataclasses import dataclass, field
from enum import Enum

from rich.console import Console
from rich.markup import escape

from openclaw_deploy.provision.gcloud import COMPUTE_API, GCloudAccount
from openclaw_deploy.provision.inventory import list_instances
from openclaw_deploy.util.shell import CommandRunner
from openclaw_deploy.workspace import Workspace

MIN_ANSIBLE_VERSION = (2, 14)


class CheckStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"
    INFO = "info"


@dataclass
class CheckResult:
    status: CheckStatus
    message: str


@dataclass
class CheckSection:
    title: str
    results: list[CheckResult] = field(default_factory=list)

    def add(self, status: CheckStatus, message: str) -> None:
        self.results.append(CheckResult(status, message))


class PrerequisiteReport:
    """Collected results of all prerequisite checks."""

    def __init__(self):
        self.sections: list[CheckSection] = []

    def section(self, title: str) -> CheckSection:
        section = CheckSection(title)
        self.sections.append(section)
        return section

    def _count(self, status: CheckStatus) -> int:
        return sum(1 for s in self.sections for r in s.results if r.status == status)

    @property
    def errors(self) -> int:
        return self._count(CheckStatus.FAIL)

    @property
    def warnings(self) -> int:
        return self._count(CheckStatus.WARN)

    @property
    def ok(self) -> bool:
        return self.errors == 0


def parse_ansible_version(output: str) -> tuple[int, int] | None:
    """Extract (major, minor) from the first line of ``ansible --version``."""
    first_line = output.splitlines()[0] if output else ""
    match = re.search(r"(\d+)\.(\d+)", first_line)
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


def _first_line(text: str) -> str:
    return text.strip().splitlines()[0] if text.strip() else "unknown version"


def check_gcloud(runner: CommandRunner, report: PrerequisiteReport) -> bool:
    section = report.section("Google Cloud SDK")
    if not runner.which("gcloud"):
        section.add(CheckStatus.FAIL, "gcloud CLI not installed")
        section.add(CheckStatus.INFO, "Install: https://cloud.google.com/sdk/docs/install")
        return False

    version = runner.query(["gcloud", "--version"])
    section.add(CheckStatus.PASS, f"gcloud installed ({_first_line(version.stdout)})")

    account = GCloudAccount(runner).active_account()
    if account:
        section.add(CheckStatus.PASS, f"gcloud authenticated as: {account}")
        return True
    section.add(CheckStatus.FAIL, "gcloud not authenticated")
    section.add(CheckStatus.INFO, "Run: gcloud auth login")
    return False


def check_project(runner: CommandRunner, report: PrerequisiteReport, project_id: str | None) -> bool:
    section = report.section("GCP Project")
    if not project_id:
        section.add(CheckStatus.FAIL, "No GCP project configured")
        section.add(CheckStatus.INFO, "Set: export GCP_PROJECT_ID=your-project-id")
        section.add(CheckStatus.INFO, "Or: gcloud config set project your-project-id")
        return False

    section.add(CheckStatus.PASS, f"GCP project: {project_id}")
    if GCloudAccount(runner).project_accessible(project_id):
        section.add(CheckStatus.PASS, "Project access verified")
        return True
    section.add(CheckStatus.FAIL, f"Cannot access project: {project_id}")
    section.add(CheckStatus.INFO, "Ensure you have permissions and the project exists")
    return False


def check_compute_api(runner: CommandRunner, report: PrerequisiteReport, project_id: str | None) -> bool:
    section = report.section("Compute Engine API")
    if not project_id:
        section.add(CheckStatus.WARN, "Cannot check API - no project configured")
        return False

    if COMPUTE_API in GCloudAccount(runner).enabled_services(project_id):
        section.add(CheckStatus.PASS, "Compute Engine API enabled")
        return True
    section.add(CheckStatus.FAIL, "Compute Engine API not enabled")
    section.add(
        CheckStatus.INFO, f"Enable: gcloud services enable {COMPUTE_API} --project={project_id}"
    )
    return False


def check_ansible(runner: CommandRunner, report: PrerequisiteReport) -> bool:
    section = report.section("Ansible")
    if not runner.which("ansible"):
        section.add(CheckStatus.FAIL, "ansible not installed")
        section.add(CheckStatus.INFO, "Install: pip install ansible")
        return False

    output = runner.query(["ansible", "--version"]).stdout
    section.add(CheckStatus.PASS, f"ansible installed ({_first_line(output)})")

    ok = True
    if runner.which("ansible-playbook"):
        section.add(CheckStatus.PASS, "ansible-playbook available")
    else:
        section.add(CheckStatus.FAIL, "ansible-playbook not found")
        ok = False

    if runner.which("ansible-galaxy"):
        section.add(CheckStatus.PASS, "ansible-galaxy available")
    else:
        section.add(CheckStatus.WARN, "ansible-galaxy not found (needed for collections)")

    version = parse_ansible_version(output)
    wanted = ".".join(str(n) for n in MIN_ANSIBLE_VERSION)
    if version is None:
        section.add(CheckStatus.WARN, f"Could not determine Ansible version - recommend {wanted}+")
    elif version >= MIN_ANSIBLE_VERSION:
        section.add(
            CheckStatus.PASS,
            f"Ansible version {version[0]}.{version[1]} meets requirements ({wanted}+)",
        )
    else:
        section.add(CheckStatus.WARN, f"Ansible version {version[0]}.{version[1]} - recommend {wanted}+")
    return ok


def check_optional_tools(runner: CommandRunner, report: PrerequisiteReport) -> None:
    section = report.section("Optional Tools")
    if runner.which("gpg"):
        section.add(CheckStatus.PASS, "gpg available (for encrypted backups)")
    else:
        section.add(CheckStatus.WARN, "gpg not installed (encrypted backups disabled)")
        section.add(CheckStatus.INFO, "Install: brew install gnupg  OR  apt install gnupg")

    if runner.which("ssh"):
        section.add(CheckStatus.PASS, "ssh available")
    else:
        section.add(CheckStatus.FAIL, "ssh not found")


def check_workspace(workspace: Workspace, report: PrerequisiteReport) -> bool:
    section = report.section("Project Structure")
    ok = True
    if workspace.playbook.exists():
        section.add(CheckStatus.PASS, "ansible/playbook.yml found")
    else:
        section.add(CheckStatus.FAIL, "ansible/playbook.yml not found")
        section.add(CheckStatus.INFO, "Run this command from the deployment repository root")
        ok = False

    if workspace.requirements.exists():
        section.add(CheckStatus.PASS, "ansible/requirements.yml found")
    else:
        section.add(CheckStatus.WARN, "ansible/requirements.yml not found")

    if workspace.inventory_dir.is_dir():
        count = len(list_instances(workspace.inventory_dir))
        section.add(CheckStatus.PASS, f"inventory/ directory exists ({count} instance(s))")
    else:
        section.add(
            CheckStatus.INFO, "inventory/ directory not found (will be created on first deployment)"
        )
    return ok


def run_checks(runner: CommandRunner, workspace: Workspace, project_id: str | None) -> PrerequisiteReport:
    """Run every check and return the report."""
    report = PrerequisiteReport()
    check_gcloud(runner, report)
    check_project(runner, report, project_id)
    check_compute_api(runner, report, project_id)
    check_ansible(runner, report)
    check_optional_tools(runner, report)
    check_workspace(workspace, report)
    return report


_MARKS = {
    CheckStatus.PASS: "[green]✓[/green]",
    CheckStatus.FAIL: "[red]✗[/red]",
    CheckStatus.WARN: "[yellow]⚠[/yellow]",
    CheckStatus.INFO: "  →",
}


def print_report(report: PrerequisiteReport, console: Console) -> None:
    """Render the report with a summary."""
    console.print("\n[bold]OpenClaw Deploy - Prerequisite Check[/bold]")
    for section in report.sections:
        console.print(f"\n[bold]Checking {escape(section.title)}...[/bold]")
        for result in section.results:
            console.print(f"{_MARKS[result.status]} {escape(result.message)}", soft_wrap=True)

    console.print("\n[bold]SUMMARY[/bold]")
    if report.errors == 0 and report.warnings == 0:
        console.print("[green]All checks passed! You're ready to deploy.[/green]")
        console.print("\nNext steps:")
        console.print("  1. openclaw-deploy create <vm-name>")
        console.print("  2. Edit inventory/<vm-name>.<zone>.<project>.yml (optional)")
        console.print("  3. openclaw-deploy update <vm-name>")
    elif report.errors == 0:
        console.print(f"[yellow]Passed with {report.warnings} warning(s).[/yellow]")
        console.print("You can proceed, but review warnings above.")
    else:
        console.print(
            f"[red]Failed with {report.errors} error(s) and {report.warnings} warning(s).[/red]"
        )
        console.print("Please fix the errors above before deploying.")
