"""
CLI entry point for openclaw-deploy.
"""

import logging
import os
from functools import wraps
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from openclaw_deploy.exceptions import (
    DeployError,
    PrerequisiteCheckError,
    WorkspaceNotFoundError,
    format_error_for_cli,
)
from openclaw_deploy.settings import DeploySettings, validate_instance_name
from openclaw_deploy.util.logging import configure_logging
from openclaw_deploy.util.progress import operation_status, show_summary
from openclaw_deploy.util.shell import CommandRunner
from openclaw_deploy.workspace import Workspace

app = typer.Typer(
    name="openclaw-deploy",
    help="Provision, update and back up OpenClaw instances on Google Cloud",
    add_completion=False,
)
console = Console()
logger = logging.getLogger(__name__)

# Options shared by several commands
ZONE_OPTION = typer.Option(None, "--zone", help="GCP zone (env: GCP_ZONE)")
DRY_RUN_OPTION = typer.Option(False, "--dry-run", help="Show what would happen without making changes")
SKIP_PREREQ_OPTION = typer.Option(
    False, "--skip-prereq-check", help="Skip prerequisite verification"
)
TAILSCALE_KEY_OPTION = typer.Option(
    None, "--tailscale-key", help="Tailscale auth key for the instance"
)
INSTALL_MODE_OPTION = typer.Option(
    None, "--install-mode", help="OpenClaw install mode (release|development)"
)
VERBOSE_OPTION = typer.Option(False, "--verbose", "-v", help="Enable debug output")


def handle_errors(func):
    """Decorator to handle exceptions in CLI commands with nice formatting."""

    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (typer.Exit, typer.Abort):
            raise
        except DeployError as e:
            # Our custom exceptions with helpful messages
            console.print(format_error_for_cli(e))
            raise typer.Exit(1)
        except Exception as e:
            # Unexpected errors
            logger.debug("Unexpected error", exc_info=True)
            console.print(f"[red]Unexpected error:[/red] {escape(str(e))}")
            console.print("\n[yellow]This may be a bug. Please report it with the output of --verbose.[/yellow]")
            raise typer.Exit(1)

    return wrapper


def make_runner(dry_run: bool = False) -> CommandRunner:
    """Command runner used by all commands."""
    return CommandRunner(dry_run=dry_run, console=console)


def current_workspace(required: bool = False) -> Workspace:
    workspace = Workspace(Path.cwd())
    if required and not workspace.is_initialized():
        raise WorkspaceNotFoundError()
    return workspace


def resolve_settings(workspace: Workspace, runner: CommandRunner, **overrides) -> DeploySettings:
    from openclaw_deploy.provision.gcloud import get_configured_project

    return DeploySettings.resolve(
        workspace,
        overrides=overrides,
        project_lookup=lambda: get_configured_project(runner),
    )


def show_config(instance: str, settings: DeploySettings, dry_run: bool) -> None:
    items = {
        "Instance": instance,
        "Project": settings.project_id,
        "Zone": settings.zone,
        "Machine type": settings.machine_type,
        "Disk": f"{settings.disk_size} ({settings.disk_type})",
        "Host alias": settings.host_alias(instance),
    }
    if settings.install_mode:
        items["Install mode"] = settings.install_mode
    if settings.tailscale_key:
        items["Tailscale key"] = "(set)"
    if dry_run:
        items["Mode"] = "DRY RUN"
    show_summary("Configuration", items, out=console)


def print_dry_run_complete() -> None:
    console.print()
    console.print("[bold]" + "═" * 59 + "[/bold]")
    console.print("[bold]  DRY RUN COMPLETE - No changes were made[/bold]")
    console.print("  Remove --dry-run to execute these operations")
    console.print("[bold]" + "═" * 59 + "[/bold]")


def run_prereq_check(runner: CommandRunner, workspace: Workspace, project_id: str | None) -> None:
    from openclaw_deploy.provision.prerequisites import print_report, run_checks

    console.print("[bold blue]🔍 Running prerequisite check...[/bold blue]")
    report = run_checks(runner, workspace, project_id)
    print_report(report, console)
    if not report.ok:
        raise PrerequisiteCheckError(report.errors)


@app.command()
def init(
    workspace_dir: str = typer.Argument(".", help="Workspace directory to initialize"),
    with_templates: bool = typer.Option(
        False, "--with-templates", help="Copy default templates for customization"
    ),
):
    """Initialize a deployment workspace."""
    console.print(f"[bold blue]Initializing workspace:[/bold blue] {escape(workspace_dir)}")

    workspace = Workspace(Path(workspace_dir))
    workspace.initialize()

    console.print(f"[green]✓ Created directory structure in {escape(workspace_dir)}[/green]")
    console.print(f"[green]✓ Wrote configuration to {Workspace.CONFIG_NAME}[/green]")

    if with_templates:
        from openclaw_deploy.util.templates import TemplateLoader

        loader = TemplateLoader(workspace.root)
        try:
            loader.copy_default_templates_to_workspace()
            console.print("[green]✓ Copied default templates to templates/[/green]")
            console.print("[dim]  Generated inventories and scripts now use these templates[/dim]")
        except PermissionError as e:
            console.print(f"[red]✗ Permission denied copying templates: {escape(str(e))}[/red]")
            logger.error("Permission error copying templates: %s", e)
            raise typer.Exit(1)

    console.print("\n[dim]Next steps:[/dim]")
    console.print(f"  cd {escape(workspace_dir)}")
    console.print("  # Add ansible/playbook.yml and ansible/requirements.yml")
    console.print("  openclaw-deploy check")
    console.print("  openclaw-deploy create <vm-name>")


@app.command()
@handle_errors
def create(
    name: str = typer.Argument(..., help="VM instance name"),
    zone: str = ZONE_OPTION,
    machine_type: str = typer.Option(None, "--machine-type", help="Machine type (env: GCP_MACHINE_TYPE)"),
    disk_size: str = typer.Option(None, "--disk-size", help="Boot disk size, e.g. 50GB (env: GCP_DISK_SIZE)"),
    disk_type: str = typer.Option(None, "--disk-type", help="Boot disk type: pd-ssd|pd-standard (env: GCP_DISK_TYPE)"),
    tailscale_key: str = TAILSCALE_KEY_OPTION,
    install_mode: str = INSTALL_MODE_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    skip_prereq_check: bool = SKIP_PREREQ_OPTION,
    yes: bool = typer.Option(False, "--yes", "-y", help="Overwrite an existing deployment without asking"),
    verbose: bool = VERBOSE_OPTION,
):
    """Provision a new VM and install OpenClaw on it."""
    from openclaw_deploy.provision.deployment import Deployment

    configure_logging(verbose, console)
    validate_instance_name(name)
    workspace = current_workspace(required=True)
    runner = make_runner(dry_run)

    settings = resolve_settings(
        workspace,
        runner,
        zone=zone,
        machine_type=machine_type,
        disk_size=disk_size,
        disk_type=disk_type,
        tailscale_key=tailscale_key,
        install_mode=install_mode,
    )
    show_config(name, settings, dry_run)

    if not skip_prereq_check:
        run_prereq_check(runner, workspace, settings.project_id)

    deployment = Deployment(
        workspace,
        settings,
        runner,
        console=console,
        confirm=lambda prompt: typer.confirm(prompt, default=False),
    )
    deployment.create(name, assume_yes=yes)

    if dry_run:
        print_dry_run_complete()
    else:
        console.print(f"\n[green]✓ Deployment of '{escape(name)}' complete[/green]")


@app.command()
@handle_errors
def update(
    name: str = typer.Argument(..., help="VM instance name"),
    zone: str = ZONE_OPTION,
    tailscale_key: str = TAILSCALE_KEY_OPTION,
    install_mode: str = INSTALL_MODE_OPTION,
    dry_run: bool = DRY_RUN_OPTION,
    verbose: bool = VERBOSE_OPTION,
):
    """Re-run the playbook against an existing VM."""
    from openclaw_deploy.provision.deployment import Deployment

    configure_logging(verbose, console)
    validate_instance_name(name)
    workspace = current_workspace(required=True)
    runner = make_runner(dry_run)

    settings = resolve_settings(
        workspace, runner, zone=zone, tailscale_key=tailscale_key, install_mode=install_mode
    )
    show_config(name, settings, dry_run)

    Deployment(workspace, settings, runner, console=console).update(name)

    if dry_run:
        print_dry_run_complete()
    else:
        console.print(f"\n[green]✓ Update of '{escape(name)}' complete[/green]")


@app.command(name="list")
@handle_errors
def list_cmd():
    """List deployments known to this workspace."""
    from openclaw_deploy.backup.archive import list_backups
    from openclaw_deploy.provision.inventory import list_instances

    workspace = current_workspace()
    aliases = list_instances(workspace.inventory_dir)
    if not aliases:
        console.print("[yellow]No deployments found.[/yellow]")
        console.print("Create one with: openclaw-deploy create <vm-name>")
        return

    table = Table(title="Deployments")
    table.add_column("Instance", style="cyan")
    table.add_column("Zone")
    table.add_column("Project")
    table.add_column("Variables")
    table.add_column("Backups", justify="right")

    for alias in aliases:
        instance, _, rest = alias.partition(".")
        zone, _, project = rest.partition(".")
        has_vars = (workspace.inventory_dir / f"{alias}.yml").exists()
        backups = list_backups(workspace.backups_dir(instance))
        table.add_row(instance, zone, project, "yes" if has_vars else "missing", str(len(backups)))

    console.print(table)


@app.command()
@handle_errors
def check(
    verbose: bool = VERBOSE_OPTION,
):
    """Verify that gcloud, ansible and the workspace are ready for deployment."""
    from openclaw_deploy.provision.gcloud import get_configured_project

    configure_logging(verbose, console)
    workspace = current_workspace()
    runner = make_runner()

    project_id = (
        os.environ.get("GCP_PROJECT_ID")
        or workspace.setting("gcp", "project_id")
        or get_configured_project(runner)
    )
    run_prereq_check(runner, workspace, project_id)


@app.command()
@handle_errors
def backup(
    name: str = typer.Argument(..., help="VM instance name"),
    zone: str = ZONE_OPTION,
    encrypt: bool = typer.Option(
        None, "--encrypt/--no-encrypt", help="Encrypt the archive with gpg (default from config)"
    ),
    passphrase: str = typer.Option(
        None,
        "--passphrase",
        envvar="OPENCLAW_BACKUP_PASSPHRASE",
        help="gpg passphrase (env: OPENCLAW_BACKUP_PASSPHRASE); prompts if unset",
    ),
    verbose: bool = VERBOSE_OPTION,
):
    """Download a backup of an instance's OpenClaw state."""
    from openclaw_deploy.backup.manager import BackupManager
    from openclaw_deploy.provision.gcloud import GCloud

    configure_logging(verbose, console)
    validate_instance_name(name)
    workspace = current_workspace()
    runner = make_runner()
    settings = resolve_settings(workspace, runner, zone=zone)

    if encrypt is None:
        encrypt = bool(workspace.setting("backup", "encrypt", False))

    manager = BackupManager(workspace, GCloud(runner, settings), runner, console=console)
    with operation_status(f"Backing up {name}", console):
        result = manager.backup(name, encrypt=encrypt, passphrase=passphrase)

    show_summary(
        "Backup complete",
        {
            "Instance": name,
            "Archive": str(result.artifact),
            "Encrypted": "yes" if result.encrypted else "no",
            "Metadata": str(result.metadata),
        },
        out=console,
    )


@app.command()
@handle_errors
def restore(
    name: str = typer.Argument(..., help="VM instance name"),
    backup_file: Path = typer.Argument(..., help="Backup archive (.tar.gz or .tar.gz.gpg)"),
    zone: str = ZONE_OPTION,
    passphrase: str = typer.Option(
        None,
        "--passphrase",
        envvar="OPENCLAW_BACKUP_PASSPHRASE",
        help="gpg passphrase for encrypted backups (env: OPENCLAW_BACKUP_PASSPHRASE)",
    ),
    verbose: bool = VERBOSE_OPTION,
):
    """Restore a backup onto an instance."""
    from openclaw_deploy.backup.manager import BackupManager
    from openclaw_deploy.provision.gcloud import GCloud

    configure_logging(verbose, console)
    validate_instance_name(name)
    workspace = current_workspace()
    runner = make_runner()
    settings = resolve_settings(workspace, runner, zone=zone)

    manager = BackupManager(workspace, GCloud(runner, settings), runner, console=console)
    with operation_status(f"Restoring {name}", console):
        manager.restore(name, backup_file, passphrase=passphrase)

    console.print("[yellow]Recommendation: run an update so services and software match:[/yellow]")
    console.print(f"  openclaw-deploy update {escape(name)}")


@app.command()
@handle_errors
def sync(
    name: str = typer.Argument(..., help="VM instance name"),
    zone: str = ZONE_OPTION,
    remote_user: str = typer.Option(
        None, "--remote-user", envvar="REMOTE_USER", help="User owning the data on the VM"
    ),
    local_home: Path = typer.Option(None, "--local-home", help="Extract into this directory instead of ~"),
    verbose: bool = VERBOSE_OPTION,
):
    """Pull sessions, memory and workspace files from an instance."""
    from openclaw_deploy.backup.manager import BackupManager
    from openclaw_deploy.provision.gcloud import GCloud

    configure_logging(verbose, console)
    validate_instance_name(name)
    workspace = current_workspace()
    runner = make_runner()
    settings = resolve_settings(workspace, runner, zone=zone)
    remote_user = remote_user or workspace.setting("backup", "remote_user")

    manager = BackupManager(workspace, GCloud(runner, settings), runner, console=console)
    with operation_status(f"Syncing {name}", console):
        extracted = manager.sync(name, remote_user, local_home)

    console.print(f"[green]✓ Synced {len(extracted)} entries from {escape(name)}[/green]")


@app.command()
@handle_errors
def dashboard(
    host: str = typer.Option(None, "--host", help="Interface to bind (default from config)"),
    port: int = typer.Option(None, "--port", envvar="CONTROL_CENTER_PORT", help="Port to listen on"),
    verbose: bool = VERBOSE_OPTION,
):
    """Serve the web dashboard."""
    import uvicorn

    from openclaw_deploy.dashboard import create_app

    configure_logging(verbose, console)
    workspace = current_workspace()
    host = host or workspace.setting("dashboard", "host")
    port = port or workspace.setting("dashboard", "port")

    console.print(f"[bold blue]Control Center running at http://{host}:{port}[/bold blue]")
    uvicorn.run(
        create_app(workspace.root, runner=make_runner()),
        host=host,
        port=int(port),
        log_level="debug" if verbose else "info",
    )


@app.command(name="self-update")
@handle_errors
def self_update_cmd(
    yes: bool = typer.Option(False, "--yes", "-y", help="Stash local changes without asking"),
    verbose: bool = VERBOSE_OPTION,
):
    """Pull the latest version of this deployment repository."""
    from openclaw_deploy.selfupdate import self_update

    configure_logging(verbose, console)
    self_update(
        make_runner(),
        Path.cwd(),
        confirm=lambda prompt: typer.confirm(prompt, default=False),
        assume_yes=yes,
    )
    console.print("[green]✅ Update complete.[/green]")
    console.print("Run 'openclaw-deploy update <vm-name>' to apply it to an instance.")


if __name__ == "__main__":
    app()
