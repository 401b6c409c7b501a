"""
Custom exceptions for openclaw-deploy with helpful error messages.
"""

from openclaw_deploy.util.redact import redact_command


class DeployError(Exception):
    """Base exception for openclaw-deploy errors."""

    def __init__(self, message: str, suggestion: str = None):
        self.message = message
        self.suggestion = suggestion
        super().__init__(self.message)

    def __str__(self):
        if self.suggestion:
            return f"{self.message}\n\nSuggestion: {self.suggestion}"
        return self.message


class WorkspaceError(DeployError):
    """Errors related to the deployment workspace."""

    pass


class WorkspaceNotFoundError(WorkspaceError):
    """Directory does not look like a deployment workspace."""

    def __init__(self, path: str = None):
        message = "Not in an openclaw-deploy workspace."
        if path:
            message = f"No openclaw-deploy workspace found at: {path}"

        suggestion = (
            "Initialize a workspace with:\n"
            "  openclaw-deploy init <directory>\n\n"
            "Or run the command from the repository root."
        )
        super().__init__(message, suggestion)


class ConfigurationError(DeployError):
    """Configuration errors."""

    pass


class InvalidConfigError(ConfigurationError):
    """Workspace configuration file is invalid."""

    def __init__(self, error_details: str):
        message = f"Invalid configuration file: {error_details}"

        suggestion = (
            "Fix openclaw-deploy.yaml or regenerate the defaults:\n"
            "  mv openclaw-deploy.yaml openclaw-deploy.yaml.backup\n"
            "  openclaw-deploy init .\n\n"
            "Then merge your settings back from the backup."
        )
        super().__init__(message, suggestion)


class ProjectNotConfiguredError(ConfigurationError):
    """No GCP project id could be determined."""

    def __init__(self):
        message = "No GCP Project ID found."
        suggestion = (
            "Set the GCP_PROJECT_ID environment variable:\n"
            "  export GCP_PROJECT_ID=<project-id>\n\n"
            "Or configure gcloud:\n"
            "  gcloud config set project <project-id>"
        )
        super().__init__(message, suggestion)


class ValidationError(DeployError):
    """Invalid user input."""

    pass


class InvalidInstanceNameError(ValidationError):
    """Instance name contains forbidden characters."""

    def __init__(self, name: str):
        message = f"Invalid VM name '{name}'"
        suggestion = "Only alphanumeric characters and hyphens are allowed."
        super().__init__(message, suggestion)


class InvalidUserNameError(ValidationError):
    """Remote user name is not a valid Linux account name."""

    def __init__(self, name: str):
        message = f"Invalid remote user '{name}'"
        suggestion = "Use a Linux account name such as 'clawdbot' (lowercase letters, digits, '-' and '_')."
        super().__init__(message, suggestion)


class InvalidOptionError(ValidationError):
    """Option value outside of the allowed choices."""

    def __init__(self, option: str, value: str, choices: list[str]):
        quoted = " or ".join(f"'{c}'" for c in choices)
        message = f"{option} must be {quoted} (got '{value}')"
        super().__init__(message)


class InvalidVarsFileError(ValidationError):
    """Per-instance variables file failed validation."""

    def __init__(self, path: str, errors: list[str]):
        error_list = "\n  - ".join(errors)
        message = f"Variables file {path} is invalid:\n  - {error_list}"
        suggestion = (
            "Edit the file by hand, or delete it and run 'update' again to "
            "regenerate the documented template."
        )
        super().__init__(message, suggestion)


class DeploymentError(DeployError):
    """Errors raised while provisioning or updating an instance."""

    pass


class InventoryNotFoundError(DeploymentError):
    """Inventory for the instance does not exist."""

    def __init__(self, instance: str, inventory_path: str, available: list[str] = None):
        message = f"Inventory for '{instance}' not found: {inventory_path}"

        if available:
            listing = "\n  ".join(available)
            suggestion = f"Available inventories:\n  {listing}\n\n"
        else:
            suggestion = "Available inventories:\n  (none)\n\n"
        suggestion += (
            "This can happen if the deployment was never created or the "
            "inventory/ directory was deleted.\n"
            f"To create a new deployment:\n  openclaw-deploy create {instance}"
        )
        super().__init__(message, suggestion)


class DeploymentAbortedError(DeploymentError):
    """User declined an interactive confirmation."""

    def __init__(self, reason: str = "Aborted."):
        super().__init__(reason)


class PrerequisiteCheckError(DeploymentError):
    """Prerequisite check reported errors."""

    def __init__(self, error_count: int):
        message = f"Prerequisite check failed with {error_count} error(s)."
        suggestion = "Fix the issues above or use --skip-prereq-check to bypass."
        super().__init__(message, suggestion)


class CommandError(DeployError):
    """Errors from external commands."""

    pass


class ToolNotFoundError(CommandError):
    """Executable is not installed."""

    def __init__(self, tool: str):
        message = f"{tool} not found"
        suggestion = f"Install {tool} and make sure it is on your PATH.\n  openclaw-deploy check"
        super().__init__(message, suggestion)
        self.tool = tool


class CommandFailedError(CommandError):
    """External command exited with a non-zero status."""

    def __init__(self, args: list[str], returncode: int, stderr: str = ""):
        self.args_list = list(args)
        self.returncode = returncode
        self.stderr = stderr

        message = f"Command failed with exit code {returncode}: {redact_command(self.args_list)}"
        suggestion = stderr.strip() or None
        super().__init__(message, suggestion)


class BackupError(DeployError):
    """Errors related to backup and restore."""

    pass


class BackupNotFoundError(BackupError):
    """Backup archive does not exist."""

    def __init__(self, path: str, instance: str, available: list[str] = None):
        message = f"Backup file not found: {path}"

        if available:
            listing = "\n  ".join(available)
            suggestion = f"Available backups for {instance}:\n  {listing}"
        else:
            suggestion = f"Available backups for {instance}:\n  (none found)"
        super().__init__(message, suggestion)


class InvalidArchiveError(BackupError):
    """File is not a readable backup archive."""

    def __init__(self, path: str, details: str):
        message = f"Not a valid backup archive: {path} ({details})"
        suggestion = "Backups are gzip-compressed tar files, optionally encrypted with gpg (.gpg)."
        super().__init__(message, suggestion)


class BackupIntegrityError(BackupError):
    """Decrypted archive does not match the recorded checksum."""

    def __init__(self, path: str, expected: str, actual: str):
        message = (
            f"Checksum mismatch for {path}:\n"
            f"  expected {expected}\n"
            f"  actual   {actual}"
        )
        suggestion = "The backup or its .meta.json sidecar was modified or corrupted."
        super().__init__(message, suggestion)


class NotAGitRepositoryError(DeployError):
    """self-update outside of a git checkout."""

    def __init__(self, path: str):
        message = f"Not a git repository: {path}"
        suggestion = (
            "self-update only works if you installed via git clone.\n"
            "If you downloaded an archive, download the latest version manually."
        )
        super().__init__(message, suggestion)


def format_error_for_cli(error: Exception) -> str:
    """
    Format an exception for CLI display with helpful information.

    Args:
        error: The exception to format

    Returns:
        Formatted error message string
    """
    from rich.markup import escape

    if isinstance(error, DeployError):
        output = f"[red]Error:[/red] {escape(error.message)}"
        if error.suggestion:
            output += f"\n\n[yellow]{escape(error.suggestion)}[/yellow]"
        return output
    else:
        return f"[red]Error:[/red] {escape(str(error))}"
