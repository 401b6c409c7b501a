"""
Backup, restore and sync workflows.

The work on the VM is done by small generated bash scripts (the VM has no
Python tooling of ours); this module uploads them, runs them over the IAP
tunnel and moves archives between the VM and the local disk.
"""

import logging
import shlex
import tempfile
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path, PurePosixPath

from rich.console import Console

from openclaw_deploy.backup import archive
from openclaw_deploy.backup.crypto import decrypt_file, encrypt_file
from openclaw_deploy.exceptions import BackupIntegrityError, BackupNotFoundError, InvalidArchiveError
from openclaw_deploy.provision.gcloud import GCloud
from openclaw_deploy.settings import validate_user_name
from openclaw_deploy.util.files import ensure_dir
from openclaw_deploy.util.hashing import sha256_file
from openclaw_deploy.util.shell import CommandRunner
from openclaw_deploy.util.templates import TemplateLoader
from openclaw_deploy.workspace import Workspace

logger = logging.getLogger(__name__)

REMOTE_TMP = "/tmp"
REMOTE_BACKUP_SCRIPT = f"{REMOTE_TMP}/create_backup.sh"
REMOTE_RESTORE_SCRIPT = f"{REMOTE_TMP}/restore_script.sh"
SYSTEMD_DIR = "/etc/systemd/system"

SYNC_PATHS = [".clawdbot/sessions", ".clawdbot/memory", ".clawdbot/data", "clawd"]
SYNC_EXCLUDES = ["node_modules", "logs"]


@dataclass
class BackupResult:
    artifact: Path
    metadata: Path
    encrypted: bool


class BackupManager:
    """Moves OpenClaw state between a VM and local backups."""

    def __init__(
        self,
        workspace: Workspace,
        gcloud: GCloud,
        runner: CommandRunner,
        console: Console | None = None,
        clock=datetime.now,
    ):
        self.workspace = workspace
        self.gcloud = gcloud
        self.runner = runner
        self.console = console or runner.console
        self.templates = TemplateLoader(workspace.root)
        self.clock = clock

    # ------------------------------------------------------------------
    # backup
    # ------------------------------------------------------------------
    def render_backup_script(self, remote_archive: str) -> str:
        return self.templates.render(
            "remote_backup.sh.j2",
            archive_path=remote_archive,
            items=archive.FILES_TO_BACKUP + archive.DIRS_TO_BACKUP,
            system_files=archive.SYSTEM_FILES,
            service_users=archive.SERVICE_USERS,
        )

    def backup(
        self,
        instance: str,
        encrypt: bool = False,
        passphrase: str | None = None,
        keep_plaintext: bool = False,
    ) -> BackupResult:
        """
        Back up an instance into ``deployments/<instance>/backups/``.

        Args:
            instance: VM name
            encrypt: Encrypt the downloaded archive with gpg
            passphrase: gpg passphrase (None prompts interactively)
            keep_plaintext: Keep the unencrypted archive next to the .gpg file

        Returns:
            BackupResult describing the final artifact
        """
        stamp = archive.timestamp(self.clock())
        name = archive.archive_name(instance, stamp)
        remote_archive = f"{REMOTE_TMP}/{name}"
        backup_dir = ensure_dir(self.workspace.backups_dir(instance))
        local_archive = backup_dir / name

        logger.info(
            "Backing up VM '%s' in project '%s' (Zone: %s)...",
            instance,
            self.gcloud.project,
            self.gcloud.zone,
        )

        with tempfile.TemporaryDirectory(prefix="openclaw-backup-") as tmp:
            script = Path(tmp) / "create_backup.sh"
            script.write_text(self.render_backup_script(remote_archive))

            logger.info("Uploading backup script...")
            self.gcloud.scp(str(script), f"{instance}:{REMOTE_BACKUP_SCRIPT}")

        logger.info("Running backup script on VM...")
        self.gcloud.ssh(instance, f"bash {REMOTE_BACKUP_SCRIPT}")

        logger.info("Downloading backup %s...", name)
        self.gcloud.scp(f"{instance}:{remote_archive}", str(local_archive))

        logger.info("Cleaning up remote files...")
        self.gcloud.ssh(instance, f"rm -f {REMOTE_BACKUP_SCRIPT} {shlex.quote(remote_archive)}")

        summary = archive.inspect_archive(local_archive)
        logger.info(
            "Archive contains %d user home(s), %d system file(s)",
            len(summary.users),
            len(summary.system_files),
        )

        checksum = sha256_file(local_archive)
        artifact = local_archive
        if encrypt:
            artifact = local_archive.with_name(local_archive.name + archive.ENCRYPTED_SUFFIX)
            logger.info("Encrypting backup...")
            encrypt_file(self.runner, local_archive, artifact, passphrase)
            if not keep_plaintext:
                local_archive.unlink()

        metadata = archive.BackupMetadata(
            instance=instance,
            project_id=self.gcloud.project,
            zone=self.gcloud.zone,
            created_at=self.clock().isoformat(timespec="seconds"),
            archive_sha256=checksum,
            encrypted=encrypt,
        ).write(artifact)

        logger.info("Backup saved to %s", artifact)
        return BackupResult(artifact=artifact, metadata=metadata, encrypted=encrypt)

    # ------------------------------------------------------------------
    # restore
    # ------------------------------------------------------------------
    def prepare_archive(self, backup_file: Path, work_dir: Path, passphrase: str | None = None) -> Path:
        """
        Return a plain, verified tar.gz for a backup artifact.

        Encrypted artifacts are decrypted into ``work_dir``. When the artifact
        has a metadata sidecar, the plain archive must match its checksum.
        """
        plain = backup_file
        if archive.is_encrypted(backup_file):
            logger.info("Encrypted backup detected. Decrypting...")
            plain = work_dir / backup_file.name.removesuffix(archive.ENCRYPTED_SUFFIX)
            decrypt_file(self.runner, backup_file, plain, passphrase)
            logger.info("Decryption successful.")

        metadata = archive.BackupMetadata.read(backup_file)
        if metadata is not None:
            actual = sha256_file(plain)
            if actual != metadata.archive_sha256:
                raise BackupIntegrityError(str(backup_file), metadata.archive_sha256, actual)

        summary = archive.inspect_archive(plain)
        if summary.is_empty:
            raise InvalidArchiveError(str(backup_file), "no user files, system files or software lists")
        logger.info(
            "Archive holds data for: %s",
            ", ".join(summary.users) if summary.users else "(no users)",
        )
        return plain

    def restore(self, instance: str, backup_file: Path, passphrase: str | None = None) -> None:
        """Restore a backup archive onto an instance."""
        backup_file = Path(backup_file)
        if not backup_file.is_file():
            raise BackupNotFoundError(
                str(backup_file),
                instance,
                archive.list_backups(self.workspace.backups_dir(instance)),
            )

        stamp = archive.timestamp(self.clock())
        remote_archive = f"{REMOTE_TMP}/restore_archive_{stamp}{archive.ARCHIVE_SUFFIX}"

        with tempfile.TemporaryDirectory(prefix="openclaw-restore-") as tmp:
            work_dir = Path(tmp)
            plain = self.prepare_archive(backup_file, work_dir, passphrase)

            logger.info("Restoring VM '%s' from '%s'...", instance, backup_file)
            logger.info("Project: %s | Zone: %s", self.gcloud.project, self.gcloud.zone)

            script = work_dir / "restore_script.sh"
            script.write_text(self.templates.render("remote_restore.sh.j2", systemd_dir=SYSTEMD_DIR))

            logger.info("Uploading backup archive (this may take time)...")
            self.gcloud.scp(str(plain), f"{instance}:{remote_archive}")

            logger.info("Uploading restore script...")
            self.gcloud.scp(str(script), f"{instance}:{REMOTE_RESTORE_SCRIPT}")

        logger.info("Running restore on remote VM...")
        self.gcloud.ssh(instance, f"bash {REMOTE_RESTORE_SCRIPT} {shlex.quote(remote_archive)}")

        logger.info("Cleaning up remote artifacts...")
        self.gcloud.ssh(instance, f"rm -f {REMOTE_RESTORE_SCRIPT} {shlex.quote(remote_archive)}")

        logger.info("Restore process finished.")

    # ------------------------------------------------------------------
    # sync
    # ------------------------------------------------------------------
    def sync(self, instance: str, remote_user: str, local_home: Path | None = None) -> list[str]:
        """
        Pull session data and the workspace of ``remote_user`` into the local home.

        Returns:
            Names of the extracted archive members
        """
        validate_user_name(remote_user)
        local_home = Path(local_home) if local_home else Path.home()
        archive_name = f"context_sync_{archive.timestamp(self.clock())}{archive.ARCHIVE_SUFFIX}"
        script = self.templates.render(
            "remote_sync.sh.j2",
            remote_user=remote_user,
            archive_name=archive_name,
            paths=SYNC_PATHS,
            excludes=SYNC_EXCLUDES,
        )

        logger.info("Packaging remote data (this requires sudo privileges on remote)...")
        output = self.gcloud.ssh(instance, f"bash -c {shlex.quote(script)}", capture=True)
        lines = [line.strip() for line in output.splitlines() if line.strip()]
        if not lines:
            raise InvalidArchiveError(instance, "failed to generate remote archive")
        remote_archive = lines[-1]
        remote_path = PurePosixPath(remote_archive)
        # Expected shape: /tmp/<mktemp dir>/<archive>; that directory is removed afterwards
        if (
            ".." in remote_path.parts
            or remote_path.parent.parent != PurePosixPath(REMOTE_TMP)
            or not remote_path.name.endswith(archive.ARCHIVE_SUFFIX)
        ):
            raise InvalidArchiveError(remote_archive, "unexpected remote archive path")

        with tempfile.TemporaryDirectory(prefix="openclaw-sync-") as tmp:
            local_archive = Path(tmp) / archive_name
            logger.info("Downloading bundle: %s...", remote_archive)
            self.gcloud.scp(f"{instance}:{remote_archive}", str(local_archive))

            logger.info("Extracting to %s...", local_home)
            extracted = archive.safe_extract(local_archive, local_home)

        logger.info("Cleaning up remote...")
        remote_dir = str(remote_path.parent)
        self.gcloud.ssh(instance, f"rm -rf {shlex.quote(remote_dir)}")
        return extracted
