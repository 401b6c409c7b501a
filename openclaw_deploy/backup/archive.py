"""
Local handling of backup archives.

Archive layout (produced on the VM by the remote backup script)::

    ./installed_software_dpkg.txt
    ./installed_npm_global.txt
    ./files/<absolute home path>/<item>
    ./system_files/<unit file>
"""

import json
import tarfile
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path, PurePosixPath

from openclaw_deploy.exceptions import InvalidArchiveError
from openclaw_deploy.util.files import write_text

ARCHIVE_SUFFIX = ".tar.gz"
ENCRYPTED_SUFFIX = ".gpg"
METADATA_SUFFIX = ".meta.json"
TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"

# Paths looked up in every home directory on the VM
FILES_TO_BACKUP = [".bashrc"]
DIRS_TO_BACKUP = [
    ".clawdbot",
    "clawd",
    ".openclaw",
    ".molty",
    ".moltbot",
    "molty",
    "moltbot",
    "openclaw",
    ".local/share/signal-cli",
    ".ssh",
    ".config/systemd",
]
SYSTEM_FILES = [
    "/etc/systemd/system/clawdbot.service",
    "/etc/systemd/system/openclaw.service",
]
SERVICE_USERS = ["openclaw", "clawdbot"]

SOFTWARE_LISTS = ["installed_software_dpkg.txt", "installed_npm_global.txt"]


def timestamp(now: datetime | None = None) -> str:
    return (now or datetime.now()).strftime(TIMESTAMP_FORMAT)


def archive_name(instance: str, stamp: str) -> str:
    return f"backup_{instance}_{stamp}{ARCHIVE_SUFFIX}"


def is_encrypted(path: Path) -> bool:
    return Path(path).name.endswith(ENCRYPTED_SUFFIX)


def metadata_path(artifact: Path) -> Path:
    artifact = Path(artifact)
    return artifact.with_name(artifact.name + METADATA_SUFFIX)


def list_backups(directory: Path) -> list[str]:
    """Backup artifacts (plain or encrypted) in a directory, newest name last."""
    if not directory.is_dir():
        return []
    return sorted(
        p.name
        for p in directory.iterdir()
        if p.is_file() and (p.name.endswith(ARCHIVE_SUFFIX) or p.name.endswith(ENCRYPTED_SUFFIX))
    )


@dataclass
class BackupMetadata:
    """Sidecar describing a backup artifact."""

    instance: str
    project_id: str
    zone: str
    created_at: str
    archive_sha256: str
    encrypted: bool = False

    def write(self, artifact: Path) -> Path:
        path = metadata_path(artifact)
        write_text(path, json.dumps(asdict(self), indent=2) + "\n")
        return path

    @classmethod
    def read(cls, artifact: Path) -> "BackupMetadata | None":
        """Load the sidecar of an artifact, or None if it has none."""
        path = metadata_path(artifact)
        if not path.exists():
            return None
        data = json.loads(path.read_text())
        return cls(**{k: data[k] for k in cls.__dataclass_fields__ if k in data})


@dataclass
class ArchiveSummary:
    """What a backup archive contains."""

    users: list[str] = field(default_factory=list)
    system_files: list[str] = field(default_factory=list)
    software_lists: list[str] = field(default_factory=list)
    member_count: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.users or self.system_files or self.software_lists)


def _normalized(name: str) -> PurePosixPath:
    return PurePosixPath(name.removeprefix("./"))


def inspect_archive(path: Path) -> ArchiveSummary:
    """
    Read the table of contents of a backup archive.

    Raises:
        InvalidArchiveError: If the file is not a gzip-compressed tar archive
    """
    summary = ArchiveSummary()
    users: set[str] = set()
    try:
        with tarfile.open(path, "r:gz") as tar:
            for member in tar:
                summary.member_count += 1
                parts = _normalized(member.name).parts
                if len(parts) >= 3 and parts[:2] == ("files", "home"):
                    users.add(parts[2])
                elif len(parts) == 2 and parts[0] == "system_files" and member.isfile():
                    summary.system_files.append(parts[1])
                elif len(parts) == 1 and parts[0] in SOFTWARE_LISTS:
                    summary.software_lists.append(parts[0])
    except (tarfile.TarError, EOFError, OSError) as e:
        raise InvalidArchiveError(str(path), str(e) or type(e).__name__) from e

    summary.users = sorted(users)
    summary.system_files.sort()
    return summary


def safe_extract(path: Path, destination: Path) -> list[str]:
    """
    Extract an archive, refusing members that would land outside ``destination``.

    Returns:
        Names of the extracted members

    Raises:
        InvalidArchiveError: On unreadable archives or unsafe member paths
    """
    destination = Path(destination)
    destination.mkdir(parents=True, exist_ok=True)
    try:
        with tarfile.open(path, "r:gz") as tar:
            members = tar.getmembers()
            for member in members:
                name = PurePosixPath(member.name)
                if name.is_absolute() or ".." in name.parts:
                    raise InvalidArchiveError(str(path), f"unsafe member path {member.name!r}")
                if member.issym() or member.islnk():
                    target = PurePosixPath(member.linkname)
                    if target.is_absolute() or ".." in target.parts:
                        raise InvalidArchiveError(str(path), f"unsafe link {member.name!r}")
            tar.extractall(destination, members=members, filter="data")
    except (tarfile.TarError, EOFError) as e:
        raise InvalidArchiveError(str(path), str(e) or type(e).__name__) from e
    return [m.name for m in members]
