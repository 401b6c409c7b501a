"""
Symmetric encryption of backup archives with gpg.

With a passphrase, gpg runs in batch mode and reads it from stdin
(loopback pinentry); without one, gpg prompts interactively.
"""

from pathlib import Path

from openclaw_deploy.util.shell import CommandRunner

CIPHER = "AES256"


def _passphrase_args(passphrase: str | None) -> list[str]:
    if passphrase is None:
        return []
    return ["--batch", "--yes", "--pinentry-mode", "loopback", "--passphrase-fd", "0"]


def encrypt_file(runner: CommandRunner, source: Path, destination: Path, passphrase: str | None = None) -> Path:
    """Encrypt ``source`` into ``destination`` with a symmetric cipher."""
    runner.run(
        [
            "gpg",
            *_passphrase_args(passphrase),
            "--symmetric",
            "--cipher-algo", CIPHER,
            "--output", str(destination),
            str(source),
        ],
        capture=passphrase is not None,
        input_text=passphrase,
    )
    return Path(destination)


def decrypt_file(runner: CommandRunner, source: Path, destination: Path, passphrase: str | None = None) -> Path:
    """Decrypt a gpg-encrypted file into ``destination``."""
    runner.run(
        [
            "gpg",
            *_passphrase_args(passphrase),
            "--output", str(destination),
            "--decrypt", str(source),
        ],
        capture=passphrase is not None,
        input_text=passphrase,
    )
    return Path(destination)
