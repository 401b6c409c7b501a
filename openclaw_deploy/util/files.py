"""
File utility functions.
"""

import os
from pathlib import Path


def ensure_dir(path: str | Path, mode: int | None = None) -> Path:
    """Ensure directory exists, creating if necessary."""
    p = Path(path)
    p.mkdir(parents=True, exist_ok=True)
    if mode is not None:
        os.chmod(p, mode)
    return p


def write_text(path: str | Path, content: str, mode: int | None = None) -> None:
    """Write text to file, creating parent directories if needed."""
    p = Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(content)
    if mode is not None:
        os.chmod(p, mode)


def write_text_if_absent(path: str | Path, content: str) -> bool:
    """
    Write text to file unless it already exists.

    Returns:
        True if the file was written, False if it was left untouched
    """
    p = Path(path)
    if p.exists():
        return False
    write_text(p, content)
    return True
