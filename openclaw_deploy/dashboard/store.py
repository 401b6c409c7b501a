"""
SQLite-backed record store of deployments known to the dashboard.
"""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

import yaml

logger = logging.getLogger(__name__)

STATUS_IDLE = "idle"
STATUS_DEPLOYING = "deploying"
STATUS_ACTIVE = "active"
STATUS_ERROR = "error"

DEFAULT_ZONE = "us-central1-a"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS deployments (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT UNIQUE NOT NULL,
    project_id TEXT,
    zone TEXT,
    status TEXT NOT NULL DEFAULT 'idle',
    last_deployed TEXT,
    tailscale_key TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
)
"""


class DeploymentStore:
    """CRUD over the ``deployments`` table."""

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.Lock()
        with self._connect() as conn:
            conn.execute(_SCHEMA)

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            conn = sqlite3.connect(self.db_path)
            conn.row_factory = sqlite3.Row
            try:
                yield conn
                conn.commit()
            finally:
                conn.close()

    def list(self) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute("SELECT * FROM deployments ORDER BY created_at DESC, id DESC").fetchall()
        return [dict(row) for row in rows]

    def get(self, name: str) -> dict[str, Any] | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM deployments WHERE name = ?", (name,)).fetchone()
        return dict(row) if row else None

    def upsert(self, name: str, project_id: str | None, zone: str | None, tailscale_key: str | None) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO deployments (name, project_id, zone, tailscale_key)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    project_id = excluded.project_id,
                    zone = excluded.zone,
                    tailscale_key = excluded.tailscale_key
                """,
                (name, project_id, zone, tailscale_key),
            )

    def insert_if_missing(self, name: str, project_id: str | None, zone: str | None, tailscale_key: str | None) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO deployments (name, project_id, zone, tailscale_key) "
                "VALUES (?, ?, ?, ?)",
                (name, project_id, zone, tailscale_key),
            )
            return cursor.rowcount > 0

    def set_status(self, name: str, status: str, deployed: bool = False) -> None:
        with self._connect() as conn:
            if deployed:
                conn.execute(
                    "UPDATE deployments SET status = ?, last_deployed = CURRENT_TIMESTAMP "
                    "WHERE name = ?",
                    (status, name),
                )
            else:
                conn.execute("UPDATE deployments SET status = ? WHERE name = ?", (status, name))


def read_vars(deployments_dir: Path, name: str) -> dict[str, Any]:
    """The dashboard's ``vars.yml`` for a deployment, or {} if missing or unreadable."""
    path = Path(deployments_dir) / name / "vars.yml"
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as e:
        logger.warning("Ignoring unreadable %s: %s", path, e)
        return {}
    return data if isinstance(data, dict) else {}


def sync_from_disk(store: DeploymentStore, deployments_dir: Path) -> int:
    """
    Import deployments that have a ``vars.yml`` but no record yet.

    Returns:
        Number of records created
    """
    deployments_dir = Path(deployments_dir)
    if not deployments_dir.is_dir():
        return 0

    created = 0
    for folder in sorted(p for p in deployments_dir.iterdir() if p.is_dir() and p.name != "backups"):
        if not (folder / "vars.yml").exists():
            continue
        config = read_vars(deployments_dir, folder.name)
        if store.insert_if_missing(
            folder.name,
            config.get("project_id") or "unknown",
            config.get("zone") or DEFAULT_ZONE,
            config.get("tailscale_authkey") or "",
        ):
            created += 1
    if created:
        logger.info("Imported %d deployment(s) from %s", created, deployments_dir)
    return created
