"""
FastAPI application for the deployment dashboard.

Serves a JSON API over the deployment records and the gcloud account,
starts ``create``/``update`` runs of the CLI in the background, relays their
output over the ``/ws`` WebSocket and serves the single-page UI from
``static/``.
"""

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Literal

import yaml
from fastapi import BackgroundTasks, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel, ConfigDict, Field
from starlette.exceptions import HTTPException as StarletteHTTPException

from openclaw_deploy.dashboard import jobs
from openclaw_deploy.dashboard.broadcast import LogBroadcaster
from openclaw_deploy.dashboard.store import (
    STATUS_DEPLOYING,
    DeploymentStore,
    read_vars,
    sync_from_disk,
)
from openclaw_deploy.exceptions import CommandFailedError, InvalidInstanceNameError
from openclaw_deploy.provision.gcloud import COMPUTE_API, OPTIONAL_APIS, GCloud, GCloudAccount
from openclaw_deploy.settings import DeploySettings, validate_instance_name
from openclaw_deploy.util.files import ensure_dir, write_text
from openclaw_deploy.util.shell import CommandRunner
from openclaw_deploy.workspace import Workspace

logger = logging.getLogger(__name__)

STATIC_DIR = Path(__file__).parent / "static"
DB_NAME = "dashboard.sqlite"
INVALID_NAME = "Invalid name. Only alphanumeric characters and hyphens are allowed."


class DeploymentConfigRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tailscale_key: str | None = Field(default=None, alias="tailscaleKey")
    gcp_project: str | None = Field(default=None, alias="gcpProject")
    gcp_zone: str | None = Field(default=None, alias="gcpZone")
    openclaw_config: dict[str, Any] | None = Field(default=None, alias="openclawConfig")


class DeployRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    action: Literal["create", "update"]
    gcp_project: str | None = Field(default=None, alias="gcpProject")
    gcp_zone: str | None = Field(default=None, alias="gcpZone")


class ProjectCreateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(alias="projectId")
    name: str | None = None


class ServicesRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: str = Field(alias="projectId")


class MetricsRequest(BaseModel):
    project: str | None = None
    zone: str | None = None


def format_uptime(start: datetime, now: datetime) -> str:
    """Elapsed time as ``<days>d <hours>h``."""
    seconds = max(0, int((now - start).total_seconds()))
    days, rest = divmod(seconds, 86400)
    return f"{days}d {rest // 3600}h"


def instance_metrics(data: dict[str, Any], now: datetime | None = None) -> dict[str, Any]:
    """Flatten ``gcloud compute instances describe`` output for the UI."""
    interfaces = data.get("networkInterfaces") or [{}]
    access = interfaces[0].get("accessConfigs") or [{}]

    uptime = None
    if data.get("status") == "RUNNING" and data.get("lastStartTimestamp"):
        start = datetime.fromisoformat(data["lastStartTimestamp"].replace("Z", "+00:00"))
        uptime = format_uptime(start, now or datetime.now(timezone.utc))

    machine_type = data.get("machineType")
    return {
        "status": data.get("status"),
        "publicIp": access[0].get("natIP") or "N/A",
        "internalIp": interfaces[0].get("networkIP") or "N/A",
        "machineType": machine_type.rsplit("/", 1)[-1] if machine_type else "unknown",
        "uptime": uptime or "0h",
        "launchedAt": data.get("creationTimestamp"),
    }


def _checked_name(name: str) -> str:
    try:
        return validate_instance_name(name)
    except InvalidInstanceNameError as e:
        raise HTTPException(status_code=400, detail=INVALID_NAME) from e


def create_app(
    workspace_root: Path,
    db_path: Path | None = None,
    runner: CommandRunner | None = None,
    relay: jobs.ProcessRelay | None = None,
) -> FastAPI:
    """
    Build the dashboard application for a workspace.

    Args:
        workspace_root: Workspace whose ``deployments/`` the dashboard manages
        db_path: SQLite file for deployment records (default: workspace root)
        runner: Command runner for gcloud queries
        relay: Process relay for background jobs
    """
    workspace = Workspace(workspace_root)
    deployments_dir = workspace.deployments_dir
    store = DeploymentStore(db_path or workspace.root / DB_NAME)
    sync_from_disk(store, deployments_dir)

    runner = runner or CommandRunner()
    account = GCloudAccount(runner)
    broadcaster = relay.broadcaster if relay else LogBroadcaster()
    relay = relay or jobs.ProcessRelay(broadcaster)

    app = FastAPI(title="OpenClaw Deploy Dashboard")
    app.state.store = store
    app.state.broadcaster = broadcaster
    app.state.workspace = workspace

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info("API Request: %s %s", request.method, request.url.path)
        return await call_next(request)

    # ------------------------------------------------------------------
    # Deployments
    # ------------------------------------------------------------------
    @app.get("/api/deployments")
    def list_deployments() -> list[dict[str, Any]]:
        enriched = []
        for record in store.list():
            config = read_vars(deployments_dir, record["name"])
            enriched.append({
                **record,
                "config": {**config, "project_id": record["project_id"], "zone": record["zone"]},
            })
        return enriched

    @app.post("/api/deployments/{name}")
    def save_deployment(name: str, body: DeploymentConfigRequest) -> dict[str, Any]:
        name = _checked_name(name)
        deploy_dir = ensure_dir(deployments_dir / name)

        write_text(
            deploy_dir / "vars.yml",
            yaml.safe_dump({
                "tailscale_authkey": body.tailscale_key or "",
                "project_id": body.gcp_project,
                "zone": body.gcp_zone,
            }),
            mode=0o600,
        )
        if body.openclaw_config:
            write_text(deploy_dir / "clawdbot.json", json.dumps(body.openclaw_config, indent=2), mode=0o600)

        store.upsert(name, body.gcp_project, body.gcp_zone, body.tailscale_key)
        return {"success": True}

    @app.post("/api/deploy/{name}")
    def deploy(name: str, body: DeployRequest, background: BackgroundTasks) -> dict[str, Any]:
        name = _checked_name(name)
        record = store.get(name) or {}
        store.set_status(name, STATUS_DEPLOYING, deployed=True)

        background.add_task(
            jobs.run_deployment,
            relay,
            store,
            workspace.root,
            body.action,
            name,
            body.gcp_project or record.get("project_id"),
            body.gcp_zone or record.get("zone"),
        )
        return {"success": True, "message": "Deployment started"}

    # ------------------------------------------------------------------
    # Google Cloud account
    # ------------------------------------------------------------------
    @app.get("/api/gcp/auth")
    def gcp_auth() -> dict[str, Any]:
        active = account.active_account()
        return {"authenticated": active is not None, "account": active}

    @app.get("/api/gcp/projects")
    def gcp_projects() -> list[dict[str, Any]]:
        return account.list_projects()

    @app.post("/api/gcp/projects")
    def gcp_create_project(body: ProjectCreateRequest):
        try:
            account.create_project(body.project_id, body.name)
        except CommandFailedError as e:
            return JSONResponse(status_code=500, content={"error": e.stderr})
        return {"success": True}

    @app.get("/api/gcp/services")
    def gcp_services(projectId: str | None = None) -> dict[str, bool]:
        if not projectId:
            return {}
        enabled = account.enabled_services(projectId)
        return {service: service in enabled for service in [COMPUTE_API, *OPTIONAL_APIS]}

    @app.post("/api/gcp/services")
    def gcp_enable_services(body: ServicesRequest, background: BackgroundTasks) -> dict[str, Any]:
        background.add_task(jobs.enable_services, relay, account, body.project_id)
        return {"success": True, "message": "Enabling services..."}

    @app.post("/api/gcp/metrics/{name}")
    def gcp_metrics(name: str, body: MetricsRequest):
        name = _checked_name(name)
        if not body.project or not body.zone:
            raise HTTPException(status_code=400, detail="Missing project/zone")

        gcloud = GCloud(runner, DeploySettings(project_id=body.project, zone=body.zone))
        data = gcloud.describe_instance(name)
        if not isinstance(data, dict):
            return JSONResponse(status_code=500, content={"error": "Failed to fetch metrics"})
        try:
            return instance_metrics(data)
        except (ValueError, AttributeError) as e:
            logger.warning("Unexpected describe output for %s: %s", name, e)
            return JSONResponse(status_code=500, content={"error": "Parse error"})

    @app.api_route("/api/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
    def api_not_found(path: str, request: Request):
        return JSONResponse(
            status_code=404,
            content={"error": f"API route not found: {request.method} {request.url.path}"},
        )

    # ------------------------------------------------------------------
    # Log stream and UI
    # ------------------------------------------------------------------
    @app.websocket("/ws")
    async def log_stream(websocket: WebSocket):
        await broadcaster.connect(websocket)
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            broadcaster.disconnect(websocket)

    app.mount("/", StaticFiles(directory=STATIC_DIR, html=True), name="ui")
    return app
