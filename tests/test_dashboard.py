"""
Tests for the dashboard API, record store and log relay.
"""

import asyncio
import json
import sys
from datetime import datetime, timezone

import pytest
import yaml
from fastapi.testclient import TestClient

from conftest import FakeRunner
from openclaw_deploy.dashboard import create_app, jobs
from openclaw_deploy.dashboard.app import format_uptime, instance_metrics
from openclaw_deploy.dashboard.broadcast import GREETING, LogBroadcaster
from openclaw_deploy.dashboard.store import DeploymentStore, sync_from_disk
from openclaw_deploy.provision.gcloud import COMPUTE_API, OPTIONAL_APIS
from openclaw_deploy.workspace import Workspace


class RecordingRelay(jobs.ProcessRelay):
    """Relay that records commands instead of spawning processes."""

    def __init__(self, exit_code=0):
        super().__init__(LogBroadcaster())
        self.exit_code = exit_code
        self.calls = []
        self.published = []

        original_publish = self.broadcaster.publish

        async def publish(message):
            self.published.append(message)
            await original_publish(message)

        self.broadcaster.publish = publish

    async def stream(self, args, env=None, cwd=None):
        self.calls.append({"args": list(args), "env": env, "cwd": cwd})
        return self.exit_code


@pytest.fixture
def workspace(tmp_path):
    ws = Workspace(tmp_path / "workspace")
    ws.initialize()
    return ws


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def relay():
    return RecordingRelay()


@pytest.fixture
def client(workspace, runner, relay):
    return TestClient(create_app(workspace.root, runner=runner, relay=relay))


def save(client, name="bot", **overrides):
    body = {"tailscaleKey": "tskey-auth-1", "gcpProject": "demo-project", "gcpZone": "europe-west1-b"}
    body.update(overrides)
    return client.post(f"/api/deployments/{name}", json=body)


class TestDeploymentRecords:
    def test_save_writes_vars_and_config(self, client, workspace):
        response = save(client, openclawConfig={"model": "default"})

        assert response.status_code == 200
        assert response.json() == {"success": True}
        deploy_dir = workspace.deployments_dir / "bot"
        assert yaml.safe_load((deploy_dir / "vars.yml").read_text()) == {
            "tailscale_authkey": "tskey-auth-1",
            "project_id": "demo-project",
            "zone": "europe-west1-b",
        }
        assert (deploy_dir / "vars.yml").stat().st_mode & 0o777 == 0o600
        assert json.loads((deploy_dir / "clawdbot.json").read_text()) == {"model": "default"}

    def test_save_twice_updates_record(self, client):
        save(client)
        save(client, gcpZone="us-east1-b")

        records = client.get("/api/deployments").json()
        assert len(records) == 1
        assert records[0]["zone"] == "us-east1-b"

    def test_list_merges_vars(self, client):
        save(client)

        record = client.get("/api/deployments").json()[0]

        assert record["name"] == "bot"
        assert record["status"] == "idle"
        assert record["config"]["tailscale_authkey"] == "tskey-auth-1"
        assert record["config"]["project_id"] == "demo-project"

    def test_invalid_name_rejected(self, client, workspace):
        response = save(client, name="bad_name")

        assert response.status_code == 400
        assert "alphanumeric" in response.json()["error"]
        assert not (workspace.deployments_dir / "bad_name").exists()

    def test_records_imported_on_startup(self, workspace, runner, relay):
        deploy_dir = workspace.deployments_dir / "legacy"
        deploy_dir.mkdir(parents=True)
        (deploy_dir / "vars.yml").write_text("tailscale_authkey: tskey-old\n")

        client = TestClient(create_app(workspace.root, runner=runner, relay=relay))

        record = client.get("/api/deployments").json()[0]
        assert record["name"] == "legacy"
        assert record["project_id"] == "unknown"
        assert record["zone"] == "us-central1-a"


class TestDeploy:
    def test_successful_run_marks_active(self, client, relay):
        save(client)

        response = client.post("/api/deploy/bot", json={"action": "create"})

        assert response.json() == {"success": True, "message": "Deployment started"}
        call = relay.calls[0]
        assert call["args"][-4:] == ["create", "bot", "--tailscale-key", "tskey-auth-1"]
        assert call["env"] == {"GCP_PROJECT_ID": "demo-project", "GCP_ZONE": "europe-west1-b"}
        record = client.get("/api/deployments").json()[0]
        assert record["status"] == "active"
        assert record["last_deployed"]
        assert any("STARTING DEPLOYMENT: CREATE bot" in m for m in relay.published)
        assert relay.published[-1].strip() == "✅ PROCESS FINISHED WITH EXIT CODE: 0"

    def test_failed_run_marks_error(self, workspace, runner):
        relay = RecordingRelay(exit_code=2)
        client = TestClient(create_app(workspace.root, runner=runner, relay=relay))
        save(client)

        client.post("/api/deploy/bot", json={"action": "update", "gcpZone": "asia-east1-a"})

        assert relay.calls[0]["args"][-4:-2] == ["update", "bot"]
        assert relay.calls[0]["env"]["GCP_ZONE"] == "asia-east1-a"
        assert client.get("/api/deployments").json()[0]["status"] == "error"

    def test_unknown_action_rejected(self, client, relay):
        save(client)

        response = client.post("/api/deploy/bot", json={"action": "destroy"})

        assert response.status_code == 422
        assert relay.calls == []


class TestGCloudEndpoints:
    def test_auth(self, client, runner):
        runner.script(
            "gcloud", "auth", "list",
            stdout=json.dumps([
                {"account": "old@example.com", "status": ""},
                {"account": "me@example.com", "status": "ACTIVE"},
            ]),
        )

        assert client.get("/api/gcp/auth").json() == {
            "authenticated": True,
            "account": "me@example.com",
        }

    def test_not_authenticated(self, client, runner):
        runner.script("gcloud", "auth", "list", returncode=1)

        assert client.get("/api/gcp/auth").json() == {"authenticated": False, "account": None}

    def test_projects(self, client, runner):
        runner.script("gcloud", "projects", "list", stdout='[{"projectId": "p1", "name": "One"}]')

        assert client.get("/api/gcp/projects").json() == [{"projectId": "p1", "name": "One"}]

    def test_create_project_failure(self, client, runner):
        runner.script("gcloud", "projects", "create", returncode=1, stderr="ID already in use")

        response = client.post("/api/gcp/projects", json={"projectId": "taken"})

        assert response.status_code == 500
        assert response.json() == {"error": "ID already in use"}

    def test_services_map(self, client, runner):
        runner.script(
            "gcloud", "services", "list",
            stdout=json.dumps([{"config": {"name": COMPUTE_API}}]),
        )

        services = client.get("/api/gcp/services", params={"projectId": "p1"}).json()

        assert services[COMPUTE_API] is True
        assert all(services[api] is False for api in OPTIONAL_APIS)

    def test_services_without_project(self, client):
        assert client.get("/api/gcp/services").json() == {}

    def test_enable_services(self, client, relay):
        response = client.post("/api/gcp/services", json={"projectId": "p1"})

        assert response.json()["success"] is True
        assert relay.calls[0]["args"] == ["gcloud", "services", "enable", COMPUTE_API, "--project", "p1"]
        assert relay.calls[1]["args"][3:-2] == OPTIONAL_APIS

    def test_metrics(self, client, runner):
        runner.script(
            "gcloud", "compute", "instances", "describe",
            stdout=json.dumps({
                "status": "TERMINATED",
                "machineType": "https://compute/zones/z/machineTypes/e2-medium",
                "networkInterfaces": [{"networkIP": "10.0.0.2"}],
                "creationTimestamp": "2025-01-01T00:00:00Z",
            }),
        )

        response = client.post("/api/gcp/metrics/bot", json={"project": "p1", "zone": "z"})

        assert response.json() == {
            "status": "TERMINATED",
            "publicIp": "N/A",
            "internalIp": "10.0.0.2",
            "machineType": "e2-medium",
            "uptime": "0h",
            "launchedAt": "2025-01-01T00:00:00Z",
        }

    def test_metrics_requires_project_and_zone(self, client):
        response = client.post("/api/gcp/metrics/bot", json={"project": "p1"})

        assert response.status_code == 400
        assert response.json() == {"error": "Missing project/zone"}

    def test_metrics_lookup_failure(self, client, runner):
        runner.script("gcloud", "compute", "instances", "describe", returncode=1)

        response = client.post("/api/gcp/metrics/bot", json={"project": "p1", "zone": "z"})

        assert response.status_code == 500
        assert response.json() == {"error": "Failed to fetch metrics"}


class TestRouting:
    def test_unknown_api_route(self, client):
        response = client.get("/api/nothing/here")

        assert response.status_code == 404
        assert response.json() == {"error": "API route not found: GET /api/nothing/here"}

    def test_ui_served(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert "OpenClaw Deploy Dashboard" in response.text

    def test_websocket_greeting(self, client):
        with client.websocket_connect("/ws") as websocket:
            assert websocket.receive_text() == GREETING


class TestMetricsHelpers:
    def test_format_uptime(self):
        start = datetime(2025, 1, 1, tzinfo=timezone.utc)
        now = datetime(2025, 1, 3, 5, 59, tzinfo=timezone.utc)

        assert format_uptime(start, now) == "2d 5h"

    def test_running_instance_uptime(self):
        data = {
            "status": "RUNNING",
            "lastStartTimestamp": "2025-01-01T00:00:00Z",
            "networkInterfaces": [{"networkIP": "10.0.0.2", "accessConfigs": [{"natIP": "34.1.2.3"}]}],
        }

        metrics = instance_metrics(data, now=datetime(2025, 1, 1, 3, 0, tzinfo=timezone.utc))

        assert metrics["uptime"] == "0d 3h"
        assert metrics["publicIp"] == "34.1.2.3"
        assert metrics["machineType"] == "unknown"


class TestStore:
    def test_status_transitions(self, tmp_path):
        store = DeploymentStore(tmp_path / "db.sqlite")
        store.upsert("bot", "p", "z", None)

        store.set_status("bot", "deploying", deployed=True)
        assert store.get("bot")["last_deployed"]
        store.set_status("bot", "active")

        assert store.get("bot")["status"] == "active"
        assert store.get("missing") is None

    def test_sync_skips_existing_and_backups(self, tmp_path):
        deployments = tmp_path / "deployments"
        for name in ("bot", "backups", "empty"):
            (deployments / name).mkdir(parents=True)
        (deployments / "bot" / "vars.yml").write_text("project_id: p1\nzone: z1\n")
        (deployments / "backups" / "vars.yml").write_text("{}\n")
        store = DeploymentStore(tmp_path / "db.sqlite")

        assert sync_from_disk(store, deployments) == 1
        assert sync_from_disk(store, deployments) == 0
        assert [r["name"] for r in store.list()] == ["bot"]
        assert store.get("bot")["project_id"] == "p1"


class TestProcessRelay:
    def test_missing_executable(self):
        relay = jobs.ProcessRelay(LogBroadcaster())

        code = asyncio.run(relay.stream(["definitely-not-a-real-command-xyz"]))

        assert code == 127

    def test_deploy_command(self):
        args = jobs.deploy_command("update", "bot")

        assert args[1:] == ["-m", "openclaw_deploy.cli", "update", "bot"]

    def test_output_published_line_by_line(self):
        broadcaster = CollectingBroadcaster()
        relay = jobs.ProcessRelay(broadcaster)

        code = asyncio.run(relay.stream([sys.executable, "-c", "print('a'); print('b')"]))

        assert code == 0
        assert broadcaster.messages == ["a\n", "b\n"]

    def test_exit_code_returned(self):
        relay = jobs.ProcessRelay(CollectingBroadcaster())

        code = asyncio.run(relay.stream([sys.executable, "-c", "import sys; sys.exit(3)"]))

        assert code == 3

    def test_long_line(self):
        broadcaster = CollectingBroadcaster()
        relay = jobs.ProcessRelay(broadcaster)

        code = asyncio.run(relay.stream([sys.executable, "-c", "print('x' * 200000); print('done')"]))

        assert code == 0
        assert "".join(broadcaster.messages) == "x" * 200000 + "\ndone\n"
        assert broadcaster.messages[-1] == "done\n"

    def test_unterminated_last_line(self):
        broadcaster = CollectingBroadcaster()
        relay = jobs.ProcessRelay(broadcaster)

        asyncio.run(relay.stream([sys.executable, "-c", "import sys; sys.stdout.write('tail')"]))

        assert broadcaster.messages == ["tail"]


class TestRunDeployment:
    def test_stream_failure_marks_error(self, tmp_path):
        store = DeploymentStore(tmp_path / "db.sqlite")
        store.upsert("bot", "p", "z", None)
        store.set_status("bot", "deploying", deployed=True)

        class BrokenRelay(RecordingRelay):
            async def stream(self, args, env=None, cwd=None):
                raise ValueError("stream broke")

        with pytest.raises(ValueError):
            asyncio.run(jobs.run_deployment(BrokenRelay(), store, tmp_path, "create", "bot"))

        assert store.get("bot")["status"] == "error"


class FakeSocket:
    def __init__(self, fail=False):
        self.fail = fail
        self.sent = []

    async def send_text(self, message):
        if self.fail:
            raise RuntimeError("socket closed")
        self.sent.append(message)


class CollectingBroadcaster(LogBroadcaster):
    def __init__(self):
        super().__init__()
        self.messages = []

    async def publish(self, message):
        self.messages.append(message)
        await super().publish(message)


class TestLogBroadcaster:
    def test_failing_client_dropped(self):
        broadcaster = LogBroadcaster()
        healthy, broken = FakeSocket(), FakeSocket(fail=True)
        broadcaster.clients.update({healthy, broken})

        asyncio.run(broadcaster.publish("line\n"))
        asyncio.run(broadcaster.publish("next\n"))

        assert broadcaster.clients == {healthy}
        assert healthy.sent == ["line\n", "next\n"]

    def test_publish_without_clients(self):
        broadcaster = LogBroadcaster()

        asyncio.run(broadcaster.publish("nobody listening\n"))

        assert broadcaster.clients == set()
