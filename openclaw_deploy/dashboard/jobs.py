"""
Background jobs started from the dashboard.

Jobs run external processes and relay their output, line by line, to the
log stream. They are scheduled as FastAPI background tasks, so the HTTP
request that starts one returns before the process finishes.
"""

import asyncio
import codecs
import contextlib
import logging
import os
import sys
from pathlib import Path

from openclaw_deploy.dashboard.broadcast import LogBroadcaster
from openclaw_deploy.dashboard.store import STATUS_ACTIVE, STATUS_ERROR, DeploymentStore
from openclaw_deploy.provision.gcloud import COMPUTE_API, OPTIONAL_APIS, GCloudAccount
from openclaw_deploy.util.redact import redact_command

logger = logging.getLogger(__name__)

BILLING_URL = "https://console.cloud.google.com/billing/linkedaccount?project={project}"
API_LIBRARY_URL = "https://console.cloud.google.com/apis/library?project={project}"
READ_CHUNK = 65536


class ProcessRelay:
    """Runs a command and publishes each output line to the log stream."""

    def __init__(self, broadcaster: LogBroadcaster):
        self.broadcaster = broadcaster

    async def stream(
        self,
        args: list[str],
        env: dict[str, str] | None = None,
        cwd: Path | None = None,
    ) -> int:
        """
        Run ``args`` with stdout and stderr merged into the log stream.

        Returns:
            The exit code (127 when the executable is missing)
        """
        logger.info("Starting: %s", redact_command(args))
        try:
            process = await asyncio.create_subprocess_exec(
                *args,
                cwd=str(cwd) if cwd else None,
                env={**os.environ, **env} if env else None,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except FileNotFoundError:
            await self.broadcaster.publish(f"{args[0]}: command not found\n")
            return 127

        publish = self.broadcaster.publish
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        pending = ""
        try:
            while chunk := await process.stdout.read(READ_CHUNK):
                pending += decoder.decode(chunk)
                *lines, pending = pending.split("\n")
                for line in lines:
                    await publish(line + "\n")
                # Lines without a newline in sight are sent in pieces
                if len(pending) >= READ_CHUNK:
                    await publish(pending)
                    pending = ""
            pending += decoder.decode(b"", final=True)
            if pending:
                await publish(pending)
            code = await process.wait()
        finally:
            if process.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        logger.info("Finished with exit code %d: %s", code, args[0])
        return code


def deploy_command(action: str, name: str, tailscale_key: str | None = None) -> list[str]:
    """The CLI invocation behind a dashboard deploy button."""
    args = [sys.executable, "-m", "openclaw_deploy.cli", action, name]
    if tailscale_key:
        args += ["--tailscale-key", tailscale_key]
    return args


async def run_deployment(
    relay: ProcessRelay,
    store: DeploymentStore,
    workspace_root: Path,
    action: str,
    name: str,
    project_id: str | None = None,
    zone: str | None = None,
) -> int:
    """Run ``create``/``update`` for a deployment and record the outcome."""
    record = store.get(name) or {}
    env = {}
    if project_id:
        env["GCP_PROJECT_ID"] = project_id
    if zone:
        env["GCP_ZONE"] = zone

    await relay.broadcaster.publish(f"\n🚀 STARTING DEPLOYMENT: {action.upper()} {name}\n")
    code = None
    try:
        code = await relay.stream(
            deploy_command(action, name, record.get("tailscale_key")),
            env=env,
            cwd=workspace_root,
        )
    finally:
        store.set_status(name, STATUS_ACTIVE if code == 0 else STATUS_ERROR)
    await relay.broadcaster.publish(f"\n✅ PROCESS FINISHED WITH EXIT CODE: {code}\n")
    return code


async def enable_services(relay: ProcessRelay, account: GCloudAccount, project_id: str) -> bool:
    """
    Enable the Compute Engine API, then the optional APIs used by bot skills.

    A failure of the optional batch is reported but does not fail the job.

    Returns:
        Whether the Compute Engine API was enabled
    """
    publish = relay.broadcaster.publish

    await publish(f"\n🛠️  Enabling Critical APIs (Compute Engine) for {project_id}...\n")
    code = await relay.stream(account.enable_services_command(project_id, [COMPUTE_API]))
    if code != 0:
        await publish("\n❌ CRITICAL ERROR: Failed to enable Compute Engine API.\n")
        await publish(f"Check billing at: {BILLING_URL.format(project=project_id)}\n")
        return False
    await publish("\n✅ Compute Engine API enabled. VM deployment is possible.\n")

    await publish("\n🛠️  Enabling Bot Skill APIs (Gmail, Calendar...)\n")
    code = await relay.stream(account.enable_services_command(project_id, OPTIONAL_APIS))
    if code == 0:
        await publish("\n✅ All APIs enabled successfully!\n")
    else:
        await publish("\n⚠️  Warning: Some optional APIs failed to enable.\n")
        await publish(
            "Your bot will deploy, but might fail to read emails/calendars until you fix this.\n"
        )
        await publish(f"Visit: {API_LIBRARY_URL.format(project=project_id)}\n")
    return True
