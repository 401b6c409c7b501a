"""
openclaw-deploy: provisioning and lifecycle tooling for OpenClaw on Google Cloud.

Provisions private VMs with gcloud, installs OpenClaw with Ansible, and backs
up / restores the application state. A small web dashboard wraps the same
operations with a live log stream.

Main features:
- create/update workflows with dry-run mode
- per-instance Ansible inventories that are never clobbered
- tar.gz backups, optionally encrypted with gpg
- prerequisite checks
- FastAPI dashboard with WebSocket log relay
"""

__version__ = "0.3.0"
