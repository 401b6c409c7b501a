"""
Web dashboard: deployment records, gcloud helpers and a live log stream.
"""

from openclaw_deploy.dashboard.app import create_app

__all__ = ["create_app"]
