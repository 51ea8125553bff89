"""
Playbook Engine API - FastAPI REST surface over the run controller.

    POST   /api/orgs/{org_id}/playbooks/{playbook_id}/runs  - Start run
    GET    /api/orgs/{org_id}/runs/{run_id}                 - Get run with steps
    POST   /api/orgs/{org_id}/runs/{run_id}/redrive         - Redrive run
    POST   /api/orgs/{org_id}/runs/{run_id}/cancel          - Cancel run
    GET    /api/health                                      - Health check
"""

from .routes import runs_router
from .server import create_app

__all__ = ["create_app", "runs_router"]
