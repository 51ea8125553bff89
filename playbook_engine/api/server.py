"""
FastAPI REST API server for the playbook engine.

Usage:
    # Run standalone (engine built from runtime.yaml / env)
    python -m playbook_engine.api.server

    # Or via factory
    from playbook_engine.api import create_app
    app = create_app(controller)
    uvicorn.run(app, port=5001)

API Structure:
    /api/orgs/{org_id}/playbooks/{playbook_id}/runs - Start run (routes/runs.py)
    /api/orgs/{org_id}/runs/{run_id}                - Get run with steps
    /api/orgs/{org_id}/runs/{run_id}/redrive        - Redrive run
    /api/orgs/{org_id}/runs/{run_id}/cancel         - Cancel run
    /api/health                                     - Health check
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from playbook_engine import __version__
from playbook_engine.runtime.factory import build_controller
from playbook_engine.runtime.stepwise import PlaybookRunController

from .routes import runs_router

logger = logging.getLogger(__name__)


def create_app(
    controller: Optional[PlaybookRunController] = None,
    enable_cors: bool = True,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        controller: Run controller to serve; built from configuration if None.
        enable_cors: Whether to enable CORS middleware.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Playbook Engine API",
        description="Start, inspect, redrive and cancel playbook runs.",
        version=__version__,
    )
    app.state.controller = controller if controller is not None else build_controller()

    if enable_cors:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_methods=["GET", "POST", "OPTIONS"],
            allow_headers=["*"],
        )

    app.include_router(runs_router, prefix="/api")

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.monotonic()
        response = await call_next(request)
        logger.debug(
            "%s %s -> %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            (time.monotonic() - start) * 1000,
        )
        return response

    @app.get("/api/health")
    def health() -> Dict[str, Any]:
        return {
            "status": "ok",
            "version": __version__,
            "max_steps": app.state.controller.max_steps,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    return app


def main() -> None:
    import uvicorn

    logging.basicConfig(level=logging.INFO)
    uvicorn.run(create_app(), host="127.0.0.1", port=5001)


if __name__ == "__main__":
    main()
