"""
Run control endpoints for the playbook engine API.

Provides REST endpoints for:
- Starting a playbook run
- Getting a run with its step runs
- Redriving a run left RUNNING or PENDING
- Cancelling a run

Runs execute synchronously inside the request; FastAPI runs these handlers
in its threadpool, so concurrent requests execute concurrent runs.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, HTTPException, Request
from pydantic import BaseModel, Field

from playbook_engine.runtime.errors import (
    DefinitionNotFound,
    InvalidRunState,
    PlaybookNotActive,
    RunNotFound,
)
from playbook_engine.runtime.stepwise import PlaybookRunController, RunOptions
from playbook_engine.runtime.types import playbook_run_to_dict, run_with_steps_to_dict

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/orgs/{org_id}", tags=["runs"])


# =============================================================================
# Pydantic Models
# =============================================================================


class RunStartRequest(BaseModel):
    """Request to start a new run."""

    input: Any = Field(None, description="Input handed to the first step")
    actor: Optional[str] = Field(None, description="User or system starting the run")
    require_active: bool = Field(False, description="Refuse to run a non-ACTIVE playbook")
    max_steps: Optional[int] = Field(None, ge=1, description="Dispatch budget override")


# =============================================================================
# Helpers
# =============================================================================


def _get_controller(request: Request) -> PlaybookRunController:
    return request.app.state.controller


def _error(status_code: int, error: str, message: str, **details: Any) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": error, "message": message, "details": details},
    )


# =============================================================================
# Endpoints
# =============================================================================


@router.post("/playbooks/{playbook_id}/runs", status_code=201)
def start_run(
    org_id: str, playbook_id: str, body: RunStartRequest, request: Request
) -> Dict[str, Any]:
    """Start a playbook run and execute it to a terminal status.

    Returns:
        The run and its step runs. A failed run is still a 201: the failure
        is in ``run.status`` and ``run.error``.

    Raises:
        404: Playbook not found.
        409: Playbook not ACTIVE and ``require_active`` was set.
    """
    controller = _get_controller(request)
    options = RunOptions(require_active=body.require_active, max_steps=body.max_steps)
    try:
        result = controller.start_playbook_run(
            org_id, playbook_id, body.input, actor=body.actor, options=options
        )
    except DefinitionNotFound as e:
        raise _error(404, "playbook_not_found", e.message, playbook_id=playbook_id)
    except PlaybookNotActive as e:
        raise _error(409, "playbook_not_active", e.message, playbook_id=playbook_id)
    return run_with_steps_to_dict(result)


@router.get("/runs/{run_id}")
def get_run(org_id: str, run_id: str, request: Request) -> Dict[str, Any]:
    """Get a run with its step runs.

    Raises:
        404: Run not found.
    """
    controller = _get_controller(request)
    try:
        result = controller.get_run_with_steps(org_id, run_id)
    except RunNotFound as e:
        raise _error(404, "run_not_found", e.message, run_id=run_id)
    return run_with_steps_to_dict(result)


@router.post("/runs/{run_id}/redrive")
def redrive_run(org_id: str, run_id: str, request: Request) -> Dict[str, Any]:
    """Continue a run left non-terminal (e.g. after a crash).

    Raises:
        404: Run or its playbook not found.
        409: Run already terminal.
    """
    controller = _get_controller(request)
    try:
        result = controller.run_playbook(org_id, run_id)
    except RunNotFound as e:
        raise _error(404, "run_not_found", e.message, run_id=run_id)
    except DefinitionNotFound as e:
        raise _error(404, "playbook_not_found", e.message, run_id=run_id)
    except InvalidRunState as e:
        raise _error(409, "invalid_state", e.message, run_id=run_id)
    logger.info("Run %s redriven via API: %s", run_id, result.run.status.value)
    return run_with_steps_to_dict(result)


@router.post("/runs/{run_id}/cancel")
def cancel_run(org_id: str, run_id: str, request: Request) -> Dict[str, Any]:
    """Cancel a non-terminal run.

    Raises:
        404: Run not found.
        409: Run already terminal.
    """
    controller = _get_controller(request)
    try:
        run = controller.cancel_run(org_id, run_id)
    except RunNotFound as e:
        raise _error(404, "run_not_found", e.message, run_id=run_id)
    except InvalidRunState as e:
        raise _error(409, "invalid_state", e.message, run_id=run_id)
    return {"run": playbook_run_to_dict(run)}
