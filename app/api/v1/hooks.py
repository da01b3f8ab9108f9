"""
Agent Hook Endpoints
====================

Called by the agent gateway when a run finishes. Authenticated by the
shared ``X-Hook-Token`` header instead of a user credential.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends

from app.core.rate_limit import create_rate_limit_dependency
from app.dependencies import DBSession, verify_hook_token
from app.schemas.common import ERROR_RESPONSES
from app.services.hook_service import HookService

router = APIRouter(
    dependencies=[
        Depends(verify_hook_token),
        Depends(create_rate_limit_dependency("hooks", per_ip=True)),
    ],
)


@router.post("/agent_complete", responses=ERROR_RESPONSES)
async def agent_complete(db: DBSession, payload: dict[str, Any] = Body(...)):
    """
    Write the agent's findings into the task and move it to in_review.

    The task is found by session_key, session_id or task_id.
    """
    return await HookService(db).agent_complete(payload)


@router.post("/task_outcome", responses=ERROR_RESPONSES)
async def task_outcome(db: DBSession, payload: dict[str, Any] = Body(...)):
    """Record a run outcome; repeating a run_id is a no-op."""
    return await HookService(db).task_outcome(payload)
