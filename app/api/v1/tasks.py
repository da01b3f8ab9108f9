"""
Tasks API Endpoints
===================

Task CRUD, kanban moves and the agent workflow (claim, link session,
complete, activity history).
"""

from typing import Any, Optional
import uuid

from fastapi import APIRouter, Body, Depends, Query, Response, status

from app.core.rate_limit import create_rate_limit_dependency
from app.dependencies import Actor, CurrentUser, DBSession
from app.schemas.common import ERROR_RESPONSES
from app.schemas.task import SessionLink, TaskCreate, TaskMove, TaskUpdate
from app.services.task_service import TaskService

router = APIRouter()


@router.get("", dependencies=[Depends(create_rate_limit_dependency("read"))])
async def list_tasks(
    current_user: CurrentUser,
    db: DBSession,
    board_id: Optional[uuid.UUID] = Query(default=None),
    status_filter: Optional[str] = Query(default=None, alias="status"),
    blocked: Optional[bool] = Query(default=None),
    tag: Optional[str] = Query(default=None),
    completed: Optional[bool] = Query(default=None),
    priority: Optional[str] = Query(default=None),
    assigned: Optional[bool] = Query(default=None),
):
    """
    List the user's tasks.

    With ``assigned=true`` tasks come oldest-assignment first (the agent's
    work queue); otherwise by status, then position.
    """
    tasks = await TaskService(db).list_tasks(
        current_user.user_id,
        board_id=board_id,
        status=status_filter,
        blocked=blocked,
        tag=tag,
        completed=completed,
        priority=priority,
        assigned=assigned,
    )
    return [t.to_api_dict() for t in tasks]


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(create_rate_limit_dependency("create"))],
    responses=ERROR_RESPONSES,
)
async def create_task(request: TaskCreate, current_user: CurrentUser, actor: Actor, db: DBSession):
    task = await TaskService(db, actor).create_task(current_user, request.model_dump(exclude_unset=True))
    return task.to_api_dict()


@router.get("/next")
async def next_task(current_user: CurrentUser, db: DBSession):
    """Next task for the agent to pick up; 204 when there is none."""
    task = await TaskService(db).next_task(current_user)
    if task is None:
        return Response(status_code=status.HTTP_204_NO_CONTENT)
    return task.to_api_dict()


@router.get("/pending_attention")
async def pending_attention(current_user: CurrentUser, db: DBSession):
    tasks = await TaskService(db).pending_attention(current_user)
    return [t.to_api_dict() for t in tasks]


@router.get("/errored_count")
async def errored_count(current_user: CurrentUser, db: DBSession):
    return {"count": await TaskService(db).errored_count(current_user.user_id)}


@router.get("/{task_id}", responses=ERROR_RESPONSES)
async def get_task(task_id: uuid.UUID, current_user: CurrentUser, db: DBSession):
    task = await TaskService(db).get_task(current_user.user_id, task_id)
    return task.to_api_dict()


@router.patch("/{task_id}", responses=ERROR_RESPONSES)
async def update_task(
    task_id: uuid.UUID,
    request: TaskUpdate,
    current_user: CurrentUser,
    actor: Actor,
    db: DBSession,
):
    service = TaskService(db, actor)
    task = await service.get_task(current_user.user_id, task_id)
    task = await service.update_task(current_user, task, request.model_dump(exclude_unset=True))
    return task.to_api_dict()


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT, responses=ERROR_RESPONSES)
async def delete_task(task_id: uuid.UUID, current_user: CurrentUser, actor: Actor, db: DBSession):
    service = TaskService(db, actor)
    task = await service.get_task(current_user.user_id, task_id)
    await service.delete_task(task)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# Workflow
# =============================================================================

@router.patch("/{task_id}/complete", responses=ERROR_RESPONSES)
async def toggle_complete(task_id: uuid.UUID, current_user: CurrentUser, actor: Actor, db: DBSession):
    """Done becomes inbox; anything else becomes done."""
    service = TaskService(db, actor)
    task = await service.get_task(current_user.user_id, task_id)
    return (await service.toggle_complete(task)).to_api_dict()


@router.patch("/{task_id}/move", responses=ERROR_RESPONSES)
async def move_task(
    task_id: uuid.UUID,
    request: TaskMove,
    current_user: CurrentUser,
    actor: Actor,
    db: DBSession,
):
    service = TaskService(db, actor)
    task = await service.get_task(current_user.user_id, task_id)
    return (await service.move(task, request.status)).to_api_dict()


@router.patch("/{task_id}/claim", responses=ERROR_RESPONSES)
async def claim_task(
    task_id: uuid.UUID,
    current_user: CurrentUser,
    actor: Actor,
    db: DBSession,
    request: Optional[SessionLink] = Body(default=None),
):
    """Agent takes the task: in_progress, claimed now."""
    session = request or SessionLink()
    service = TaskService(db, actor)
    task = await service.get_task(current_user.user_id, task_id)
    task = await service.claim(task, session.session_id, session.session_key)
    return task.to_api_dict()


@router.patch("/{task_id}/unclaim", responses=ERROR_RESPONSES)
async def unclaim_task(task_id: uuid.UUID, current_user: CurrentUser, actor: Actor, db: DBSession):
    service = TaskService(db, actor)
    task = await service.get_task(current_user.user_id, task_id)
    return (await service.unclaim(task)).to_api_dict()


@router.patch("/{task_id}/assign", responses=ERROR_RESPONSES)
async def assign_task(task_id: uuid.UUID, current_user: CurrentUser, actor: Actor, db: DBSession):
    service = TaskService(db, actor)
    task = await service.get_task(current_user.user_id, task_id)
    return (await service.assign(task)).to_api_dict()


@router.patch("/{task_id}/unassign", responses=ERROR_RESPONSES)
async def unassign_task(task_id: uuid.UUID, current_user: CurrentUser, actor: Actor, db: DBSession):
    service = TaskService(db, actor)
    task = await service.get_task(current_user.user_id, task_id)
    return (await service.unassign(task)).to_api_dict()


@router.patch("/{task_id}/link_session", responses=ERROR_RESPONSES)
async def link_session(
    task_id: uuid.UUID,
    request: SessionLink,
    current_user: CurrentUser,
    actor: Actor,
    db: DBSession,
):
    """Attach agent session identifiers so the transcript can be found later."""
    service = TaskService(db, actor)
    task = await service.get_task(current_user.user_id, task_id)
    task = await service.link_session(task, request.session_id, request.session_key)
    return {"success": True, "task_id": str(task.task_id), "task": task.to_api_dict()}


@router.post("/{task_id}/agent_complete", responses=ERROR_RESPONSES)
async def agent_complete(
    task_id: uuid.UUID,
    current_user: CurrentUser,
    actor: Actor,
    db: DBSession,
    payload: Optional[dict[str, Any]] = Body(default=None),
):
    """
    Agent reports finished work.

    Accepts output under any of several key names (output, summary,
    result, ...) and files under output_files, files, changed_files and
    similar, plus optional token usage.
    """
    service = TaskService(db, actor)
    task = await service.get_task(current_user.user_id, task_id)
    task = await service.agent_complete(task, payload or {})
    return task.to_api_dict()


@router.get("/{task_id}/activities", responses=ERROR_RESPONSES)
async def list_activities(task_id: uuid.UUID, current_user: CurrentUser, db: DBSession):
    service = TaskService(db)
    task = await service.get_task(current_user.user_id, task_id)
    return [a.to_api_dict() for a in await service.list_activities(task)]


@router.get("/{task_id}/agent_log", responses=ERROR_RESPONSES)
async def agent_log(task_id: uuid.UUID, current_user: CurrentUser, db: DBSession):
    """Session identifiers and reported runs for the task's agent work."""
    service = TaskService(db)
    task = await service.get_task(current_user.user_id, task_id)
    return {
        "task_id": str(task.task_id),
        "agent_session_id": task.agent_session_id,
        "agent_session_key": task.agent_session_key,
        "has_session": bool(task.agent_session_id or task.agent_session_key),
        "claimed": task.agent_claimed_at is not None,
        "run_count": task.run_count or 0,
        "runs": [run.to_api_dict() for run in await service.list_runs(task)],
    }
