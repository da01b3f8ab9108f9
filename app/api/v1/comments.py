"""
Task Comments API Endpoints
===========================

Discussion thread on a task, shared by the user and their agents.
"""

import uuid

from fastapi import APIRouter, Response, status

from app.dependencies import Actor, CurrentUser, DBSession
from app.schemas.common import ERROR_RESPONSES
from app.schemas.task import CommentCreate
from app.services.comment_service import CommentService
from app.services.task_service import TaskService

router = APIRouter()


@router.get("/{task_id}/comments", responses=ERROR_RESPONSES)
async def list_comments(task_id: uuid.UUID, current_user: CurrentUser, db: DBSession):
    task = await TaskService(db).get_task(current_user.user_id, task_id)
    comments = await CommentService(db).list_for_task(task)
    return [c.to_api_dict() for c in comments]


@router.post("/{task_id}/comments", status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES)
async def create_comment(
    task_id: uuid.UUID,
    request: CommentCreate,
    current_user: CurrentUser,
    actor: Actor,
    db: DBSession,
):
    """Author type follows the caller: agent for API tokens, user otherwise."""
    task = await TaskService(db).get_task(current_user.user_id, task_id)
    comment = await CommentService(db, actor).create(task, request.body)
    return comment.to_api_dict()


@router.delete(
    "/{task_id}/comments/{comment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=ERROR_RESPONSES,
)
async def delete_comment(task_id: uuid.UUID, comment_id: uuid.UUID, current_user: CurrentUser, db: DBSession):
    task = await TaskService(db).get_task(current_user.user_id, task_id)
    await CommentService(db).delete(task, comment_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
