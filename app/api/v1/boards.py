"""
Boards API Endpoints
====================

Boards, their polling status, paginated kanban columns and task lists.
"""

from typing import Optional
import uuid

from fastapi import APIRouter, Depends, Query, Response, status

from app.core.rate_limit import create_rate_limit_dependency
from app.dependencies import CurrentUser, DBSession
from app.schemas.board import BoardCreate, BoardUpdate, TaskListCreate, TaskListUpdate
from app.schemas.common import ERROR_RESPONSES
from app.services.board_service import BoardService, TaskListService
from app.services.task_service import TaskService

router = APIRouter()


@router.get("", dependencies=[Depends(create_rate_limit_dependency("read"))])
async def list_boards(current_user: CurrentUser, db: DBSession):
    service = BoardService(db)
    boards = await service.list_boards(current_user.user_id)
    counts = await service.task_counts([b.board_id for b in boards])
    return [b.to_api_dict(tasks_count=counts.get(b.board_id, 0)) for b in boards]


@router.get("/{board_id}", responses=ERROR_RESPONSES)
async def get_board(
    board_id: uuid.UUID,
    current_user: CurrentUser,
    db: DBSession,
    include_tasks: bool = Query(default=False),
):
    service = BoardService(db)
    board = await service.get_board(current_user.user_id, board_id)
    counts = await service.task_counts([board.board_id])

    data = board.to_api_dict(tasks_count=counts.get(board.board_id, 0))
    if include_tasks:
        data["tasks"] = [t.to_board_dict() for t in await service.board_tasks(board.board_id)]
    return data


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(create_rate_limit_dependency("create"))],
    responses=ERROR_RESPONSES,
)
async def create_board(request: BoardCreate, current_user: CurrentUser, db: DBSession):
    board = await BoardService(db).create_board(
        current_user.user_id, request.name, request.icon, request.color
    )
    await db.commit()
    return board.to_api_dict(tasks_count=0)


@router.patch("/{board_id}", responses=ERROR_RESPONSES)
async def update_board(board_id: uuid.UUID, request: BoardUpdate, current_user: CurrentUser, db: DBSession):
    service = BoardService(db)
    board = await service.get_board(current_user.user_id, board_id)
    board = await service.update_board(board, request.model_dump(exclude_unset=True))
    counts = await service.task_counts([board.board_id])
    await db.commit()
    return board.to_api_dict(tasks_count=counts.get(board.board_id, 0))


@router.delete("/{board_id}", status_code=status.HTTP_204_NO_CONTENT, responses=ERROR_RESPONSES)
async def delete_board(board_id: uuid.UUID, current_user: CurrentUser, db: DBSession):
    service = BoardService(db)
    board = await service.get_board(current_user.user_id, board_id)
    await service.delete_board(current_user.user_id, board)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{board_id}/status", responses=ERROR_RESPONSES)
async def board_status(board_id: uuid.UUID, current_user: CurrentUser, db: DBSession):
    """Cheap fingerprint for clients polling for board changes."""
    service = BoardService(db)
    board = await service.get_board(current_user.user_id, board_id)
    return await service.status(board)


@router.get("/{board_id}/columns/{column}", responses=ERROR_RESPONSES)
async def board_column(
    board_id: uuid.UUID,
    column: str,
    current_user: CurrentUser,
    db: DBSession,
    page: int = Query(default=1, ge=1),
    tag: Optional[str] = Query(default=None),
):
    """One page of a kanban column."""
    board = await BoardService(db).get_board(current_user.user_id, board_id)
    result = await TaskService(db).list_column(board, column, page=page, tag=tag)
    return {
        "tasks": [t.to_board_dict() for t in result["tasks"]],
        "has_more": result["has_more"],
        "page": page,
    }


# =============================================================================
# Task lists
# =============================================================================

@router.get("/{board_id}/task_lists", responses=ERROR_RESPONSES)
async def list_task_lists(board_id: uuid.UUID, current_user: CurrentUser, db: DBSession):
    board = await BoardService(db).get_board(current_user.user_id, board_id)
    task_lists = await TaskListService(db).list_for_board(board.board_id)
    return [tl.to_api_dict() for tl in task_lists]


@router.post("/{board_id}/task_lists", status_code=status.HTTP_201_CREATED, responses=ERROR_RESPONSES)
async def create_task_list(board_id: uuid.UUID, request: TaskListCreate, current_user: CurrentUser, db: DBSession):
    board = await BoardService(db).get_board(current_user.user_id, board_id)
    task_list = await TaskListService(db).create_task_list(board, request.title)
    await db.commit()
    return task_list.to_api_dict()


@router.patch("/{board_id}/task_lists/{task_list_id}", responses=ERROR_RESPONSES)
async def update_task_list(
    board_id: uuid.UUID,
    task_list_id: uuid.UUID,
    request: TaskListUpdate,
    current_user: CurrentUser,
    db: DBSession,
):
    board = await BoardService(db).get_board(current_user.user_id, board_id)
    service = TaskListService(db)
    task_list = await service.get_task_list(board.board_id, task_list_id)
    task_list = await service.update_task_list(task_list, request.title, request.position)
    await db.commit()
    return task_list.to_api_dict()


@router.delete(
    "/{board_id}/task_lists/{task_list_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses=ERROR_RESPONSES,
)
async def delete_task_list(board_id: uuid.UUID, task_list_id: uuid.UUID, current_user: CurrentUser, db: DBSession):
    board = await BoardService(db).get_board(current_user.user_id, board_id)
    service = TaskListService(db)
    task_list = await service.get_task_list(board.board_id, task_list_id)
    await service.delete_task_list(task_list)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
