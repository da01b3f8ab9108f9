"""
Task Schemas
============

Pydantic schemas for task, comment and agent workflow endpoints.
"""

from datetime import date, datetime
from typing import Optional
import uuid

from pydantic import BaseModel, Field

from app.models.task import TaskPriority, TaskStatus

MAX_NAME_LENGTH = 500
MAX_DESCRIPTION_LENGTH = 500_000


# =============================================================================
# Request Schemas
# =============================================================================

class TaskCreate(BaseModel):
    """Request schema for creating a task."""

    name: str = Field(max_length=MAX_NAME_LENGTH)
    description: Optional[str] = Field(None, max_length=MAX_DESCRIPTION_LENGTH)
    board_id: Optional[uuid.UUID] = None
    task_list_id: Optional[uuid.UUID] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    position: Optional[int] = None
    tags: list[str] = Field(default_factory=list)
    blocked: bool = False
    due_date: Optional[date] = None
    assigned_to_agent: bool = False
    model: Optional[str] = Field(None, max_length=100)


class TaskUpdate(BaseModel):
    """
    Request schema for updating a task.

    Merge semantics: only fields present in the body are written.
    """

    name: Optional[str] = Field(None, max_length=MAX_NAME_LENGTH)
    description: Optional[str] = Field(None, max_length=MAX_DESCRIPTION_LENGTH)
    board_id: Optional[uuid.UUID] = None
    task_list_id: Optional[uuid.UUID] = None
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    position: Optional[int] = None
    tags: Optional[list[str]] = None
    blocked: Optional[bool] = None
    due_date: Optional[date] = None
    assigned_to_agent: Optional[bool] = None
    model: Optional[str] = Field(None, max_length=100)
    output_files: Optional[list[str]] = None
    agent_session_id: Optional[str] = Field(None, max_length=255)
    agent_session_key: Optional[str] = Field(None, max_length=255)
    error_message: Optional[str] = None
    error_at: Optional[datetime] = None
    retry_count: Optional[int] = Field(None, ge=0)


class TaskMove(BaseModel):
    status: str


class SessionLink(BaseModel):
    """Agent session identifiers for claim and link_session."""

    session_id: Optional[str] = Field(None, max_length=255)
    session_key: Optional[str] = Field(None, max_length=255)


class CommentCreate(BaseModel):
    body: str = Field(min_length=1, max_length=10_000)
