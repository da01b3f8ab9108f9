"""
Database Models
===============

SQLAlchemy ORM models for all database entities.

All models are imported here to ensure they are registered
with SQLAlchemy's metadata for migrations and relationships.
"""

from app.models.user import User
from app.models.api_token import ApiToken
from app.models.invite_code import InviteCode
from app.models.email_code import EmailVerificationCode
from app.models.board import Board, TaskList
from app.models.task import (
    Task,
    TaskComment,
    TaskStatus,
    TaskPriority,
)
from app.models.task_activity import TaskActivity
from app.models.task_run import TaskRun
from app.models.notification import Notification
from app.models.token_usage import TokenUsage
from app.models.cost_snapshot import CostSnapshot

__all__ = [
    # Accounts
    "User",
    "ApiToken",
    "InviteCode",
    "EmailVerificationCode",
    # Boards
    "Board",
    "TaskList",
    # Tasks
    "Task",
    "TaskComment",
    "TaskStatus",
    "TaskPriority",
    "TaskActivity",
    "TaskRun",
    "Notification",
    # Costs
    "TokenUsage",
    "CostSnapshot",
]
