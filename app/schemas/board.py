"""
Board Schemas
=============

Pydantic schemas for board and task list endpoints.
"""

from typing import Optional

from pydantic import BaseModel, Field


class BoardCreate(BaseModel):
    """Request schema for creating a board."""

    name: str = Field(max_length=100)
    icon: Optional[str] = Field(None, max_length=20)
    color: Optional[str] = Field(None, max_length=20)


class BoardUpdate(BaseModel):
    """Request schema for updating a board."""

    name: Optional[str] = Field(None, max_length=100)
    icon: Optional[str] = Field(None, max_length=20)
    color: Optional[str] = Field(None, max_length=20)


class TaskListCreate(BaseModel):
    title: str = Field(max_length=255)


class TaskListUpdate(BaseModel):
    title: Optional[str] = Field(None, max_length=255)
    position: Optional[int] = Field(None, ge=0)
