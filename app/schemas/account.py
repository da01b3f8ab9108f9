"""
Account Schemas
===============

Pydantic schemas for API tokens, analytics budgets and admin endpoints.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ApiTokenCreate(BaseModel):
    """Request schema for issuing an API token."""

    name: Optional[str] = Field(None, max_length=100)
    expires_in_days: Optional[int] = Field(None, ge=1, le=3650)


class BudgetUpdate(BaseModel):
    """Budget limit for one snapshot period."""

    budget_period: Optional[str] = "daily"
    budget_limit: Optional[float] = None


class AdminUserUpdate(BaseModel):
    admin: Optional[bool] = None
    agent_auto_mode: Optional[bool] = None


class InviteCodeCreate(BaseModel):
    email: Optional[str] = Field(None, max_length=255)
