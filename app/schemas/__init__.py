"""
Pydantic Schemas
================

Request/response schemas for API validation.
"""

from app.schemas.common import (
    ERROR_RESPONSES,
    ErrorResponse,
    PaginationParams,
    SuccessResponse,
)

__all__ = [
    "ERROR_RESPONSES",
    "ErrorResponse",
    "PaginationParams",
    "SuccessResponse",
]
