"""Common schemas for the procurement portal API."""

from typing import Optional, Any
from uuid import UUID
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response."""
    error: str
    detail: Optional[str] = None
    code: Optional[str] = None


class SuccessResponse(BaseModel):
    """Standard success response."""
    message: str
    data: Optional[Any] = None


class UserSummary(BaseModel):
    id: UUID
    email: str
    name: Optional[str]

    class Config:
        from_attributes = True
