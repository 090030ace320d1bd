from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

TITLE_MAX_LENGTH = 200


def _normalize_title(v: str) -> str:
    """
    Strip whitespace and enforce 1..TITLE_MAX_LENGTH length.
    """
    s = v.strip()
    if not (1 <= len(s) <= TITLE_MAX_LENGTH):
        raise ValueError(f"title length must be between 1 and {TITLE_MAX_LENGTH} characters")
    return s


# PUBLIC_INTERFACE
class TaskCreate(BaseModel):
    """
    Schema for creating a new task.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Buy milk",
                "description": "Two litres, semi-skimmed",
            }
        }
    )

    title: str = Field(..., description="Short title for the task")
    description: Optional[str] = Field(default=None, description="Optional detailed description")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _normalize_title(v)


# PUBLIC_INTERFACE
class TaskUpdate(BaseModel):
    """
    Schema for a partial update of an existing task.
    Only the fields that are provided (and not null) are changed.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Buy oat milk",
                "description": "Two litres",
            }
        }
    )

    title: Optional[str] = Field(default=None, description="Short title for the task")
    description: Optional[str] = Field(default=None, description="Optional detailed description")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        """
        If title is provided, strip whitespace and enforce the length bounds.
        """
        if v is None:
            return v
        return _normalize_title(v)


# PUBLIC_INTERFACE
class CompletionUpdate(BaseModel):
    """Body for explicitly setting the completion flag."""

    completed: bool = Field(..., description="Desired completion status")


# PUBLIC_INTERFACE
class TaskOut(BaseModel):
    """
    Schema returned by the API for a task.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "id": 1,
                "title": "Buy milk",
                "description": "",
                "completed": False,
                "created_at": "2025-01-25T10:15:30.123456+00:00",
                "updated_at": "2025-01-26T09:00:00.000001+00:00",
            }
        }
    )

    id: int = Field(..., description="Unique identifier of the task")
    title: str = Field(..., description="Short title for the task")
    description: str = Field(default="", description="Detailed description, empty when not set")
    completed: bool = Field(..., description="Completion status flag")
    created_at: datetime = Field(..., description="Creation timestamp (UTC)")
    updated_at: datetime = Field(..., description="Last update timestamp (UTC)")


class TaskPage(BaseModel):
    """
    Envelope for paginated list responses.
    """

    items: List[TaskOut] = Field(..., description="List of tasks")
    total: int = Field(..., description="Total number of tasks matching the filter")
    limit: Optional[int] = Field(default=None, description="Limit applied to the query")
    offset: int = Field(..., description="Offset applied to the query")


class ErrorOut(BaseModel):
    error: str
    message: str
    detail: list = Field(default_factory=list)
