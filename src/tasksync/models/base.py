"""Base document model and common types."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Server-assigned document identifier."""
    return uuid4().hex


class Role(str, Enum):
    """User role."""

    ADMIN = "admin"
    EMPLOYEE = "employee"


class TaskStatus(str, Enum):
    """Task status. Any state is reachable from any other."""

    TODO = "To-Do"
    IN_PROGRESS = "In Progress"
    DONE = "Done"


class Priority(str, Enum):
    """Task priority."""

    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class Collection(str, Enum):
    """Persistence collections."""

    USERS = "users"
    PROJECTS = "projects"
    TASKS = "tasks"
    MESSAGES = "messages"


class Document(BaseModel):
    """Base model shared by every persisted entity.

    Provides:
    - Server-assigned identifier
    - Creation and modification timestamps
    - Conversion to and from store documents
    """

    model_config = ConfigDict(
        str_strip_whitespace=True,
        validate_assignment=True,
        use_enum_values=True,
    )

    id: str = Field(default_factory=new_id, description="Server-assigned identifier")
    created_at: datetime = Field(default_factory=utcnow, description="Creation timestamp (ISO8601)")
    updated_at: datetime = Field(default_factory=utcnow, description="Last modification timestamp (ISO8601)")

    def to_document(self) -> dict[str, Any]:
        """Convert to a JSON-compatible store document."""
        return self.model_dump(mode="json")

    @classmethod
    def from_document(cls, document: dict[str, Any]) -> "Document":
        """Build a model from a store document.

        Store-internal keys such as the write version are kept when the
        model declares them and ignored otherwise.
        """
        return cls.model_validate({k: v for k, v in document.items() if k in cls.model_fields})
