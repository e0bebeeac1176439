"""Inbound payloads with explicit allow-lists of writable fields."""

from datetime import datetime
from typing import Any, ClassVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from tasksync.models.base import Priority, Role, TaskStatus


class _Payload(BaseModel):
    model_config = ConfigDict(
        extra="forbid",
        str_strip_whitespace=True,
        use_enum_values=True,
    )


class TaskCreate(_Payload):
    """Fields a caller may set when creating a task."""

    title: str = Field(..., min_length=1)
    description: str = ""
    assignee: str | None = None
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.TODO
    deadline: datetime | None = None
    progress: int = Field(default=0, ge=0)


class TaskPatch(_Payload):
    """Partial task update.

    Only the fields listed here can change through the mutation path;
    ``id``, ``project_id`` and ``version`` are rejected as unknown fields.
    ``expected_version`` is not a field of the task: when given, the write
    only applies if the stored version still matches.
    """

    title: str | None = Field(default=None, min_length=1)
    description: str | None = None
    status: TaskStatus | None = None
    assignee: str | None = None
    deadline: datetime | None = None
    priority: Priority | None = None
    progress: int | None = Field(default=None, ge=0)
    expected_version: int | None = Field(default=None, ge=1)

    # Fields that may be cleared with an explicit null
    NULLABLE: ClassVar[frozenset[str]] = frozenset({"assignee", "deadline"})

    @model_validator(mode="after")
    def reject_null_for_required(self) -> "TaskPatch":
        for name in self.model_fields_set - self.NULLABLE - {"expected_version"}:
            if getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    def changes(self) -> dict[str, Any]:
        """Fields explicitly present in the request, JSON-ready."""
        return self.model_dump(mode="json", exclude_unset=True, exclude={"expected_version"})


class ProjectCreate(_Payload):
    name: str = Field(..., min_length=1)
    description: str = ""
    deadline: datetime | None = None
    members: list[str] = Field(default_factory=list)


class ProjectPatch(_Payload):
    """Partial project update. ``created_by`` is never writable."""

    name: str | None = Field(default=None, min_length=1)
    description: str | None = None
    deadline: datetime | None = None
    members: list[str] | None = None

    NULLABLE: ClassVar[frozenset[str]] = frozenset({"deadline"})

    @model_validator(mode="after")
    def reject_null_for_required(self) -> "ProjectPatch":
        for name in self.model_fields_set - self.NULLABLE:
            if getattr(self, name) is None:
                raise ValueError(f"{name} cannot be null")
        return self

    @field_validator("members")
    @classmethod
    def dedupe_members(cls, v: list[str] | None) -> list[str] | None:
        return None if v is None else list(dict.fromkeys(v))

    def changes(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_unset=True)


class UserCreate(_Payload):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)
    role: Role = Role.EMPLOYEE
    avatar_url: str | None = None


class RoleUpdate(_Payload):
    role: Role


class MessageCreate(_Payload):
    # Emptiness is checked by the chat relay so it can report InvalidArgument
    text: str
