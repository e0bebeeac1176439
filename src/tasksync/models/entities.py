"""Users, projects, tasks and chat messages."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from tasksync.models.base import Document, Priority, Role, TaskStatus

UNKNOWN_USER_NAME = "Unknown user"


class User(Document):
    """An authenticated person. Credentials live with the auth provider."""

    name: str = Field(..., min_length=1, description="Display name")
    email: str = Field(..., min_length=3, description="Contact email")
    role: Role = Field(default=Role.EMPLOYEE, description="Authorization role")
    avatar_url: str | None = Field(default=None, description="Avatar reference")

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


class UserSummary(BaseModel):
    """Public subset of a user embedded in task and message views."""

    id: str
    name: str
    email: str | None = None
    avatar_url: str | None = None
    unknown: bool = False

    @classmethod
    def of(cls, user: User) -> "UserSummary":
        return cls(id=user.id, name=user.name, email=user.email, avatar_url=user.avatar_url)

    @classmethod
    def placeholder(cls, user_id: str) -> "UserSummary":
        """Stand-in for a reference to a user that no longer exists."""
        return cls(id=user_id, name=UNKNOWN_USER_NAME, unknown=True)


class Attachment(BaseModel):
    """File reference on a project. Upload storage is external."""

    url: str
    filename: str


class Project(Document):
    """A project groups tasks and a chat room.

    ``members`` is treated as a set: duplicates are collapsed on load and
    order carries no meaning. The creator is authorized whether or not
    they appear in ``members``.
    """

    name: str = Field(..., min_length=1)
    description: str = ""
    deadline: datetime | None = None
    members: list[str] = Field(default_factory=list)
    created_by: str
    attachments: list[Attachment] = Field(default_factory=list)

    @field_validator("members")
    @classmethod
    def dedupe_members(cls, v: list[str]) -> list[str]:
        return list(dict.fromkeys(v))

    def has_member(self, user_id: str) -> bool:
        return user_id in self.members


class Task(Document):
    """A unit of work inside exactly one project.

    ``version`` is bumped by the store on every write so concurrent readers
    can tell which of two full documents is newer.
    """

    project_id: str
    title: str = Field(..., min_length=1)
    description: str = ""
    assignee: str | None = None
    priority: Priority = Priority.MEDIUM
    status: TaskStatus = TaskStatus.TODO
    deadline: datetime | None = None
    progress: int = Field(default=0, ge=0)
    version: int = Field(default=1, ge=1)


class Message(Document):
    """An immutable chat message in a project's room."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    project_id: str
    sender: str
    text: str = Field(..., min_length=1)


class TaskView(Task):
    """Full task document with the assignee resolved for display."""

    assignee_user: UserSummary | None = None

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class MessageView(Message):
    """Chat message with the sender resolved for display."""

    sender_user: UserSummary

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json")
