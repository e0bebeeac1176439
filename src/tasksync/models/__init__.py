"""Data models for the synchronization service."""

from tasksync.models.base import Collection, Document, Priority, Role, TaskStatus
from tasksync.models.entities import (
    Attachment,
    Message,
    MessageView,
    Project,
    Task,
    TaskView,
    User,
    UserSummary,
)
from tasksync.models.events import ControlFrame, ControlType, EventKind, SyncEvent
from tasksync.models.requests import (
    MessageCreate,
    ProjectCreate,
    ProjectPatch,
    RoleUpdate,
    TaskCreate,
    TaskPatch,
    UserCreate,
)

__all__ = [
    # Base
    "Collection",
    "Document",
    "Priority",
    "Role",
    "TaskStatus",
    # Entities
    "Attachment",
    "Message",
    "MessageView",
    "Project",
    "Task",
    "TaskView",
    "User",
    "UserSummary",
    # Events
    "ControlFrame",
    "ControlType",
    "EventKind",
    "SyncEvent",
    # Requests
    "MessageCreate",
    "ProjectCreate",
    "ProjectPatch",
    "RoleUpdate",
    "TaskCreate",
    "TaskPatch",
    "UserCreate",
]
