"""Realtime event envelopes and client control frames."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class EventKind(str, Enum):
    """Server to client event types."""

    TASK_UPDATED = "taskUpdated"
    TASK_DELETED = "taskDeleted"
    NEW_MESSAGE = "newMessage"
    PROJECT_CLOSED = "projectClosed"


class SyncEvent(BaseModel):
    """One broadcast as delivered to a session.

    ``seq`` increases by one for every broadcast to the same room within
    one server process, so a session can detect that it missed an event.
    """

    model_config = ConfigDict(frozen=True, use_enum_values=True)

    type: EventKind
    project_id: str
    seq: int = Field(..., ge=1)
    data: dict[str, Any]

    def to_frame(self) -> dict[str, Any]:
        return self.model_dump(mode="json")


class ControlType(str, Enum):
    """Client to server control frame types."""

    JOIN = "join"
    LEAVE = "leave"
    PING = "ping"


class ControlFrame(BaseModel):
    """A control message sent by a client over the duplex channel."""

    model_config = ConfigDict(extra="ignore", use_enum_values=True)

    type: ControlType
    project_id: str | None = None
