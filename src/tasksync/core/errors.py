"""Error taxonomy shared by the mutation pipeline, chat relay and API."""

from typing import Any, TypeVar

from pydantic import BaseModel, ValidationError

M = TypeVar("M", bound=BaseModel)


class SyncError(Exception):
    """Base class for errors returned synchronously to a caller.

    None of these ever reach the broadcast stage.
    """

    code = "internal"
    status_code = 500

    def __init__(self, message: str, **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"error": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class UnauthenticatedError(SyncError):
    """No known identity was asserted for the caller."""

    code = "unauthenticated"
    status_code = 401


class NotFoundError(SyncError):
    """Referenced task, project, message or user is absent."""

    code = "not_found"
    status_code = 404


class ForbiddenError(SyncError):
    """Authorization failed."""

    code = "forbidden"
    status_code = 403


class InvalidArgumentError(SyncError):
    """Malformed or empty input."""

    code = "invalid_argument"
    status_code = 400

    @classmethod
    def from_validation(cls, error: ValidationError) -> "InvalidArgumentError":
        return cls(
            "Invalid request",
            errors=[{"loc": [str(part) for part in err["loc"]], "msg": err["msg"]} for err in error.errors()],
        )


def parse_payload(model: type[M], data: M | dict[str, Any]) -> M:
    """Validate a raw payload against an allow-listed request model."""
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        raise InvalidArgumentError.from_validation(e) from e


class ConflictError(SyncError):
    """A versioned write lost a race with another writer."""

    code = "conflict"
    status_code = 409


class UnavailableError(SyncError):
    """Persistence timed out or failed."""

    code = "unavailable"
    status_code = 503
