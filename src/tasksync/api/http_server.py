"""FastAPI application: REST endpoints, health, metrics and the realtime socket."""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, Request, Response, WebSocket
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from tasksync import __version__
from tasksync.api.websocket import RealtimeEndpoint
from tasksync.core.errors import SyncError, UnauthenticatedError
from tasksync.models import (
    MessageCreate,
    MessageView,
    Project,
    ProjectCreate,
    ProjectPatch,
    RoleUpdate,
    TaskCreate,
    TaskPatch,
    TaskView,
    User,
    UserCreate,
)
from tasksync.service import SyncService
from tasksync.utils.logging import get_logger

logger = get_logger(__name__)

USER_HEADER = "X-User-Id"


def create_app(service: SyncService, manage_lifecycle: bool = True) -> FastAPI:
    """Create the FastAPI application.

    Args:
        service: Assembled synchronization services
        manage_lifecycle: Start and stop the service with the app

    Returns:
        FastAPI application
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if manage_lifecycle:
            await service.start()
        try:
            yield
        finally:
            if manage_lifecycle:
                await service.stop()

    app = FastAPI(
        title="tasksync",
        description="Project tasks and chat with realtime synchronization",
        version=__version__,
        lifespan=lifespan,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=service.settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    realtime = RealtimeEndpoint(service)

    @app.exception_handler(SyncError)
    async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = [{"loc": [str(p) for p in err["loc"]], "msg": err["msg"]} for err in exc.errors()]
        return JSONResponse(
            status_code=400,
            content={"error": "invalid_argument", "message": "Invalid request", "details": {"errors": errors}},
        )

    async def current_user(request: Request) -> User:
        """Identity asserted upstream by the auth provider."""
        user = await service.users.authenticate(request.headers.get(USER_HEADER))
        if user is None:
            raise UnauthenticatedError("Unknown or missing user identity")
        return user

    # Health and metrics

    @app.get("/health")
    async def health() -> JSONResponse:
        """Liveness check endpoint."""
        return JSONResponse(content={"status": "ok", "service": "tasksync"})

    @app.get("/health/ready")
    async def readiness() -> JSONResponse:
        """Readiness check endpoint. Verifies the document store."""
        try:
            store_ok = await service.gateway.health_check()
        except Exception as e:
            logger.error("store_health_failed", error=str(e))
            store_ok = False

        return JSONResponse(
            content={
                "status": "ready" if store_ok else "not_ready",
                "checks": {"store": store_ok},
                "realtime": {
                    "sessions": service.channels.session_count,
                    "rooms": len(service.channels.room_ids()),
                },
            },
            status_code=200 if store_ok else 503,
        )

    if service.settings.metrics_enabled:

        @app.get("/metrics")
        async def metrics() -> Response:
            """Prometheus metrics endpoint."""
            return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Users

    @app.get("/api/users")
    async def list_users(user: User = Depends(current_user)) -> list[User]:
        return await service.users.list_users(user)

    @app.get("/api/users/me")
    async def me(user: User = Depends(current_user)) -> User:
        return user

    @app.post("/api/users", status_code=201)
    async def create_user(body: UserCreate, user: User = Depends(current_user)) -> User:
        return await service.users.create(user, body)

    @app.put("/api/users/{user_id}/role")
    async def set_role(user_id: str, body: RoleUpdate, user: User = Depends(current_user)) -> User:
        return await service.users.set_role(user, user_id, body)

    @app.delete("/api/users/{user_id}")
    async def delete_user(user_id: str, user: User = Depends(current_user)) -> dict[str, Any]:
        await service.users.delete(user, user_id)
        return {"message": "Deleted", "id": user_id}

    # Projects

    @app.post("/api/projects", status_code=201)
    async def create_project(body: ProjectCreate, user: User = Depends(current_user)) -> Project:
        return await service.projects.create(user, body)

    @app.get("/api/projects")
    async def list_projects(user: User = Depends(current_user)) -> list[Project]:
        return await service.projects.list_visible(user)

    @app.get("/api/projects/{project_id}")
    async def get_project(project_id: str, user: User = Depends(current_user)) -> Project:
        return await service.projects.get(user, project_id)

    @app.put("/api/projects/{project_id}")
    async def update_project(project_id: str, body: ProjectPatch, user: User = Depends(current_user)) -> Project:
        return await service.projects.update(user, project_id, body)

    @app.delete("/api/projects/{project_id}")
    async def delete_project(project_id: str, user: User = Depends(current_user)) -> dict[str, Any]:
        await service.projects.delete(user, project_id)
        return {"message": "Deleted", "id": project_id}

    # Tasks

    @app.post("/api/projects/{project_id}/tasks", status_code=201)
    async def create_task(project_id: str, body: TaskCreate, user: User = Depends(current_user)) -> TaskView:
        return await service.tasks.create(user, project_id, body)

    @app.get("/api/projects/{project_id}/tasks")
    async def project_tasks(project_id: str, user: User = Depends(current_user)) -> list[TaskView]:
        return await service.tasks.list_for_project(user, project_id)

    @app.get("/api/tasks")
    async def all_tasks(user: User = Depends(current_user)) -> list[TaskView]:
        return await service.tasks.list_all(user)

    @app.get("/api/tasks/{task_id}")
    async def get_task(task_id: str, user: User = Depends(current_user)) -> TaskView:
        return await service.tasks.get(user, task_id)

    @app.patch("/api/tasks/{task_id}")
    async def update_task(task_id: str, body: TaskPatch, user: User = Depends(current_user)) -> TaskView:
        return await service.tasks.mutate(user, task_id, body)

    @app.delete("/api/tasks/{task_id}")
    async def delete_task(task_id: str, user: User = Depends(current_user)) -> dict[str, Any]:
        await service.tasks.delete(user, task_id)
        return {"message": "Deleted", "id": task_id}

    # Messages

    @app.get("/api/projects/{project_id}/messages")
    async def project_messages(project_id: str, user: User = Depends(current_user)) -> list[MessageView]:
        return await service.chat.history(user, project_id)

    @app.post("/api/projects/{project_id}/messages", status_code=201)
    async def post_message(project_id: str, body: MessageCreate, user: User = Depends(current_user)) -> MessageView:
        return await service.chat.send(user, project_id, body.text)

    # Realtime

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket) -> None:
        await realtime.serve(websocket)

    return app
