"""WebSocket transport for room control and event delivery."""

import asyncio
import contextlib
import json
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from tasksync.core.channels import Session
from tasksync.core.errors import InvalidArgumentError, SyncError
from tasksync.models import ControlFrame, ControlType
from tasksync.service import SyncService
from tasksync.utils.logging import bound_context, get_logger

logger = get_logger(__name__)

# Close codes in the application range
CLOSE_UNAUTHENTICATED = 4401
CLOSE_DROPPED = 4408


class RealtimeEndpoint:
    """Serves one duplex channel per connected client.

    Clients send ``join``, ``leave`` and ``ping`` control frames; the
    server pushes room events plus ``joined``, ``left``, ``pong`` and
    ``error`` replies. Replies go through the session's outbound queue so
    they stay ordered with room events. Closing the socket, cleanly or
    not, removes the session from every room.
    """

    def __init__(self, service: SyncService) -> None:
        self.service = service

    async def serve(self, websocket: WebSocket) -> None:
        user_id = websocket.headers.get("x-user-id") or websocket.query_params.get("user_id")
        user = await self.service.users.authenticate(user_id)
        if user is None:
            await websocket.close(code=CLOSE_UNAUTHENTICATED)
            logger.warning("websocket_rejected", user_id=user_id)
            return

        await websocket.accept()
        session = Session(user, websocket.send_json, queue_size=self.service.settings.session_queue_size)

        with bound_context(session_id=session.id, user_id=user.id):
            self.service.channels.connect(session)
            dropped = asyncio.ensure_future(session.closed.wait())
            receive: asyncio.Future[str] | None = None
            try:
                while True:
                    receive = asyncio.ensure_future(websocket.receive_text())
                    await asyncio.wait({receive, dropped}, return_when=asyncio.FIRST_COMPLETED)
                    if dropped.done():
                        await self._close_dropped(websocket)
                        break
                    reply = await self.handle_frame(session, receive.result())
                    if reply is not None and not session.offer(reply):
                        self.service.channels.drop(session, reason="queue_full")
                        await self._close_dropped(websocket)
                        break
            except WebSocketDisconnect:
                pass
            finally:
                for pending in (receive, dropped):
                    if pending is not None and not pending.done():
                        pending.cancel()
                await self.service.channels.disconnect(session)

    @staticmethod
    async def _close_dropped(websocket: WebSocket) -> None:
        # The peer may already be gone when the drop came from a failed send
        with contextlib.suppress(RuntimeError, WebSocketDisconnect):
            await websocket.close(code=CLOSE_DROPPED)
        logger.info("websocket_closed_after_drop")

    async def handle_frame(self, session: Session, text: str) -> dict[str, Any] | None:
        """Process one control frame and build the reply."""
        try:
            try:
                frame = ControlFrame.model_validate(json.loads(text))
            except (ValueError, ValidationError) as e:
                raise InvalidArgumentError("Malformed control frame") from e

            if frame.type == ControlType.PING:
                return {"type": "pong"}

            if not frame.project_id:
                raise InvalidArgumentError("project_id is required")

            if frame.type == ControlType.JOIN:
                await self.service.projects.authorize_join(session, frame.project_id)
                self.service.channels.join(session, frame.project_id)
                return {"type": "joined", "project_id": frame.project_id}

            self.service.channels.leave(session, frame.project_id)
            return {"type": "left", "project_id": frame.project_id}

        except SyncError as e:
            logger.info("control_frame_rejected", session_id=session.id, error=e.code, message=e.message)
            return {"type": "error", **e.to_dict()}
