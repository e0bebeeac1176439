"""HTTP and WebSocket surface."""

from tasksync.api.http_server import create_app
from tasksync.api.websocket import RealtimeEndpoint

__all__ = ["create_app", "RealtimeEndpoint"]
