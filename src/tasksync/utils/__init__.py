"""Shared utilities."""

from tasksync.utils.locks import KeyedLock
from tasksync.utils.logging import bound_context, get_logger, setup_logging
from tasksync.utils.metrics import get_metrics

__all__ = [
    "KeyedLock",
    "bound_context",
    "get_logger",
    "setup_logging",
    "get_metrics",
]
