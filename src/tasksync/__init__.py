"""tasksync: multi-user project tracking with realtime task and chat synchronization.

Task mutations and chat messages are authorized, written durably, and then
fanned out to every client watching the project, which reconcile the
events against a full-state snapshot.
"""

__version__ = "0.1.0"
