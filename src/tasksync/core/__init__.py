"""Synchronization core: membership, rooms, task pipeline, chat relay, reconciliation."""
