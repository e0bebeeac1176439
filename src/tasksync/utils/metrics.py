"""Prometheus metrics for observability."""

from functools import lru_cache

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Gauge, Histogram, Info


class Metrics:
    """Prometheus metrics for the synchronization service."""

    def __init__(self, registry: CollectorRegistry = REGISTRY) -> None:
        """Initialize all metrics.

        Args:
            registry: Registry to register collectors in
        """
        self.info = Info(
            "tasksync",
            "Task synchronization service information",
            registry=registry,
        )
        self.info.info({"version": "0.1.0"})

        # Task mutation pipeline
        self.task_mutations_total = Counter(
            "tasksync_task_mutations_total",
            "Total number of task mutations",
            ["operation", "status"],
            registry=registry,
        )

        self.task_mutation_duration_seconds = Histogram(
            "tasksync_task_mutation_duration_seconds",
            "Duration of task mutations in seconds",
            ["operation"],
            buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
            registry=registry,
        )

        # Chat relay
        self.chat_messages_total = Counter(
            "tasksync_chat_messages_total",
            "Total number of chat sends",
            ["status"],
            registry=registry,
        )

        # Channel manager
        self.broadcasts_total = Counter(
            "tasksync_broadcasts_total",
            "Total number of room broadcasts",
            ["kind"],
            registry=registry,
        )

        self.event_deliveries_total = Counter(
            "tasksync_event_deliveries_total",
            "Total number of per-session event deliveries",
            ["status"],
            registry=registry,
        )

        self.active_sessions = Gauge(
            "tasksync_active_sessions",
            "Currently connected realtime sessions",
            registry=registry,
        )

        self.active_rooms = Gauge(
            "tasksync_active_rooms",
            "Rooms with at least one joined session",
            registry=registry,
        )

        # Storage
        self.storage_operations_total = Counter(
            "tasksync_storage_operations_total",
            "Total number of storage operations",
            ["collection", "operation", "status"],
            registry=registry,
        )

        self.storage_operation_duration_seconds = Histogram(
            "tasksync_storage_operation_duration_seconds",
            "Duration of storage operations in seconds",
            ["collection", "operation"],
            buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
            registry=registry,
        )

    def record_task_mutation(
        self,
        operation: str,
        status: str,
        duration: float,
    ) -> None:
        """Record a task mutation metric.

        Args:
            operation: Operation name (create, update, delete)
            status: Outcome (success, not_found, forbidden, ...)
            duration: Operation duration in seconds
        """
        self.task_mutations_total.labels(operation=operation, status=status).inc()
        self.task_mutation_duration_seconds.labels(operation=operation).observe(duration)

    def record_storage_operation(
        self,
        collection: str,
        operation: str,
        status: str,
        duration: float,
    ) -> None:
        """Record a storage operation metric.

        Args:
            collection: Collection name
            operation: Operation name (insert, get, find, update, delete)
            status: Operation status (success, error, timeout)
            duration: Operation duration in seconds
        """
        self.storage_operations_total.labels(
            collection=collection,
            operation=operation,
            status=status,
        ).inc()
        self.storage_operation_duration_seconds.labels(
            collection=collection,
            operation=operation,
        ).observe(duration)


@lru_cache
def get_metrics() -> Metrics:
    """Get cached metrics instance."""
    return Metrics()
