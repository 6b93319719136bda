from typing import Optional
from prometheus_client import CollectorRegistry, Counter, generate_latest


class MetricsCollector:
    """
    Prometheus counters for the consumer engine.
    Each collector owns its registry so several engines (or tests) can
    coexist in one process.
    """
    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        self.records_processed = Counter(
            "streamgroup_records_processed_total",
            "Records passed to the record handler",
            ["stream", "group", "source", "status"],
            registry=self.registry,
        )
        self.records_acked = Counter(
            "streamgroup_records_acked_total",
            "Record ids acknowledged",
            ["stream", "group"],
            registry=self.registry,
        )
        self.ack_calls = Counter(
            "streamgroup_ack_calls_total",
            "Acknowledge round-trips",
            ["stream", "group"],
            registry=self.registry,
        )
        self.records_reclaimed = Counter(
            "streamgroup_records_reclaimed_total",
            "Records claimed from idle consumers",
            ["stream", "group"],
            registry=self.registry,
        )
        self.loop_errors = Counter(
            "streamgroup_loop_errors_total",
            "Errors caught by the intake and reclaim loops",
            ["stream", "group", "loop", "kind"],
            registry=self.registry,
        )

    def render(self) -> bytes:
        """Prometheus text exposition of this collector's registry."""
        return generate_latest(self.registry)
