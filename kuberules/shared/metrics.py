"""
Shared metrics configuration for kuberules.
"""

import threading
import time
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional, Tuple

from prometheus_client import Counter, Gauge, Histogram, CollectorRegistry, REGISTRY


class MetricsCollector:
    """Centralized metrics collector for store and sync components."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else REGISTRY
        self._metrics: Dict[str, Any] = {}
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up store and synchronizer metrics."""

        self._metrics["rule_store_operations_total"] = Counter(
            "rule_store_operations_total",
            "Total rule store operations",
            ["operation", "status"],
            registry=self.registry
        )

        self._metrics["rule_store_operation_duration_seconds"] = Histogram(
            "rule_store_operation_duration_seconds",
            "Rule store operation duration in seconds",
            ["operation"],
            registry=self.registry
        )

        self._metrics["rule_sync_events_total"] = Counter(
            "rule_sync_events_total",
            "Total watch events applied to engines",
            ["event", "status"],
            registry=self.registry
        )

        self._metrics["rule_sync_state"] = Gauge(
            "rule_sync_state",
            "Number of synchronizers per state",
            ["state"],
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    @contextmanager
    def track_operation(self, operation: str) -> Iterator[None]:
        """Count and time a store operation."""
        start_time = time.time()
        status = "ok"
        try:
            yield
        except Exception:
            status = "error"
            raise
        finally:
            duration = time.time() - start_time
            self._metrics["rule_store_operations_total"].labels(
                operation=operation,
                status=status
            ).inc()
            self._metrics["rule_store_operation_duration_seconds"].labels(
                operation=operation
            ).observe(duration)

    def record_sync_event(self, event: str, status: str):
        """Record an applied (or failed) watch event."""
        self._metrics["rule_sync_events_total"].labels(event=event, status=status).inc()

    def record_state_transition(self, old_state: Optional[str], new_state: str):
        """Move one synchronizer between state gauges."""
        if old_state is not None:
            self._metrics["rule_sync_state"].labels(state=old_state).dec()
        self._metrics["rule_sync_state"].labels(state=new_state).inc()


_collectors: Dict[Tuple[int], MetricsCollector] = {}
_collectors_lock = threading.Lock()


def get_metrics_collector(registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get the metrics collector bound to a registry, creating it once."""
    target = registry if registry is not None else REGISTRY
    key = (id(target),)
    with _collectors_lock:
        collector = _collectors.get(key)
        if collector is None:
            collector = MetricsCollector(target)
            _collectors[key] = collector
        return collector
