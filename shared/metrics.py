"""
Shared metrics configuration for the scoped ACL engine.
"""

from typing import Dict, Any, Optional
import time
import threading
from contextlib import contextmanager

from prometheus_client import Counter, Histogram, Gauge, Info, CollectorRegistry, start_http_server


class MetricsCollector:
    """Centralized metrics collector for the ACL engine.

    Metrics are only exported when a ``registry`` is supplied, so several
    engines in one process never collide on metric names.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry
        self._metrics: Dict[str, Any] = {}
        self._lock = threading.Lock()
        self._setup_metrics()

    def _setup_metrics(self):
        """Set up ACL metrics."""

        self._metrics["service_info"] = Info(
            "acl_service_info",
            "ACL engine information",
            registry=self.registry
        )
        self._metrics["service_info"].info({
            "service": self.service_name,
            "version": "1.0.0"
        })

        # outcome: allowed/denied, path: which check granted access (or "none")
        self._metrics["acl_decisions_total"] = Counter(
            "acl_decisions_total",
            "Total authorization decisions",
            ["outcome", "path"],
            registry=self.registry
        )

        self._metrics["acl_compile_duration_seconds"] = Histogram(
            "acl_compile_duration_seconds",
            "Time spent compiling rules for a scope",
            ["cache"],
            registry=self.registry
        )

        self._metrics["acl_compile_cache_total"] = Counter(
            "acl_compile_cache_total",
            "Compiled rule memo lookups",
            ["result"],
            registry=self.registry
        )

        self._metrics["acl_rules_registered"] = Gauge(
            "acl_rules_registered",
            "Number of rules in the rule set, default rule included",
            registry=self.registry
        )

    def get_metric(self, name: str):
        """Get a metric by name."""
        return self._metrics.get(name)

    def start_metrics_server(self, port: int = 9090):
        """Start the Prometheus metrics server."""
        if self.registry is None:
            raise ValueError("Metrics without a registry cannot be served")
        start_http_server(port, registry=self.registry)

    def record_decision(self, allowed: bool, path: Optional[str] = None):
        """Record an authorization decision."""
        outcome = "allowed" if allowed else "denied"
        self._metrics["acl_decisions_total"].labels(outcome=outcome, path=path or "none").inc()

    def record_cache_lookup(self, hit: bool):
        """Record a compiled rule memo lookup."""
        self._metrics["acl_compile_cache_total"].labels(result="hit" if hit else "miss").inc()

    def set_rule_count(self, count: int):
        """Record the size of the rule set."""
        with self._lock:
            self._metrics["acl_rules_registered"].set(count)

    @contextmanager
    def time_operation(self, operation_name: str, **labels):
        """Context manager to time an operation."""
        start_time = time.time()
        try:
            yield
        finally:
            duration = time.time() - start_time
            if operation_name in self._metrics:
                self._metrics[operation_name].labels(**labels).observe(duration)


def get_metrics_collector(service_name: str = "acl", registry: Optional[CollectorRegistry] = None) -> MetricsCollector:
    """Get a metrics collector for a service."""
    return MetricsCollector(service_name, registry)
