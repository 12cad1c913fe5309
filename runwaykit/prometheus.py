"""
Prometheus exporter — expose limiter and detector activity for Grafana.

Hooks into the engines as a listener and keeps counters up to date.

Requires: pip install runwaykit[prometheus]

Usage::

    from runwaykit.prometheus import PrometheusExporter

    prom = PrometheusExporter(port=9401)
    limiter.add_listener(prom.on_rate_limit)
    detector.add_listener(prom.on_anomaly_results)
    # Metrics now at http://localhost:9401/metrics
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .runway import RunwayMetrics
    from .types import AnomalyResult, RateLimitResult

logger = logging.getLogger("runwaykit.prometheus")

# prometheus_client is optional; checked on first use
_prometheus_available = None


def _check_prometheus():
    global _prometheus_available
    if _prometheus_available is None:
        try:
            import prometheus_client  # noqa: F401
            _prometheus_available = True
        except ImportError:
            _prometheus_available = False
    return _prometheus_available


class PrometheusExporter:
    """
    Exposes runwaykit activity as Prometheus counters/gauges.

    Metrics exported:
      - runwaykit_rate_limit_requests_total  (counter, labels: policy, outcome)
      - runwaykit_rate_limit_blocks_total    (counter, labels: policy)
      - runwaykit_transactions_scored_total  (counter)
      - runwaykit_anomalies_total            (counter, labels: reason)
      - runwaykit_runway_months              (gauge)
      - runwaykit_net_burn                   (gauge)

    Pass ``port=None`` to skip the HTTP server, and a ``registry`` to keep
    the metrics off the global default registry.
    """

    def __init__(self, port: int | None = 9401, registry=None):
        if not _check_prometheus():
            raise ImportError(
                "PrometheusExporter requires prometheus_client. "
                "Install with: pip install runwaykit[prometheus]"
            )

        import prometheus_client as prom

        self._registry = registry if registry is not None else prom.REGISTRY

        # Counters
        self.rate_limit_requests = prom.Counter(
            "runwaykit_rate_limit_requests_total",
            "Rate-limit decisions",
            ["policy", "outcome"],
            registry=self._registry,
        )
        self.rate_limit_blocks = prom.Counter(
            "runwaykit_rate_limit_blocks_total",
            "Requests rejected while the identifier was blocked",
            ["policy"],
            registry=self._registry,
        )
        self.transactions_scored = prom.Counter(
            "runwaykit_transactions_scored_total",
            "Transactions scored by the anomaly detector",
            registry=self._registry,
        )
        self.anomalies = prom.Counter(
            "runwaykit_anomalies_total",
            "Transactions flagged as anomalous",
            ["reason"],
            registry=self._registry,
        )

        # Gauges
        self.runway_months = prom.Gauge(
            "runwaykit_runway_months",
            "Most recently computed runway (months)",
            registry=self._registry,
        )
        self.net_burn = prom.Gauge(
            "runwaykit_net_burn",
            "Most recently computed net monthly burn",
            registry=self._registry,
        )

        if port is not None:
            prom.start_http_server(port, registry=self._registry)
            logger.info(f"Prometheus metrics at http://0.0.0.0:{port}/metrics")

    def on_rate_limit(self, identifier: str, policy_name: str, result: "RateLimitResult") -> None:
        """RateLimiter listener."""
        outcome = "allowed" if result.allowed else "rejected"
        self.rate_limit_requests.labels(policy=policy_name, outcome=outcome).inc()
        if result.blocked:
            self.rate_limit_blocks.labels(policy=policy_name).inc()

    def on_anomaly_results(self, results: "list[AnomalyResult]") -> None:
        """AnomalyDetector listener."""
        self.transactions_scored.inc(len(results))
        for r in results:
            if r.is_anomaly:
                self.anomalies.labels(reason=getattr(r.reason, "value", r.reason)).inc()

    def export_runway(self, metrics: "RunwayMetrics") -> None:
        self.runway_months.set(metrics.runway_months)
        self.net_burn.set(metrics.net_burn)
