"""
runwaykit — financial analytics core for startup planning dashboards

Transaction anomaly detection, runway / burn-rate math, and tiered
per-endpoint rate limiting. Plain objects in, plain objects out; no web
framework or database required.

Quick start::

    from runwaykit import AnalyticsStack, Transaction

    stack = AnalyticsStack.create()

    # Gate a request
    result = stack.check_rate_limit("203.0.113.7", "aiInsights")

    # Score a batch against history
    results = stack.detect(new_txs, historical_txs, contamination=0.05)

    # Runway
    metrics = stack.runway(cash_balance=500_000, monthly_burn=42_000)
"""

from __future__ import annotations

from .types import (
    AnomalyReason,
    AnomalyResult,
    BurnMode,
    GroupBaseline,
    RateLimitEntry,
    RateLimitPolicy,
    RateLimitResult,
    RunwayStatus,
    Transaction,
)
from .profiler import compute_baselines, compute_category_baselines, global_mean
from .anomaly import AnomalyDetector, detect_anomalies, find_duplicates, z_threshold_for
from .runway import (
    INFINITE_RUNWAY_MONTHS,
    RunwayMetrics,
    calculate_burn_rate,
    calculate_mom_change,
    calculate_runway,
    format_runway,
    runway_status,
    summarize_runway,
)
from .store import InMemoryStore, RateLimitStore
from .ratelimit import (
    RATE_LIMIT_POLICIES,
    RateLimitConfigError,
    RateLimiter,
    check_auth_rate_limit,
    check_rate_limit,
    get_client_ip,
    get_default_limiter,
    rate_limit_headers,
    rate_limit_key,
)
from .config import Settings, configure_logging, load_settings


class AnalyticsStack:
    """
    All-in-one convenience class that wires together the full core:
    RateLimiter + AnomalyDetector (+ optional PrometheusExporter),
    configured from Settings.
    """

    def __init__(
        self,
        limiter: RateLimiter,
        detector: AnomalyDetector,
        settings: Settings,
        exporter=None,
    ):
        self.limiter = limiter
        self.detector = detector
        self.settings = settings
        self.exporter = exporter

    @classmethod
    def create(
        cls,
        settings: Settings | None = None,
        store: RateLimitStore | None = None,
        prometheus_port: int | None = None,
        **limiter_kwargs,
    ) -> "AnalyticsStack":
        """
        Factory that creates and wires the full stack in one call.
        """
        settings = settings or load_settings()
        limiter_kwargs.setdefault("sweep_interval", settings.sweep_interval_seconds)
        limiter_kwargs.setdefault("auto_sweep", settings.auto_sweep)
        limiter = RateLimiter(store=store, **limiter_kwargs)
        detector = AnomalyDetector.from_settings(settings)

        exporter = None
        if prometheus_port:
            from .prometheus import PrometheusExporter

            exporter = PrometheusExporter(port=prometheus_port)
            limiter.add_listener(exporter.on_rate_limit)
            detector.add_listener(exporter.on_anomaly_results)

        return cls(limiter=limiter, detector=detector, settings=settings, exporter=exporter)

    # ── Convenience methods ────────────────────────────────────────────

    def check_rate_limit(self, identifier: str, policy_name: str = "default") -> RateLimitResult:
        return self.limiter.check(identifier, policy_name)

    def detect(
        self,
        transactions: list[Transaction],
        historical_transactions: list[Transaction],
        contamination: float | None = None,
    ) -> list[AnomalyResult]:
        if contamination is None:
            contamination = self.settings.default_contamination
        return self.detector.detect(transactions, historical_transactions, contamination)

    def runway(self, cash_balance: float, monthly_burn: float, **kwargs) -> RunwayMetrics:
        metrics = summarize_runway(cash_balance, monthly_burn, **kwargs)
        if self.exporter is not None:
            self.exporter.export_runway(metrics)
        return metrics

    def close(self):
        self.limiter.close()


__all__ = [
    "AnalyticsStack",
    "AnomalyDetector",
    "AnomalyReason",
    "AnomalyResult",
    "BurnMode",
    "GroupBaseline",
    "INFINITE_RUNWAY_MONTHS",
    "InMemoryStore",
    "RATE_LIMIT_POLICIES",
    "RateLimitConfigError",
    "RateLimitEntry",
    "RateLimitPolicy",
    "RateLimitResult",
    "RateLimitStore",
    "RateLimiter",
    "RunwayMetrics",
    "RunwayStatus",
    "Settings",
    "Transaction",
    "calculate_burn_rate",
    "calculate_mom_change",
    "calculate_runway",
    "check_auth_rate_limit",
    "check_rate_limit",
    "compute_baselines",
    "compute_category_baselines",
    "configure_logging",
    "detect_anomalies",
    "find_duplicates",
    "format_runway",
    "get_client_ip",
    "get_default_limiter",
    "global_mean",
    "load_settings",
    "rate_limit_headers",
    "rate_limit_key",
    "runway_status",
    "summarize_runway",
    "z_threshold_for",
]

__version__ = "0.1.0"
