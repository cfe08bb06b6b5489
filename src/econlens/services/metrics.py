"""
Prometheus metrics for the insight pipeline.

Metrics:
    1. econlens_cache_lookups_total (Counter, labels: namespace, outcome)
    2. econlens_validation_rejections_total (Counter, labels: issue)
    3. econlens_fallbacks_total (Counter, labels: reason, source_mode)
    4. econlens_inference_latency_seconds (Histogram)
    5. econlens_inference_calls_total (Counter, labels: outcome)
    6. econlens_monthly_cost_usd (Gauge)
    7. econlens_insights_completed_total (Counter, labels: source_mode)

Each `InsightMetrics` owns its `CollectorRegistry`, so several pipelines (and
tests) never collide on metric names.
"""
from __future__ import annotations

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram


class InsightMetrics:
    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry or CollectorRegistry()

        # 1. Cache lookups by namespace (insight, scenario_result) and outcome (hit, miss, shared)
        self.cache_lookups_total = Counter(
            "econlens_cache_lookups_total",
            "Cache lookups by namespace and outcome",
            labelnames=["namespace", "outcome"],
            registry=self.registry,
        )

        # 2. Validation rejections by issue code
        self.validation_rejections_total = Counter(
            "econlens_validation_rejections_total",
            "AI outputs rejected by validation, by issue code",
            labelnames=["issue"],
            registry=self.registry,
        )

        # 3. Fallback insights served
        self.fallbacks_total = Counter(
            "econlens_fallbacks_total",
            "Fallback insights served by reason and source mode",
            labelnames=["reason", "source_mode"],
            registry=self.registry,
        )

        # 4. Inference latency
        self.inference_latency_seconds = Histogram(
            "econlens_inference_latency_seconds",
            "Latency of inference provider calls in seconds",
            buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 30.0, 60.0),
            registry=self.registry,
        )

        # 5. Inference outcomes (ok, timeout, rate_limited, error)
        self.inference_calls_total = Counter(
            "econlens_inference_calls_total",
            "Inference provider calls by outcome",
            labelnames=["outcome"],
            registry=self.registry,
        )

        # 6. Spend in the current budget month
        self.monthly_cost_usd = Gauge(
            "econlens_monthly_cost_usd",
            "Cumulative inference cost in the current UTC month",
            registry=self.registry,
        )

        # 7. Completed insight requests
        self.insights_completed_total = Counter(
            "econlens_insights_completed_total",
            "Insight requests completed by source mode",
            labelnames=["source_mode"],
            registry=self.registry,
        )

    def record_cache_lookup(self, namespace: str, outcome: str) -> None:
        self.cache_lookups_total.labels(namespace=namespace, outcome=outcome).inc()

    def record_rejection(self, issue: str) -> None:
        self.validation_rejections_total.labels(issue=issue).inc()

    def record_fallback(self, reason: str, source_mode: str) -> None:
        self.fallbacks_total.labels(reason=reason, source_mode=source_mode).inc()

    def record_inference(self, outcome: str, seconds: float) -> None:
        self.inference_calls_total.labels(outcome=outcome).inc()
        self.inference_latency_seconds.observe(seconds)

    def set_monthly_cost(self, usd: float) -> None:
        self.monthly_cost_usd.set(usd)

    def record_completed(self, source_mode: str) -> None:
        self.insights_completed_total.labels(source_mode=source_mode).inc()

    def sample(self, name: str, labels: Optional[dict] = None) -> float:
        """Current value of a sample, 0.0 when it was never recorded."""
        value = self.registry.get_sample_value(name, labels or {})
        return float(value) if value is not None else 0.0
