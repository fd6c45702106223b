"""Prometheus metrics helpers."""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

REGISTRY = CollectorRegistry()

INVOCATIONS_TOTAL = Counter(
    "fn_invocations_total",
    "Number of handler invocations by outcome",
    labelnames=("outcome",),
    registry=REGISTRY,
)

INVOCATION_LATENCY = Histogram(
    "fn_invocation_latency_seconds",
    "Latency of handler invocations",
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
    registry=REGISTRY,
)

STATIC_REJECTIONS_TOTAL = Counter(
    "fn_static_rejections_total",
    "Number of static-resource requests answered with 404",
    registry=REGISTRY,
)


def observe_invocation(*, outcome: str, latency_s: float) -> None:
    INVOCATIONS_TOTAL.labels(outcome=outcome).inc()
    INVOCATION_LATENCY.observe(latency_s)


def observe_static_rejection() -> None:
    STATIC_REJECTIONS_TOTAL.inc()


def render_metrics() -> tuple[bytes, str]:
    payload = generate_latest(REGISTRY)
    return payload, CONTENT_TYPE_LATEST
