"""Prometheus counters for the entitlement engine."""

from __future__ import annotations

from django.conf import settings
from prometheus_client import Counter


def _build_counter(name: str, documentation: str, labelnames: list[str]) -> Counter:
    namespace = getattr(settings, "ENTITLEMENTS_METRICS_NAMESPACE", "entitlements")
    return Counter(f"{namespace}_{name}", documentation, labelnames=labelnames)


_GRANT_COUNTER = _build_counter(
    "grants_recorded_total",
    "Grant ledger writes by route and outcome (created, existing, refunded, refused).",
    ["route", "outcome"],
)

_ACCESS_COUNTER = _build_counter(
    "access_decisions_total",
    "Access decisions returned by the resolver.",
    ["route", "outcome"],
)

_SIDE_EFFECT_FAILURE_COUNTER = _build_counter(
    "side_effect_failures_total",
    "Fire-and-forget side effects that failed to enqueue or run.",
    ["kind"],
)

_EVENT_COUNTER = _build_counter(
    "events_processed_total",
    "Collaborator events processed by the billing event intake.",
    ["event_type", "status"],
)


def record_grant(route: str, outcome: str) -> None:
    _GRANT_COUNTER.labels(route=route, outcome=outcome).inc()


def record_access_decision(route: str | None, outcome: str) -> None:
    _ACCESS_COUNTER.labels(route=route or "none", outcome=outcome).inc()


def record_side_effect_failure(kind: str) -> None:
    _SIDE_EFFECT_FAILURE_COUNTER.labels(kind=kind).inc()


def record_event_processed(event_type: str, status: str) -> None:
    _EVENT_COUNTER.labels(event_type=event_type or "unknown", status=status).inc()


__all__ = [
    "record_access_decision",
    "record_event_processed",
    "record_grant",
    "record_side_effect_failure",
]
