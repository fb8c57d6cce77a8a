"""Scheduler metrics and event logging."""

from __future__ import annotations

import logging
from typing import Any

from prometheus_client import CollectorRegistry, Counter, Histogram

logger = logging.getLogger("hourglass.scheduler")


class SchedulerMetrics:
    """Prometheus collectors plus in-memory counters mirrored for reports."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()
        self.decision_counts: dict[tuple[str, str], int] = {}
        self.dispatch_counts: dict[tuple[str, str], int] = {}
        self.reclaimed_counts: dict[str, int] = {}
        self.site_failures = 0
        self.tick_durations: list[float] = []

        self.decisions_total = Counter(
            "hourglass_decisions_total",
            "Timing decisions by activity and kind",
            ["activity", "kind"],
            registry=self.registry,
        )
        self.dispatch_total = Counter(
            "hourglass_dispatch_total",
            "Dispatch attempts by activity and outcome",
            ["activity", "outcome"],
            registry=self.registry,
        )
        self.reclaimed_total = Counter(
            "hourglass_reclaimed_total",
            "Stuck RUNNING records reclaimed",
            ["activity"],
            registry=self.registry,
        )
        self.site_failures_total = Counter(
            "hourglass_site_failures_total",
            "Sites whose evaluation failed during a tick",
            registry=self.registry,
        )
        self.tick_duration_seconds = Histogram(
            "hourglass_tick_duration_seconds",
            "Duration of one scheduling tick",
            registry=self.registry,
        )

    def record_decision(self, activity: str, kind: str) -> None:
        key = (activity, kind)
        self.decision_counts[key] = self.decision_counts.get(key, 0) + 1
        self.decisions_total.labels(activity, kind).inc()

    def record_dispatch(self, activity: str, outcome: str) -> None:
        key = (activity, outcome)
        self.dispatch_counts[key] = self.dispatch_counts.get(key, 0) + 1
        self.dispatch_total.labels(activity, outcome).inc()

    def record_reclaim(self, activity: str) -> None:
        self.reclaimed_counts[activity] = self.reclaimed_counts.get(activity, 0) + 1
        self.reclaimed_total.labels(activity).inc()

    def record_site_failure(self) -> None:
        self.site_failures += 1
        self.site_failures_total.inc()

    def record_tick(self, duration_seconds: float) -> None:
        safe = max(0.0, float(duration_seconds))
        self.tick_durations.append(safe)
        self.tick_duration_seconds.observe(safe)


class SchedulerLogger:
    """Structured-style logging helper based on stdlib logging."""

    def log_tick_start(self, tick_at: str, sites: int) -> None:
        logger.info("tick_start tick_at=%s sites=%d", tick_at, sites)

    def log_tick_complete(self, tick_at: str, summary: dict[str, Any], duration: float) -> None:
        logger.info(
            "tick_complete tick_at=%s summary=%s duration_seconds=%.3f",
            tick_at,
            summary,
            duration,
        )

    def log_site_failed(self, site_id: str, error: BaseException) -> None:
        logger.error("site_evaluation_failed site_id=%s error=%s", site_id, error, exc_info=error)

    def log_decision(self, activity: str, site_id: str, decision: dict[str, Any]) -> None:
        logger.debug("decision activity=%s site_id=%s decision=%s", activity, site_id, decision)

    def log_store_unavailable(self, activity: str, site_id: str, operation: str, error: BaseException) -> None:
        logger.warning(
            "store_unavailable activity=%s site_id=%s operation=%s error=%s",
            activity,
            site_id,
            operation,
            error,
        )

    def log_dispatch_rejected(self, activity: str, site_id: str, error: BaseException) -> None:
        logger.error("dispatch_rejected activity=%s site_id=%s error=%s", activity, site_id, error)

    def log_reclaimed(self, activity: str, site_id: str, reason: str | None) -> None:
        logger.warning("record_reclaimed activity=%s site_id=%s reason=%s", activity, site_id, reason)
