"""Unit tests for scheduler metrics and logging."""

from __future__ import annotations

import logging

import pytest

from hourglass.scheduling.observability import SchedulerLogger, SchedulerMetrics


def test_metrics_use_isolated_registry() -> None:
    first = SchedulerMetrics()
    second = SchedulerMetrics()
    first.record_decision("sync_emails", "execute_now")
    first.record_dispatch("sync_emails", "dispatched")
    first.record_reclaim("sync_emails")
    first.record_site_failure()
    first.record_tick(-1.0)

    assert first.decision_counts == {("sync_emails", "execute_now"): 1}
    assert first.reclaimed_counts == {"sync_emails": 1}
    assert first.tick_durations == [0.0]
    assert second.decision_counts == {}

    value = first.registry.get_sample_value(
        "hourglass_dispatch_total", {"activity": "sync_emails", "outcome": "dispatched"}
    )
    assert value == 1.0
    assert first.registry.get_sample_value("hourglass_site_failures_total") == 1.0
    assert second.registry.get_sample_value("hourglass_site_failures_total") == 0.0


def test_logger_emits_key_value_messages(caplog: pytest.LogCaptureFixture) -> None:
    log = SchedulerLogger()
    with caplog.at_level(logging.DEBUG, logger="hourglass.scheduler"):
        log.log_tick_start("2026-03-10T12:00:00+00:00", 3)
        log.log_store_unavailable("sync_emails", "s1", "claim", RuntimeError("down"))
        log.log_dispatch_rejected("sync_emails", "s1", RuntimeError("nope"))
    messages = [r.getMessage() for r in caplog.records]
    assert "tick_start tick_at=2026-03-10T12:00:00+00:00 sites=3" in messages
    assert any(m.startswith("store_unavailable activity=sync_emails") for m in messages)
    assert any(r.levelno == logging.ERROR for r in caplog.records)
