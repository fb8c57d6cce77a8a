"""Fleet health check over the execution record ledger."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from hourglass.records.models import ExecutionRecord, ExecutionStatus
from hourglass.records.store import ExecutionRecordStore
from hourglass.scheduling.policies import ActivityPolicyTable

LONG_RUNNING_AFTER = timedelta(hours=2)
OVERDUE_AFTER = timedelta(hours=24)


@dataclass
class HealthReport:
    checked_at: datetime
    total: int = 0
    stuck: list[ExecutionRecord] = field(default_factory=list)
    long_running: list[ExecutionRecord] = field(default_factory=list)
    failed: list[ExecutionRecord] = field(default_factory=list)
    overdue: list[ExecutionRecord] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    @property
    def issues(self) -> int:
        return len(self.stuck) + len(self.long_running) + len(self.failed) + len(self.overdue)

    @property
    def needs_attention(self) -> bool:
        return bool(self.failed) or len(self.stuck) > 3 or self.issues > 5

    @property
    def status(self) -> str:
        if self.needs_attention:
            return "unhealthy"
        if self.issues:
            return "degraded"
        return "healthy"

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "checked_at": self.checked_at.isoformat(),
            "total": self.total,
            "stuck": len(self.stuck),
            "long_running": len(self.long_running),
            "failed": len(self.failed),
            "overdue": len(self.overdue),
            "needs_attention": self.needs_attention,
            "recommendations": list(self.recommendations),
        }


class FleetHealthCheck:
    """Classifies ledger records into stuck, long-running, failed and overdue."""

    def __init__(self, store: ExecutionRecordStore, policies: ActivityPolicyTable | None = None) -> None:
        self._store = store
        self._policies = policies or ActivityPolicyTable()

    async def check(self, now: datetime) -> HealthReport:
        records = await self._store.list_records()
        report = HealthReport(checked_at=now, total=len(records))
        for record in records:
            if record.status is ExecutionStatus.RUNNING:
                age = now - record.updated_at
                if age > self._policies.get(record.activity_key).staleness:
                    report.stuck.append(record)
                elif age > LONG_RUNNING_AFTER:
                    report.long_running.append(record)
                continue
            if record.status is ExecutionStatus.FAILED:
                report.failed.append(record)
            if record.last_run_at is not None and now - record.last_run_at > OVERDUE_AFTER:
                report.overdue.append(record)

        if report.stuck:
            report.recommendations.append(
                f"{len(report.stuck)} run(s) exceeded their staleness threshold; run 'hourglass records reap'."
            )
        if report.long_running:
            report.recommendations.append(
                f"{len(report.long_running)} run(s) have been RUNNING for more than 2h; check worker capacity."
            )
        if report.failed:
            report.recommendations.append(
                f"{len(report.failed)} run(s) failed on their last attempt; inspect error messages."
            )
        if report.overdue:
            report.recommendations.append(
                f"{len(report.overdue)} activity/site pair(s) have not run for more than 24h."
            )
        return report
