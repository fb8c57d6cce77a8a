"""Fleet scheduler: one scheduling pass over every site and activity.

Per tick, each site's window state is evaluated once and turned into a
timing decision per activity. Runnable decisions go through the reaper, the
minimum-interval gate and an atomic RUNNING claim before they are dispatched.
A failure while handling one site never affects the others.
"""

from __future__ import annotations

import asyncio
import time as _time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from hourglass.integrations.dispatch import DispatchRequest, Dispatcher
from hourglass.records.models import (
    GLOBAL_SITE_ID,
    DispatchMode,
    ExecutionStatus,
    StoreUnavailableError,
)
from hourglass.records.reaper import ReclaimResult, StuckExecutionReaper
from hourglass.records.store import ExecutionRecordStore
from hourglass.scheduling.business_hours import evaluate_business_hours
from hourglass.scheduling.observability import SchedulerLogger, SchedulerMetrics
from hourglass.scheduling.policies import ActivityPolicy, ActivityPolicyTable, ActivityScope
from hourglass.scheduling.priority import ExpediteContext, PriorityTier, PriorityTierAssigner
from hourglass.scheduling.timing import (
    DEFAULT_FALLBACK,
    DecisionKind,
    FallbackPolicy,
    TimingDecision,
    decide_timing,
)
from hourglass.sites.directory import Site, SiteDirectory

REASON_ACTIVITY_DISABLED = "activity disabled for site"
REASON_NO_RUNNABLE_SITE = "no site within an execution window"


class DispatchOutcomeKind(str, Enum):
    """What happened to a runnable decision."""

    DISPATCHED = "dispatched"
    ALREADY_RUNNING = "already_running"
    RECENT = "recent"
    LOST_RACE = "lost_race"
    REJECTED = "rejected"


@dataclass(frozen=True)
class SiteDecision:
    """Timing decision for one (activity, site) pair in a tick."""

    activity_key: str
    site_id: str
    decision: TimingDecision
    timezone: str | None = None
    local_time: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "activity_key": self.activity_key,
            "site_id": self.site_id,
            "timezone": self.timezone,
            "local_time": self.local_time.isoformat() if self.local_time else None,
            **self.decision.to_dict(),
        }


@dataclass(frozen=True)
class DispatchOutcome:
    """Result of acting on one runnable decision."""

    activity_key: str
    site_id: str
    outcome: DispatchOutcomeKind
    priority_tier: PriorityTier | None = None
    mode: DispatchMode | None = None
    run_id: str | None = None
    detail: str | None = None
    ledger: bool = True
    reclaimed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "activity_key": self.activity_key,
            "site_id": self.site_id,
            "outcome": self.outcome.value,
            "priority_tier": self.priority_tier.value if self.priority_tier else None,
            "mode": self.mode.value if self.mode else None,
            "run_id": self.run_id,
            "detail": self.detail,
            "ledger": self.ledger,
            "reclaimed": self.reclaimed,
        }


@dataclass
class SchedulingReport:
    """Summary of one tick across the fleet."""

    tick_at: datetime
    total_sites: int = 0
    sites_with_hours: int = 0
    sites_open_today: int = 0
    decisions: list[SiteDecision] = field(default_factory=list)
    dispatch_requests: list[DispatchRequest] = field(default_factory=list)
    outcomes: list[DispatchOutcome] = field(default_factory=list)
    failed_sites: dict[str, str] = field(default_factory=dict)

    @property
    def decisions_by_kind(self) -> dict[str, int]:
        counts = {kind.value: 0 for kind in DecisionKind}
        for item in self.decisions:
            counts[item.decision.kind.value] += 1
        return counts

    @property
    def dispatched(self) -> list[DispatchOutcome]:
        return [o for o in self.outcomes if o.outcome is DispatchOutcomeKind.DISPATCHED]

    def outcomes_by_kind(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for item in self.outcomes:
            counts[item.outcome.value] = counts.get(item.outcome.value, 0) + 1
        return counts

    def summary(self) -> dict[str, Any]:
        return {
            "total_sites": self.total_sites,
            "sites_with_hours": self.sites_with_hours,
            "sites_open_today": self.sites_open_today,
            "decisions": self.decisions_by_kind,
            "outcomes": self.outcomes_by_kind(),
            "failed_sites": len(self.failed_sites),
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "tick_at": self.tick_at.isoformat(),
            **self.summary(),
            "failed_sites": dict(self.failed_sites),
            "decision_details": [d.to_dict() for d in self.decisions],
            "dispatch_details": [o.to_dict() for o in self.outcomes],
        }


@dataclass
class _SiteResult:
    decisions: list[SiteDecision] = field(default_factory=list)
    requests: list[DispatchRequest] = field(default_factory=list)
    outcomes: list[DispatchOutcome] = field(default_factory=list)
    open_today: bool = False


class FleetScheduler:
    """Runs scheduling ticks over the site directory."""

    def __init__(
        self,
        directory: SiteDirectory,
        store: ExecutionRecordStore,
        dispatcher: Dispatcher,
        *,
        policies: ActivityPolicyTable | None = None,
        assigner: PriorityTierAssigner | None = None,
        fallback: FallbackPolicy = DEFAULT_FALLBACK,
        max_concurrency: int = 10,
        escalate_retries: bool = True,
        default_timezone: str | None = None,
        metrics: SchedulerMetrics | None = None,
    ) -> None:
        self.directory = directory
        self.store = store
        self.dispatcher = dispatcher
        self.policies = policies or ActivityPolicyTable()
        self.assigner = assigner or PriorityTierAssigner()
        self.fallback = fallback
        self.max_concurrency = max(1, int(max_concurrency))
        self.escalate_retries = escalate_retries
        self.default_timezone = default_timezone
        self.metrics = metrics or SchedulerMetrics()
        self.reaper = StuckExecutionReaper(store)
        self._log = SchedulerLogger()

    def decide(self, site: Site, policy: ActivityPolicy, now: datetime) -> SiteDecision:
        """Timing decision for one site and activity, without side effects."""
        if not site.activity_enabled(policy.key):
            return SiteDecision(policy.key, site.id, TimingDecision.skip(REASON_ACTIVITY_DISABLED))
        state = evaluate_business_hours(
            site.business_hours, site.timezone, now, default_timezone=self.default_timezone
        )
        decision = decide_timing(
            state,
            has_configured_hours=site.has_business_hours,
            catch_up_hours=policy.catch_up_hours,
            fallback=self.fallback,
        )
        return SiteDecision(policy.key, site.id, decision, state.timezone, state.local_now)

    async def run_tick(self, now: datetime | None = None) -> SchedulingReport:
        """Run one scheduling pass and return its report."""
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        started = _time.monotonic()

        sites = await self.directory.list_sites()
        report = SchedulingReport(
            tick_at=now,
            total_sites=len(sites),
            sites_with_hours=sum(1 for s in sites if s.has_business_hours),
        )
        self._log.log_tick_start(now.isoformat(), len(sites))

        site_policies = self.policies.enabled(ActivityScope.SITE)
        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _guarded(site: Site) -> _SiteResult:
            # Work already handed off before a failure stays in the report.
            result = _SiteResult()
            async with semaphore:
                try:
                    await self._process_site(site, site_policies, now, result)
                except Exception as exc:
                    report.failed_sites[site.id] = str(exc) or type(exc).__name__
                    self.metrics.record_site_failure()
                    self._log.log_site_failed(site.id, exc)
            return result

        results = await asyncio.gather(*(_guarded(site) for site in sites))
        for result in results:
            report.decisions.extend(result.decisions)
            report.dispatch_requests.extend(result.requests)
            report.outcomes.extend(result.outcomes)
            if result.open_today:
                report.sites_open_today += 1

        await self._process_global(report, now)

        duration = _time.monotonic() - started
        self.metrics.record_tick(duration)
        self._log.log_tick_complete(now.isoformat(), report.summary(), duration)
        return report

    async def _process_site(
        self,
        site: Site,
        policies: list[ActivityPolicy],
        now: datetime,
        result: _SiteResult,
    ) -> None:
        if site.has_business_hours:
            state = evaluate_business_hours(
                site.business_hours, site.timezone, now, default_timezone=self.default_timezone
            )
            result.open_today = state.today_window is not None
        for policy in policies:
            item = self.decide(site, policy, now)
            result.decisions.append(item)
            await self._act(item, policy, now, result)

    async def _process_global(self, report: SchedulingReport, now: datetime) -> None:
        global_policies = self.policies.enabled(ActivityScope.GLOBAL)
        if not global_policies:
            return
        any_runnable = any(d.decision.runnable for d in report.decisions)
        result = _SiteResult()
        for policy in global_policies:
            decision = TimingDecision.execute_now() if any_runnable else TimingDecision.skip(REASON_NO_RUNNABLE_SITE)
            item = SiteDecision(policy.key, GLOBAL_SITE_ID, decision)
            result.decisions.append(item)
            await self._act(item, policy, now, result)
        report.decisions.extend(result.decisions)
        report.dispatch_requests.extend(result.requests)
        report.outcomes.extend(result.outcomes)

    async def _act(
        self,
        item: SiteDecision,
        policy: ActivityPolicy,
        now: datetime,
        result: _SiteResult,
    ) -> None:
        decision = item.decision
        self.metrics.record_decision(item.activity_key, decision.kind.value)
        self._log.log_decision(item.activity_key, item.site_id, decision.to_dict())

        if decision.kind is DecisionKind.SCHEDULE_LATER:
            await self._mark_pending(item, now)
            return
        if not decision.runnable:
            return

        outcome = await self._dispatch_runnable(item, policy, now, result)
        result.outcomes.append(outcome)
        self.metrics.record_dispatch(item.activity_key, outcome.outcome.value)

    async def _mark_pending(self, item: SiteDecision, now: datetime) -> None:
        at = item.decision.at
        try:
            await self.store.mark_pending(
                item.activity_key,
                item.site_id,
                now=now,
                next_run_at=at.astimezone(timezone.utc) if at is not None else None,
            )
        except StoreUnavailableError as exc:
            self._log.log_store_unavailable(item.activity_key, item.site_id, "mark_pending", exc)

    def _choose_tier(self, policy: ActivityPolicy, reclaim: ReclaimResult) -> PriorityTier:
        if policy.priority is not None or not self.escalate_retries or self.assigner.force_tier is not None:
            return self.assigner.assign(policy.key, policy.priority)
        previous_failed = reclaim.previous_status is ExecutionStatus.FAILED or reclaim.was_stuck
        if not previous_failed:
            return self.assigner.assign(policy.key)
        return self.assigner.expedite(
            policy.key,
            ExpediteContext(
                is_retry=True,
                previous_failed=True,
                hours_stuck=reclaim.hours_stuck or 0.0,
            ),
        )

    async def _ran_recently(self, policy: ActivityPolicy, site_id: str, now: datetime) -> bool:
        interval = policy.min_interval
        if interval is None:
            return False
        try:
            record = await self.store.get(policy.key, site_id)
        except StoreUnavailableError as exc:
            self._log.log_store_unavailable(policy.key, site_id, "get", exc)
            return False
        if record is None or record.status is not ExecutionStatus.COMPLETED or record.last_run_at is None:
            return False
        return now - record.last_run_at < interval

    async def _dispatch_runnable(
        self,
        item: SiteDecision,
        policy: ActivityPolicy,
        now: datetime,
        result: _SiteResult,
    ) -> DispatchOutcome:
        key, site_id = item.activity_key, item.site_id
        mode = DispatchMode.CATCH_UP if item.decision.kind is DecisionKind.CATCH_UP else DispatchMode.NORMAL

        reclaim = await self.reaper.validate_and_reclaim(key, site_id, policy.staleness, now=now)
        if reclaim.cleaned:
            self.metrics.record_reclaim(key)
            self._log.log_reclaimed(key, site_id, reclaim.reason)
        if not reclaim.can_proceed:
            return DispatchOutcome(key, site_id, DispatchOutcomeKind.ALREADY_RUNNING, mode=mode, detail=reclaim.reason)

        if await self._ran_recently(policy, site_id, now):
            return DispatchOutcome(key, site_id, DispatchOutcomeKind.RECENT, mode=mode, detail="within minimum interval")

        tier = self._choose_tier(policy, reclaim)

        ledger = True
        run_token: str | None = None
        try:
            claimed = await self.store.claim(key, site_id, now=now, mode=mode)
        except StoreUnavailableError as exc:
            self._log.log_store_unavailable(key, site_id, "claim", exc)
            ledger = False
        else:
            if claimed is None:
                return DispatchOutcome(key, site_id, DispatchOutcomeKind.LOST_RACE, tier, mode, detail="already running")
            run_token = claimed.run_token

        request = DispatchRequest(key, site_id, tier, mode, policy.task_name, run_token=run_token)
        try:
            ack = await self.dispatcher.dispatch(request)
        except Exception as exc:
            self._log.log_dispatch_rejected(key, site_id, exc)
            if ledger:
                await self._release_rejected(key, site_id, now, exc, run_token)
            return DispatchOutcome(
                key,
                site_id,
                DispatchOutcomeKind.REJECTED,
                tier,
                mode,
                detail=str(exc),
                ledger=ledger,
                reclaimed=reclaim.cleaned,
            )

        result.requests.append(request)
        if ledger and ack.run_id:
            try:
                await self.store.attach_run_id(key, site_id, ack.run_id, now=now)
            except StoreUnavailableError as exc:
                self._log.log_store_unavailable(key, site_id, "attach_run_id", exc)
        return DispatchOutcome(
            key,
            site_id,
            DispatchOutcomeKind.DISPATCHED,
            tier,
            mode,
            run_id=ack.run_id,
            ledger=ledger,
            reclaimed=reclaim.cleaned,
        )

    async def _release_rejected(
        self,
        key: str,
        site_id: str,
        now: datetime,
        error: Exception,
        run_token: str | None,
    ) -> None:
        try:
            await self.store.finish(
                key,
                site_id,
                ExecutionStatus.FAILED,
                now=now,
                error_message=f"dispatch rejected: {error}",
                run_token=run_token,
            )
        except StoreUnavailableError as exc:
            self._log.log_store_unavailable(key, site_id, "finish", exc)
