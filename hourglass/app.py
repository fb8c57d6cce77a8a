"""Hourglass application: wires configuration, store, directory and dispatcher."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncEngine

from hourglass.config import ConfigManager, HourglassConfig, register_scheduler_reload_listener
from hourglass.config import builders
from hourglass.db import create_engine, create_session_factory
from hourglass.integrations.dispatch import Dispatcher, HatchetDispatcher, RecordingDispatcher
from hourglass.integrations.hatchet import HatchetClient, HatchetConfig
from hourglass.integrations.hatchet_bridge import ActivityHandler, HatchetActivityBridge
from hourglass.records.reaper import SweepResult
from hourglass.records.store import ExecutionRecordStore
from hourglass.records.store_inmemory import InMemoryExecutionRecordStore
from hourglass.records.store_sql import SQLExecutionRecordStore
from hourglass.scheduling.fleet import FleetScheduler, SchedulingReport
from hourglass.scheduling.health import FleetHealthCheck, HealthReport
from hourglass.sites.directory import SiteDirectory, YAMLSiteDirectory

logger = logging.getLogger(__name__)


class Hourglass:
    """Hourglass application, the entry point for embedding the scheduler.

    Usage::

        from hourglass import Hourglass

        app = Hourglass.from_config_file("hourglass.yaml")
        report = await app.run_tick()

    Components not passed explicitly are built from configuration: an empty
    ``database.url`` selects the in-memory store and a disabled ``hatchet``
    section selects the recording (dry-run) dispatcher.
    """

    def __init__(
        self,
        config: HourglassConfig | None = None,
        *,
        directory: SiteDirectory | None = None,
        store: ExecutionRecordStore | None = None,
        dispatcher: Dispatcher | None = None,
    ) -> None:
        self.config = config or ConfigManager.instance().get()
        self._engine: AsyncEngine | None = None
        self._hatchet_client: HatchetClient | None = None
        self.directory = directory or YAMLSiteDirectory(self.config.sites.path)
        self.store = store or self._build_store()
        self.dispatcher = dispatcher or self._build_dispatcher()
        cfg = self.config
        self.scheduler = FleetScheduler(
            self.directory,
            self.store,
            self.dispatcher,
            policies=builders.policy_table(cfg),
            assigner=builders.tier_assigner(cfg),
            fallback=builders.fallback_policy(cfg),
            max_concurrency=cfg.scheduling.max_concurrency,
            escalate_retries=cfg.priority.escalate_retries,
            default_timezone=cfg.scheduling.default_timezone,
        )

    @classmethod
    def from_config_file(
        cls,
        config_path: str | None = None,
        overrides: dict[str, Any] | None = None,
        **components: Any,
    ) -> Hourglass:
        """Load configuration through :class:`ConfigManager` and keep the scheduler hot-reloadable."""
        manager = ConfigManager.load(config_path=config_path, overrides=overrides)
        app = cls(manager.get(), **components)
        register_scheduler_reload_listener(app.scheduler, manager)
        return app

    def _build_store(self) -> ExecutionRecordStore:
        database = self.config.database
        if not database.url:
            logger.info("Using in-memory execution record store (database.url not set)")
            return InMemoryExecutionRecordStore()
        self._engine = create_engine(
            database.url,
            pool_size=database.pool_size,
            max_overflow=database.max_overflow,
            pool_timeout=database.pool_timeout,
        )
        return SQLExecutionRecordStore(create_session_factory(self._engine), tenant_id=database.tenant_id)

    @property
    def hatchet_client(self) -> HatchetClient:
        if self._hatchet_client is None:
            section = self.config.hatchet.model_dump(exclude={"enabled"})
            client = HatchetClient(HatchetConfig.from_settings(section))
            client.connect()
            self._hatchet_client = client
        return self._hatchet_client

    def _build_dispatcher(self) -> Dispatcher:
        if not self.config.hatchet.enabled:
            logger.info("Hatchet disabled; runnable work is recorded but not executed")
            return RecordingDispatcher()
        return HatchetDispatcher(self.hatchet_client)

    async def run_tick(self, now: datetime | None = None) -> SchedulingReport:
        return await self.scheduler.run_tick(now)

    async def reap(self, now: datetime | None = None) -> SweepResult:
        """Reclaim every stale RUNNING record using per-activity thresholds."""
        return await self.scheduler.reaper.sweep(
            now=now or datetime.now(timezone.utc),
            thresholds=self.scheduler.policies.staleness_thresholds(),
        )

    async def health(self, now: datetime | None = None) -> HealthReport:
        check = FleetHealthCheck(self.store, self.scheduler.policies)
        return await check.check(now or datetime.now(timezone.utc))

    def worker(self, handlers: Mapping[str, ActivityHandler], *, with_tick: bool = True) -> HatchetActivityBridge:
        """Register activity handlers (and optionally the tick cron) as Hatchet tasks."""
        bridge = HatchetActivityBridge(
            self.hatchet_client,
            self.store,
            policies=self.scheduler.policies,
            assigner=self.scheduler.assigner,
        )
        for activity_key, handler in handlers.items():
            bridge.register_activity(activity_key, handler)
        if with_tick:
            bridge.register_tick(self.scheduler, self.config.scheduling.tick_cron)
        return bridge

    def run_worker(self, handlers: Mapping[str, ActivityHandler]) -> None:
        """Register handlers and block running the Hatchet worker."""
        self.worker(handlers)
        self.hatchet_client.start_worker()

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
