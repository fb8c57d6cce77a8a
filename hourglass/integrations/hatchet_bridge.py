"""Hatchet bridge: run activities as Hatchet tasks and report their outcome.

Workers register one task per activity. When a handler returns the RUNNING
record is moved to COMPLETED; when it raises, to FAILED with the error text.
The outcome is recorded only against the claim named by the payload's
``run_token``, so a run whose record was reclaimed and claimed again cannot
close the newer run.
The scheduling tick itself can be registered as a cron task.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from hourglass.integrations.hatchet import validate_cron
from hourglass.records.models import (
    DispatchMode,
    ExecutionStatus,
    IllegalTransitionError,
    StoreUnavailableError,
)
from hourglass.records.store import ExecutionRecordStore
from hourglass.scheduling.policies import ActivityPolicyTable
from hourglass.scheduling.priority import PriorityTierAssigner

if TYPE_CHECKING:
    from hourglass.scheduling.fleet import FleetScheduler

logger = logging.getLogger(__name__)

ActivityHandler = Callable[[str, DispatchMode, dict[str, Any]], Awaitable[dict[str, Any] | None]]


class HatchetActivityBridge:
    """Register activity handlers and the scheduling tick with a Hatchet client."""

    def __init__(
        self,
        hatchet_client: Any,
        store: ExecutionRecordStore,
        *,
        policies: ActivityPolicyTable | None = None,
        assigner: PriorityTierAssigner | None = None,
        retries: int = 0,
        max_concurrency: int = 10,
    ) -> None:
        if not isinstance(retries, int) or retries < 0:
            raise ValueError("retries must be a non-negative integer")
        if not isinstance(max_concurrency, int) or max_concurrency < 1:
            raise ValueError("max_concurrency must be a positive integer")
        self.hatchet = hatchet_client
        self.store = store
        self.policies = policies or ActivityPolicyTable()
        self.assigner = assigner or PriorityTierAssigner()
        self.retries = retries
        self._lock = asyncio.Semaphore(max_concurrency)
        self._handlers: dict[str, Callable[..., Any]] = {}
        self._now_cb: Callable[[], datetime] | None = None  # for tests

    def _now(self) -> datetime:
        return self._now_cb() if self._now_cb is not None else datetime.now(timezone.utc)

    @staticmethod
    def _normalize_input(input_payload: Any) -> dict[str, Any]:
        if input_payload is None:
            return {}
        if hasattr(input_payload, "model_dump"):
            input_payload = input_payload.model_dump()
        if not isinstance(input_payload, dict):
            raise ValueError("Hatchet input must be a dictionary")
        return dict(input_payload)

    async def run_activity(
        self,
        activity_key: str,
        handler: ActivityHandler,
        input_payload: Any,
    ) -> dict[str, Any]:
        """Run ``handler`` for a dispatched payload and record its terminal status."""
        payload = self._normalize_input(input_payload)
        site_id = str(payload.get("site_id") or "").strip()
        if not site_id:
            raise ValueError("Hatchet input requires site_id")
        mode = DispatchMode(payload.get("mode") or DispatchMode.NORMAL.value)
        run_token = payload.get("run_token") or None
        async with self._lock:
            try:
                result = await handler(site_id, mode, payload)
            except Exception as exc:
                await self._report(
                    activity_key, site_id, ExecutionStatus.FAILED, str(exc) or type(exc).__name__, run_token
                )
                raise
        await self._report(activity_key, site_id, ExecutionStatus.COMPLETED, None, run_token)
        return {"activity_key": activity_key, "site_id": site_id, "result": result or {}}

    async def _report(
        self,
        activity_key: str,
        site_id: str,
        status: ExecutionStatus,
        error_message: str | None,
        run_token: str | None = None,
    ) -> None:
        try:
            await self.store.finish(
                activity_key,
                site_id,
                status,
                now=self._now(),
                error_message=error_message,
                run_token=run_token,
            )
        except IllegalTransitionError as exc:
            # Reclaimed while in flight, or claimed again by a newer run.
            logger.warning("completion_ignored activity=%s site_id=%s reason=%s", activity_key, site_id, exc)
        except StoreUnavailableError as exc:
            logger.warning("completion_unrecorded activity=%s site_id=%s error=%s", activity_key, site_id, exc)

    def register_activity(self, activity_key: str, handler: ActivityHandler) -> Callable[..., Any]:
        """Register ``handler`` as the Hatchet task for ``activity_key``."""
        if activity_key in self._handlers:
            return self._handlers[activity_key]
        policy = self.policies.get(activity_key)
        budget = self.assigner.budget(self.assigner.assign(activity_key, policy.priority))
        decorator = self.hatchet.task(
            name=policy.runtime_task,
            retries=self.retries,
            timeout=budget.max_duration,
            priority=budget.runtime_priority,
        )

        async def _handler(input: Any = None, ctx: Any = None) -> dict[str, Any]:  # noqa: A002
            del ctx
            return await self.run_activity(activity_key, handler, input)

        registered = decorator(_handler)
        self._handlers[activity_key] = registered
        return registered

    def register_tick(
        self,
        scheduler: FleetScheduler,
        cron: str,
        *,
        task_name: str = "hourglass_tick",
    ) -> Callable[..., Any]:
        """Register the scheduling tick as a Hatchet cron task."""
        validate_cron(cron)
        decorator = self.hatchet.task(name=task_name, cron=cron, retries=0)

        async def _tick(input: Any = None, ctx: Any = None) -> dict[str, Any]:  # noqa: A002
            del input, ctx
            report = await scheduler.run_tick()
            return {"tick_at": report.tick_at.isoformat(), **report.summary()}

        return decorator(_tick)
