"""Execution dispatch: hand runnable work to the durable runtime.

Dispatch is a request/acknowledge handoff. Once acknowledged the run belongs
to the runtime; there is no cancellation path.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from hourglass.integrations.hatchet import HatchetClient
from hourglass.records.models import DispatchMode
from hourglass.scheduling.priority import DEFAULT_TIER_BUDGETS, PriorityTier, TierBudget

logger = logging.getLogger(__name__)


class DispatchRejectedError(Exception):
    """Raised when the runtime does not accept a dispatch request."""

    def __init__(self, request: DispatchRequest, message: str) -> None:
        self.request = request
        super().__init__(f"dispatch rejected for {request.activity_key}/{request.site_id}: {message}")


@dataclass(frozen=True)
class DispatchRequest:
    """One unit of work for the runtime."""

    activity_key: str
    site_id: str
    priority_tier: PriorityTier
    mode: DispatchMode = DispatchMode.NORMAL
    task_name: str | None = None
    run_token: str | None = None

    @property
    def runtime_task(self) -> str:
        return self.task_name or self.activity_key

    def payload(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "activity_key": self.activity_key,
            "site_id": self.site_id,
            "mode": self.mode.value,
            "priority_tier": self.priority_tier.value,
        }
        if self.run_token is not None:
            data["run_token"] = self.run_token
        return data


@dataclass(frozen=True)
class DispatchAck:
    """Runtime acknowledgement of a dispatch request."""

    run_id: str | None = None


class Dispatcher(ABC):
    """Sink for runnable work."""

    @abstractmethod
    async def dispatch(self, request: DispatchRequest) -> DispatchAck:
        """Hand ``request`` to the runtime or raise :class:`DispatchRejectedError`."""


class RecordingDispatcher(Dispatcher):
    """Keeps requests in memory; used for dry runs and tests."""

    def __init__(self, *, reject: set[tuple[str, str]] | None = None) -> None:
        self.requests: list[DispatchRequest] = []
        self._reject = set(reject or ())

    async def dispatch(self, request: DispatchRequest) -> DispatchAck:
        if (request.activity_key, request.site_id) in self._reject:
            raise DispatchRejectedError(request, "rejected by recording dispatcher")
        self.requests.append(request)
        return DispatchAck(run_id=f"dry-run-{len(self.requests)}")


class HatchetDispatcher(Dispatcher):
    """Triggers the activity's Hatchet task with the tier's runtime priority."""

    def __init__(
        self,
        client: HatchetClient,
        *,
        budgets: Mapping[PriorityTier, TierBudget] | None = None,
    ) -> None:
        self._client = client
        self._budgets = {**DEFAULT_TIER_BUDGETS, **dict(budgets or {})}

    async def dispatch(self, request: DispatchRequest) -> DispatchAck:
        budget = self._budgets[request.priority_tier]
        metadata = {
            "site_id": request.site_id,
            "priority_tier": request.priority_tier.value,
            "task_queue": budget.task_queue,
            "mode": request.mode.value,
        }
        try:
            run_id = await self._client.trigger_task(
                request.runtime_task,
                request.payload(),
                priority=budget.runtime_priority,
                additional_metadata=metadata,
            )
        except Exception as exc:
            raise DispatchRejectedError(request, str(exc)) from exc
        logger.info(
            "dispatch_accepted activity=%s site_id=%s tier=%s run_id=%s",
            request.activity_key,
            request.site_id,
            request.priority_tier.value,
            run_id,
        )
        return DispatchAck(run_id=run_id or None)
