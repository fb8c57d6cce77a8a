"""Runtime integrations: Hatchet client and execution dispatch.

The completion bridge lives in :mod:`hourglass.integrations.hatchet_bridge`.
"""

from hourglass.integrations.dispatch import (
    DispatchAck,
    Dispatcher,
    DispatchRejectedError,
    DispatchRequest,
    HatchetDispatcher,
    RecordingDispatcher,
)
from hourglass.integrations.hatchet import HatchetClient, HatchetConfig

__all__ = [
    "DispatchAck",
    "DispatchRejectedError",
    "DispatchRequest",
    "Dispatcher",
    "HatchetClient",
    "HatchetConfig",
    "HatchetDispatcher",
    "RecordingDispatcher",
]
