"""
Hatchet integration: durable execution of dispatched activities and the
scheduling tick's cron trigger.

All Hatchet SDK usage is isolated in this module. The Hourglass API is
HatchetConfig, HatchetClient and its task() decorator.
"""

import logging
import os
import signal
from collections.abc import Callable
from datetime import timedelta
from typing import Any

from croniter import croniter  # type: ignore[import-untyped]
from pydantic import BaseModel, field_validator, model_validator

logger = logging.getLogger(__name__)

DEFAULT_GRPC_PORT = 7077

# Config field -> environment variable consulted when the field is blank.
_ENV_FALLBACKS = {
    "server_url": "HATCHET_SERVER_URL",
    "grpc_host_port": "HATCHET_GRPC_HOST_PORT",
    "api_token": "HATCHET_API_TOKEN",
}


# Lazy import to avoid loading hatchet_sdk when not using Hatchet
def _get_hatchet():
    from hatchet_sdk import Hatchet
    from hatchet_sdk.config import ClientConfig, ClientTLSConfig

    return Hatchet, ClientConfig, ClientTLSConfig


def _get_trigger_options():
    from hatchet_sdk import TriggerWorkflowOptions

    return TriggerWorkflowOptions


class HatchetConfig(BaseModel):
    """Connection and worker settings for the activity runtime."""

    server_url: str = f"http://localhost:{DEFAULT_GRPC_PORT}"
    api_token: str | None = None
    grpc_host_port: str | None = None
    grpc_tls_strategy: str = "tls"
    namespace: str = "hourglass"
    max_concurrent_tasks: int = 10
    worker_name: str | None = None

    @model_validator(mode="before")
    @classmethod
    def _fill_from_env(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        filled = dict(data)
        for field_name, env_name in _ENV_FALLBACKS.items():
            if not filled.get(field_name):
                value = os.environ.get(env_name, "").strip()
                if value:
                    filled[field_name] = value
        return filled

    @field_validator("server_url")
    @classmethod
    def _http_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("server_url must start with http:// or https://")
        return v.rstrip("/")

    @field_validator("grpc_tls_strategy")
    @classmethod
    def _tls_strategy(cls, v: str) -> str:
        value = v.strip().lower()
        if not value:
            raise ValueError("grpc_tls_strategy cannot be empty")
        return value

    @field_validator("grpc_host_port", "api_token", "worker_name")
    @classmethod
    def _blank_is_unset(cls, v: str | None) -> str | None:
        return (v or "").strip() or None

    @classmethod
    def from_settings(cls, section: dict[str, Any]) -> "HatchetConfig":
        """Build from the ``hatchet`` config section; blank values take their defaults."""
        return cls.model_validate({k: v for k, v in section.items() if v not in (None, "")})

    @property
    def grpc_target(self) -> str:
        """``host:port`` for the gRPC channel, derived from ``server_url`` unless set."""
        if self.grpc_host_port:
            return self.grpc_host_port
        host = self.server_url.split("://", 1)[-1].split("/", 1)[0]
        return host if ":" in host else f"{host}:{DEFAULT_GRPC_PORT}"


def validate_cron(cron: str) -> None:
    """Raise ValueError unless ``cron`` is a valid cron expression."""
    if not cron or not cron.strip():
        raise ValueError("cron expression cannot be empty")
    if not croniter.is_valid(cron.strip()):
        raise ValueError(f"invalid cron expression: {cron!r}")


class HatchetClient:
    """Hourglass wrapper around the Hatchet SDK."""

    def __init__(self, config: HatchetConfig) -> None:
        self.config = config
        self._hatchet: Any = None
        self._workflows: dict[str, Any] = {}

    @property
    def connected(self) -> bool:
        return self._hatchet is not None

    def connect(self) -> None:
        """Open the SDK client; raises ValueError without a token, ConnectionError on failure."""
        if not self.config.api_token:
            raise ValueError("Hatchet API token required: set hatchet.api_token or HATCHET_API_TOKEN")
        hatchet_cls, client_config_cls, client_tls_config_cls = _get_hatchet()
        try:
            self._hatchet = hatchet_cls(
                config=client_config_cls(
                    host_port=self.config.grpc_target,
                    server_url=self.config.server_url,
                    token=self.config.api_token,
                    namespace=self.config.namespace,
                    tls_config=client_tls_config_cls(strategy=self.config.grpc_tls_strategy),
                )
            )
        except Exception as e:
            logger.exception("hatchet_connect_failed server_url=%s", self.config.server_url)
            raise ConnectionError(f"Failed to connect to Hatchet Server: {e}") from e
        logger.info("hatchet_connected server_url=%s namespace=%s", self.config.server_url, self.config.namespace)

    def disconnect(self) -> None:
        """Drop the SDK client; registered tasks are kept for the next connect()."""
        if self._hatchet is not None:
            self._hatchet = None
            logger.info("hatchet_disconnected")

    def task(
        self,
        name: str | None = None,
        cron: str | None = None,
        retries: int = 0,
        timeout: timedelta | None = None,
        priority: int = 2,
    ) -> Callable:
        """Decorator to register a function as a Hatchet task (standalone workflow)."""

        def decorator(func: Callable) -> Callable:
            if self._hatchet is None:
                raise RuntimeError("Must call connect() before registering tasks")
            if cron is not None:
                validate_cron(cron)
            task_name = str(name or getattr(func, "__name__", "anonymous")).strip() or "anonymous"
            standalone = self._hatchet.task(
                name=task_name,
                on_crons=[cron] if cron else None,
                retries=retries,
                execution_timeout=timeout or timedelta(minutes=15),
                default_priority=priority,
            )(func)
            self._workflows[task_name] = standalone
            return func

        return decorator

    def registered_tasks(self) -> list[str]:
        return sorted(self._workflows)

    async def trigger_task(
        self,
        task_name: str,
        input_data: dict[str, Any],
        *,
        priority: int | None = None,
        additional_metadata: dict[str, Any] | None = None,
    ) -> str:
        """Enqueue a run of ``task_name`` without waiting for it. Returns the run id."""
        if self._hatchet is None:
            raise RuntimeError("Not connected to Hatchet")
        metadata = additional_metadata or {}
        try:
            standalone = self._workflows.get(task_name)
            if standalone is not None:
                options_cls = _get_trigger_options()
                ref = await standalone.aio_run_no_wait(
                    input_data,
                    options=options_cls(priority=priority, additional_metadata=metadata),
                )
                return str(getattr(ref, "workflow_run_id", "") or "")
            # Task registered by another worker: trigger by name through the REST API.
            run = await self._hatchet.runs.aio_create(
                workflow_name=task_name,
                input=input_data,
                additional_metadata=metadata,
                priority=priority,
            )
            meta = getattr(run, "run", run)
            meta = getattr(meta, "metadata", meta)
            return str(getattr(meta, "id", "") or "")
        except Exception:
            logger.exception("Failed to trigger task %s", task_name)
            raise

    def start_worker(self) -> None:
        """Start the Hatchet worker (blocking)."""
        if self._hatchet is None:
            raise RuntimeError("Must call connect() before start_worker()")
        if not hasattr(signal, "SIGQUIT"):
            # Hatchet SDK expects SIGQUIT on POSIX; map to SIGTERM for Windows.
            signal.SIGQUIT = signal.SIGTERM  # type: ignore[attr-defined,misc]
        worker_name = self.config.worker_name or f"hourglass-worker-{os.getpid()}"
        workflows = list(self._workflows.values())
        if not workflows:
            raise RuntimeError("No tasks registered; register at least one with @client.task()")
        worker = self._hatchet.worker(
            name=worker_name,
            slots=self.config.max_concurrent_tasks,
            workflows=workflows,
        )
        worker.start()
