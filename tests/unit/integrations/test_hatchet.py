"""Unit tests for Hatchet integration (config and client, no server)."""

from __future__ import annotations

from datetime import timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from hourglass.integrations import hatchet as hatchet_module
from hourglass.integrations.hatchet import HatchetClient, HatchetConfig, validate_cron


@pytest.fixture(autouse=True)
def _no_hatchet_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("HATCHET_SERVER_URL", "HATCHET_GRPC_HOST_PORT", "HATCHET_API_TOKEN"):
        monkeypatch.delenv(name, raising=False)


def test_hatchet_config_defaults() -> None:
    config = HatchetConfig()
    assert config.server_url == "http://localhost:7077"
    assert config.namespace == "hourglass"
    assert config.max_concurrent_tasks == 10
    assert config.api_token is None


def test_hatchet_config_server_url_validation() -> None:
    with pytest.raises(ValueError, match="server_url"):
        HatchetConfig(server_url="not-a-url")


def test_hatchet_config_server_url_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HATCHET_SERVER_URL", "https://hatchet.example.com/")
    assert HatchetConfig().server_url == "https://hatchet.example.com"


def test_from_settings_blank_values_take_defaults() -> None:
    config = HatchetConfig.from_settings(
        {"server_url": "", "api_token": "", "worker_name": "", "namespace": "fleet", "max_concurrent_tasks": 4}
    )
    assert config.server_url == "http://localhost:7077"
    assert config.api_token is None
    assert config.worker_name is None
    assert config.namespace == "fleet"
    assert config.max_concurrent_tasks == 4


def test_token_falls_back_to_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HATCHET_API_TOKEN", "secret")
    assert HatchetConfig.from_settings({"api_token": ""}).api_token == "secret"
    assert HatchetConfig(api_token="explicit").api_token == "explicit"


def test_grpc_target() -> None:
    assert HatchetConfig(server_url="https://hatchet.example.com/api").grpc_target == "hatchet.example.com:7077"
    assert HatchetConfig(server_url="http://localhost:8080").grpc_target == "localhost:8080"
    assert HatchetConfig(grpc_host_port="grpc.internal:443").grpc_target == "grpc.internal:443"


def test_validate_cron() -> None:
    validate_cron("*/15 * * * *")
    with pytest.raises(ValueError):
        validate_cron("")
    with pytest.raises(ValueError):
        validate_cron("every minute")


def test_connect_without_token_raises() -> None:
    with pytest.raises(ValueError, match="token"):
        HatchetClient(HatchetConfig()).connect()


def test_task_requires_connection() -> None:
    client = HatchetClient(HatchetConfig())
    with pytest.raises(RuntimeError, match="connect"):
        client.task(name="x")(lambda: None)


def _connected_client() -> tuple[HatchetClient, MagicMock]:
    client = HatchetClient(HatchetConfig(api_token="t"))
    sdk = MagicMock()
    sdk.task.side_effect = lambda **kwargs: (lambda func: SimpleNamespace(func=func, options=kwargs))
    client._hatchet = sdk
    return client, sdk


def test_task_registers_standalone_workflow() -> None:
    client, sdk = _connected_client()

    @client.task(name="sync_emails", retries=1, timeout=timedelta(minutes=5), priority=3)
    async def handler(input=None, ctx=None):  # type: ignore[no-untyped-def]  # noqa: A002
        return {}

    assert client.registered_tasks() == ["sync_emails"]
    kwargs = sdk.task.call_args.kwargs
    assert kwargs["execution_timeout"] == timedelta(minutes=5)
    assert kwargs["default_priority"] == 3
    assert kwargs["on_crons"] is None


def test_task_rejects_invalid_cron() -> None:
    client, _ = _connected_client()
    with pytest.raises(ValueError):
        client.task(name="tick", cron="bad cron")(lambda: None)


@pytest.mark.asyncio
async def test_trigger_task_not_connected() -> None:
    with pytest.raises(RuntimeError):
        await HatchetClient(HatchetConfig()).trigger_task("x", {})


@pytest.mark.asyncio
async def test_trigger_registered_task_runs_no_wait(monkeypatch: pytest.MonkeyPatch) -> None:
    client, _ = _connected_client()
    standalone = MagicMock()
    standalone.aio_run_no_wait = AsyncMock(return_value=SimpleNamespace(workflow_run_id="wr-1"))
    client._workflows["sync_emails"] = standalone
    monkeypatch.setattr(hatchet_module, "_get_trigger_options", lambda: SimpleNamespace)

    run_id = await client.trigger_task("sync_emails", {"site_id": "s1"}, priority=2, additional_metadata={"k": "v"})
    assert run_id == "wr-1"
    options = standalone.aio_run_no_wait.call_args.kwargs["options"]
    assert options.priority == 2
    assert options.additional_metadata == {"k": "v"}


@pytest.mark.asyncio
async def test_trigger_unregistered_task_by_name() -> None:
    client, sdk = _connected_client()
    sdk.runs.aio_create = AsyncMock(
        return_value=SimpleNamespace(run=SimpleNamespace(metadata=SimpleNamespace(id="run-9")))
    )
    run_id = await client.trigger_task("lead_generation", {"site_id": "s1"}, priority=1)
    assert run_id == "run-9"
    assert sdk.runs.aio_create.call_args.kwargs["workflow_name"] == "lead_generation"


@pytest.mark.asyncio
async def test_trigger_propagates_errors() -> None:
    client, sdk = _connected_client()
    sdk.runs.aio_create = AsyncMock(side_effect=RuntimeError("grpc unavailable"))
    with pytest.raises(RuntimeError, match="grpc unavailable"):
        await client.trigger_task("lead_generation", {})


def test_start_worker_requires_tasks() -> None:
    client, _ = _connected_client()
    with pytest.raises(RuntimeError, match="No tasks"):
        client.start_worker()
