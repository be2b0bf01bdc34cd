"""Shared pytest fixtures for ABRP agent tests."""

from __future__ import annotations

from typing import Generator

import pytest

from abrp_agent.config import AgentSettings
from abrp_agent.dispatcher import TelemetryDispatcher
from abrp_agent.host.memory import InMemoryConfigStore, InMemoryRegistry, LogNotifier
from abrp_agent.host.scheduler import AsyncioScheduler
from abrp_agent.tests.fakes import TOKEN, FakeClock, RecordingPoster, parked_metrics


@pytest.fixture(autouse=True)
def _reset_scenario_cache() -> Generator[None, None, None]:
    """Clear the simulation scenario cache between tests."""
    from abrp_agent.host import simulation

    simulation._scenarios_cache = None
    yield
    simulation._scenarios_cache = None


@pytest.fixture()
def settings() -> AgentSettings:
    return AgentSettings(
        metrics_source="sim",
        vehicle_family="",
        calibration_speed_kph=70.0,
        api_base_url="http://test-abrp",
        api_key="test-api-key",
        dry_run=False,
    )


@pytest.fixture()
def registry() -> InMemoryRegistry:
    return InMemoryRegistry(parked_metrics())


@pytest.fixture()
def config_store() -> InMemoryConfigStore:
    return InMemoryConfigStore({"usr": {"abrp.user_token": TOKEN}})


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def scheduler() -> AsyncioScheduler:
    return AsyncioScheduler()


@pytest.fixture()
def notifier() -> LogNotifier:
    return LogNotifier()


@pytest.fixture()
def poster(
    settings: AgentSettings, config_store: InMemoryConfigStore
) -> RecordingPoster:
    return RecordingPoster(settings, config_store)


@pytest.fixture()
def dispatcher(
    settings: AgentSettings,
    registry: InMemoryRegistry,
    config_store: InMemoryConfigStore,
    notifier: LogNotifier,
    scheduler: AsyncioScheduler,
    poster: RecordingPoster,
    clock: FakeClock,
) -> TelemetryDispatcher:
    return TelemetryDispatcher(
        registry=registry,
        config_store=config_store,
        notifier=notifier,
        scheduler=scheduler,
        poster=poster,
        settings=settings,
        clock=clock,
    )
