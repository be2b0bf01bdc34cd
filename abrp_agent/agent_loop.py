"""Main asyncio loop for the ABRP agent."""

from __future__ import annotations

import asyncio
import signal
import sys
import time
from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from abrp_agent.api_poster import TelemetryPoster
from abrp_agent.config import AgentSettings
from abrp_agent.dispatcher import TelemetryDispatcher
from abrp_agent.host.base import ConfigStore, MetricsRegistry, Scheduler
from abrp_agent.host.file_store import JsonFileConfigStore
from abrp_agent.host.memory import LogNotifier
from abrp_agent.host.scheduler import AsyncioScheduler

logger = structlog.get_logger(__name__)


def create_registry(
    settings: AgentSettings, scheduler: Optional[Scheduler] = None
) -> MetricsRegistry:
    """Factory: return the metrics registry for the current config."""
    if settings.is_simulation:
        from abrp_agent.host.simulation import SimulationRegistry

        return SimulationRegistry(
            scenario=settings.sim_scenario, scheduler=scheduler
        )

    raise ValueError(
        f"Unsupported metrics source '{settings.metrics_source}'. "
        "Only 'sim' is available outside the vehicle."
    )


@dataclass
class Agent:
    """All wired-up components of one agent process."""

    settings: AgentSettings
    registry: MetricsRegistry
    config_store: ConfigStore
    notifier: LogNotifier
    scheduler: AsyncioScheduler
    poster: TelemetryPoster
    dispatcher: TelemetryDispatcher


def build_agent(
    settings: AgentSettings,
    *,
    registry: Optional[MetricsRegistry] = None,
    config_store: Optional[ConfigStore] = None,
    clock: Callable[[], float] = time.time,
) -> Agent:
    """Wire the dispatcher to its host facilities."""
    scheduler = AsyncioScheduler(
        tickers={
            settings.high_rate_event: settings.high_rate_period_seconds,
            settings.low_rate_event: settings.low_rate_period_seconds,
        }
    )
    if registry is None:
        registry = create_registry(settings, scheduler)
    if config_store is None:
        config_store = JsonFileConfigStore(settings.config_store_path)
    notifier = LogNotifier()
    poster = TelemetryPoster(settings, config_store)
    dispatcher = TelemetryDispatcher(
        registry=registry,
        config_store=config_store,
        notifier=notifier,
        scheduler=scheduler,
        poster=poster,
        settings=settings,
        clock=clock,
    )
    return Agent(
        settings=settings,
        registry=registry,
        config_store=config_store,
        notifier=notifier,
        scheduler=scheduler,
        poster=poster,
        dispatcher=dispatcher,
    )


async def run_agent(
    settings: AgentSettings,
    *,
    once: bool = False,
    agent: Optional[Agent] = None,
) -> bool:
    """Run the ABRP agent until SIGINT/SIGTERM.

    Parameters
    ----------
    settings:
        Fully-resolved agent configuration.
    once:
        If ``True``, run a single low-rate evaluation then exit.

    Returns ``False`` if the agent refused to start (no user token).
    """
    agent = agent or build_agent(settings)
    shutdown_event = asyncio.Event()

    # --- signal handling ---------------------------------------------------
    def _request_shutdown() -> None:
        logger.info("shutdown_requested")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    if sys.platform != "win32" and not once:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, _request_shutdown)
    # On Windows, SIGINT is handled by the default KeyboardInterrupt.

    await agent.poster.start()
    try:
        if not agent.dispatcher.start():
            return False
        if once:
            agent.scheduler.publish(settings.low_rate_event)
        else:
            await agent.scheduler.run(shutdown_event)
        agent.dispatcher.stop()
        return True
    finally:
        await agent.poster.aclose()
