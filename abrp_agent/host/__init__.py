"""Vehicle host abstraction layer.

Defines the host facilities the agent consumes (metrics registry,
config store, notifications, pub/sub scheduler) as ABCs, with:

* ``InMemoryRegistry`` / ``SimulationRegistry`` -- metrics without a vehicle.
* ``InMemoryConfigStore`` / ``JsonFileConfigStore`` -- user settings.
* ``LogNotifier`` -- notifications on the structured log.
* ``AsyncioScheduler`` -- tickers and event dispatch on asyncio.
"""

from abrp_agent.host.base import ConfigStore, MetricsRegistry, Notifier, Scheduler

__all__ = ["ConfigStore", "MetricsRegistry", "Notifier", "Scheduler"]
