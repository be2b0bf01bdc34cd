"""Cooperative publish-subscribe scheduler on top of asyncio.

Handlers are plain callables run one after another on the event loop,
so a handler never interleaves with another handler (or with itself).
Periodic ``ticker.N`` events are produced by :meth:`AsyncioScheduler.run`.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional, Tuple

import structlog

from abrp_agent.host.base import EventHandler, Scheduler

logger = structlog.get_logger(__name__)


class AsyncioScheduler(Scheduler):
    """Dispatches named events to subscribed handlers."""

    def __init__(self, tickers: Optional[Dict[str, float]] = None) -> None:
        # event name -> period in seconds
        self._tickers: Dict[str, float] = dict(tickers or {})
        self._subscriptions: List[Tuple[str, EventHandler]] = []

    # -- pub/sub ------------------------------------------------------------

    def subscribe(self, event: str, handler: EventHandler) -> None:
        self._subscriptions.append((event, handler))

    def unsubscribe(self, handler: EventHandler) -> None:
        self._subscriptions = [
            (event, h) for event, h in self._subscriptions if h != handler
        ]

    def publish(self, event: str, payload: Optional[Any] = None) -> None:
        # Snapshot: handlers may (un)subscribe while being dispatched.
        handlers = [h for e, h in self._subscriptions if e == event]
        for handler in handlers:
            try:
                handler(payload)
            except Exception:
                logger.exception("event_handler_failed", event_name=event)

    def subscriptions(self, event: str) -> int:
        """Number of handlers subscribed to *event*."""
        return sum(1 for e, _ in self._subscriptions if e == event)

    # -- tickers ------------------------------------------------------------

    async def run(self, shutdown_event: asyncio.Event) -> None:
        """Publish every configured ticker until *shutdown_event* is set."""
        tasks = [
            asyncio.create_task(self._tick(event, period, shutdown_event))
            for event, period in self._tickers.items()
        ]
        try:
            await shutdown_event.wait()
        finally:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

    async def _tick(
        self, event: str, period: float, shutdown_event: asyncio.Event
    ) -> None:
        while not shutdown_event.is_set():
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=period)
            except asyncio.TimeoutError:
                self.publish(event)
