"""Abstract base classes for the vehicle host facilities."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Iterable, Mapping, Optional

EventHandler = Callable[[Optional[Any]], None]


class MetricsRegistry(ABC):
    """Key-value store of named vehicle signals.

    Concrete implementations: ``InMemoryRegistry`` (dict-backed) and
    ``SimulationRegistry`` (fixture scenarios with noise).
    """

    @abstractmethod
    def get_values(self, names: Iterable[str]) -> Dict[str, Any]:
        """Return ``{name: value}`` for the requested signals.

        Signals the vehicle does not provide are absent from the result.
        """

    @abstractmethod
    def has_value(self, name: str) -> bool:
        """Return ``True`` if *name* currently holds a value."""


class ConfigStore(ABC):
    """Namespaced key-value persistence for user settings."""

    @abstractmethod
    def get_values(self, namespace: str, prefix: str) -> Dict[str, Any]:
        """Return keys under *prefix* in *namespace*, prefix stripped."""

    @abstractmethod
    def set_values(
        self, namespace: str, prefix: str, values: Mapping[str, Any]
    ) -> None:
        """Replace every key under *prefix* with *values*.

        An empty mapping clears the prefix.
        """


class Notifier(ABC):
    """Operator-visible notifications."""

    @abstractmethod
    def raise_notification(self, kind: str, subtype: str, message: str) -> None:
        """Raise a notification of *kind* (``info``/``error``) on *subtype*."""


class Scheduler(ABC):
    """Publish-subscribe event dispatch (tickers and vehicle events)."""

    @abstractmethod
    def subscribe(self, event: str, handler: EventHandler) -> None:
        """Call *handler* every time *event* is published."""

    @abstractmethod
    def unsubscribe(self, handler: EventHandler) -> None:
        """Remove *handler* from every event it is subscribed to."""

    @abstractmethod
    def publish(self, event: str, payload: Optional[Any] = None) -> None:
        """Deliver *event* to its subscribers, in subscription order."""
