"""In-memory host facilities (tests and simulation)."""

from __future__ import annotations

from collections import deque
from typing import Any, Deque, Dict, Iterable, Mapping, Optional, Tuple

import structlog

from abrp_agent.host.base import ConfigStore, MetricsRegistry, Notifier

logger = structlog.get_logger(__name__)


class InMemoryRegistry(MetricsRegistry):
    """Dict-backed metrics registry.  ``None`` values count as absent."""

    def __init__(self, values: Optional[Mapping[str, Any]] = None) -> None:
        self._values: Dict[str, Any] = dict(values or {})

    def update(self, values: Mapping[str, Any]) -> None:
        self._values.update(values)

    def remove(self, *names: str) -> None:
        for name in names:
            self._values.pop(name, None)

    def get_values(self, names: Iterable[str]) -> Dict[str, Any]:
        return {
            name: self._values[name]
            for name in names
            if self._values.get(name) is not None
        }

    def has_value(self, name: str) -> bool:
        return self._values.get(name) is not None


class InMemoryConfigStore(ConfigStore):
    """Config store held in a nested dict: ``{namespace: {key: value}}``."""

    def __init__(
        self, data: Optional[Mapping[str, Mapping[str, Any]]] = None
    ) -> None:
        self._data: Dict[str, Dict[str, Any]] = {
            ns: dict(values) for ns, values in (data or {}).items()
        }

    def get_values(self, namespace: str, prefix: str) -> Dict[str, Any]:
        section = self._data.get(namespace, {})
        return {
            key[len(prefix):]: value
            for key, value in section.items()
            if key.startswith(prefix)
        }

    def set_values(
        self, namespace: str, prefix: str, values: Mapping[str, Any]
    ) -> None:
        section = self._data.setdefault(namespace, {})
        for key in [k for k in section if k.startswith(prefix)]:
            del section[key]
        for key, value in values.items():
            section[f"{prefix}{key}"] = value

    def as_dict(self) -> Dict[str, Dict[str, Any]]:
        return {ns: dict(values) for ns, values in self._data.items()}


class LogNotifier(Notifier):
    """Writes notifications to the structured log and keeps recent ones."""

    def __init__(self, history_max: int = 50) -> None:
        self._history: Deque[Tuple[str, str, str]] = deque(maxlen=history_max)

    def raise_notification(self, kind: str, subtype: str, message: str) -> None:
        self._history.append((kind, subtype, message))
        log = logger.error if kind == "error" else logger.info
        log("notification", kind=kind, subtype=subtype, message=message)

    @property
    def history(self) -> Tuple[Tuple[str, str, str], ...]:
        return tuple(self._history)
