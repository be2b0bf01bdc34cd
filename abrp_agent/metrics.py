"""Read vehicle signals from the host metrics registry.

A :class:`MetricSnapshot` is captured once per sampling event and answers
``fetch_value(name) -> (supported, value)``.  A signal is *supported* only
when the registry both returns it and reports it as holding a value;
anything else (missing, ``None``, NaN, registry failure) is unsupported,
never an exception.
"""

from __future__ import annotations

import math
from types import MappingProxyType
from typing import Any, Dict, Iterable, Mapping, Optional, Tuple

import structlog

from abrp_agent.host.base import MetricsRegistry

logger = structlog.get_logger(__name__)

# Generic OVMS metrics the mapper may consult.
GENERIC_METRIC_NAMES = (
    "v.type",
    "v.b.cac",
    "v.b.current",
    "v.b.power",
    "v.b.range.ideal",
    "v.b.soc",
    "v.b.soh",
    "v.b.temp",
    "v.b.voltage",
    "v.b.voltage.nominal",
    "v.c.kwh",
    "v.c.mode",
    # v.c.charging is also true when regenerating; v.c.state is not.
    "v.c.state",
    "v.e.parktime",
    "v.e.temp",
    "v.p.altitude",
    "v.p.direction",
    "v.p.latitude",
    "v.p.longitude",
    "v.p.odometer",
    "v.p.speed",
)

HIGH_RATE_METRIC_NAMES = ("v.b.power", "v.p.speed")


class MetricSnapshot:
    """Immutable view of the supported signals at one instant."""

    def __init__(self, values: Optional[Mapping[str, Any]] = None) -> None:
        self._values: Mapping[str, Any] = MappingProxyType(dict(values or {}))

    def fetch_value(self, name: str) -> Tuple[bool, Any]:
        """Return ``(supported, value)`` for signal *name*."""
        if name in self._values:
            return True, self._values[name]
        return False, None

    def fetch_all(self, names: Iterable[str]) -> Tuple[bool, Tuple[Any, ...]]:
        """Return ``(supported, values)`` where *supported* requires every name.

        Short-circuits on the first unsupported signal: derived fields are
        never computed from partial inputs.
        """
        values = []
        for name in names:
            supported, value = self.fetch_value(name)
            if not supported:
                return False, ()
            values.append(value)
        return True, tuple(values)


class MetricAccessor:
    """Captures :class:`MetricSnapshot` objects from a registry."""

    def __init__(self, registry: MetricsRegistry) -> None:
        self._registry = registry

    def capture(self, names: Iterable[str]) -> MetricSnapshot:
        """Read *names* from the registry in one call."""
        names = tuple(names)
        try:
            raw = self._registry.get_values(names)
        except Exception:
            logger.exception("metrics_read_failed", requested=len(names))
            return MetricSnapshot()

        supported: Dict[str, Any] = {}
        for name in names:
            if name not in raw or not _is_usable(raw[name]):
                continue
            if not self._has_value(name):
                continue
            supported[name] = raw[name]

        logger.debug(
            "metrics_captured", requested=len(names), supported=len(supported)
        )
        return MetricSnapshot(supported)

    def fetch_value(self, name: str) -> Tuple[bool, Any]:
        """Read a single signal: ``(supported, value)``."""
        return self.capture((name,)).fetch_value(name)

    def _has_value(self, name: str) -> bool:
        try:
            return bool(self._registry.has_value(name))
        except Exception:
            logger.exception("metrics_has_value_failed", metric=name)
            return False


def _is_usable(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, float) and not math.isfinite(value):
        return False
    return True
