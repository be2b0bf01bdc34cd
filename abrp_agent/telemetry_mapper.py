"""Map a :class:`MetricSnapshot` onto the ABRP :class:`TelemetryRecord`.

Each canonical telemetry field is produced by a *resolver*: a callable
taking the snapshot and returning ``(supported, value)``.  The generic
resolver table covers every OVMS vehicle; a vehicle family may override
individual fields by registering its own resolvers, e.g. the Nissan Leaf
reads SOC, SOH and range from its instrument-cluster metrics.

Unsupported fields are left ``None`` and therefore omitted from the
payload.  Values are rounded here, before any change detection or
transmission, so the send policy compares what would actually be sent.

**Rounding precision per field:**

==================  =========  ==================================
Field               Decimals   Notes
==================  =========  ==================================
power, current      2          ~10 W / ~10 mA
lat, lon            5          ~1.1 m
heading, elevation  1
capacity            1          kWh, from Ah x nominal voltage
kwh_charged         1          0 unless charging
everything else     0
==================  =========  ==================================
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal
from dataclasses import dataclass, field
from numbers import Real
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Tuple

import structlog

from abrp_agent.metrics import GENERIC_METRIC_NAMES, MetricSnapshot
from abrp_agent.schemas import TelemetryRecord

logger = structlog.get_logger(__name__)

FieldResolver = Callable[[MetricSnapshot], Tuple[bool, Any]]

_UNSUPPORTED: Tuple[bool, Any] = (False, None)

# ``v.c.state`` values that mean energy is flowing in from a charger.
CHARGING_STATES = frozenset({"charging", "topoff"})
DCFC_MODE = "performance"

GENERIC_FAMILY = "generic"


# ---------------------------------------------------------------------------
# Rounding
# ---------------------------------------------------------------------------

def round_value(value: Any, precision: int = 0) -> Any:
    """Round *value* to *precision* decimals.

    ``None``, zero, booleans and non-finite numbers are returned unchanged
    so that a genuine zero reading is never mistaken for a missing one.
    Halves round away from zero, as the in-vehicle display does.
    Precision 0 yields an ``int``.
    """
    if value is None or isinstance(value, bool) or value == 0:
        return value
    if not isinstance(value, Real) or not math.isfinite(value):
        return value
    exponent = Decimal(1).scaleb(-max(precision, 0))
    rounded = Decimal(float(value)).quantize(exponent, rounding=ROUND_HALF_UP)
    if precision <= 0:
        return int(rounded)
    return float(rounded)


# ---------------------------------------------------------------------------
# Resolver builders
# ---------------------------------------------------------------------------

def _is_number(value: Any) -> bool:
    return isinstance(value, Real) and not isinstance(value, bool)


def signal(name: str, precision: int = 0) -> FieldResolver:
    """Resolver for a single numeric metric."""

    def resolve(snapshot: MetricSnapshot) -> Tuple[bool, Any]:
        supported, value = snapshot.fetch_value(name)
        if not supported or not _is_number(value):
            return _UNSUPPORTED
        return True, round_value(value, precision)

    return resolve


def product(
    names: Iterable[str], precision: int = 0, scale: float = 1.0
) -> FieldResolver:
    """Resolver multiplying several metrics; all of them must be supported."""
    names = tuple(names)

    def resolve(snapshot: MetricSnapshot) -> Tuple[bool, Any]:
        supported, values = snapshot.fetch_all(names)
        if not supported or not all(_is_number(v) for v in values):
            return _UNSUPPORTED
        result = scale
        for value in values:
            result *= value
        return True, round_value(result, precision)

    return resolve


def first_supported(*resolvers: FieldResolver) -> FieldResolver:
    """Resolver returning the first supported, non-zero candidate.

    Falls back to the last supported candidate, even if zero, so a real
    zero reading is still reported.
    """

    def resolve(snapshot: MetricSnapshot) -> Tuple[bool, Any]:
        fallback = _UNSUPPORTED
        for resolver in resolvers:
            supported, value = resolver(snapshot)
            if not supported:
                continue
            if value:
                return supported, value
            fallback = (supported, value)
        return fallback

    return resolve


# ---------------------------------------------------------------------------
# Derived fields
# ---------------------------------------------------------------------------

def _charging_state(snapshot: MetricSnapshot) -> Tuple[bool, bool]:
    supported, state = snapshot.fetch_value("v.c.state")
    if not supported:
        return False, False
    return True, str(state) in CHARGING_STATES


def resolve_is_charging(snapshot: MetricSnapshot) -> Tuple[bool, Any]:
    return _charging_state(snapshot)


def resolve_is_dcfc(snapshot: MetricSnapshot) -> Tuple[bool, Any]:
    supported, charging = _charging_state(snapshot)
    if not supported or not charging:
        return _UNSUPPORTED
    mode_supported, mode = snapshot.fetch_value("v.c.mode")
    if not mode_supported:
        return _UNSUPPORTED
    return True, str(mode) == DCFC_MODE


def resolve_is_parked(snapshot: MetricSnapshot) -> Tuple[bool, Any]:
    supported, parktime = snapshot.fetch_value("v.e.parktime")
    if not supported or not _is_number(parktime):
        return _UNSUPPORTED
    return True, parktime > 0


def resolve_kwh_charged(snapshot: MetricSnapshot) -> Tuple[bool, Any]:
    supported, kwh = snapshot.fetch_value("v.c.kwh")
    if not supported or not _is_number(kwh):
        return _UNSUPPORTED
    _, charging = _charging_state(snapshot)
    return True, round_value(kwh, 1) if charging else 0


def resolve_leaf_range(snapshot: MetricSnapshot) -> Tuple[bool, Any]:
    """Leaf instrument range, unless the ideal range shows it is stale.

    The instrument range does not update when the car is charged while
    parked, so prefer the ideal range when it exceeds the instrument
    range by more than 10%.
    """
    inst_supported, instrument = signal("xnl.v.b.range.instrument")(snapshot)
    ideal_supported, ideal = signal("v.b.range.ideal")(snapshot)
    if not inst_supported:
        return (True, ideal) if ideal_supported else _UNSUPPORTED
    if ideal_supported and ideal > 1.1 * instrument:
        return True, ideal
    return True, instrument


# ---------------------------------------------------------------------------
# Vehicle families
# ---------------------------------------------------------------------------

GENERIC_RESOLVERS: Dict[str, FieldResolver] = {
    "soc": signal("v.b.soc"),
    "power": signal("v.b.power", 2),
    "speed": signal("v.p.speed"),
    "lat": signal("v.p.latitude", 5),
    "lon": signal("v.p.longitude", 5),
    "is_charging": resolve_is_charging,
    "is_dcfc": resolve_is_dcfc,
    "is_parked": resolve_is_parked,
    "capacity": product(("v.b.cac", "v.b.voltage.nominal"), 1, scale=0.001),
    "kwh_charged": resolve_kwh_charged,
    "soh": signal("v.b.soh"),
    "heading": signal("v.p.direction", 1),
    "elevation": signal("v.p.altitude", 1),
    "ext_temp": signal("v.e.temp"),
    "batt_temp": signal("v.b.temp"),
    "voltage": signal("v.b.voltage"),
    "current": signal("v.b.current", 2),
    "odometer": signal("v.p.odometer"),
    "est_battery_range": signal("v.b.range.ideal"),
}


@dataclass(frozen=True)
class VehicleFamily:
    """Field overrides and extra metrics for one ``v.type`` code."""

    code: str
    name: str
    overrides: Mapping[str, FieldResolver] = field(default_factory=dict)
    extra_metrics: Tuple[str, ...] = ()

    def resolver(self, field_name: str) -> FieldResolver:
        return self.overrides.get(field_name, GENERIC_RESOLVERS[field_name])

    @property
    def metric_names(self) -> Tuple[str, ...]:
        return GENERIC_METRIC_NAMES + self.extra_metrics


_FAMILIES: Dict[str, VehicleFamily] = {}


def register_vehicle_family(family: VehicleFamily) -> None:
    """Add (or replace) a vehicle family, keyed by its ``v.type`` code."""
    unknown = set(family.overrides) - set(GENERIC_RESOLVERS)
    if unknown:
        raise ValueError(f"Unknown telemetry fields: {', '.join(sorted(unknown))}")
    _FAMILIES[family.code.upper()] = family


def get_vehicle_family(code: Optional[str]) -> VehicleFamily:
    """Return the family for *code*, or the generic family."""
    if code:
        family = _FAMILIES.get(code.strip().upper())
        if family is not None:
            return family
    return _FAMILIES[GENERIC_FAMILY.upper()]


def detect_vehicle_family(snapshot: MetricSnapshot) -> VehicleFamily:
    """Pick the family from the ``v.type`` metric."""
    supported, code = snapshot.fetch_value("v.type")
    return get_vehicle_family(str(code) if supported else None)


def all_metric_names() -> Tuple[str, ...]:
    """Every metric any registered family may consult."""
    names = list(GENERIC_METRIC_NAMES)
    for family in _FAMILIES.values():
        names.extend(n for n in family.extra_metrics if n not in names)
    return tuple(names)


register_vehicle_family(VehicleFamily(code=GENERIC_FAMILY, name="Generic OVMS"))
register_vehicle_family(
    VehicleFamily(
        code="NL",
        name="Nissan Leaf",
        overrides={
            "soc": first_supported(
                signal("xnl.v.b.soc.instrument"), signal("v.b.soc")
            ),
            "soh": first_supported(
                signal("xnl.v.b.soh.instrument"), signal("v.b.soh")
            ),
            "est_battery_range": resolve_leaf_range,
        },
        extra_metrics=(
            "xnl.v.b.range.instrument",
            "xnl.v.b.soc.instrument",
            "xnl.v.b.soh.instrument",
        ),
    )
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def build_telemetry(
    snapshot: MetricSnapshot,
    *,
    utc: int,
    family: Optional[VehicleFamily] = None,
) -> TelemetryRecord:
    """Build the telemetry record for *snapshot* taken at *utc*."""
    if family is None:
        family = detect_vehicle_family(snapshot)

    values: Dict[str, Any] = {"utc": int(utc)}
    for field_name in GENERIC_RESOLVERS:
        try:
            supported, value = family.resolver(field_name)(snapshot)
        except (TypeError, ValueError) as exc:
            logger.warning(
                "telemetry_field_unresolved", field=field_name, error=str(exc)
            )
            continue
        if supported and value is not None:
            values[field_name] = value

    record = TelemetryRecord(**values)
    logger.debug(
        "telemetry_mapped",
        family=family.code,
        fields=len(values),
    )
    return record
