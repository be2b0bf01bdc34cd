"""Format a ``TelemetryRecord`` as the operator-facing ``info`` table.

Units are separated from values by a space, per the NIST style guide.
Fields the vehicle does not report are shown as ``n/a``.
"""

from __future__ import annotations

from typing import List, Tuple

from abrp_agent.schemas import TelemetryRecord

# (label, field, unit)
_ROWS: Tuple[Tuple[str, str, str], ...] = (
    ("State of Charge", "soc", "%"),
    ("Battery Power", "power", "kW"),
    ("Vehicle Speed", "speed", "kph"),
    ("GPS Latitude", "lat", "°"),
    ("GPS Longitude", "lon", "°"),
    ("Charging", "is_charging", ""),
    ("DC Fast Charging", "is_dcfc", ""),
    ("Parked", "is_parked", ""),
    ("Capacity", "capacity", "kWh"),
    ("Charged Energy", "kwh_charged", "kWh"),
    ("State of Health", "soh", "%"),
    ("GPS Heading", "heading", "°"),
    ("GPS Elevation", "elevation", "m"),
    ("External Temp", "ext_temp", "°C"),
    ("Battery Temp", "batt_temp", "°C"),
    ("Battery Voltage", "voltage", "V"),
    ("Battery Current", "current", "A"),
    ("Odometer", "odometer", "km"),
    ("Estimated Range", "est_battery_range", "km"),
)

_LABEL_WIDTH = 18


def format_info(record: TelemetryRecord, version: str) -> List[str]:
    """Return one aligned ``Label: value unit`` line per telemetry field."""
    lines = [_line("Plugin Version", version, "")]
    for label, field_name, unit in _ROWS:
        value = getattr(record, field_name)
        if value is None:
            lines.append(_line(label, "n/a", ""))
        elif isinstance(value, bool):
            lines.append(_line(label, "true" if value else "false", ""))
        else:
            lines.append(_line(label, str(value), unit))
    return lines


def _line(label: str, value: str, unit: str) -> str:
    text = f"{label + ':':<{_LABEL_WIDTH}}{value}"
    return f"{text} {unit}" if unit else text
