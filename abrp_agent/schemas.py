"""Telemetry Pydantic v2 models.

Matches the ABRP ``/1/tlm/send`` telemetry object.  Every field is
optional because vehicles only report a subset of the metrics; absent
fields are dropped from the payload rather than sent as ``null``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, Field, model_validator

# Integer-rounded readings stay ints in the JSON payload.
Number = Union[int, float]


# ---------------------------------------------------------------------------
# High-rate samples
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class PowerSample:
    """A single ``{power, speed}`` reading captured on the high-rate tick."""

    power: float
    speed: float


# ---------------------------------------------------------------------------
# Telemetry record
# ---------------------------------------------------------------------------

class TelemetryRecord(BaseModel):
    """ABRP telemetry payload.

    Additive contract: ABRP accepts any subset of these keys, but
    penalises ``null`` values, so serialise with :meth:`to_payload`.
    """

    utc: Optional[int] = Field(default=None, description="Seconds since epoch")
    soc: Optional[Number] = Field(default=None, description="State of charge, %")
    power: Optional[Number] = Field(
        default=None, description="Battery power, kW (negative = charging)"
    )
    speed: Optional[Number] = Field(default=None, description="Speed, km/h")
    lat: Optional[Number] = Field(default=None, description="Latitude, degrees")
    lon: Optional[Number] = Field(default=None, description="Longitude, degrees")
    is_charging: Optional[bool] = None
    is_dcfc: Optional[bool] = Field(
        default=None, description="DC fast charging; only sent while charging"
    )
    is_parked: Optional[bool] = None
    capacity: Optional[Number] = Field(default=None, description="Usable kWh")
    kwh_charged: Optional[Number] = None
    soh: Optional[Number] = Field(default=None, description="State of health, %")
    heading: Optional[Number] = Field(default=None, description="Degrees")
    elevation: Optional[Number] = Field(default=None, description="Metres")
    ext_temp: Optional[Number] = Field(default=None, description="degC")
    batt_temp: Optional[Number] = Field(default=None, description="degC")
    voltage: Optional[Number] = None
    current: Optional[Number] = None
    odometer: Optional[Number] = Field(default=None, description="km")
    est_battery_range: Optional[Number] = Field(default=None, description="km")

    model_config = {"validate_assignment": True}

    # --- validators --------------------------------------------------------

    @model_validator(mode="after")
    def dcfc_requires_charging(self) -> "TelemetryRecord":
        """``is_dcfc`` is meaningless unless the vehicle is charging."""
        if self.is_dcfc is not None and self.is_charging is not True:
            raise ValueError("is_dcfc may only be set while is_charging is true")
        return self

    # --- serialisation -----------------------------------------------------

    def to_payload(self) -> Dict[str, Any]:
        """Return the record as a dict with absent fields omitted."""
        return self.model_dump(exclude_none=True)

    def to_json(self) -> str:
        """Compact JSON for the ``tlm`` query parameter."""
        return json.dumps(self.to_payload(), separators=(",", ":"))


def never_sent() -> TelemetryRecord:
    """The last-sent sentinel used before the first transmission."""
    return TelemetryRecord(utc=0)
