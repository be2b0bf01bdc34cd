"""Decide when telemetry is worth the cellular data to send.

Every low-rate tick the current record is compared with the last one
sent.  A *significant* change is sent straight away; otherwise the
record is only sent once the time since the last send exceeds a limit
that depends on what the vehicle is doing.  Rules, first match wins:

1. significant change                    -> 0 s
2. speed above calibration threshold     -> calibration interval (5 s)
3. not parked, or DC fast charging       -> live interval (160 s)
4. standard charging                     -> charging backstop (30 min)
5. parked and idle                       -> idle backstop (24 h)
"""

from __future__ import annotations

from dataclasses import dataclass

import structlog

from abrp_agent.config import AgentSettings
from abrp_agent.schemas import TelemetryRecord
from abrp_agent.telemetry_mapper import round_value

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class SendDecision:
    """Outcome of one policy evaluation."""

    significant: bool
    max_interval: int
    elapsed: int
    reason: str

    @property
    def should_send(self) -> bool:
        return self.elapsed >= self.max_interval


class SendPolicy:
    """Change detection plus the layered timeout rules."""

    def __init__(
        self,
        *,
        calibration_speed_kph: float = 30.0,
        calibration_interval: int = 5,
        live_interval: int = 160,
        charging_interval: int = 30 * 60,
        idle_interval: int = 24 * 3600,
        charging_power_precision: int = 0,
    ) -> None:
        self.calibration_speed_kph = calibration_speed_kph
        self.calibration_interval = calibration_interval
        self.live_interval = live_interval
        self.charging_interval = charging_interval
        self.idle_interval = idle_interval
        self.charging_power_precision = charging_power_precision

    @classmethod
    def from_settings(cls, settings: AgentSettings) -> "SendPolicy":
        return cls(
            calibration_speed_kph=settings.calibration_speed_kph,
            calibration_interval=settings.calibration_interval_seconds,
            live_interval=settings.live_interval_seconds,
            charging_interval=settings.charging_interval_seconds,
            idle_interval=settings.idle_interval_seconds,
            charging_power_precision=settings.charging_power_precision,
        )

    def is_significant(
        self, current: TelemetryRecord, previous: TelemetryRecord
    ) -> bool:
        """Would ABRP visibly lag if *current* were not sent now?"""
        if current.soc != previous.soc:
            return True
        if current.is_charging != previous.is_charging:
            return True
        if current.is_parked != previous.is_parked:
            return True
        if current.is_charging:
            precision = self.charging_power_precision
            if round_value(current.power, precision) != round_value(
                previous.power, precision
            ):
                return True
        return False

    def max_allowed_interval(
        self, current: TelemetryRecord, previous: TelemetryRecord
    ) -> int:
        """Seconds that may pass since *previous* before *current* is sent."""
        return self._rule(current, previous)[0]

    def evaluate(
        self, current: TelemetryRecord, previous: TelemetryRecord
    ) -> SendDecision:
        max_interval, reason = self._rule(current, previous)
        elapsed = (current.utc or 0) - (previous.utc or 0)
        decision = SendDecision(
            significant=reason == "significant_change",
            max_interval=max_interval,
            elapsed=elapsed,
            reason=reason,
        )
        logger.debug(
            "send_policy_evaluated",
            reason=reason,
            elapsed=elapsed,
            max_interval=max_interval,
            send=decision.should_send,
        )
        return decision

    def _rule(self, current: TelemetryRecord, previous: TelemetryRecord):
        if self.is_significant(current, previous):
            return 0, "significant_change"
        if current.speed is not None and current.speed > self.calibration_speed_kph:
            return self.calibration_interval, "calibration_speed"
        if not current.is_parked or current.is_dcfc:
            return self.live_interval, "live_or_dc_fast_charging"
        if current.is_charging:
            return self.charging_interval, "standard_charging"
        return self.idle_interval, "parked_idle"
