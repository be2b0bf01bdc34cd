"""Tick orchestration: read, map, smooth, decide, send.

One :class:`TelemetryDispatcher` owns all mutable agent state (sample
buffer, last-sent record, subscription flags).  It is driven entirely by
scheduler events:

* the high-rate ticker feeds the sample smoother while the vehicle is
  not parked;
* the low-rate ticker (and ``vehicle.on`` / ``vehicle.off``) builds the
  telemetry record and sends it when the send policy says so.

Handlers never raise: an exception escaping a host handler would
unsubscribe it for good.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Callable, Optional

import structlog

from abrp_agent.api_poster import (
    CONFIG_NAMESPACE,
    CONFIG_PREFIX,
    TelemetryPoster,
    read_user_token,
)
from abrp_agent.config import AgentSettings
from abrp_agent.host.base import ConfigStore, MetricsRegistry, Notifier, Scheduler
from abrp_agent.metrics import HIGH_RATE_METRIC_NAMES, MetricAccessor
from abrp_agent.sample_smoother import SampleSmoother
from abrp_agent.schemas import TelemetryRecord, never_sent
from abrp_agent.send_policy import SendDecision, SendPolicy
from abrp_agent.telemetry_mapper import (
    all_metric_names,
    build_telemetry,
    detect_vehicle_family,
    get_vehicle_family,
    round_value,
)

logger = structlog.get_logger(__name__)

STATUS_SUBTYPE = "usr.abrp.status"
VEHICLE_EVENTS = ("vehicle.on", "vehicle.off")


class AgentState(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"


class TelemetryDispatcher:
    """Runs the send pipeline on scheduler ticks."""

    def __init__(
        self,
        *,
        registry: MetricsRegistry,
        config_store: ConfigStore,
        notifier: Notifier,
        scheduler: Scheduler,
        poster: TelemetryPoster,
        settings: Optional[AgentSettings] = None,
        policy: Optional[SendPolicy] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._settings = settings or AgentSettings()
        self._accessor = MetricAccessor(registry)
        self._config_store = config_store
        self._notifier = notifier
        self._scheduler = scheduler
        self._poster = poster
        self._policy = policy or SendPolicy.from_settings(self._settings)
        self._clock = clock
        self.smoother = SampleSmoother(maxlen=self._settings.sample_buffer_max)
        self.last_sent: TelemetryRecord = never_sent()
        self.high_rate_subscribed = False
        self.low_rate_subscribed = False

    @property
    def state(self) -> AgentState:
        return AgentState.RUNNING if self.low_rate_subscribed else AgentState.STOPPED

    # -- operator commands --------------------------------------------------

    def send(self, on: bool) -> bool:
        """Start (``on=True``) or stop periodic sending.

        Returns ``True`` if the state changed.
        """
        if on:
            if not self.validate_config():
                return False
            if self.low_rate_subscribed:
                logger.warning("already_running")
                return False
            logger.info("agent_start_sending")
            self._subscribe_low_rate()
            self._notifier.raise_notification("info", STATUS_SUBTYPE, "ABRP::started")
            return True

        if not self.low_rate_subscribed:
            logger.warning("already_stopped")
            return False
        logger.info("agent_stop_sending")
        self._unsubscribe_low_rate()
        self._notifier.raise_notification("info", STATUS_SUBTYPE, "ABRP::stopped")
        return True

    def start(self) -> bool:
        return self.send(True)

    def stop(self) -> bool:
        return self.send(False)

    def onetime(self) -> bool:
        """Send the current telemetry once, ignoring the send policy."""
        if not self.validate_config():
            return False
        return self._poster.transmit(self.current_telemetry())

    def info(self) -> TelemetryRecord:
        """The telemetry that would be sent right now (nothing is sent)."""
        return self.current_telemetry()

    def reset_config(self) -> None:
        self._config_store.set_values(CONFIG_NAMESPACE, CONFIG_PREFIX, {})
        self._notifier.raise_notification(
            "info", STATUS_SUBTYPE, "ABRP::usr abrp config reset"
        )

    def validate_config(self) -> bool:
        if read_user_token(self._config_store):
            return True
        self._notifier.raise_notification(
            "error", STATUS_SUBTYPE, "ABRP::config usr abrp.user_token not set"
        )
        return False

    # -- pipeline -----------------------------------------------------------

    def current_telemetry(self) -> TelemetryRecord:
        snapshot = self._accessor.capture(all_metric_names())
        if self._settings.vehicle_family:
            family = get_vehicle_family(self._settings.vehicle_family)
        else:
            family = detect_vehicle_family(snapshot)
        return build_telemetry(snapshot, utc=int(self._clock()), family=family)

    def evaluate(self) -> SendDecision:
        """One low-rate pass: build, smooth, decide, maybe send."""
        current = self.current_telemetry()

        sample = self.smoother.drain_representative()
        if sample is not None:
            current = current.model_copy(
                update={
                    "power": round_value(sample.power, 2),
                    "speed": round_value(sample.speed),
                }
            )

        decision = self._policy.evaluate(current, self.last_sent)
        if decision.should_send:
            logger.info(
                "telemetry_send_decision",
                reason=decision.reason,
                elapsed=decision.elapsed,
                max_interval=decision.max_interval,
            )
            self._poster.transmit(current)
            self.last_sent = current

        # High-rate sampling only matters while moving.
        if current.is_parked:
            self._unsubscribe_high_rate()
        else:
            self._subscribe_high_rate()
        return decision

    def collect_sample(self) -> bool:
        """One high-rate pass: buffer the current power and speed."""
        snapshot = self._accessor.capture(HIGH_RATE_METRIC_NAMES)
        power_ok, power = snapshot.fetch_value("v.b.power")
        speed_ok, speed = snapshot.fetch_value("v.p.speed")
        if not (power_ok and speed_ok):
            return False
        return self.smoother.accumulate(power, speed)

    # -- event handlers -----------------------------------------------------

    def on_low_rate_tick(self, payload: Optional[Any] = None) -> None:
        try:
            self.evaluate()
        except Exception:
            logger.exception("low_rate_tick_failed")

    def on_high_rate_tick(self, payload: Optional[Any] = None) -> None:
        try:
            self.collect_sample()
        except Exception:
            logger.exception("high_rate_tick_failed")

    # -- subscriptions ------------------------------------------------------

    def _subscribe_high_rate(self) -> None:
        if not self.high_rate_subscribed:
            logger.debug(
                "subscribe_high_rate", event_name=self._settings.high_rate_event
            )
            self._scheduler.subscribe(
                self._settings.high_rate_event, self.on_high_rate_tick
            )
        self.high_rate_subscribed = True

    def _unsubscribe_high_rate(self) -> None:
        if self.high_rate_subscribed:
            logger.debug("unsubscribe_high_rate")
            self._scheduler.unsubscribe(self.on_high_rate_tick)
        self.high_rate_subscribed = False
        # Samples never outlive the sampling window that produced them.
        self.smoother.clear()

    def _subscribe_low_rate(self) -> None:
        if not self.low_rate_subscribed:
            logger.debug(
                "subscribe_low_rate", event_name=self._settings.low_rate_event
            )
            self._scheduler.subscribe(
                self._settings.low_rate_event, self.on_low_rate_tick
            )
            for event in VEHICLE_EVENTS:
                self._scheduler.subscribe(event, self.on_low_rate_tick)
        self.low_rate_subscribed = True

    def _unsubscribe_low_rate(self) -> None:
        if self.low_rate_subscribed:
            logger.debug("unsubscribe_low_rate")
            self._scheduler.unsubscribe(self.on_low_rate_tick)
        self.low_rate_subscribed = False
        self._unsubscribe_high_rate()
