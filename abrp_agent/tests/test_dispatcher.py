"""Tests for abrp_agent.dispatcher -- state machine and tick pipeline."""

from __future__ import annotations

from abrp_agent.api_poster import TelemetryPoster
from abrp_agent.dispatcher import STATUS_SUBTYPE, AgentState, TelemetryDispatcher
from abrp_agent.host.memory import InMemoryConfigStore, InMemoryRegistry, LogNotifier
from abrp_agent.host.scheduler import AsyncioScheduler
from abrp_agent.schemas import TelemetryRecord
from abrp_agent.tests.fakes import (
    FakeClock,
    RecordingPoster,
    charging_metrics,
    driving_metrics,
    parked_metrics,
)

HOUR = 3600


class TestStateMachine:
    """send(on/off) transitions and their notifications."""

    def test_start_without_token_stays_stopped(
        self,
        dispatcher: TelemetryDispatcher,
        config_store: InMemoryConfigStore,
        notifier: LogNotifier,
        scheduler: AsyncioScheduler,
    ) -> None:
        config_store.set_values("usr", "abrp.", {})
        assert dispatcher.send(True) is False
        assert dispatcher.state is AgentState.STOPPED
        assert notifier.history == (
            ("error", STATUS_SUBTYPE, "ABRP::config usr abrp.user_token not set"),
        )
        assert scheduler.subscriptions("ticker.10") == 0
        assert scheduler.subscriptions("ticker.1") == 0

    def test_start_subscribes_low_rate_and_vehicle_events(
        self,
        dispatcher: TelemetryDispatcher,
        notifier: LogNotifier,
        scheduler: AsyncioScheduler,
    ) -> None:
        assert dispatcher.start() is True
        assert dispatcher.state is AgentState.RUNNING
        assert notifier.history[-1] == ("info", STATUS_SUBTYPE, "ABRP::started")
        assert scheduler.subscriptions("ticker.10") == 1
        assert scheduler.subscriptions("vehicle.on") == 1
        assert scheduler.subscriptions("vehicle.off") == 1
        # High-rate sampling waits for the first evaluation.
        assert scheduler.subscriptions("ticker.1") == 0

    def test_double_start_is_noop(
        self,
        dispatcher: TelemetryDispatcher,
        notifier: LogNotifier,
        scheduler: AsyncioScheduler,
    ) -> None:
        dispatcher.start()
        assert dispatcher.start() is False
        assert scheduler.subscriptions("ticker.10") == 1
        assert len(notifier.history) == 1

    def test_stop_when_stopped_is_noop(
        self, dispatcher: TelemetryDispatcher, notifier: LogNotifier
    ) -> None:
        assert dispatcher.stop() is False
        assert notifier.history == ()

    def test_stop_unsubscribes_everything(
        self,
        dispatcher: TelemetryDispatcher,
        registry: InMemoryRegistry,
        notifier: LogNotifier,
        scheduler: AsyncioScheduler,
    ) -> None:
        registry.update(driving_metrics())
        dispatcher.start()
        scheduler.publish("ticker.10")
        assert dispatcher.high_rate_subscribed is True

        assert dispatcher.stop() is True
        assert dispatcher.state is AgentState.STOPPED
        assert dispatcher.high_rate_subscribed is False
        assert notifier.history[-1] == ("info", STATUS_SUBTYPE, "ABRP::stopped")
        for event in ("ticker.1", "ticker.10", "vehicle.on", "vehicle.off"):
            assert scheduler.subscriptions(event) == 0

    def test_stop_discards_buffered_samples(
        self,
        dispatcher: TelemetryDispatcher,
        registry: InMemoryRegistry,
        scheduler: AsyncioScheduler,
        poster: RecordingPoster,
        clock: FakeClock,
    ) -> None:
        """Samples from before a stop never reach a send after restart."""
        registry.update(driving_metrics(speed=40.0, power=10.0))
        dispatcher.start()
        scheduler.publish("ticker.10")
        registry.update({"v.b.power": 77.0, "v.p.speed": 99.0})
        scheduler.publish("ticker.1")
        assert len(dispatcher.smoother) == 1

        dispatcher.stop()
        assert len(dispatcher.smoother) == 0

        clock.advance(3 * HOUR)
        registry.update({"v.b.power": 5.0, "v.p.speed": 20.0})
        dispatcher.start()
        scheduler.publish("ticker.10")
        assert poster.sent[-1].power == 5.0
        assert poster.sent[-1].speed == 20

    def test_ticks_ignored_after_stop(
        self,
        dispatcher: TelemetryDispatcher,
        scheduler: AsyncioScheduler,
        poster: RecordingPoster,
    ) -> None:
        dispatcher.start()
        dispatcher.stop()
        scheduler.publish("ticker.10")
        assert poster.sent == []


class TestLowRateTick:
    def test_first_tick_always_sends(
        self,
        dispatcher: TelemetryDispatcher,
        scheduler: AsyncioScheduler,
        poster: RecordingPoster,
        clock: FakeClock,
    ) -> None:
        dispatcher.start()
        scheduler.publish("ticker.10")
        assert len(poster.sent) == 1
        assert poster.sent[0].utc == int(clock.now)
        assert dispatcher.last_sent == poster.sent[0]

    def test_parked_idle_backstop(
        self,
        dispatcher: TelemetryDispatcher,
        scheduler: AsyncioScheduler,
        poster: RecordingPoster,
        clock: FakeClock,
    ) -> None:
        dispatcher.start()
        scheduler.publish("ticker.10")
        first = dispatcher.last_sent

        clock.advance(23 * HOUR)
        decision = dispatcher.evaluate()
        assert decision.should_send is False
        assert decision.max_interval == 86400
        assert len(poster.sent) == 1
        assert dispatcher.last_sent is first

        clock.advance(1 * HOUR + 60)
        scheduler.publish("ticker.10")
        assert len(poster.sent) == 2
        assert dispatcher.last_sent.utc == int(clock.now)

    def test_parked_does_not_sample(
        self, dispatcher: TelemetryDispatcher, scheduler: AsyncioScheduler
    ) -> None:
        dispatcher.start()
        scheduler.publish("ticker.10")
        assert dispatcher.high_rate_subscribed is False
        assert scheduler.subscriptions("ticker.1") == 0

    def test_calibration_speed_short_interval(
        self,
        dispatcher: TelemetryDispatcher,
        registry: InMemoryRegistry,
        poster: RecordingPoster,
        clock: FakeClock,
    ) -> None:
        registry.update(driving_metrics(speed=80.0))
        dispatcher.start()
        dispatcher.evaluate()
        assert len(poster.sent) == 1

        clock.advance(3)
        decision = dispatcher.evaluate()
        assert decision.max_interval == 5
        assert decision.should_send is False

        clock.advance(3)
        assert dispatcher.evaluate().should_send is True
        assert len(poster.sent) == 2

    def test_driving_samples_and_smooths(
        self,
        dispatcher: TelemetryDispatcher,
        registry: InMemoryRegistry,
        scheduler: AsyncioScheduler,
        poster: RecordingPoster,
        clock: FakeClock,
    ) -> None:
        registry.update(driving_metrics(speed=45.0, power=9.0))
        dispatcher.start()
        scheduler.publish("ticker.10")
        assert dispatcher.high_rate_subscribed is True

        for power, speed in [(10.126, 40.2), (30.0, 60.0), (20.004, 50.4)]:
            registry.update({"v.b.power": power, "v.p.speed": speed})
            scheduler.publish("ticker.1")
        assert len(dispatcher.smoother) == 3

        registry.update({"v.b.power": 99.0, "v.p.speed": 45.0})
        clock.advance(200)
        scheduler.publish("ticker.10")

        assert len(poster.sent) == 2
        assert poster.sent[-1].power == 20.0
        assert poster.sent[-1].speed == 50
        assert len(dispatcher.smoother) == 0

    def test_sampling_stops_when_parked(
        self,
        dispatcher: TelemetryDispatcher,
        registry: InMemoryRegistry,
        scheduler: AsyncioScheduler,
    ) -> None:
        registry.update(driving_metrics())
        dispatcher.start()
        scheduler.publish("ticker.10")
        assert scheduler.subscriptions("ticker.1") == 1

        registry.update(parked_metrics())
        scheduler.publish("ticker.10")
        assert dispatcher.high_rate_subscribed is False
        assert scheduler.subscriptions("ticker.1") == 0

    def test_missing_high_rate_signal_not_sampled(
        self,
        dispatcher: TelemetryDispatcher,
        registry: InMemoryRegistry,
    ) -> None:
        registry.update(driving_metrics())
        registry.remove("v.p.speed")
        assert dispatcher.collect_sample() is False
        assert len(dispatcher.smoother) == 0

    def test_charging_power_change_sends(
        self,
        dispatcher: TelemetryDispatcher,
        registry: InMemoryRegistry,
        poster: RecordingPoster,
        clock: FakeClock,
    ) -> None:
        registry.update(charging_metrics(power=-7.2))
        dispatcher.start()
        dispatcher.evaluate()

        clock.advance(10)
        decision = dispatcher.evaluate()
        assert decision.reason == "standard_charging"
        assert decision.should_send is False

        registry.update({"v.b.power": -9.6})
        clock.advance(10)
        decision = dispatcher.evaluate()
        assert decision.significant is True
        assert len(poster.sent) == 2

    def test_dc_fast_charging_live_interval(
        self,
        dispatcher: TelemetryDispatcher,
        registry: InMemoryRegistry,
        clock: FakeClock,
    ) -> None:
        registry.update(charging_metrics(mode="performance", power=-45.0))
        dispatcher.start()
        dispatcher.evaluate()
        clock.advance(10)
        assert dispatcher.evaluate().max_interval == 160

    def test_vehicle_events_trigger_evaluation(
        self,
        dispatcher: TelemetryDispatcher,
        scheduler: AsyncioScheduler,
        poster: RecordingPoster,
    ) -> None:
        dispatcher.start()
        scheduler.publish("vehicle.on")
        assert len(poster.sent) == 1

    def test_send_decision_recorded_without_event_loop(
        self,
        settings,
        registry: InMemoryRegistry,
        config_store: InMemoryConfigStore,
        notifier: LogNotifier,
        scheduler: AsyncioScheduler,
        clock: FakeClock,
    ) -> None:
        dispatcher = TelemetryDispatcher(
            registry=registry,
            config_store=config_store,
            notifier=notifier,
            scheduler=scheduler,
            poster=TelemetryPoster(settings, config_store),
            settings=settings,
            clock=clock,
        )
        decision = dispatcher.evaluate()
        assert decision.should_send is True
        assert dispatcher.last_sent.utc == int(clock.now)

    def test_handler_never_raises(
        self,
        settings,
        registry: InMemoryRegistry,
        config_store: InMemoryConfigStore,
        notifier: LogNotifier,
        scheduler: AsyncioScheduler,
        clock: FakeClock,
    ) -> None:
        class ExplodingPoster(RecordingPoster):
            def transmit(self, record: TelemetryRecord) -> bool:
                raise RuntimeError("boom")

        dispatcher = TelemetryDispatcher(
            registry=registry,
            config_store=config_store,
            notifier=notifier,
            scheduler=scheduler,
            poster=ExplodingPoster(settings, config_store),
            settings=settings,
            clock=clock,
        )
        dispatcher.start()
        dispatcher.on_low_rate_tick()
        # Still subscribed: the scheduler never saw the exception.
        assert scheduler.subscriptions("ticker.10") == 1


class TestOperatorCommands:
    def test_onetime_sends_without_touching_last_sent(
        self, dispatcher: TelemetryDispatcher, poster: RecordingPoster
    ) -> None:
        assert dispatcher.onetime() is True
        assert len(poster.sent) == 1
        assert dispatcher.last_sent.utc == 0
        assert dispatcher.state is AgentState.STOPPED

    def test_onetime_without_token(
        self,
        dispatcher: TelemetryDispatcher,
        config_store: InMemoryConfigStore,
        notifier: LogNotifier,
        poster: RecordingPoster,
    ) -> None:
        config_store.set_values("usr", "abrp.", {})
        assert dispatcher.onetime() is False
        assert poster.sent == []
        assert notifier.history[-1][0] == "error"

    def test_info_sends_nothing(
        self, dispatcher: TelemetryDispatcher, poster: RecordingPoster
    ) -> None:
        record = dispatcher.info()
        assert record.soc == 64
        assert record.is_parked is True
        assert poster.sent == []

    def test_reset_config(
        self,
        dispatcher: TelemetryDispatcher,
        config_store: InMemoryConfigStore,
        notifier: LogNotifier,
    ) -> None:
        dispatcher.reset_config()
        assert config_store.get_values("usr", "abrp.") == {}
        assert notifier.history[-1] == (
            "info",
            STATUS_SUBTYPE,
            "ABRP::usr abrp config reset",
        )
        assert dispatcher.start() is False

    def test_forced_vehicle_family(
        self,
        settings,
        config_store: InMemoryConfigStore,
        notifier: LogNotifier,
        scheduler: AsyncioScheduler,
        poster: RecordingPoster,
        clock: FakeClock,
    ) -> None:
        metrics = parked_metrics()
        del metrics["v.type"]
        metrics["xnl.v.b.soc.instrument"] = 70.0
        dispatcher = TelemetryDispatcher(
            registry=InMemoryRegistry(metrics),
            config_store=config_store,
            notifier=notifier,
            scheduler=scheduler,
            poster=poster,
            settings=settings.model_copy(update={"vehicle_family": "NL"}),
            clock=clock,
        )
        assert dispatcher.info().soc == 70
