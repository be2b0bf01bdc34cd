"""Tests for abrp_agent.host -- config stores, notifier and scheduler."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, List

import pytest

from abrp_agent.host.file_store import JsonFileConfigStore
from abrp_agent.host.memory import InMemoryConfigStore, InMemoryRegistry, LogNotifier
from abrp_agent.host.scheduler import AsyncioScheduler


class TestInMemoryRegistry:
    def test_none_is_absent(self) -> None:
        registry = InMemoryRegistry({"v.b.soc": 50.0, "v.b.soh": None})
        assert registry.get_values(["v.b.soc", "v.b.soh", "v.p.speed"]) == {
            "v.b.soc": 50.0
        }
        assert registry.has_value("v.b.soc") is True
        assert registry.has_value("v.b.soh") is False

    def test_update_and_remove(self) -> None:
        registry = InMemoryRegistry()
        registry.update({"v.p.speed": 12.0})
        assert registry.has_value("v.p.speed")
        registry.remove("v.p.speed", "never.there")
        assert not registry.has_value("v.p.speed")


class TestInMemoryConfigStore:
    def test_prefix_stripped(self) -> None:
        store = InMemoryConfigStore(
            {"usr": {"abrp.user_token": "t", "other.key": "x"}}
        )
        assert store.get_values("usr", "abrp.") == {"user_token": "t"}

    def test_unknown_namespace_empty(self) -> None:
        assert InMemoryConfigStore().get_values("usr", "abrp.") == {}

    def test_set_replaces_prefix_only(self) -> None:
        store = InMemoryConfigStore(
            {"usr": {"abrp.user_token": "t", "abrp.old": "1", "other.key": "x"}}
        )
        store.set_values("usr", "abrp.", {"user_token": "new"})
        assert store.as_dict() == {
            "usr": {"abrp.user_token": "new", "other.key": "x"}
        }

    def test_empty_mapping_resets(self) -> None:
        store = InMemoryConfigStore({"usr": {"abrp.user_token": "t"}})
        store.set_values("usr", "abrp.", {})
        assert store.get_values("usr", "abrp.") == {}


class TestJsonFileConfigStore:
    def test_missing_file_is_empty(self, tmp_path: Path) -> None:
        store = JsonFileConfigStore(tmp_path / "config.json")
        assert store.get_values("usr", "abrp.") == {}

    def test_persists_across_instances(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "config.json"
        JsonFileConfigStore(path).set_values("usr", "abrp.", {"user_token": "t"})

        with open(path, encoding="utf-8") as fh:
            assert json.load(fh) == {"usr": {"abrp.user_token": "t"}}
        assert JsonFileConfigStore(path).get_values("usr", "abrp.") == {
            "user_token": "t"
        }

    def test_picks_up_external_edits(self, tmp_path: Path) -> None:
        path = tmp_path / "config.json"
        store = JsonFileConfigStore(path)
        assert store.get_values("usr", "abrp.") == {}
        path.write_text(json.dumps({"usr": {"abrp.user_token": "edited"}}))
        assert store.get_values("usr", "abrp.") == {"user_token": "edited"}

    @pytest.mark.parametrize("content", ["{not json", "[1, 2]"])
    def test_corrupt_file_reads_empty(self, tmp_path: Path, content: str) -> None:
        path = tmp_path / "config.json"
        path.write_text(content)
        assert JsonFileConfigStore(path).get_values("usr", "abrp.") == {}


class TestLogNotifier:
    def test_history_bounded(self) -> None:
        notifier = LogNotifier(history_max=2)
        for i in range(3):
            notifier.raise_notification("info", "usr.abrp.status", f"msg {i}")
        assert [m for _, _, m in notifier.history] == ["msg 1", "msg 2"]


class TestAsyncioScheduler:
    def test_publish_in_subscription_order(self) -> None:
        calls: List[str] = []
        scheduler = AsyncioScheduler()
        scheduler.subscribe("ticker.10", lambda _: calls.append("a"))
        scheduler.subscribe("ticker.10", lambda _: calls.append("b"))
        scheduler.subscribe("ticker.1", lambda _: calls.append("c"))
        scheduler.publish("ticker.10")
        assert calls == ["a", "b"]

    def test_unsubscribe_removes_all_events(self) -> None:
        calls: List[Any] = []

        def handler(payload: Any) -> None:
            calls.append(payload)

        scheduler = AsyncioScheduler()
        scheduler.subscribe("vehicle.on", handler)
        scheduler.subscribe("vehicle.off", handler)
        scheduler.unsubscribe(handler)
        scheduler.publish("vehicle.on", "x")
        scheduler.publish("vehicle.off", "y")
        assert calls == []
        assert scheduler.subscriptions("vehicle.on") == 0

    def test_failing_handler_isolated(self) -> None:
        calls: List[str] = []

        def broken(_: Any) -> None:
            raise RuntimeError("boom")

        scheduler = AsyncioScheduler()
        scheduler.subscribe("ticker.10", broken)
        scheduler.subscribe("ticker.10", lambda _: calls.append("ok"))
        scheduler.publish("ticker.10")
        assert calls == ["ok"]
        assert scheduler.subscriptions("ticker.10") == 2

    def test_subscribe_during_publish_waits_for_next_event(self) -> None:
        calls: List[str] = []
        scheduler = AsyncioScheduler()

        def late(_: Any) -> None:
            calls.append("late")

        def first(_: Any) -> None:
            calls.append("first")
            scheduler.subscribe("ticker.10", late)

        scheduler.subscribe("ticker.10", first)
        scheduler.publish("ticker.10")
        assert calls == ["first"]

    @pytest.mark.asyncio
    async def test_run_emits_ticks_until_shutdown(self) -> None:
        ticks: List[str] = []
        scheduler = AsyncioScheduler(tickers={"ticker.fast": 0.01})
        scheduler.subscribe("ticker.fast", lambda _: ticks.append("t"))
        shutdown = asyncio.Event()

        async def _stop_later() -> None:
            await asyncio.sleep(0.1)
            shutdown.set()

        await asyncio.gather(scheduler.run(shutdown), _stop_later())
        assert len(ticks) >= 2
