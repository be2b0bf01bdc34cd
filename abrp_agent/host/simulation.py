"""Fixture-based simulation registry (no vehicle required).

Loads scenarios from ``fixtures/simulation_scenarios.json`` and applies
Gaussian noise to the high-rate signals (battery power and speed) on
every read so consecutive samples vary realistically.
"""

from __future__ import annotations

import json
import random
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import structlog

from abrp_agent.host.base import Scheduler
from abrp_agent.host.memory import InMemoryRegistry

logger = structlog.get_logger(__name__)

_FIXTURES_DIR = Path(__file__).resolve().parent.parent / "fixtures"

_scenarios_cache: Optional[Dict[str, Any]] = None


class SimulationRegistry(InMemoryRegistry):
    """Serves synthetic vehicle metrics from a named JSON scenario.

    With a *scheduler*, switching between a parked and a moving scenario
    publishes ``vehicle.on`` / ``vehicle.off`` the way the vehicle would.
    """

    def __init__(
        self,
        scenario: str = "parked",
        rng: Optional[random.Random] = None,
        scheduler: Optional[Scheduler] = None,
    ) -> None:
        super().__init__()
        self._rng = rng or random.Random()
        self._scheduler = scheduler
        self._noise: Dict[str, float] = {}
        self._vehicle_on: Optional[bool] = None
        self.scenario = ""
        self.load_scenario(scenario)

    def load_scenario(self, name: str) -> None:
        """Replace all signals with those of scenario *name*."""
        scenarios = _load_scenarios()
        if name not in scenarios:
            available = ", ".join(sorted(scenarios))
            raise ValueError(
                f"Unknown simulation scenario '{name}'. Available: {available}"
            )
        scenario = scenarios[name]
        self._values = dict(scenario["metrics"])
        self._noise = dict(scenario.get("noise", {}))
        self.scenario = name

        vehicle_on = self._values.get("v.e.parktime") == 0
        previous, self._vehicle_on = self._vehicle_on, vehicle_on
        if previous is None or previous == vehicle_on:
            return
        event = "vehicle.on" if vehicle_on else "vehicle.off"
        logger.info("simulation_vehicle_event", scenario=name, event_name=event)
        if self._scheduler is not None:
            self._scheduler.publish(event)

    def get_values(self, names: Iterable[str]) -> Dict[str, Any]:
        values = super().get_values(names)
        for name, sigma in self._noise.items():
            if name in values and sigma > 0:
                noisy = values[name] + self._rng.gauss(0.0, sigma)
                # Speed never goes negative, even with noise.
                values[name] = max(noisy, 0.0) if name == "v.p.speed" else noisy
        return values


def _load_scenarios() -> Dict[str, Any]:
    global _scenarios_cache
    if _scenarios_cache is None:
        path = _FIXTURES_DIR / "simulation_scenarios.json"
        with open(path, encoding="utf-8") as fh:
            _scenarios_cache = json.load(fh)["scenarios"]
    return _scenarios_cache


def available_scenarios() -> List[str]:
    return sorted(_load_scenarios())
