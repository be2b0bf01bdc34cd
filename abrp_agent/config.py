"""Agent configuration via environment variables.

Uses pydantic-settings so every field can be overridden with an
``ABRP_``-prefixed env var (e.g. ``ABRP_LOG_LEVEL``, ``ABRP_DRY_RUN``).
Simulation is the zero-vehicle default.

The ABRP user token is deliberately *not* a setting: it lives in the
host configuration store (namespace ``usr``, prefix ``abrp.``) so it can
be changed or reset while the agent is running.
"""

from __future__ import annotations

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class AgentSettings(BaseSettings):
    """ABRP Agent runtime settings."""

    model_config = {"env_prefix": "ABRP_", "env_file": ".env", "extra": "ignore"}

    # -- vehicle / host -----------------------------------------------------
    metrics_source: str = Field(
        default="sim",
        description="Metrics registry backend; only 'sim' ships with the agent",
    )
    sim_scenario: str = Field(
        default="parked",
        description="Simulation scenario name (from simulation_scenarios.json)",
    )
    vehicle_family: str = Field(
        default="",
        description="Force a vehicle family code; empty to detect from v.type",
    )
    config_store_path: str = Field(
        default="abrp_config.json",
        description="JSON file backing the host configuration store",
    )

    # -- API ----------------------------------------------------------------
    api_base_url: str = Field(
        default="https://api.iternio.com",
        description="Base URL of the ABRP telemetry API",
    )
    api_key: str = Field(
        default="32b2162f-9599-4647-8139-66e9f9528370",
        description="ABRP API key issued to the OVMS integration",
    )
    ca_bundle: Optional[str] = Field(
        default=None,
        description="Path to the trusted TLS root for the API certificate",
    )
    http_timeout_seconds: float = Field(
        default=30.0, description="Timeout for a single telemetry request"
    )

    # -- scheduling ---------------------------------------------------------
    high_rate_event: str = Field(default="ticker.1")
    low_rate_event: str = Field(default="ticker.10")
    high_rate_period_seconds: float = Field(default=1.0)
    low_rate_period_seconds: float = Field(default=10.0)
    sample_buffer_max: int = Field(
        default=120,
        description="Max high-rate samples kept between two low-rate ticks",
    )

    # -- send policy --------------------------------------------------------
    calibration_speed_kph: float = Field(
        default=30.0,
        description="Above this speed, send often enough for calibration",
    )
    calibration_interval_seconds: int = Field(default=5)
    live_staleness_seconds: int = Field(
        default=180,
        description="ABRP marks a session stale after this long without data",
    )
    live_staleness_buffer_seconds: int = Field(default=20)
    charging_interval_seconds: int = Field(default=30 * 60)
    idle_interval_seconds: int = Field(default=24 * 3600)
    charging_power_precision: int = Field(
        default=0,
        description="Decimals of kW compared when deciding a charging power change",
    )

    # -- behaviour ----------------------------------------------------------
    dry_run: bool = Field(
        default=False,
        description="Log telemetry locally; never send to the API",
    )
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(
        default="console",
        description="Log output format: 'console' or 'json'",
    )

    # -- derived ------------------------------------------------------------
    @property
    def is_simulation(self) -> bool:
        """Return ``True`` when metrics come from the simulation registry."""
        return self.metrics_source.strip().lower() == "sim"

    @property
    def live_interval_seconds(self) -> int:
        """Max gap that keeps an ABRP session marked live."""
        return self.live_staleness_seconds - self.live_staleness_buffer_seconds
