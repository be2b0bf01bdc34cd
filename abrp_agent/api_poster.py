"""HTTP client that sends ``TelemetryRecord`` to the ABRP telemetry API.

Features:
* Fire-and-forget: :meth:`TelemetryPoster.transmit` schedules the request
  on the running event loop and returns immediately.
* No retry.  The next low-rate tick sends again if the policy still
  says so.
* Non-200 responses are logged as warnings, transport errors as errors;
  nothing is raised to the caller.
* ``dry_run`` mode: log the record, never touch the network.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Optional, Set

import httpx
import structlog

from abrp_agent.config import AgentSettings
from abrp_agent.host.base import ConfigStore
from abrp_agent.schemas import TelemetryRecord

logger = structlog.get_logger(__name__)

_ENDPOINT_PATH = "/1/tlm/send"

CONFIG_NAMESPACE = "usr"
CONFIG_PREFIX = "abrp."
TOKEN_KEY = "user_token"


def read_user_token(config_store: ConfigStore) -> Optional[str]:
    """Return the ABRP user token from the host config, if set."""
    token = config_store.get_values(CONFIG_NAMESPACE, CONFIG_PREFIX).get(TOKEN_KEY)
    return str(token) if token else None


def store_user_token(config_store: ConfigStore, token: str) -> None:
    """Set ``usr abrp.user_token``, keeping the other ``abrp.`` keys."""
    values = config_store.get_values(CONFIG_NAMESPACE, CONFIG_PREFIX)
    values[TOKEN_KEY] = token
    config_store.set_values(CONFIG_NAMESPACE, CONFIG_PREFIX, values)


class TelemetryPoster:
    """Sends telemetry records to ABRP."""

    def __init__(self, settings: AgentSettings, config_store: ConfigStore) -> None:
        self._url = f"{settings.api_base_url.rstrip('/')}{_ENDPOINT_PATH}"
        self._api_key = settings.api_key
        self._dry_run = settings.dry_run
        self._timeout = settings.http_timeout_seconds
        self._verify: Any = settings.ca_bundle or True
        self._config_store = config_store
        self._client: httpx.AsyncClient | None = None
        self._pending: Set["asyncio.Task[bool]"] = set()

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        if not self._dry_run and self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout, verify=self._verify
            )

    async def aclose(self) -> None:
        """Wait for in-flight requests, then close the HTTP client."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # -- public API ---------------------------------------------------------

    def transmit(self, record: TelemetryRecord) -> bool:
        """Schedule *record* for sending.  Returns ``False`` if not sent.

        Needs a running event loop; without one the record is dropped.
        """
        token = read_user_token(self._config_store)
        if not token:
            logger.error("user_token_missing", key="usr abrp.user_token")
            return False

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.error("telemetry_send_failed", error="no running event loop")
            return False

        logger.info("telemetry_sending", **record.to_payload())
        task = loop.create_task(self.send(record, token))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return True

    async def send(self, record: TelemetryRecord, token: str) -> bool:
        """Send *record* now.  Returns ``True`` on HTTP 200."""
        params = self._query_params(record, token)

        if self._dry_run:
            logger.info(
                "dry_run_telemetry",
                fields=len(record.to_payload()),
                payload_bytes=len(params["tlm"]),
            )
            return True

        try:
            if self._client is None:
                raise RuntimeError(
                    "TelemetryPoster.start() must be called before sending"
                )
            response = await self._client.get(self._url, params=params)
        except httpx.RequestError as exc:
            logger.error("telemetry_send_failed", error=str(exc), url=self._url)
            return False
        except Exception:
            logger.exception("telemetry_send_failed", url=self._url)
            return False

        if response.status_code != 200:
            logger.warning(
                "telemetry_rejected",
                status=response.status_code,
                body=response.text[:500],
            )
            return False

        logger.info("telemetry_sent", status=response.status_code)
        return True

    @property
    def pending(self) -> int:
        return len(self._pending)

    # -- internal -----------------------------------------------------------

    def _query_params(self, record: TelemetryRecord, token: str) -> Dict[str, str]:
        return {
            "api_key": self._api_key,
            "token": token,
            "tlm": record.to_json(),
        }
