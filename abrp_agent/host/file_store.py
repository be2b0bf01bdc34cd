"""JSON-file backed configuration store.

Stands in for the vehicle's persistent config (``config set usr
abrp.user_token ...``) when the agent runs outside the module.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Mapping

import structlog

from abrp_agent.host.memory import InMemoryConfigStore

logger = structlog.get_logger(__name__)


class JsonFileConfigStore(InMemoryConfigStore):
    """Config store that re-reads and rewrites a JSON file on each access."""

    def __init__(self, path: str | Path) -> None:
        super().__init__()
        self._path = Path(path)

    def get_values(self, namespace: str, prefix: str) -> Dict[str, Any]:
        self._load()
        return super().get_values(namespace, prefix)

    def set_values(
        self, namespace: str, prefix: str, values: Mapping[str, Any]
    ) -> None:
        self._load()
        super().set_values(namespace, prefix, values)
        self._path.parent.mkdir(parents=True, exist_ok=True)
        with open(self._path, "w", encoding="utf-8") as fh:
            json.dump(self.as_dict(), fh, indent=2, sort_keys=True)

    def _load(self) -> None:
        if not self._path.exists():
            self._data = {}
            return
        try:
            with open(self._path, encoding="utf-8") as fh:
                raw = json.load(fh)
        except (OSError, json.JSONDecodeError) as exc:
            logger.error(
                "config_store_unreadable", path=str(self._path), error=str(exc)
            )
            self._data = {}
            return
        if not isinstance(raw, dict):
            logger.error("config_store_invalid", path=str(self._path))
            self._data = {}
            return
        self._data = {
            str(ns): dict(values)
            for ns, values in raw.items()
            if isinstance(values, dict)
        }
