"""Smooth high-rate power/speed readings into one representative sample.

Instantaneous battery power and speed are too noisy for ABRP's
consumption calibration.  While the vehicle is moving, a ``{power,
speed}`` pair is buffered every high-rate tick; each low-rate tick
drains the buffer and keeps the median-power sample.

Samples are never averaged: two buffered readings may be seconds apart
and blending them would describe an instant that never happened.
"""

from __future__ import annotations

from collections import deque
from typing import Any, Deque, List, Optional, Sequence

import structlog

from abrp_agent.schemas import PowerSample

logger = structlog.get_logger(__name__)


def median_power_sample(samples: Sequence[PowerSample]) -> Optional[PowerSample]:
    """Return the sample with the median power, or ``None`` if empty.

    For an even count the lower-power of the two middle samples wins.
    """
    if not samples:
        return None
    ordered: List[PowerSample] = sorted(samples, key=lambda s: s.power)
    midpoint = len(ordered) // 2
    if len(ordered) % 2 == 0:
        return ordered[midpoint - 1]
    return ordered[midpoint]


class SampleSmoother:
    """Bounded buffer of high-rate samples, drained once per low-rate tick."""

    def __init__(self, maxlen: int = 120) -> None:
        self._buffer: Deque[PowerSample] = deque(maxlen=maxlen)

    def accumulate(self, power: Any, speed: Any) -> bool:
        """Buffer one reading.  Returns ``False`` if either value is missing."""
        if power is None or speed is None:
            return False
        self._buffer.append(PowerSample(power=float(power), speed=float(speed)))
        return True

    def drain_representative(self) -> Optional[PowerSample]:
        """Return the median-power sample and clear the buffer."""
        samples = list(self._buffer)
        self._buffer.clear()
        representative = median_power_sample(samples)
        if representative is not None:
            logger.debug(
                "samples_drained",
                count=len(samples),
                power=representative.power,
                speed=representative.speed,
            )
        return representative

    def clear(self) -> None:
        """Discard buffered samples without picking one."""
        if self._buffer:
            logger.debug("samples_discarded", count=len(self._buffer))
        self._buffer.clear()

    def __len__(self) -> int:
        return len(self._buffer)
