from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import numpy as np
import serial  # type: ignore[import]

from .config import SerialSettings

logger = logging.getLogger(__name__)

ON_MSG = b"1"
OFF_MSG = b"0"
THRESHOLD = 512


@dataclass(frozen=True)
class LatencySummary:
    count: int
    mean: float
    minimum: float
    maximum: float

    @staticmethod
    def from_values(values: List[float]) -> "LatencySummary":
        if not values:
            return LatencySummary(count=0, mean=float("nan"), minimum=float("nan"), maximum=float("nan"))
        arr = np.asarray(values, dtype=float)
        return LatencySummary(
            count=int(arr.size),
            mean=float(arr.mean()),
            minimum=float(arr.min()),
            maximum=float(arr.max()),
        )


@dataclass
class LoopbackResult:
    on_latencies: List[float] = field(default_factory=list)
    off_latencies: List[float] = field(default_factory=list)

    @property
    def on_summary(self) -> LatencySummary:
        return LatencySummary.from_values(self.on_latencies)

    @property
    def off_summary(self) -> LatencySummary:
        return LatencySummary.from_values(self.off_latencies)


class LoopbackTester:
    """
    Round-trip latency of a microcontroller that drives a digital output and
    reads it back on an analog input, reporting one integer reading per line.
    """

    def __init__(
        self,
        settings: SerialSettings,
        *,
        threshold: int = THRESHOLD,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings
        self.threshold = threshold
        self._clock = clock
        self._serial_handle = None

    def open(self) -> None:
        self._serial_handle = serial.Serial(
            port=self.settings.port,
            baudrate=self.settings.baudrate,
            timeout=self.settings.timeout,
        )
        time.sleep(0.01)
        self._serial_handle.reset_input_buffer()
        logger.info("Connected to %s", self.settings.port)

    def close(self) -> None:
        if self._serial_handle is not None:
            self._serial_handle.close()
            self._serial_handle = None

    def send(self, msg: bytes) -> None:
        if self._serial_handle is None:
            raise RuntimeError("Loopback port is not open")
        self._serial_handle.write(msg)
        self._serial_handle.flush()

    def read_latest_value(self) -> Optional[int]:
        """Read all pending lines and return the last valid reading."""

        if self._serial_handle is None:
            raise RuntimeError("Loopback port is not open")
        latest: Optional[int] = None
        raw = self._serial_handle.readline()
        while raw:
            try:
                latest = int(raw.decode("ascii", errors="ignore").strip())
            except ValueError:
                logger.debug("Ignoring malformed reading %r", raw)
            if not self._serial_handle.in_waiting:
                break
            raw = self._serial_handle.readline()
        return latest

    def wait_for(self, above: bool, timeout: float) -> bool:
        deadline = self._clock() + timeout
        while self._clock() < deadline:
            value = self.read_latest_value()
            if value is None:
                continue
            if (value > self.threshold) if above else (value < self.threshold):
                return True
        return False

    def run(self, count: int, *, initial_timeout: float = 3.0, step_timeout: float = 1.0) -> LoopbackResult:
        """Toggle the output ``count`` times, timing each on and off transition."""

        self.send(OFF_MSG)
        if not self.wait_for(above=False, timeout=initial_timeout):
            raise TimeoutError("Timeout waiting for initial report")
        result = LoopbackResult()
        for iteration in range(count):
            if not self.wait_for(above=False, timeout=step_timeout):
                raise TimeoutError(f"Timeout waiting for below threshold, iteration {iteration}")
            before = self._clock()
            self.send(ON_MSG)
            if not self.wait_for(above=True, timeout=step_timeout):
                raise TimeoutError(f"Timeout waiting for above threshold, iteration {iteration}")
            result.on_latencies.append(self._clock() - before)

            before = self._clock()
            self.send(OFF_MSG)
            if not self.wait_for(above=False, timeout=step_timeout):
                raise TimeoutError(f"Timeout waiting for below threshold, iteration {iteration}")
            result.off_latencies.append(self._clock() - before)
        return result
