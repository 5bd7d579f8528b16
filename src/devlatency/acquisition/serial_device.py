from __future__ import annotations

import logging
import time
from typing import List, Optional

import serial  # type: ignore[import]

from .config import SerialSettings
from .reports import ReportSink

logger = logging.getLogger(__name__)


def parse_channel_line(line: str) -> Optional[List[float]]:
    """Parse one ``v0,v1,...`` sample line; None for blank or malformed lines."""

    stripped = line.strip()
    if not stripped or stripped.startswith("#"):
        return None
    try:
        return [float(token) for token in stripped.split(",")]
    except ValueError:
        return None


class StreamingAnalogDevice:
    """
    Microcontroller streaming analog readings over a serial port.

    On open the number of requested channels is written as an ASCII line;
    the firmware then emits one comma-separated line per sample. Reports are
    stamped with their arrival time since the firmware does not timestamp.
    """

    def __init__(self, settings: SerialSettings, num_channels: int, *, settle_sec: float = 0.0) -> None:
        self.settings = settings
        self.num_channels = num_channels
        self.settle_sec = settle_sec
        self._serial_handle = None
        self._sink: Optional[ReportSink] = None
        self._stats = {"lines": 0, "reports": 0, "malformed": 0, "short": 0}

    def open(self, sink: ReportSink) -> bool:
        self._sink = sink
        self._serial_handle = serial.Serial(
            port=self.settings.port,
            baudrate=self.settings.baudrate,
            timeout=self.settings.timeout,
        )
        if self.settle_sec > 0:
            time.sleep(self.settle_sec)
        self._serial_handle.reset_input_buffer()
        self._serial_handle.write(f"{self.num_channels}\n".encode("ascii"))
        self._serial_handle.flush()
        logger.info("Connected to %s (%d channels)", self.settings.port, self.num_channels)
        return True

    def service(self) -> bool:
        if self._serial_handle is None or self._sink is None:
            return False
        raw = self._serial_handle.readline()
        if not raw:
            return True
        self._stats["lines"] += 1
        values = parse_channel_line(raw.decode("ascii", errors="ignore"))
        if values is None:
            self._stats["malformed"] += 1
            logger.debug("Discarding malformed line: %r", raw)
            return True
        if len(values) < self.num_channels:
            self._stats["short"] += 1
            logger.debug("Discarding short report (%d < %d values)", len(values), self.num_channels)
            return True
        self._sink.add_report(values)
        self._stats["reports"] += 1
        return True

    def close(self) -> bool:
        if self._serial_handle is not None:
            self._serial_handle.close()
            self._serial_handle = None
        return True

    def stats(self) -> dict[str, int]:
        return dict(self._stats)
