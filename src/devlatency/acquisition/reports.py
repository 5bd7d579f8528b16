from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, List, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

# Passing NOW as the sample time stamps the report with its arrival time.
NOW: Optional[float] = None


@dataclass(frozen=True)
class Report:
    """One set of channel values measured at the same instant by one device."""

    values: tuple[float, ...]
    sample_time: float
    arrival_time: float

    def timestamp(self, use_arrival_time: bool = False) -> float:
        return self.arrival_time if use_arrival_time else self.sample_time


class ReportSink(Protocol):
    def add_report(self, values: Sequence[float], sample_time: Optional[float] = NOW) -> Report:
        ...


class Device(Protocol):
    """
    Hooks driven by a DeviceSession from its acquisition thread.
    Each hook reports failure by returning False or raising.
    """

    def open(self, sink: ReportSink) -> bool:
        ...

    def service(self) -> bool:
        ...

    def close(self) -> bool:
        ...


class ReportBuffer:
    """Lock-guarded FIFO of pending reports, drained in bulk by the consumer."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._reports: List[Report] = []

    def add_report(self, values: Sequence[float], sample_time: Optional[float] = NOW) -> Report:
        arrival_time = time.time()
        if sample_time is NOW:
            sample_time = arrival_time
        report = Report(
            values=tuple(float(value) for value in values),
            sample_time=float(sample_time),
            arrival_time=arrival_time,
        )
        with self._lock:
            self._reports.append(report)
        return report

    def drain(self) -> List[Report]:
        with self._lock:
            reports, self._reports = self._reports, []
        return reports

    def __len__(self) -> int:
        with self._lock:
            return len(self._reports)


class DeviceSession:
    """
    Runs one device's acquisition loop on a dedicated thread.

    The loop busy-polls ``device.service()`` without sleeping so that the
    arrival time of each report is as close as possible to the physical event.
    Reports reach the consumer only through ``drain()``.
    """

    def __init__(self, device: Device, *, name: str = "device") -> None:
        self.device = device
        self.name = name
        self._buffer = ReportBuffer()
        self._stop_event = threading.Event()
        self._opened_event = threading.Event()
        self._broken = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.last_exception: Optional[BaseException] = None

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(target=self._run, name=f"{self.name}-acquisition", daemon=True)
        self._thread.start()
        self._opened_event.wait()

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()

    def add_report(self, values: Sequence[float], sample_time: Optional[float] = NOW) -> Report:
        return self._buffer.add_report(values, sample_time)

    def drain(self) -> List[Report]:
        return self._buffer.drain()

    def is_broken(self) -> bool:
        return self._broken.is_set()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def __enter__(self) -> "DeviceSession":
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def _run(self) -> None:
        try:
            if not self._call("open", self.device.open, self._buffer):
                self._broken.set()
        finally:
            self._opened_event.set()
        if not self._broken.is_set():
            logger.info("%s: acquisition running", self.name)
        while not self._broken.is_set() and not self._stop_event.is_set():
            if not self._call("service", self.device.service):
                self._broken.set()
        if not self._call("close", self.device.close):
            self._broken.set()
        logger.info("%s: acquisition stopped (broken=%s)", self.name, self.is_broken())

    def _call(self, step: str, hook: Callable[..., bool], *args: object) -> bool:
        try:
            ok = bool(hook(*args))
        except Exception as exc:
            self.last_exception = exc
            logger.exception("%s: device %s failed", self.name, step)
            return False
        if not ok:
            logger.warning("%s: device %s reported failure", self.name, step)
        return ok
