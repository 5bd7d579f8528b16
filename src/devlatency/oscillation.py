"""Period estimation for a roughly periodic live signal."""
from __future__ import annotations

import logging
from collections import deque
from typing import Deque, Iterable, List, Tuple

import numpy as np

from .acquisition.reports import Report

logger = logging.getLogger(__name__)


class OscillationEstimator:
    """
    Keeps a sliding window of reports and estimates the oscillation period of
    the channel that varies the most, using rising mean crossings.

    Estimates are -1 until the window has filled once, or whenever the window
    does not hold at least two crossings.
    """

    def __init__(self, window_seconds: float = 1.0) -> None:
        self.window_seconds = window_seconds
        self.window_reached = False
        self._reports: Deque[Report] = deque()

    def __len__(self) -> int:
        return len(self._reports)

    def reset(self) -> None:
        self._reports.clear()
        self.window_reached = False

    def add_reports_and_estimate_period(self, reports: Iterable[Report]) -> float:
        consistent = True
        for report in reports:
            if not self._add_report(report):
                consistent = False
        if not consistent:
            return -1.0
        return self.estimate_period()

    def _add_report(self, report: Report) -> bool:
        if self._reports and len(report.values) != len(self._reports[0].values):
            logger.warning(
                "Report arity changed (%d -> %d); restarting window",
                len(self._reports[0].values),
                len(report.values),
            )
            self.reset()
            self._reports.append(report)
            return False
        self._reports.append(report)
        while self._reports[-1].sample_time - self._reports[0].sample_time > self.window_seconds:
            self.window_reached = True
            self._reports.popleft()
        return True

    def _window_arrays(self) -> Tuple[np.ndarray, np.ndarray]:
        times = np.array([report.sample_time for report in self._reports], dtype=float)
        values = np.array([report.values for report in self._reports], dtype=float)
        return times, values

    def oscillation_channel(self) -> int:
        if not self._reports or not self._reports[0].values:
            return -1
        _, values = self._window_arrays()
        deviations = values.std(axis=0)
        return int(np.argmax(deviations))

    def estimate_period(self) -> float:
        if not self.window_reached:
            return -1.0
        channel = self.oscillation_channel()
        if channel < 0:
            return -1.0
        times, values = self._window_arrays()
        signal = values[:, channel]
        deviation = float(signal.std())
        if deviation <= 0.0:
            return -1.0
        centred = signal - float(signal.mean())
        crossings = _rising_crossings(times, centred, 0.5 * deviation)
        if len(crossings) < 2:
            return -1.0
        periods = np.sort(np.diff(crossings))
        return float(np.median(periods))


def _rising_crossings(times: np.ndarray, centred: np.ndarray, threshold: float) -> List[float]:
    """Times where the signal rises through zero after dipping below -threshold."""

    crossings: List[float] = []
    armed = False
    for idx in range(len(centred)):
        value = centred[idx]
        if value <= -threshold:
            armed = True
            continue
        if armed and value >= 0.0:
            # armed implies the previous sample was below zero
            previous = centred[idx - 1]
            t0, t1 = times[idx - 1], times[idx]
            crossings.append(float(t0 - previous / (value - previous) * (t1 - t0)))
            armed = False
    return crossings
