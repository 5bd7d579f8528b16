"""Continuous-time view of one channel of a device's reports."""
from __future__ import annotations

from typing import Iterable, Optional, Sequence

import numpy as np

from .acquisition.reports import Report


def common_origin(*report_sets: Sequence[Report], use_arrival_time: bool = False) -> Optional[float]:
    """Earliest selected timestamp among the first reports of the non-empty sets."""

    firsts = [reports[0].timestamp(use_arrival_time) for reports in report_sets if reports]
    if not firsts:
        return None
    return min(firsts)


class Trajectory:
    """
    Sorted (time, value) samples of one channel, interpolated linearly in time.

    Times are seconds relative to ``origin``. Reports too short to contain
    ``channel`` are skipped. Entries sharing a time keep their input order;
    a lookup landing exactly on such a time inside the trajectory returns the
    last of them, while lookups at or before the first time (at or after the
    last time) return the first (last) entry.
    """

    def __init__(
        self,
        reports: Iterable[Report],
        origin: float,
        channel: int,
        use_arrival_time: bool = False,
    ) -> None:
        times: list[float] = []
        values: list[float] = []
        if channel >= 0:
            for report in reports:
                if channel >= len(report.values):
                    continue
                times.append(report.timestamp(use_arrival_time) - origin)
                values.append(report.values[channel])
        time_arr = np.asarray(times, dtype=float)
        value_arr = np.asarray(values, dtype=float)
        order = np.argsort(time_arr, kind="stable")
        self._times = time_arr[order]
        self._values = value_arr[order]
        self._times.setflags(write=False)
        self._values.setflags(write=False)

    @property
    def times(self) -> np.ndarray:
        return self._times

    @property
    def values(self) -> np.ndarray:
        return self._values

    @property
    def start_time(self) -> float:
        return float(self._times[0]) if len(self) else 0.0

    @property
    def end_time(self) -> float:
        return float(self._times[-1]) if len(self) else 0.0

    def __len__(self) -> int:
        return int(self._times.size)

    def lookup(self, t: float) -> float:
        return float(self.lookup_many(np.array([t], dtype=float))[0])

    def lookup_many(self, times: np.ndarray | Sequence[float]) -> np.ndarray:
        query = np.asarray(times, dtype=float)
        n = len(self)
        if n == 0:
            return np.zeros_like(query)
        if n == 1:
            return np.full_like(query, self._values[0])

        idx = np.searchsorted(self._times, query, side="right")
        idx = np.clip(idx, 1, n - 1)
        t0 = self._times[idx - 1]
        t1 = self._times[idx]
        v0 = self._values[idx - 1]
        v1 = self._values[idx]
        span = t1 - t0
        frac = np.divide(query - t0, span, out=np.zeros_like(query), where=span > 0)
        result = v0 + frac * (v1 - v0)

        result = np.where(query <= self._times[0], self._values[0], result)
        result = np.where(query >= self._times[-1], self._values[-1], result)
        return result
