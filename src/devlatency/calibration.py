"""Empirical lookup table from reference raw codes to device-under-test values."""
from __future__ import annotations

import logging
import math
from typing import List, NamedTuple, Optional

import numpy as np
import pandas as pd

logger = logging.getLogger(__name__)

RAW_MAX = 1023


class CalibrationBuild(NamedTuple):
    ok: bool
    num_interpolated: int
    num_monotonicity_fixes: int


class CalibrationMap:
    """
    Accumulates (raw code, reference value) observations into per-code
    buckets and reduces them to a dense, gap-free table over the observed
    code range.
    """

    def __init__(self, raw_max: int = RAW_MAX) -> None:
        self.raw_max = raw_max
        self._buckets: List[List[float]] = [[] for _ in range(raw_max + 1)]
        self._min_code = raw_max
        self._max_code = 0
        self._mean: Optional[np.ndarray] = None

    @property
    def min_observed_code(self) -> int:
        return self._min_code

    @property
    def max_observed_code(self) -> int:
        return self._max_code

    @property
    def has_range(self) -> bool:
        return self._max_code > self._min_code

    @property
    def is_valid(self) -> bool:
        return self._mean is not None

    def observation_count(self, raw_code: int) -> int:
        return len(self._buckets[raw_code])

    def add_observation(self, raw_code: float, reference_value: float) -> bool:
        if not 0 <= raw_code <= self.raw_max:
            return False
        index = int(raw_code)
        self._buckets[index].append(float(reference_value))
        if index < self._min_code:
            self._min_code = index
        if index > self._max_code:
            self._max_code = index
        return True

    def build_table(self) -> CalibrationBuild:
        """
        Reduce the buckets to a mean-per-code table.

        Interior codes without observations are filled by linear
        interpolation toward the next observed code. A single forward pass
        then overwrites any value that breaks the trend given by the endpoint
        means with its successor; the result is not re-checked afterwards.
        Equal neighbours never break the trend, whichever way it runs, so flat
        stretches are not counted as fixes.
        """

        if not self.has_range:
            logger.warning(
                "Insufficient calibration data (codes %d..%d)", self._min_code, self._max_code
            )
            return CalibrationBuild(False, 0, 0)

        mean = np.array(
            [sum(bucket) / len(bucket) if bucket else 0.0 for bucket in self._buckets],
            dtype=float,
        )

        num_interpolated = 0
        code = self._min_code + 1
        while code < self._max_code:
            if self._buckets[code]:
                code += 1
                continue
            next_code = code + 1
            while not self._buckets[next_code]:
                next_code += 1
            base = code - 1
            gap = float(next_code - base)
            base_value = mean[base]
            delta = mean[next_code] - base_value
            for fill in range(code, next_code):
                mean[fill] = base_value + (fill - base) / gap * delta
                num_interpolated += 1
            code = next_code

        falling = mean[self._max_code] < mean[self._min_code]
        num_fixes = 0
        for code in range(self._min_code, self._max_code):
            step = mean[code + 1] - mean[code]
            if (falling and step > 0) or (not falling and step < 0):
                mean[code] = mean[code + 1]
                num_fixes += 1

        self._mean = mean
        logger.info(
            "Calibration table built over codes %d..%d (interpolated=%d, monotonicity fixes=%d)",
            self._min_code,
            self._max_code,
            num_interpolated,
            num_fixes,
        )
        return CalibrationBuild(True, num_interpolated, num_fixes)

    def value_for_code(self, raw_code: float) -> float:
        """
        Device value for ``raw_code``, clamped to the observed range.

        Integral codes return the table entry; fractional codes interpolate
        between the neighbouring entries.
        """

        if self._mean is None:
            return 0.0
        code = min(max(float(raw_code), float(self._min_code)), float(self._max_code))
        lower = int(math.floor(code))
        frac = code - lower
        if frac == 0.0:
            return float(self._mean[lower])
        return float(self._mean[lower] + frac * (self._mean[lower + 1] - self._mean[lower]))

    def values_for_codes(self, raw_codes: np.ndarray) -> np.ndarray:
        """Vectorised ``value_for_code``."""

        codes = np.asarray(raw_codes, dtype=float)
        if self._mean is None:
            return np.zeros_like(codes)
        codes = np.clip(codes, self._min_code, self._max_code)
        table_codes = np.arange(self._min_code, self._max_code + 1, dtype=float)
        return np.interp(codes, table_codes, self._mean[self._min_code : self._max_code + 1])

    def table(self) -> pd.DataFrame:
        if self._mean is None:
            return pd.DataFrame(columns=["code", "mean", "observations"])
        codes = np.arange(self._min_code, self._max_code + 1)
        return pd.DataFrame(
            {
                "code": codes,
                "mean": self._mean[self._min_code : self._max_code + 1],
                "observations": [len(self._buckets[code]) for code in codes],
            }
        )
