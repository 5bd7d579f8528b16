"""Grid-search latency estimation between a reference and a device under test."""
from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .acquisition.reports import Report
from .calibration import CalibrationMap
from .trajectory import Trajectory, common_origin

logger = logging.getLogger(__name__)

DEFAULT_MAX_OFFSET = 0.3
DEFAULT_STEP = 0.001


class LatencyAligner:
    """
    Finds the time shift that best explains the device-under-test trace as a
    delayed, calibration-mapped copy of the reference trace.

    Reports are only accepted once ``calibration`` holds a valid table.
    """

    def __init__(
        self,
        calibration: CalibrationMap,
        *,
        max_offset: float = DEFAULT_MAX_OFFSET,
        step: float = DEFAULT_STEP,
    ) -> None:
        if step <= 0:
            raise ValueError("step must be positive")
        self.calibration = calibration
        self.max_offset = abs(max_offset)
        self.step = step
        self._reference_reports: List[Report] = []
        self._test_reports: List[Report] = []
        self.last_search: Optional[Tuple[np.ndarray, np.ndarray]] = None

    @property
    def reference_reports(self) -> Sequence[Report]:
        return self._reference_reports

    @property
    def test_reports(self) -> Sequence[Report]:
        return self._test_reports

    def add_reference_reports(self, reports: Sequence[Report]) -> bool:
        if not self.calibration.is_valid:
            return False
        self._reference_reports.extend(reports)
        return True

    def add_test_reports(self, reports: Sequence[Report]) -> bool:
        if not self.calibration.is_valid:
            return False
        self._test_reports.extend(reports)
        return True

    def candidate_offsets(self) -> np.ndarray:
        """Zero first, then the grid from -max_offset to +max_offset."""

        steps = int(round(self.max_offset / self.step))
        grid = np.arange(-steps, steps + 1, dtype=float) * self.step
        return np.concatenate(([0.0], grid))

    def trajectories(
        self, reference_channel: int, test_channel: int, use_arrival_time: bool = False
    ) -> Optional[Tuple[Trajectory, Trajectory]]:
        origin = common_origin(
            self._reference_reports, self._test_reports, use_arrival_time=use_arrival_time
        )
        if origin is None or not self._reference_reports or not self._test_reports:
            return None
        reference = Trajectory(self._reference_reports, origin, reference_channel, use_arrival_time)
        test = Trajectory(self._test_reports, origin, test_channel, use_arrival_time)
        return reference, test

    def error_for_offset(self, reference: Trajectory, test: Trajectory, offset: float) -> float:
        codes = reference.lookup_many(test.times - offset)
        predicted = self.calibration.values_for_codes(codes)
        residuals = predicted - test.values
        return float(np.dot(residuals, residuals))

    def compute_latency(
        self, reference_channel: int, test_channel: int, use_arrival_time: bool = False
    ) -> Tuple[bool, float]:
        """
        Return ``(ok, offset_seconds)``; a positive offset means the device
        under test lags the reference. ``(False, 0.0)`` when there is nothing
        to align.
        """

        pair = self.trajectories(reference_channel, test_channel, use_arrival_time)
        if pair is None:
            logger.warning(
                "Cannot compute latency (reference=%d reports, test=%d reports)",
                len(self._reference_reports),
                len(self._test_reports),
            )
            return False, 0.0
        reference, test = pair
        if len(reference) == 0 or len(test) == 0:
            logger.warning(
                "No samples for reference channel %d or test channel %d", reference_channel, test_channel
            )
            return False, 0.0

        offsets = self.candidate_offsets()
        errors = np.empty_like(offsets)
        best_offset = offsets[0]
        best_error = np.inf
        for idx, offset in enumerate(offsets):
            error = self.error_for_offset(reference, test, offset)
            errors[idx] = error
            if error < best_error:
                best_error = error
                best_offset = offset
        self.last_search = (offsets, errors)
        logger.info("Best offset %.1f ms (squared error %.6g)", best_offset * 1e3, best_error)
        return True, float(best_offset)
