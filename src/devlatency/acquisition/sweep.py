from __future__ import annotations

import logging
from typing import Optional, Sequence

from ..calibration import CalibrationMap
from .reports import Report

logger = logging.getLogger(__name__)


class TurnCounter:
    """
    Counts direction reversals of a swept reference value.

    The running extremum follows the value while it keeps moving in the
    current direction; a reversal is counted once the value has moved back
    from the extremum by more than ``threshold``.
    """

    def __init__(self, threshold: float = 7.0) -> None:
        self.threshold = threshold
        self.turns = 0
        self._direction = 1
        self._extremum: Optional[float] = None
        self._last: Optional[float] = None

    @property
    def direction(self) -> int:
        return self._direction

    def update(self, value: float) -> bool:
        if self._last is None or self._extremum is None:
            self._last = value
            self._extremum = value
            return False
        if value == self._last:
            return False
        self._last = value
        offset = value - self._extremum
        if offset * self._direction > 0:
            self._extremum = value
            return False
        if abs(offset) > self.threshold:
            self._direction *= -1
            self._extremum = value
            self.turns += 1
            logger.info("Turned around at value %g (turn %d)", value, self.turns)
            return True
        return False


class CalibrationCollector:
    """
    Feeds a CalibrationMap while the reference is swept slowly.

    Every change of the reference code is paired with the device-under-test
    value observed at the same time: the same report's test channel when both
    channels come from one device, otherwise the latest test report.
    """

    def __init__(
        self,
        calibration: CalibrationMap,
        reference_channel: int,
        test_channel: int,
        *,
        turn_threshold: float = 7.0,
    ) -> None:
        self.calibration = calibration
        self.reference_channel = reference_channel
        self.test_channel = test_channel
        self.counter = TurnCounter(turn_threshold)
        self.observations = 0
        self.rejected = 0
        self._last_code: Optional[float] = None
        self._last_test_value: Optional[float] = None

    @property
    def turns(self) -> int:
        return self.counter.turns

    def update(self, reference_reports: Sequence[Report], test_reports: Optional[Sequence[Report]] = None) -> int:
        """Consume one drained batch; returns the number of new turns."""

        turns_before = self.counter.turns
        if test_reports is not None:
            for report in reversed(test_reports):
                if self.test_channel < len(report.values):
                    self._last_test_value = report.values[self.test_channel]
                    break
        for report in reference_reports:
            if self.reference_channel >= len(report.values):
                continue
            if test_reports is None:
                if self.test_channel >= len(report.values):
                    continue
                self._last_test_value = report.values[self.test_channel]
            code = report.values[self.reference_channel]
            if code == self._last_code or self._last_test_value is None:
                continue
            if self._last_code is not None:
                if self.calibration.add_observation(code, self._last_test_value):
                    self.observations += 1
                else:
                    self.rejected += 1
            self._last_code = code
            self.counter.update(code)
        return self.counter.turns - turns_before
