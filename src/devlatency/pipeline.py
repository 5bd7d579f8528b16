"""High level orchestration shared by live sessions and offline replays."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence

from .acquisition.config import LatencyConfig
from .acquisition.reports import Report
from .acquisition.sweep import CalibrationCollector
from .aligner import LatencyAligner
from .calibration import CalibrationBuild, CalibrationMap
from .recording import PHASE_CALIBRATION, PHASE_MEASUREMENT, load_reports_csv

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LatencyResult:
    ok: bool
    offset_sec: float
    reference_channel: int
    test_channel: int
    calibration: CalibrationMap
    build: CalibrationBuild
    aligner: Optional[LatencyAligner]
    use_arrival_time: bool = False

    @property
    def offset_ms(self) -> float:
        return self.offset_sec * 1e3


def calibration_failed(
    calibration: CalibrationMap, build: CalibrationBuild, config: LatencyConfig
) -> LatencyResult:
    return LatencyResult(
        ok=False,
        offset_sec=0.0,
        reference_channel=config.reference_channel,
        test_channel=config.test_channel,
        calibration=calibration,
        build=build,
        aligner=None,
        use_arrival_time=config.use_arrival_time,
    )


def make_aligner(calibration: CalibrationMap, config: LatencyConfig) -> LatencyAligner:
    return LatencyAligner(
        calibration,
        max_offset=config.search.max_offset_sec,
        step=config.search.step_sec,
    )


def calibrate_from_reports(
    reference_reports: Sequence[Report],
    test_reports: Optional[Sequence[Report]],
    config: LatencyConfig,
) -> tuple[CalibrationMap, CalibrationBuild]:
    """Build a calibration table from an already recorded slow sweep."""

    calibration = CalibrationMap()
    collector = CalibrationCollector(
        calibration,
        config.reference_channel,
        config.test_channel,
        turn_threshold=config.calibration.turn_threshold,
    )
    if test_reports is None:
        collector.update(reference_reports)
    else:
        # replay the two streams in time order so each code pairs with the
        # test value current at that moment
        use_arrival = config.use_arrival_time
        pending: list[Report] = []
        test_iter = iter(sorted(test_reports, key=lambda r: r.timestamp(use_arrival)))
        next_test = next(test_iter, None)
        for report in sorted(reference_reports, key=lambda r: r.timestamp(use_arrival)):
            while next_test is not None and next_test.timestamp(use_arrival) <= report.timestamp(use_arrival):
                pending.append(next_test)
                next_test = next(test_iter, None)
            collector.update([report], pending)
            pending = []
    logger.info("Calibration sweep: %d observations, %d turns", collector.observations, collector.turns)
    return calibration, calibration.build_table()


def align(
    calibration: CalibrationMap,
    build: CalibrationBuild,
    reference_reports: Sequence[Report],
    test_reports: Sequence[Report],
    config: LatencyConfig,
) -> LatencyResult:
    if not build.ok:
        return calibration_failed(calibration, build, config)
    aligner = make_aligner(calibration, config)
    aligner.add_reference_reports(reference_reports)
    aligner.add_test_reports(test_reports)
    return finish(aligner, build, config)


def finish(aligner: LatencyAligner, build: CalibrationBuild, config: LatencyConfig) -> LatencyResult:
    ok, offset = aligner.compute_latency(
        config.reference_channel, config.test_channel, config.use_arrival_time
    )
    return LatencyResult(
        ok=ok,
        offset_sec=offset,
        reference_channel=config.reference_channel,
        test_channel=config.test_channel,
        calibration=aligner.calibration,
        build=build,
        aligner=aligner,
        use_arrival_time=config.use_arrival_time,
    )


def run_replay(
    path: str | Path,
    config: LatencyConfig,
    *,
    reference_device: str = "reference",
    test_device: Optional[str] = None,
) -> LatencyResult:
    """
    Recompute latency from a recording. Without ``test_device`` both channels
    are read from the reference device's reports.
    """

    recording = load_reports_csv(path)
    calibration_phase = recording.get(PHASE_CALIBRATION, {})
    measurement_phase = recording.get(PHASE_MEASUREMENT, {})
    if reference_device not in calibration_phase and reference_device not in measurement_phase:
        raise ValueError(f"Recording has no reports from device '{reference_device}'")
    if test_device is not None and test_device not in calibration_phase and test_device not in measurement_phase:
        raise ValueError(f"Recording has no reports from device '{test_device}'")

    calibration_reference = calibration_phase.get(reference_device, [])
    calibration_test = calibration_phase.get(test_device, []) if test_device is not None else None
    calibration, build = calibrate_from_reports(calibration_reference, calibration_test, config)

    measured_reference = measurement_phase.get(reference_device, [])
    measured_test = measurement_phase.get(test_device if test_device is not None else reference_device, [])
    return align(calibration, build, measured_reference, measured_test, config)
