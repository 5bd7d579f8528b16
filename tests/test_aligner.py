from __future__ import annotations

import numpy as np

from devlatency.acquisition.reports import Report
from devlatency.aligner import LatencyAligner
from devlatency.calibration import CalibrationMap


def _identity_calibration(low: int = 0, high: int = 1023) -> CalibrationMap:
    calibration = CalibrationMap()
    for code in range(low, high + 1):
        calibration.add_observation(code, float(code))
    assert calibration.build_table().ok
    return calibration


def _triangle(t: np.ndarray, period: float = 0.4, low: float = 100.0, high: float = 900.0) -> np.ndarray:
    phase = (t % period) / period
    return low + (high - low) * (1.0 - np.abs(2.0 * phase - 1.0))


def _sweep_reports(delay: float, *, rate: float = 1000.0, duration: float = 2.0, start: float = 1000.0):
    times = start + np.arange(0.0, duration, 1.0 / rate)
    reference = [
        Report(values=(float(v),), sample_time=float(t), arrival_time=float(t))
        for t, v in zip(times, np.round(_triangle(times - start)))
    ]
    test = [
        Report(values=(0.0, float(v)), sample_time=float(t), arrival_time=float(t))
        for t, v in zip(times, _triangle(times - start - delay))
    ]
    return reference, test


def test_recovers_known_delay_with_identity_calibration():
    aligner = LatencyAligner(_identity_calibration())
    reference, test = _sweep_reports(0.050)
    assert aligner.add_reference_reports(reference)
    assert aligner.add_test_reports(test)
    ok, offset = aligner.compute_latency(0, 1)
    assert ok
    assert abs(offset - 0.050) <= 0.001


def test_recovers_negative_delay():
    aligner = LatencyAligner(_identity_calibration())
    reference, test = _sweep_reports(-0.020)
    aligner.add_reference_reports(reference)
    aligner.add_test_reports(test)
    ok, offset = aligner.compute_latency(0, 1)
    assert ok
    assert abs(offset + 0.020) <= 0.001


def test_empty_sets_fail_with_zero_offset():
    aligner = LatencyAligner(_identity_calibration())
    assert aligner.compute_latency(0, 1) == (False, 0.0)
    reference, _ = _sweep_reports(0.0, duration=0.1)
    aligner.add_reference_reports(reference)
    assert aligner.compute_latency(0, 1) == (False, 0.0)


def test_missing_channel_fails():
    aligner = LatencyAligner(_identity_calibration())
    reference, test = _sweep_reports(0.0, duration=0.1)
    aligner.add_reference_reports(reference)
    aligner.add_test_reports(test)
    assert aligner.compute_latency(0, 5) == (False, 0.0)


def test_reports_rejected_without_calibration_table():
    calibration = CalibrationMap()
    calibration.add_observation(1, 1.0)
    calibration.build_table()
    aligner = LatencyAligner(calibration)
    reference, test = _sweep_reports(0.0, duration=0.1)
    assert not aligner.add_reference_reports(reference)
    assert not aligner.add_test_reports(test)
    assert len(aligner.reference_reports) == 0
    assert aligner.compute_latency(0, 1) == (False, 0.0)


def test_flat_error_prefers_zero_offset():
    aligner = LatencyAligner(_identity_calibration(0, 10))
    constant = [Report(values=(5.0, 5.0), sample_time=t, arrival_time=t) for t in np.arange(0.0, 1.0, 0.01)]
    aligner.add_reference_reports(constant)
    aligner.add_test_reports(constant)
    assert aligner.compute_latency(0, 1) == (True, 0.0)


def test_candidate_offsets_start_with_zero_then_grid():
    aligner = LatencyAligner(_identity_calibration(0, 10), max_offset=0.003, step=0.001)
    offsets = aligner.candidate_offsets()
    assert np.allclose(offsets, [0.0, -0.003, -0.002, -0.001, 0.0, 0.001, 0.002, 0.003])


def test_last_search_records_error_curve():
    aligner = LatencyAligner(_identity_calibration())
    reference, test = _sweep_reports(0.010, duration=0.8)
    aligner.add_reference_reports(reference)
    aligner.add_test_reports(test)
    ok, offset = aligner.compute_latency(0, 1)
    offsets, errors = aligner.last_search
    assert ok
    assert offsets.shape == errors.shape == (602,)
    assert errors[np.argmin(errors[1:]) + 1] == errors.min()
    assert np.isclose(offsets[1:][np.argmin(errors[1:])], offset)


def test_ramp_delayed_by_fifty_milliseconds():
    times = np.arange(0.0, 2.0, 0.01)
    reference = [Report(values=(float(t),), sample_time=float(t), arrival_time=float(t)) for t in times]
    test = [Report(values=(float(t - 0.05),), sample_time=float(t), arrival_time=float(t)) for t in times]
    aligner = LatencyAligner(_identity_calibration())
    aligner.add_reference_reports(reference)
    aligner.add_test_reports(test)
    ok, offset = aligner.compute_latency(0, 0)
    assert ok
    assert abs(offset - 0.05) <= 0.001
