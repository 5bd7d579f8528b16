from __future__ import annotations

import numpy as np

from devlatency.calibration import RAW_MAX, CalibrationMap


def test_gap_between_two_codes_is_interpolated():
    calibration = CalibrationMap()
    assert calibration.add_observation(0, 10.0)
    assert calibration.add_observation(10, 10.0)
    build = calibration.build_table()
    assert build.ok
    assert build.num_interpolated == 9
    assert calibration.value_for_code(5) == 10.0


def test_linear_fill_between_observed_means():
    calibration = CalibrationMap()
    calibration.add_observation(100, 0.0)
    calibration.add_observation(100, 2.0)
    calibration.add_observation(104, 5.0)
    build = calibration.build_table()
    assert build.ok
    assert build.num_interpolated == 3
    assert calibration.value_for_code(100) == 1.0
    assert np.isclose(calibration.value_for_code(102), 3.0)
    assert calibration.observation_count(100) == 2


def test_single_code_cannot_build_table():
    calibration = CalibrationMap()
    calibration.add_observation(42, 1.0)
    calibration.add_observation(42, 2.0)
    build = calibration.build_table()
    assert not build.ok
    assert not calibration.is_valid
    assert calibration.value_for_code(42) == 0.0


def test_out_of_range_codes_are_rejected():
    calibration = CalibrationMap()
    assert not calibration.add_observation(-1, 0.0)
    assert not calibration.add_observation(RAW_MAX + 1, 0.0)
    assert calibration.add_observation(RAW_MAX, 0.0)
    assert calibration.max_observed_code == RAW_MAX


def test_monotonicity_fix_for_inverted_pair():
    calibration = CalibrationMap()
    calibration.add_observation(0, 0.0)
    calibration.add_observation(1, 5.0)
    calibration.add_observation(2, 4.0)
    calibration.add_observation(3, 10.0)
    build = calibration.build_table()
    assert build.ok
    assert build.num_monotonicity_fixes >= 1
    table = calibration.values_for_codes(np.arange(0, 4))
    assert np.all(np.diff(table) >= 0)


def test_falling_trend_fix():
    calibration = CalibrationMap()
    calibration.add_observation(0, 10.0)
    calibration.add_observation(1, 6.0)
    calibration.add_observation(2, 7.0)
    calibration.add_observation(3, 0.0)
    build = calibration.build_table()
    assert build.num_monotonicity_fixes == 1
    assert calibration.value_for_code(1) == 7.0


def test_lookup_clamps_outside_observed_range():
    calibration = CalibrationMap()
    calibration.add_observation(10, 1.0)
    calibration.add_observation(20, 3.0)
    calibration.build_table()
    assert calibration.value_for_code(0) == 1.0
    assert calibration.value_for_code(1000) == 3.0
    assert np.allclose(calibration.values_for_codes(np.array([-5.0, 15.0, 25.0])), [1.0, 2.0, 3.0])


def test_fractional_code_interpolates_between_entries():
    calibration = CalibrationMap()
    calibration.add_observation(0, 0.0)
    calibration.add_observation(1, 10.0)
    calibration.build_table()
    assert np.isclose(calibration.value_for_code(0.25), 2.5)


def test_table_frame_covers_observed_range():
    calibration = CalibrationMap()
    calibration.add_observation(3, 1.0)
    calibration.add_observation(6, 4.0)
    assert calibration.table().empty
    calibration.build_table()
    table = calibration.table()
    assert list(table["code"]) == [3, 4, 5, 6]
    assert list(table["observations"]) == [1, 0, 0, 1]
    assert np.allclose(table["mean"], [1.0, 2.0, 3.0, 4.0])


def test_full_range_with_one_inverted_pair():
    calibration = CalibrationMap()
    for code in range(0, RAW_MAX + 1):
        value = float(code)
        if code == 500:
            value = 502.0
        calibration.add_observation(code, value)
    build = calibration.build_table()
    assert build.ok
    assert build.num_interpolated == 0
    assert build.num_monotonicity_fixes >= 1
    assert calibration.value_for_code(500) == 501.0


def test_flat_steps_are_not_fixes_in_either_direction():
    falling = CalibrationMap()
    for code, value in [(0, 10.0), (1, 5.0), (2, 5.0), (3, 0.0)]:
        falling.add_observation(code, value)
    assert falling.build_table().num_monotonicity_fixes == 0

    rising = CalibrationMap()
    for code, value in [(0, 0.0), (1, 5.0), (2, 5.0), (3, 10.0)]:
        rising.add_observation(code, value)
    assert rising.build_table().num_monotonicity_fixes == 0
