from __future__ import annotations

from devlatency.acquisition.reports import Report
from devlatency.acquisition.sweep import CalibrationCollector, TurnCounter
from devlatency.calibration import CalibrationMap


def _single_device_sweep(codes):
    return [
        Report(values=(float(code), 2.0 * code), sample_time=0.01 * i, arrival_time=0.01 * i)
        for i, code in enumerate(codes)
    ]


def test_turn_counter_counts_reversals_beyond_threshold():
    counter = TurnCounter(threshold=7)
    turns = [counter.update(v) for v in list(range(0, 21)) + list(range(19, 4, -1)) + list(range(6, 15))]
    assert counter.turns == 2
    assert turns.count(True) == 2
    assert counter.direction == 1


def test_turn_counter_ignores_small_jitter():
    counter = TurnCounter(threshold=7)
    for value in [100, 103, 98, 101, 97, 100, 96]:
        counter.update(value)
    assert counter.turns == 0


def test_collector_pairs_codes_within_one_device():
    calibration = CalibrationMap()
    collector = CalibrationCollector(calibration, reference_channel=0, test_channel=1)
    codes = list(range(10, 41)) + list(range(39, 9, -1))
    new_turns = collector.update(_single_device_sweep(codes))
    assert new_turns == 1
    # first code only seeds the change detector
    assert collector.observations == len(codes) - 1
    assert calibration.build_table().ok
    assert calibration.value_for_code(25) == 50.0


def test_collector_repeated_codes_are_not_recorded_twice():
    calibration = CalibrationMap()
    collector = CalibrationCollector(calibration, 0, 1)
    collector.update(_single_device_sweep([5, 5, 6, 6, 6, 7]))
    assert collector.observations == 2
    assert calibration.observation_count(6) == 1


def test_collector_uses_latest_test_report_in_two_device_mode():
    calibration = CalibrationMap()
    collector = CalibrationCollector(calibration, reference_channel=0, test_channel=0)
    reference = [Report(values=(100.0,), sample_time=0.0, arrival_time=0.0)]
    collector.update(reference, [])
    assert collector.observations == 0
    test = [
        Report(values=(1.0,), sample_time=0.0, arrival_time=0.0),
        Report(values=(3.0,), sample_time=0.1, arrival_time=0.1),
    ]
    collector.update([Report(values=(101.0,), sample_time=0.1, arrival_time=0.1)], test)
    collector.update([Report(values=(102.0,), sample_time=0.2, arrival_time=0.2)], [])
    assert collector.observations == 1
    assert calibration.observation_count(102) == 1
    assert calibration.build_table().ok is False


def test_collector_counts_out_of_range_codes():
    calibration = CalibrationMap()
    collector = CalibrationCollector(calibration, 0, 1)
    collector.update(_single_device_sweep([1, 2000, 3]))
    assert collector.rejected == 1
    assert collector.observations == 1
