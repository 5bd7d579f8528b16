from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd
import pytest
import typer

from devlatency import cli
from devlatency.acquisition.config import load_config
from devlatency.acquisition.loopback import LoopbackResult
from devlatency.acquisition.reports import Report
from devlatency.calibration import CalibrationMap
from devlatency.pipeline import align
from devlatency.recording import PHASE_CALIBRATION, PHASE_MEASUREMENT, ReportLogger
from devlatency.reporting import export_latency, export_loopback


def _result(delay: float = 0.02):
    calibration = CalibrationMap()
    for code in range(0, 101):
        calibration.add_observation(code, 3.0 * code)
    build = calibration.build_table()
    times = np.arange(0.0, 1.0, 0.001)
    ramp = 50.0 + 50.0 * np.sin(2 * np.pi * 2.0 * times)
    delayed = 50.0 + 50.0 * np.sin(2 * np.pi * 2.0 * (times - delay))
    reference = [Report(values=(float(v), 0.0), sample_time=float(t), arrival_time=float(t)) for t, v in zip(times, ramp)]
    test = [Report(values=(0.0, 3.0 * float(v)), sample_time=float(t), arrival_time=float(t)) for t, v in zip(times, delayed)]
    return align(calibration, build, reference, test, load_config())


def test_export_latency_writes_tables_and_report(tmp_path: Path):
    result = _result()
    assert result.ok
    export_latency(result, tmp_path)

    table = pd.read_csv(tmp_path / "calibration_table.csv")
    assert list(table.columns) == ["code", "mean", "observations"]
    assert len(table) == 101
    errors = pd.read_csv(tmp_path / "offset_errors.csv")
    assert len(errors) == 601
    assert np.isclose(errors.loc[errors["squared_error"].idxmin(), "offset_sec"], result.offset_sec)
    report = (tmp_path / "report.md").read_text(encoding="utf-8")
    assert "# Device Latency Report" in report
    assert f"{result.offset_ms:.1f} ms" in report


def test_export_latency_without_calibration(tmp_path: Path):
    calibration = CalibrationMap()
    build = calibration.build_table()
    result = align(calibration, build, [], [], load_config())
    assert not result.ok
    export_latency(result, tmp_path)
    assert not (tmp_path / "offset_errors.csv").exists()
    report = (tmp_path / "report.md").read_text(encoding="utf-8")
    assert "could not be built" in report


def test_export_loopback(tmp_path: Path):
    result = LoopbackResult(on_latencies=[0.002, 0.004], off_latencies=[0.001])
    export_loopback(result, tmp_path)
    df = pd.read_csv(tmp_path / "loopback_latencies.csv")
    assert list(df["transition"]) == ["on", "on", "off"]
    report = (tmp_path / "loopback_report.md").read_text(encoding="utf-8")
    assert "| On | 2 | 3.00 | 2.00 | 4.00 |" in report


def test_generate_plots(tmp_path: Path):
    pytest.importorskip("matplotlib")
    from devlatency.plotting import generate_plots

    out_path = generate_plots(_result(), tmp_path)
    assert out_path.exists()


def _write_recording(path: Path) -> None:
    logger = ReportLogger(path, num_channels=2)
    codes = np.concatenate([np.arange(0, 101), np.arange(99, -1, -1)])
    logger.append(
        PHASE_CALIBRATION,
        "reference",
        [Report(values=(float(c), 3.0 * c), sample_time=0.01 * i, arrival_time=0.01 * i) for i, c in enumerate(codes)],
    )
    times = 5.0 + np.arange(0.0, 1.0, 0.001)
    codes = np.round(50.0 + 50.0 * np.sin(2 * np.pi * 2.0 * times))
    values = 3.0 * (50.0 + 50.0 * np.sin(2 * np.pi * 2.0 * (times - 0.015)))
    logger.append(
        PHASE_MEASUREMENT,
        "reference",
        [Report(values=(float(c), float(v)), sample_time=float(t), arrival_time=float(t)) for t, c, v in zip(times, codes, values)],
    )
    logger.close()


def test_replay_command_prints_latency(tmp_path: Path, capsys):
    path = tmp_path / "session.csv"
    _write_recording(path)
    cli.replay(
        input_path=path,
        config_path=None,
        override=None,
        reference_device="reference",
        test_device=None,
        report_dir=None,
    )
    out = capsys.readouterr().out
    assert "device behind reference (milliseconds): 15.0" in out


def test_replay_command_rejects_unknown_device(tmp_path: Path):
    path = tmp_path / "session.csv"
    _write_recording(path)
    with pytest.raises(typer.BadParameter):
        cli.replay(
            input_path=path,
            config_path=None,
            override=None,
            reference_device="missing",
            test_device=None,
            report_dir=None,
        )


def test_root_app_exposes_live_and_replay_commands():
    commands = typer.main.get_command(cli.app).commands
    assert {"measure", "oscillate", "loopback", "replay"} <= set(commands)
