from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, List, Optional

import typer

from ..calibration import CalibrationBuild, CalibrationMap
from ..oscillation import OscillationEstimator
from ..pipeline import LatencyResult, calibration_failed, finish, make_aligner
from ..aligner import LatencyAligner
from ..recording import PHASE_CALIBRATION, PHASE_MEASUREMENT, ReportLogger
from ..reporting import export_loopback, write_report
from .config import LatencyConfig, SerialSettings, load_config
from .loopback import LoopbackTester
from .reports import DeviceSession, Report
from .serial_device import StreamingAnalogDevice
from .sweep import CalibrationCollector, TurnCounter

logger = logging.getLogger(__name__)

REFERENCE_DEVICE = "reference"
TEST_DEVICE = "test"


class SessionError(RuntimeError):
    """A live session cannot continue (broken device, bad report shape, timeout)."""


class _Deadline:
    def __init__(self, timeout: Optional[float], clock: Callable[[], float]) -> None:
        self._clock = clock
        self._end = None if timeout is None else clock() + timeout

    def expired(self) -> bool:
        return self._end is not None and self._clock() >= self._end


def _check_sessions(*sessions: DeviceSession) -> None:
    for session in sessions:
        if session.is_broken():
            raise SessionError(f"Device '{session.name}' is broken")


def wait_for_reports(
    session: DeviceSession,
    min_channels: int,
    timeout: float,
    *,
    poll_interval: float = 0.001,
    clock: Callable[[], float] = time.monotonic,
) -> List[Report]:
    """Block until the session delivers reports wide enough for ``min_channels``."""

    deadline = _Deadline(timeout, clock)
    while True:
        _check_sessions(session)
        reports = session.drain()
        if reports:
            width = len(reports[0].values)
            if width < min_channels:
                raise SessionError(
                    f"Report size from '{session.name}' ({width}) is too small for {min_channels} channels"
                )
            return reports
        if deadline.expired():
            raise SessionError(f"No reports from '{session.name}' within {timeout:.1f}s")
        time.sleep(poll_interval)


def collect_calibration(
    reference: DeviceSession,
    test: DeviceSession,
    config: LatencyConfig,
    *,
    recorder: Optional[ReportLogger] = None,
    timeout: Optional[float] = None,
    poll_interval: float = 0.001,
    clock: Callable[[], float] = time.monotonic,
) -> tuple[CalibrationMap, CalibrationBuild]:
    """Pair reference codes with test values while the reference is swept slowly."""

    single = test is reference
    calibration = CalibrationMap()
    collector = CalibrationCollector(
        calibration,
        config.reference_channel,
        config.test_channel,
        turn_threshold=config.calibration.turn_threshold,
    )
    required_turns = 2 * config.calibration.required_passes
    deadline = _Deadline(timeout, clock)
    while collector.turns < required_turns:
        _check_sessions(reference, test)
        if deadline.expired():
            raise SessionError(f"Calibration sweep incomplete ({collector.turns}/{required_turns} turns)")
        reference_reports = reference.drain()
        test_reports = None if single else test.drain()
        if recorder is not None:
            recorder.append(PHASE_CALIBRATION, REFERENCE_DEVICE, reference_reports)
            if test_reports:
                recorder.append(PHASE_CALIBRATION, TEST_DEVICE, test_reports)
        if not reference_reports and not test_reports:
            time.sleep(poll_interval)
            continue
        collector.update(reference_reports, test_reports)
    logger.info("Calibration sweep complete: %d observations", collector.observations)
    return calibration, calibration.build_table()


def collect_measurement(
    reference: DeviceSession,
    test: DeviceSession,
    aligner: LatencyAligner,
    config: LatencyConfig,
    *,
    recorder: Optional[ReportLogger] = None,
    timeout: Optional[float] = None,
    poll_interval: float = 0.001,
    clock: Callable[[], float] = time.monotonic,
) -> int:
    """Accumulate both report streams until the reference has been swept enough."""

    single = test is reference
    counter = TurnCounter(config.calibration.turn_threshold)
    required_turns = 2 * config.measurement_passes
    deadline = _Deadline(timeout, clock)
    while counter.turns < required_turns:
        _check_sessions(reference, test)
        if deadline.expired():
            raise SessionError(f"Measurement sweep incomplete ({counter.turns}/{required_turns} turns)")
        reference_reports = reference.drain()
        test_reports = reference_reports if single else test.drain()
        if recorder is not None:
            recorder.append(PHASE_MEASUREMENT, REFERENCE_DEVICE, reference_reports)
            if not single:
                recorder.append(PHASE_MEASUREMENT, TEST_DEVICE, test_reports)
        if not reference_reports and not test_reports:
            time.sleep(poll_interval)
            continue
        aligner.add_reference_reports(reference_reports)
        aligner.add_test_reports(test_reports)
        for report in reference_reports:
            if config.reference_channel < len(report.values):
                counter.update(report.values[config.reference_channel])
    return len(aligner.reference_reports)


def measure_latency(
    reference: DeviceSession,
    test: DeviceSession,
    config: LatencyConfig,
    *,
    recorder: Optional[ReportLogger] = None,
    timeout: Optional[float] = None,
) -> LatencyResult:
    """Calibrate with a slow sweep, then align a fast sweep."""

    single = test is reference
    if single:
        wait_for_reports(reference, config.channel_count, config.wait_timeout_sec)
    else:
        wait_for_reports(reference, config.reference_channel + 1, config.wait_timeout_sec)
        wait_for_reports(test, config.test_channel + 1, config.wait_timeout_sec)
        test.drain()
    reference.drain()

    logger.info(
        "Producing mapping between devices (sweep slowly %d times)", config.calibration.required_passes
    )
    calibration, build = collect_calibration(reference, test, config, recorder=recorder, timeout=timeout)
    if not build.ok:
        return calibration_failed(calibration, build, config)
    logger.info(
        "Min code %d (value %g), max code %d (value %g), filled %d skipped codes",
        calibration.min_observed_code,
        calibration.value_for_code(calibration.min_observed_code),
        calibration.max_observed_code,
        calibration.value_for_code(calibration.max_observed_code),
        build.num_interpolated,
    )

    logger.info("Measuring latency (sweep rapidly %d times)", config.measurement_passes)
    aligner = make_aligner(calibration, config)
    collect_measurement(reference, test, aligner, config, recorder=recorder, timeout=timeout)
    return finish(aligner, build, config)


def track_oscillation(
    session: DeviceSession,
    window_seconds: float,
    *,
    duration: Optional[float] = None,
    on_estimate: Optional[Callable[[float], None]] = None,
    poll_interval: float = 0.01,
    clock: Callable[[], float] = time.monotonic,
) -> float:
    """Feed the estimator until ``duration`` elapses; returns the last estimate."""

    estimator = OscillationEstimator(window_seconds)
    deadline = _Deadline(duration, clock)
    period = -1.0
    while not deadline.expired():
        _check_sessions(session)
        reports = session.drain()
        if reports:
            period = estimator.add_reports_and_estimate_period(reports)
            if on_estimate is not None:
                on_estimate(period)
        time.sleep(poll_interval)
    return period


app = typer.Typer(add_completion=False, help="Live device sessions.")


def _config_from_options(config_path: Optional[Path], overrides: Optional[List[str]], port: Optional[str]) -> LatencyConfig:
    combined = list(overrides or [])
    if port is not None:
        combined.append(f"serial.port={port}")
    try:
        return load_config(config_path, combined or None)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc


@app.command()
def measure(
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial device of the microcontroller."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON session config."),
    override: Optional[List[str]] = typer.Option(
        None, "--set", help="Override config keys, e.g. --set test_channel=2 --set use_arrival_time=true"
    ),
    report_dir: Optional[Path] = typer.Option(None, "--report", help="Write calibration table and summary here."),
):
    """Calibrate and measure latency between two channels of one microcontroller."""

    cfg = _config_from_options(config_path, override, port)
    device = StreamingAnalogDevice(cfg.serial, cfg.channel_count)
    session = DeviceSession(device, name="arduino")
    recorder = ReportLogger(cfg.output_csv, cfg.channel_count) if cfg.output_csv else None
    session.start()
    try:
        if session.is_broken():
            typer.echo(f"Could not open {cfg.serial.port}")
            raise typer.Exit(code=2)
        result = measure_latency(session, session, cfg, recorder=recorder)
    except KeyboardInterrupt:
        logger.info("Stopping measurement (Ctrl+C)")
        raise typer.Exit(code=1) from None
    except SessionError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=3) from exc
    finally:
        session.stop()
        if recorder is not None:
            recorder.close()
    if not result.build.ok:
        typer.echo("Could not construct calibration mapping.")
        raise typer.Exit(code=7)
    if not result.ok:
        typer.echo("Could not compute latency.")
        raise typer.Exit(code=8)
    typer.echo(f"Error-minimizing latency, device behind reference (milliseconds): {result.offset_ms:.1f}")
    if report_dir is not None:
        write_report(result, report_dir)
        typer.echo(f"Report written to {report_dir}")


@app.command()
def oscillate(
    port: Optional[str] = typer.Option(None, "--port", "-p", help="Serial device of the microcontroller."),
    channels: int = typer.Option(1, "--channels", help="Number of channels to request."),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON session config."),
    override: Optional[List[str]] = typer.Option(None, "--set", help="Override config keys."),
    duration: Optional[float] = typer.Option(None, "--duration", help="Stop after N seconds (default: until Ctrl+C)."),
):
    """Print running estimates of the oscillation period."""

    cfg = _config_from_options(config_path, override, port)
    session = DeviceSession(StreamingAnalogDevice(cfg.serial, channels), name="oscillation")
    last_printed = -1.0

    def report(period: float) -> None:
        nonlocal last_printed
        if period > 0 and abs(period - last_printed) > 1e-3:
            typer.echo(f"Period: {period * 1e3:.1f} ms")
            last_printed = period

    session.start()
    try:
        if session.is_broken():
            typer.echo(f"Could not open {cfg.serial.port}")
            raise typer.Exit(code=2)
        track_oscillation(session, cfg.oscillation_window_sec, duration=duration, on_estimate=report)
    except KeyboardInterrupt:
        logger.info("Stopping (Ctrl+C)")
    except SessionError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=3) from exc
    finally:
        session.stop()


@app.command()
def loopback(
    port: str = typer.Option("/dev/ttyACM0", "--port", "-p", help="Serial device running the loopback firmware."),
    baudrate: int = typer.Option(115200, "--baud", help="Serial baudrate."),
    count: int = typer.Option(100, "--count", min=1, help="Number of on/off toggles."),
    report_dir: Optional[Path] = typer.Option(None, "--report", help="Write raw latencies and summary here."),
):
    """Time digital-output to analog-readback round trips."""

    tester = LoopbackTester(SerialSettings(port=port, baudrate=baudrate, timeout=1.0))
    try:
        tester.open()
    except OSError as exc:
        typer.echo(f"Could not open {port}: {exc}")
        raise typer.Exit(code=2) from exc
    try:
        result = tester.run(count)
    except TimeoutError as exc:
        typer.echo(f"Error: {exc}")
        raise typer.Exit(code=3) from exc
    finally:
        tester.close()
    for label, summary in (("Off", result.off_summary), ("On", result.on_summary)):
        typer.echo(
            f"{label} latencies: mean={summary.mean * 1e3:.2f} ms, "
            f"min={summary.minimum * 1e3:.2f} ms, max={summary.maximum * 1e3:.2f} ms"
        )
    if report_dir is not None:
        export_loopback(result, report_dir)
        typer.echo(f"Report written to {report_dir}")
