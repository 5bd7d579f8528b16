"""Report writers for latency results."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import pandas as pd

from .acquisition.loopback import LoopbackResult
from .pipeline import LatencyResult
from .plotting import generate_plots

logger = logging.getLogger(__name__)


def write_report(result: LatencyResult, output_dir: Path, *, input_path: Optional[Path] = None) -> Optional[Path]:
    """Export the report, with plots when matplotlib is usable. Returns the figure path."""

    figure_path = None
    try:
        figure_path = generate_plots(result, output_dir)
    except RuntimeError as exc:
        logger.warning("Plotting skipped: %s", exc)
    export_latency(result, output_dir, figure_path=figure_path, input_path=input_path)
    return figure_path


def export_latency(
    result: LatencyResult,
    output_dir: Path,
    *,
    figure_path: Path | None = None,
    input_path: Path | None = None,
) -> None:
    """Persist calibration table, error curve and markdown report to *output_dir*."""

    output_dir.mkdir(parents=True, exist_ok=True)
    _write_calibration_csv(result, output_dir)
    _write_search_csv(result, output_dir)
    _write_report_md(result, output_dir, figure_path=figure_path, input_path=input_path)


def _write_calibration_csv(result: LatencyResult, output_dir: Path) -> None:
    result.calibration.table().to_csv(output_dir / "calibration_table.csv", index=False)


def _write_search_csv(result: LatencyResult, output_dir: Path) -> None:
    if result.aligner is None or result.aligner.last_search is None:
        return
    offsets, errors = result.aligner.last_search
    # drop the leading zero probe, it repeats a grid point
    df = pd.DataFrame({"offset_sec": offsets[1:], "squared_error": errors[1:]})
    df.to_csv(output_dir / "offset_errors.csv", index=False)


def _write_report_md(
    result: LatencyResult,
    output_dir: Path,
    *,
    figure_path: Path | None,
    input_path: Path | None,
) -> None:
    calibration = result.calibration
    lines: list[str] = []
    lines.append("# Device Latency Report")
    if input_path is not None:
        lines.append(f"*Input file:* `{input_path}`  ")
    lines.append(f"*Reference channel:* {result.reference_channel}  ")
    lines.append(f"*Test channel:* {result.test_channel}  ")
    lines.append("")

    lines.append("## Calibration")
    if result.build.ok:
        lines.append("| Quantity | Value |")
        lines.append("| --- | ---: |")
        lines.append(f"| Min code | {calibration.min_observed_code} |")
        lines.append(f"| Value at min code | {calibration.value_for_code(calibration.min_observed_code):.6g} |")
        lines.append(f"| Max code | {calibration.max_observed_code} |")
        lines.append(f"| Value at max code | {calibration.value_for_code(calibration.max_observed_code):.6g} |")
        lines.append(f"| Interpolated codes | {result.build.num_interpolated} |")
        lines.append(f"| Monotonicity fixes | {result.build.num_monotonicity_fixes} |")
    else:
        lines.append("Calibration table could not be built from the recorded sweep.")
    lines.append("")

    lines.append("## Latency")
    if result.ok:
        lines.append(f"Error-minimizing latency, device behind reference: **{result.offset_ms:.1f} ms**")
        if result.aligner is not None:
            lines.append("")
            lines.append(f"*Reference reports:* {len(result.aligner.reference_reports)}  ")
            lines.append(f"*Test reports:* {len(result.aligner.test_reports)}  ")
    else:
        lines.append("Latency could not be computed.")
    lines.append("")

    if figure_path is not None:
        lines.append(f"![Alignment plots]({figure_path.name})")
        lines.append("")

    lines.append("### Notes")
    lines.append("- A positive latency means the device under test lags the reference.")
    lines.append("- Codes never observed between the extremes are filled by linear interpolation.")

    (output_dir / "report.md").write_text("\n".join(lines), encoding="utf-8")


def export_loopback(result: LoopbackResult, output_dir: Path) -> None:
    """Persist raw loopback latencies and a markdown summary to *output_dir*."""

    output_dir.mkdir(parents=True, exist_ok=True)
    rows = [{"transition": "on", "latency_sec": v} for v in result.on_latencies]
    rows.extend({"transition": "off", "latency_sec": v} for v in result.off_latencies)
    pd.DataFrame(rows, columns=["transition", "latency_sec"]).to_csv(
        output_dir / "loopback_latencies.csv", index=False
    )

    lines: list[str] = []
    lines.append("# Loopback Latency Report")
    lines.append("| Transition | Count | Mean [ms] | Min [ms] | Max [ms] |")
    lines.append("| --- | ---: | ---: | ---: | ---: |")
    for label, summary in (("Off", result.off_summary), ("On", result.on_summary)):
        lines.append(
            f"| {label} | {summary.count} | {summary.mean * 1e3:.2f} | "
            f"{summary.minimum * 1e3:.2f} | {summary.maximum * 1e3:.2f} |"
        )
    (output_dir / "loopback_report.md").write_text("\n".join(lines), encoding="utf-8")
