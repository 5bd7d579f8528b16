"""Persisting drained reports to CSV and loading them back for offline analysis."""
from __future__ import annotations

import csv
from pathlib import Path
from typing import Dict, Iterable, List, Optional, TextIO

import numpy as np
import pandas as pd

from .acquisition.reports import Report

PHASE_CALIBRATION = "calibration"
PHASE_MEASUREMENT = "measurement"
BASE_COLUMNS = ["phase", "device", "sample_time", "arrival_time"]

Recording = Dict[str, Dict[str, List[Report]]]


def channel_column(index: int) -> str:
    return f"ch{index}"


class ReportLogger:
    """
    Lazily creates a CSV writer when the first report arrives, so dry runs and
    tests never touch the filesystem. Reports wider than ``num_channels`` are
    truncated; narrower ones leave the remaining columns empty.
    """

    def __init__(self, path: Path, num_channels: int):
        self.path = path
        self.num_channels = num_channels
        self._writer: Optional[csv.DictWriter[str]] = None
        self._file_handle: Optional[TextIO] = None
        self.rows_written = 0

    def append(self, phase: str, device: str, reports: Iterable[Report]) -> None:
        for report in reports:
            if self._writer is None:
                self._open()
            assert self._writer is not None
            row: Dict[str, object] = {
                "phase": phase,
                "device": device,
                "sample_time": repr(float(report.sample_time)),
                "arrival_time": repr(float(report.arrival_time)),
            }
            for index, value in enumerate(report.values[: self.num_channels]):
                row[channel_column(index)] = float(value)
            self._writer.writerow(row)
            self.rows_written += 1
        if self._file_handle is not None:
            self._file_handle.flush()

    def _open(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._file_handle = self.path.open("w", newline="", encoding="utf-8")
        fieldnames = BASE_COLUMNS + [channel_column(i) for i in range(self.num_channels)]
        self._writer = csv.DictWriter(self._file_handle, fieldnames=fieldnames)
        self._writer.writeheader()

    def close(self) -> None:
        if self._file_handle:
            self._file_handle.close()
            self._file_handle = None
            self._writer = None


def load_reports_csv(path: str | Path) -> Recording:
    """Load a recording written by ReportLogger.

    Parameters
    ----------
    path:
        CSV file with `phase`, `device`, `sample_time`, `arrival_time` and
        `ch<N>` columns.

    Returns
    -------
    dict
        ``{phase: {device: [Report, ...]}}`` in file order. Trailing empty
        channel cells are dropped from each report's values.
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(path)

    df = pd.read_csv(path, float_precision="round_trip")
    missing = set(BASE_COLUMNS) - set(df.columns)
    if missing:
        raise ValueError(f"Missing required columns: {sorted(missing)}")
    channel_cols = sorted(
        (col for col in df.columns if col.startswith("ch") and col[2:].isdigit()),
        key=lambda col: int(col[2:]),
    )

    phases = df["phase"].astype(str).to_numpy()
    devices = df["device"].astype(str).to_numpy()
    sample_times = df["sample_time"].to_numpy(dtype=float)
    arrival_times = df["arrival_time"].to_numpy(dtype=float)
    if channel_cols:
        values_matrix = df[channel_cols].to_numpy(dtype=float)
    else:
        values_matrix = np.empty((len(df), 0))

    recording: Recording = {}
    for row_idx in range(len(df)):
        row = values_matrix[row_idx]
        valid = np.flatnonzero(~np.isnan(row))
        width = int(valid[-1]) + 1 if valid.size else 0
        report = Report(
            values=tuple(float(v) for v in row[:width]),
            sample_time=float(sample_times[row_idx]),
            arrival_time=float(arrival_times[row_idx]),
        )
        recording.setdefault(phases[row_idx], {}).setdefault(devices[row_idx], []).append(report)
    return recording
