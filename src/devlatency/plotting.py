"""Plotting helpers for latency results."""
from __future__ import annotations

from pathlib import Path
from typing import Any

import numpy as np

from .pipeline import LatencyResult


def generate_plots(result: LatencyResult, output_dir: Path) -> Path:
    plt = _require_matplotlib()
    output_dir.mkdir(parents=True, exist_ok=True)
    fig, axes = plt.subplots(1, 3, figsize=(18, 5))

    _plot_calibration(result, axes[0])
    _plot_alignment(result, axes[1])
    _plot_search(result, axes[2])

    fig.tight_layout()
    out_path = output_dir / "plots.png"
    fig.savefig(out_path, dpi=200)
    plt.close(fig)
    return out_path


def _plot_calibration(result: LatencyResult, ax) -> None:
    df = result.calibration.table()
    observed = df[df["observations"] > 0]
    ax.scatter(observed["code"], observed["mean"], s=8, alpha=0.7, label="observed")
    if not df.empty:
        ax.plot(df["code"], df["mean"], color="black", linewidth=0.8, label="table")
    ax.set_title("Calibration map")
    ax.set_xlabel("Reference code")
    ax.set_ylabel("Test value")
    ax.legend(loc="best")


def _plot_alignment(result: LatencyResult, ax) -> None:
    ax.set_title("Reference mapped and shifted vs. test")
    ax.set_xlabel("Time [s]")
    ax.set_ylabel("Test value")
    if result.aligner is None:
        return
    pair = result.aligner.trajectories(
        result.reference_channel, result.test_channel, result.use_arrival_time
    )
    if pair is None:
        return
    reference, test = pair
    predicted = result.calibration.values_for_codes(reference.lookup_many(test.times - result.offset_sec))
    ax.plot(test.times, test.values, marker=".", linestyle="-", label="test")
    ax.plot(test.times, predicted, linestyle="--", label=f"reference + {result.offset_ms:.1f} ms")
    ax.legend(loc="best")


def _plot_search(result: LatencyResult, ax) -> None:
    ax.set_title("Squared error vs. offset")
    ax.set_xlabel("Offset [ms]")
    ax.set_ylabel("Squared error")
    if result.aligner is None or result.aligner.last_search is None:
        return
    offsets, errors = result.aligner.last_search
    ax.plot(np.asarray(offsets[1:]) * 1e3, errors[1:], linestyle="-")
    if result.ok:
        ax.axvline(result.offset_ms, color="black", linewidth=0.8, linestyle="--")


def _require_matplotlib() -> Any:
    home_cache = Path.home() / ".cache" / "fontconfig"
    try:
        home_cache.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise RuntimeError("matplotlib cannot write font cache in this environment") from exc

    try:
        import matplotlib
        matplotlib.use("Agg", force=True)
        import matplotlib.pyplot as plt  # type: ignore
    except ImportError as exc:  # pragma: no cover - optional dependency
        raise RuntimeError("matplotlib is required for plotting; install devlatency[plot]") from exc
    except Exception as exc:  # pragma: no cover - environment issues
        raise RuntimeError(f"matplotlib initialisation failed: {exc}") from exc
    return plt
