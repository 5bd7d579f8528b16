"""Command line interface for the devlatency package."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

import typer

from .acquisition import runner
from .acquisition.config import load_config
from .pipeline import run_replay
from .reporting import write_report

app = typer.Typer(context_settings={"help_option_names": ["-h", "--help"]})
app.add_typer(runner.app)


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Log debug messages."),
) -> None:
    """Estimate latency between asynchronous measurement streams."""

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


@app.command()
def replay(
    input_path: Path = typer.Option(..., "--in", help="Recording CSV written by a live session.", exists=True),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c", help="JSON session config."),
    override: Optional[List[str]] = typer.Option(None, "--set", help="Override config keys."),
    reference_device: str = typer.Option(
        runner.REFERENCE_DEVICE, "--reference-device", help="Device name of the reference stream."
    ),
    test_device: Optional[str] = typer.Option(
        None, "--test-device", help="Device name of the test stream (default: same device as reference)."
    ),
    report_dir: Optional[Path] = typer.Option(None, "--report", help="Output directory for reports."),
) -> None:
    """Recompute calibration and latency from a recorded session."""

    try:
        cfg = load_config(config_path, override or None)
        result = run_replay(input_path, cfg, reference_device=reference_device, test_device=test_device)
    except ValueError as exc:
        raise typer.BadParameter(str(exc)) from exc

    if not result.build.ok:
        typer.echo("Could not construct calibration mapping.")
        raise typer.Exit(code=7)
    if not result.ok:
        typer.echo("Could not compute latency.")
        raise typer.Exit(code=8)
    typer.echo(f"Error-minimizing latency, device behind reference (milliseconds): {result.offset_ms:.1f}")
    if report_dir is not None:
        write_report(result, report_dir, input_path=input_path)
        typer.echo(f"Report written to {report_dir}")


def run() -> None:
    app()


if __name__ == "__main__":  # pragma: no cover
    run()
