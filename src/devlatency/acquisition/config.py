from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Sequence


@dataclass
class SerialSettings:
    port: str = "/dev/ttyACM0"
    baudrate: int = 115200
    timeout: float = 0.1


@dataclass
class CalibrationSettings:
    required_passes: int = 3
    turn_threshold: float = 7.0


@dataclass
class SearchSettings:
    max_offset_sec: float = 0.3
    step_sec: float = 0.001


@dataclass
class LatencyConfig:
    reference_channel: int = 0
    test_channel: int = 1
    use_arrival_time: bool = False
    measurement_passes: int = 10
    wait_timeout_sec: float = 20.0
    oscillation_window_sec: float = 1.0
    output_csv: Path | None = None
    serial: SerialSettings = field(default_factory=SerialSettings)
    calibration: CalibrationSettings = field(default_factory=CalibrationSettings)
    search: SearchSettings = field(default_factory=SearchSettings)

    @property
    def channel_count(self) -> int:
        return max(self.reference_channel, self.test_channel) + 1

    def validate(self) -> "LatencyConfig":
        if self.reference_channel < 0 or self.test_channel < 0:
            raise ValueError("Channel indices must be non-negative")
        if self.measurement_passes < 1:
            raise ValueError("measurement_passes must be >= 1")
        if self.calibration.required_passes < 1:
            raise ValueError("calibration.required_passes must be >= 1")
        if self.search.step_sec <= 0 or self.search.max_offset_sec < 0:
            raise ValueError("search.step_sec must be positive and search.max_offset_sec non-negative")
        if self.oscillation_window_sec <= 0:
            raise ValueError("oscillation_window_sec must be positive")
        return self


def _load_json(path: Path) -> Dict[str, Any]:
    with path.open("r", encoding="utf-8") as fh:
        return json.load(fh)


def _merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            merged[key] = _merge(base[key], value)  # type: ignore[index]
        else:
            merged[key] = value
    return merged


def load_config(path: Optional[Path | str] = None, overrides: Sequence[str] | None = None) -> LatencyConfig:
    """
    Load a latency-session configuration from JSON and apply CLI-style overrides.

    Overrides are expressed as dotted `key=value` pairs, e.g.:
        ["test_channel=2", "serial.port=/dev/ttyUSB0", "search.max_offset_sec=0.5"]

    With no path the defaults are used as the base.
    """
    data: Dict[str, Any] = _load_json(Path(path)) if path is not None else {}
    override_data: Dict[str, Any] = {}
    for override in overrides or []:
        key, raw_value = _parse_override(override)
        _assign_nested(override_data, key, raw_value)
    merged = _merge(data, override_data)
    serial_data = merged.get("serial") or {}
    calibration_data = merged.get("calibration") or {}
    search_data = merged.get("search") or {}
    defaults = LatencyConfig()
    config = LatencyConfig(
        reference_channel=int(merged.get("reference_channel", defaults.reference_channel)),
        test_channel=int(merged.get("test_channel", defaults.test_channel)),
        use_arrival_time=bool(merged.get("use_arrival_time", defaults.use_arrival_time)),
        measurement_passes=int(merged.get("measurement_passes", defaults.measurement_passes)),
        wait_timeout_sec=float(merged.get("wait_timeout_sec", defaults.wait_timeout_sec)),
        oscillation_window_sec=float(merged.get("oscillation_window_sec", defaults.oscillation_window_sec)),
        output_csv=Path(merged["output_csv"]) if merged.get("output_csv") else None,
        serial=SerialSettings(
            port=str(serial_data.get("port", defaults.serial.port)),
            baudrate=int(serial_data.get("baudrate", defaults.serial.baudrate)),
            timeout=float(serial_data.get("timeout", defaults.serial.timeout)),
        ),
        calibration=CalibrationSettings(
            required_passes=int(calibration_data.get("required_passes", defaults.calibration.required_passes)),
            turn_threshold=float(calibration_data.get("turn_threshold", defaults.calibration.turn_threshold)),
        ),
        search=SearchSettings(
            max_offset_sec=float(search_data.get("max_offset_sec", defaults.search.max_offset_sec)),
            step_sec=float(search_data.get("step_sec", defaults.search.step_sec)),
        ),
    )
    return config.validate()


def _parse_override(item: str) -> tuple[str, Any]:
    if "=" not in item:
        raise ValueError(f"Override '{item}' must use key=value syntax")
    key, raw_value = item.split("=", 1)
    key = key.strip()
    if not key:
        raise ValueError("Override key may not be empty")
    value = _coerce_value(raw_value.strip())
    return key, value


def _coerce_value(raw: str) -> Any:
    if raw.lower() in {"true", "false"}:
        return raw.lower() == "true"
    try:
        if "." in raw or "e" in raw.lower():
            return float(raw)
        return int(raw)
    except ValueError:
        pass
    if raw.startswith("[") and raw.endswith("]"):
        return json.loads(raw)
    if raw.startswith("{") and raw.endswith("}"):
        return json.loads(raw)
    return raw


def _assign_nested(target: Dict[str, Any], dotted_key: str, value: Any) -> None:
    cursor = target
    parts = dotted_key.split(".")
    for part in parts[:-1]:
        cursor = cursor.setdefault(part, {})
    cursor[parts[-1]] = value
