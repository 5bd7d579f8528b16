"""
Device-side acquisition: report buffering, per-device worker threads, serial
devices and session configuration.

The live session orchestration in :mod:`devlatency.acquisition.runner` sits on
top of the estimators and is imported on demand by the CLI.
"""

from .config import CalibrationSettings, LatencyConfig, SearchSettings, SerialSettings, load_config
from .loopback import LatencySummary, LoopbackResult, LoopbackTester
from .reports import NOW, Device, DeviceSession, Report, ReportBuffer, ReportSink
from .serial_device import StreamingAnalogDevice, parse_channel_line
from .sweep import CalibrationCollector, TurnCounter

__all__ = [
    "CalibrationSettings",
    "LatencyConfig",
    "SearchSettings",
    "SerialSettings",
    "load_config",
    "LatencySummary",
    "LoopbackResult",
    "LoopbackTester",
    "NOW",
    "Device",
    "DeviceSession",
    "Report",
    "ReportBuffer",
    "ReportSink",
    "StreamingAnalogDevice",
    "parse_channel_line",
    "CalibrationCollector",
    "TurnCounter",
]
