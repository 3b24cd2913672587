"""Metrics Package.

Recording of simulator telemetry for offline analysis.
"""

from metrics.telemetry_logger import TelemetryLogEntry, TelemetryLogger

__all__ = [
    "TelemetryLogEntry",
    "TelemetryLogger",
]
