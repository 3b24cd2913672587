"""Telemetry Logger.

Append-only JSONL recording of published simulator telemetry for offline
analysis. One file per run: ``telemetry_<run_id>.jsonl``.
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import IO, TYPE_CHECKING, Any

if TYPE_CHECKING:
    from quadsim.telemetry import TelemetryBundle

logger = logging.getLogger(__name__)


@dataclass
class TelemetryLogEntry:
    """Single telemetry log entry."""

    timestamp: str
    vehicle_id: str
    sim_time_s: float
    payload: dict[str, Any]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


class TelemetryLogger:
    """Append-only telemetry logger.

    ``log_bundle`` has the scheduler callback signature, so a logger can be
    registered directly with ``scheduler.on_telemetry(telemetry_logger.log_bundle)``.
    """

    def __init__(self, log_dir: Path) -> None:
        """Initialize the TelemetryLogger.

        Args:
            log_dir: Directory path where telemetry logs will be stored.
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        self._current_run: str | None = None
        self._run_file: Path | None = None
        self._handle: IO[str] | None = None
        self.entries_written = 0

    @property
    def run_file(self) -> Path | None:
        return self._run_file

    def start_run(self, run_id: str | None = None) -> str:
        """Start a new logging run, closing any open one."""
        if self._current_run:
            self.end_run()

        if run_id is None:
            run_id = datetime.now().strftime("%Y%m%d_%H%M%S")

        self._current_run = run_id
        self._run_file = self.log_dir / f"telemetry_{run_id}.jsonl"
        self._handle = open(self._run_file, "a", encoding="utf-8")
        self.entries_written = 0
        logger.info("Started telemetry logging run: %s", run_id)
        return run_id

    def end_run(self) -> None:
        """End the current logging run."""
        if self._handle:
            self._handle.close()
            self._handle = None
        if self._current_run:
            logger.info(
                "Ended telemetry logging run: %s (%d entries)",
                self._current_run,
                self.entries_written,
            )
            self._current_run = None
            self._run_file = None

    def log_telemetry(self, vehicle_id: str, sim_time_s: float, payload: dict[str, Any]) -> None:
        """Append one telemetry payload.

        Args:
            vehicle_id: Vehicle identifier.
            sim_time_s: Simulation time of the payload.
            payload: JSON-serializable telemetry payload.
        """
        if not self._handle:
            self.start_run()

        entry = TelemetryLogEntry(
            timestamp=datetime.now().isoformat(),
            vehicle_id=vehicle_id,
            sim_time_s=sim_time_s,
            payload=payload,
        )
        self._handle.write(json.dumps(entry.to_dict()) + "\n")
        self._handle.flush()
        self.entries_written += 1

    def log_bundle(self, bundle: TelemetryBundle) -> None:
        """Append a published telemetry bundle."""
        self.log_telemetry(
            vehicle_id=bundle.odometry.child_frame_id,
            sim_time_s=bundle.sim_time_s,
            payload=bundle.to_dict(),
        )
