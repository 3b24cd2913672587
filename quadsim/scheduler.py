"""Fixed-rate simulation scheduler.

Each tick runs the controller, advances the simulator by one fixed step and,
when the clock has passed the next publication boundary, publishes telemetry.
Boundaries are accumulated (``next_pub += 1 / odom_rate``) rather than reset to
the current time, so the long-run publication rate matches ``odom_rate`` even
when individual ticks are late.
"""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import structlog

from quadsim.exceptions import ConfigurationError

if TYPE_CHECKING:
    from quadsim.controller import ControllerAdapter
    from quadsim.simulator import QuadrotorSimulator
    from quadsim.telemetry import TelemetryBundle

logger = structlog.get_logger(__name__)

TelemetryCallback = Callable[["TelemetryBundle"], None]


class SimulationScheduler:
    """Drives a simulator at a fixed rate and publishes telemetry at another."""

    STATS_INTERVAL_S = 5.0

    def __init__(
        self,
        simulator: QuadrotorSimulator,
        controller: ControllerAdapter,
        simulation_rate: float,
        odom_rate: float,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if not (math.isfinite(simulation_rate) and simulation_rate > 0):
            raise ConfigurationError(f"simulation_rate must be positive and finite, got {simulation_rate}")
        if not (math.isfinite(odom_rate) and odom_rate > 0):
            raise ConfigurationError(f"odom_rate must be positive and finite, got {odom_rate}")

        self.simulator = simulator
        self.controller = controller
        self.simulation_rate = simulation_rate
        self.odom_rate = odom_rate
        self.dt = 1.0 / simulation_rate
        self.publish_period = 1.0 / odom_rate

        self._clock = clock
        self._sleep = sleep
        self._callbacks: list[TelemetryCallback] = []
        self._next_pub_time: float | None = None

        self._running = False
        self._task: asyncio.Task | None = None

        # Stats
        self.tick_count = 0
        self.publish_count = 0
        self.overrun_count = 0

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def next_publication_time(self) -> float | None:
        return self._next_pub_time

    def on_telemetry(self, callback: TelemetryCallback) -> None:
        """Register a callback receiving every published bundle."""
        self._callbacks.append(callback)

    def remove_telemetry_callback(self, callback: TelemetryCallback) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def tick(self) -> TelemetryBundle | None:
        """Run one simulation step and publish if a boundary has passed."""
        if self._next_pub_time is None:
            self._next_pub_time = self._clock()

        command = self.simulator.get_command()
        desired_rpm = self.controller.compute(self.simulator.state, command)
        self.simulator.step(desired_rpm, self.dt)
        self.tick_count += 1

        now = self._clock()
        if now < self._next_pub_time:
            return None

        self._next_pub_time += self.publish_period
        bundle = self.simulator.telemetry(stamp=now)
        self.publish_count += 1
        self._publish(bundle)
        return bundle

    def _publish(self, bundle: TelemetryBundle) -> None:
        for callback in list(self._callbacks):
            try:
                callback(bundle)
            except Exception:
                logger.exception("telemetry_callback_failed", callback=repr(callback))

    async def run(self, duration_s: float | None = None, max_ticks: int | None = None) -> None:
        """Tick at ``simulation_rate`` until stopped or a limit is reached.

        Late ticks are never skipped: the loop yields with a zero sleep and
        continues from the accumulated deadline.
        """
        self._running = True
        start = self._clock()
        next_tick = start
        last_stats = start
        ticks = 0

        logger.info(
            "scheduler_started",
            simulation_rate=self.simulation_rate,
            odom_rate=self.odom_rate,
            duration_s=duration_s,
        )

        try:
            while self._running:
                if duration_s is not None and self._clock() - start >= duration_s:
                    break
                if max_ticks is not None and ticks >= max_ticks:
                    break

                self.tick()
                ticks += 1

                next_tick += self.dt
                delay = next_tick - self._clock()
                if delay > 0:
                    await self._sleep(delay)
                else:
                    self.overrun_count += 1
                    await self._sleep(0)

                now = self._clock()
                if now - last_stats >= self.STATS_INTERVAL_S:
                    self._log_stats(now - start)
                    last_stats = now
        finally:
            self._running = False
            logger.info(
                "scheduler_stopped",
                ticks=self.tick_count,
                publications=self.publish_count,
                sim_time_s=round(self.simulator.sim_time_s, 6),
            )

    def _log_stats(self, elapsed_s: float) -> None:
        logger.info(
            "scheduler_stats",
            elapsed_s=round(elapsed_s, 3),
            ticks=self.tick_count,
            publications=self.publish_count,
            overruns=self.overrun_count,
            sim_time_s=round(self.simulator.sim_time_s, 6),
        )

    async def start(self, duration_s: float | None = None) -> None:
        """Start the tick loop as a background task."""
        if self._task is not None and not self._task.done():
            logger.warning("scheduler_already_running")
            return

        self._running = True
        self._task = asyncio.create_task(self.run(duration_s=duration_s))

    async def stop(self) -> None:
        """Stop the tick loop. Pending publications are not drained."""
        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def wait(self) -> None:
        """Wait for a background run started with ``start`` to finish."""
        if self._task is not None:
            await self._task
