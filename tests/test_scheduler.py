"""Tests for the fixed-rate scheduler."""

import asyncio
import math

import numpy as np
import pytest

from quadsim.controller import ControllerAdapter, DirectRPMController
from quadsim.exceptions import ConfigurationError
from quadsim.scheduler import SimulationScheduler
from quadsim.simulator import QuadrotorSimulator


@pytest.fixture
def simulator(make_config) -> QuadrotorSimulator:
    config = make_config(initial_position={"z": 1.0})
    return QuadrotorSimulator(config.model_copy(update={"initial_motor_rpm": config.vehicle.hover_rpm}))


@pytest.fixture
def hover_controller(simulator) -> DirectRPMController:
    return DirectRPMController(default_rpm=np.full(4, simulator.params.hover_rpm))


def _scheduler(simulator, controller, clock, simulation_rate=1000.0, odom_rate=100.0):
    return SimulationScheduler(
        simulator,
        controller,
        simulation_rate=simulation_rate,
        odom_rate=odom_rate,
        clock=clock,
        sleep=clock.sleep,
    )


class TestConfiguration:
    """Rates are validated at construction."""

    @pytest.mark.parametrize("rate", [0.0, -100.0])
    def test_non_positive_simulation_rate_is_fatal(self, simulator, hover_controller, rate):
        with pytest.raises(ConfigurationError):
            SimulationScheduler(simulator, hover_controller, simulation_rate=rate, odom_rate=100.0)

    @pytest.mark.parametrize("rate", [0.0, -1.0])
    def test_non_positive_odom_rate_is_fatal(self, simulator, hover_controller, rate):
        with pytest.raises(ConfigurationError):
            SimulationScheduler(simulator, hover_controller, simulation_rate=1000.0, odom_rate=rate)

    @pytest.mark.parametrize("rate", [math.inf, math.nan])
    def test_non_finite_rates_are_fatal(self, simulator, hover_controller, rate):
        with pytest.raises(ConfigurationError):
            SimulationScheduler(simulator, hover_controller, simulation_rate=rate, odom_rate=100.0)
        with pytest.raises(ConfigurationError):
            SimulationScheduler(simulator, hover_controller, simulation_rate=1000.0, odom_rate=rate)

    def test_step_size(self, simulator, hover_controller, fake_clock):
        scheduler = _scheduler(simulator, hover_controller, fake_clock, simulation_rate=500.0)
        assert scheduler.dt == pytest.approx(0.002)


class TestTick:
    """Single ticks."""

    def test_first_tick_publishes(self, simulator, hover_controller, fake_clock):
        scheduler = _scheduler(simulator, hover_controller, fake_clock)
        bundle = scheduler.tick()
        assert bundle is not None
        assert bundle.odometry.header.stamp == fake_clock.now
        assert scheduler.next_publication_time == pytest.approx(fake_clock.now + 0.01)

    def test_no_publication_before_boundary(self, simulator, hover_controller, fake_clock):
        scheduler = _scheduler(simulator, hover_controller, fake_clock)
        scheduler.tick()
        fake_clock.advance(0.005)
        assert scheduler.tick() is None
        assert scheduler.publish_count == 1

    def test_each_tick_steps_simulator(self, simulator, hover_controller, fake_clock):
        scheduler = _scheduler(simulator, hover_controller, fake_clock)
        for _ in range(25):
            scheduler.tick()
        assert simulator.sim_time_s == pytest.approx(0.025)
        assert scheduler.tick_count == 25

    def test_controller_receives_latest_command(self, simulator, fake_clock):
        seen = []

        class Recorder(ControllerAdapter):
            def compute(self, state, command):
                seen.append(command)
                return np.zeros(4)

        scheduler = _scheduler(simulator, Recorder(), fake_clock)
        scheduler.tick()
        simulator.set_command("first")
        simulator.set_command("second")
        scheduler.tick()
        assert seen == [None, "second"]

    def test_at_most_one_publication_per_tick(self, simulator, hover_controller, fake_clock):
        """A long stall publishes once and leaves the missed boundaries pending."""
        scheduler = _scheduler(simulator, hover_controller, fake_clock)
        scheduler.tick()
        start = scheduler.next_publication_time - 0.01

        fake_clock.advance(0.1)
        assert scheduler.tick() is not None
        assert scheduler.publish_count == 2
        assert scheduler.next_publication_time == pytest.approx(start + 0.02)

        # Missed boundaries are caught up on the following ticks
        for _ in range(9):
            fake_clock.advance(0.001)
            assert scheduler.tick() is not None
        assert scheduler.publish_count == 11


class TestCadence:
    """Publication rate over many ticks."""

    def test_average_rate_matches_odom_rate(self, simulator, hover_controller, fake_clock):
        scheduler = _scheduler(simulator, hover_controller, fake_clock)
        for _ in range(1000):
            fake_clock.advance(0.001)
            scheduler.tick()
        assert abs(scheduler.publish_count - 100) <= 1

    def test_delayed_ticks_do_not_reset_boundaries(self, simulator, hover_controller, fake_clock):
        """With periodic stalls the long-run rate still converges to odom_rate."""
        scheduler = _scheduler(simulator, hover_controller, fake_clock)
        start = fake_clock.now
        scheduler.tick()

        for i in range(1, 1000):
            fake_clock.advance(0.025 if i % 10 == 0 else 0.001)
            scheduler.tick()

        elapsed = fake_clock.now - start
        assert abs(scheduler.publish_count - elapsed * 100.0) <= 3
        # Boundaries are accumulated from the first publication, never from "now"
        assert scheduler.next_publication_time == pytest.approx(start + scheduler.publish_count * 0.01)

    def test_stamps_are_clock_times(self, simulator, hover_controller, fake_clock):
        stamps = []
        scheduler = _scheduler(simulator, hover_controller, fake_clock)
        scheduler.on_telemetry(lambda bundle: stamps.append(bundle.odometry.header.stamp))
        for _ in range(50):
            fake_clock.advance(0.001)
            scheduler.tick()
        assert stamps == sorted(stamps)
        assert len(stamps) == scheduler.publish_count


class TestCallbacks:
    """Telemetry egress callbacks."""

    def test_callbacks_receive_bundle(self, simulator, hover_controller, fake_clock):
        received = []
        scheduler = _scheduler(simulator, hover_controller, fake_clock)
        scheduler.on_telemetry(received.append)
        bundle = scheduler.tick()
        assert received == [bundle]

    def test_failing_callback_does_not_stop_others(self, simulator, hover_controller, fake_clock):
        received = []

        def broken(bundle):
            raise RuntimeError("sink down")

        scheduler = _scheduler(simulator, hover_controller, fake_clock)
        scheduler.on_telemetry(broken)
        scheduler.on_telemetry(received.append)
        assert scheduler.tick() is not None
        assert len(received) == 1

    def test_remove_callback(self, simulator, hover_controller, fake_clock):
        received = []
        scheduler = _scheduler(simulator, hover_controller, fake_clock)
        scheduler.on_telemetry(received.append)
        scheduler.remove_telemetry_callback(received.append)
        scheduler.tick()
        assert received == []


class TestRunLoop:
    """Async loop pacing."""

    @pytest.mark.asyncio
    async def test_run_paces_ticks(self, simulator, hover_controller, fake_clock):
        scheduler = _scheduler(simulator, hover_controller, fake_clock)
        await scheduler.run(max_ticks=100)

        assert scheduler.tick_count == 100
        assert simulator.sim_time_s == pytest.approx(0.1)
        assert scheduler.overrun_count == 0
        assert all(s == pytest.approx(0.001) for s in fake_clock.sleeps)
        assert abs(scheduler.publish_count - 10) <= 1
        assert not scheduler.is_running

    @pytest.mark.asyncio
    async def test_run_for_duration(self, simulator, hover_controller, fake_clock):
        scheduler = _scheduler(simulator, hover_controller, fake_clock)
        await scheduler.run(duration_s=0.05)
        assert 49 <= scheduler.tick_count <= 51

    @pytest.mark.asyncio
    async def test_late_ticks_are_not_skipped(self, simulator, fake_clock):
        """A controller slower than the tick period causes overruns, not skipped steps."""
        hover = np.full(4, simulator.params.hover_rpm)

        class SlowController(ControllerAdapter):
            def compute(self, state, command):
                fake_clock.advance(0.002)
                return hover

        scheduler = _scheduler(simulator, SlowController(), fake_clock)
        await scheduler.run(max_ticks=50)

        assert scheduler.tick_count == 50
        assert simulator.sim_time_s == pytest.approx(0.05)
        assert scheduler.overrun_count == 50
        assert all(s == 0 for s in fake_clock.sleeps)

    @pytest.mark.asyncio
    async def test_start_and_stop(self, simulator, hover_controller):
        scheduler = SimulationScheduler(simulator, hover_controller, simulation_rate=1000.0, odom_rate=100.0)
        await scheduler.start()
        assert scheduler.is_running
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert not scheduler.is_running
        assert scheduler.tick_count > 0
        assert scheduler.publish_count > 0
