"""Quadrotor simulator core.

Owns the rigid-body state, the latest command and the current disturbance.
Commands and disturbances may be written from any thread (latest wins); the
state itself only changes inside ``step``.
"""

from __future__ import annotations

from threading import Lock
from typing import TYPE_CHECKING, Any

import numpy as np
import structlog

from quadsim.actuator import ActuatorModel
from quadsim.dynamics import DynamicsIntegrator
from quadsim.sensors import ImuSample, SensorSynthesizer
from quadsim.state import Disturbance, RigidBodyState
from quadsim.telemetry import TelemetryBundle, build_telemetry

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from quadsim.config import SimulatorConfig, VehicleParams

logger = structlog.get_logger(__name__)


class QuadrotorSimulator:
    """Single-vehicle simulator: actuator lag, RK4 dynamics and IMU synthesis."""

    def __init__(self, config: SimulatorConfig) -> None:
        self.config = config
        self.params: VehicleParams = config.vehicle

        self.actuator = ActuatorModel(self.params)
        self.integrator = DynamicsIntegrator(self.params, floor_enabled=config.floor_enabled)
        self.sensors = SensorSynthesizer(
            self.params, ground_contact_threshold=config.sensor.ground_contact_threshold
        )

        self._state_lock = Lock()
        self._command_lock = Lock()
        self._disturbance_lock = Lock()

        self._command: Any = None
        self._disturbance = Disturbance()
        self._state = self._initial_state()
        self._sim_time_s = 0.0
        self.step_count = 0

        logger.info(
            "simulator_initialized",
            vehicle=config.quadrotor_name,
            mass=self.params.mass,
            hover_rpm=round(self.params.hover_rpm, 2),
            position=self._state.position.tolist(),
        )

    def _initial_state(self) -> RigidBodyState:
        cfg = self.config
        initial_rpm = cfg.initial_motor_rpm if cfg.initial_motor_rpm is not None else self.params.min_rpm
        return RigidBodyState(
            position=cfg.initial_position.as_array(),
            quaternion=cfg.initial_orientation.as_array(),
            velocity=np.zeros(3),
            angular_velocity=np.zeros(3),
            motor_rpm=self.actuator.clamp(np.full(4, initial_rpm)),
        )

    @property
    def state(self) -> RigidBodyState:
        """Snapshot copy of the current state."""
        with self._state_lock:
            return self._state.copy()

    @property
    def sim_time_s(self) -> float:
        return self._sim_time_s

    # Command ingress

    def set_command(self, command: Any) -> None:
        with self._command_lock:
            self._command = command

    def get_command(self) -> Any:
        with self._command_lock:
            return self._command

    # Disturbance ingress

    def set_external_force(self, force: NDArray) -> None:
        """Replace the external force (world frame, N)."""
        force = np.array(force, dtype=float).reshape(3)
        with self._disturbance_lock:
            self._disturbance = Disturbance(force=force, moment=self._disturbance.moment)

    def set_external_moment(self, moment: NDArray) -> None:
        """Replace the external moment (body frame, N m)."""
        moment = np.array(moment, dtype=float).reshape(3)
        with self._disturbance_lock:
            self._disturbance = Disturbance(force=self._disturbance.force, moment=moment)

    @property
    def disturbance(self) -> Disturbance:
        with self._disturbance_lock:
            return self._disturbance.copy()

    # Simulation

    def step(self, desired_rpm: NDArray, dt: float) -> RigidBodyState:
        """Advance the simulation by ``dt`` seconds toward ``desired_rpm``."""
        disturbance = self.disturbance
        with self._state_lock:
            output = self.actuator.step(desired_rpm, self._state.motor_rpm, dt)
            self._state = self.integrator.step(self._state, output, disturbance, dt)
            self._sim_time_s += dt
            self.step_count += 1
            return self._state.copy()

    def imu(self) -> ImuSample:
        return self.sensors.synthesize(self.state, self.disturbance.force)

    def telemetry(self, stamp: float) -> TelemetryBundle:
        """Telemetry for the current state, stamped with ``stamp``."""
        state = self.state
        imu_sample = self.sensors.synthesize(state, self.disturbance.force)
        return build_telemetry(
            state,
            imu_sample,
            sim_time_s=self._sim_time_s,
            stamp=stamp,
            world_frame_id=self.config.world_frame_id,
            vehicle_frame_id=self.config.quadrotor_name,
        )

    def reset(self) -> None:
        """Return to the configured initial pose. Command and disturbance are kept."""
        with self._state_lock:
            self._state = self._initial_state()
            self._sim_time_s = 0.0
            self.step_count = 0
        logger.info("simulator_reset", vehicle=self.config.quadrotor_name)
