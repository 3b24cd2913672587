"""Controller adapters.

A controller adapter turns the latest command (whatever its payload) and the
current state into four desired rotor speeds. The scheduler calls
``compute`` once per simulation tick; ``command`` is ``None`` until the first
command has been received.
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from quadsim.actuator import ActuatorModel
from quadsim.rotations import quaternion_to_euler

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from quadsim.config import VehicleParams
    from quadsim.state import RigidBodyState


@dataclass
class MotorSpeedCommand:
    """Four desired rotor speeds."""

    rpm: NDArray


@dataclass
class ThrustMomentCommand:
    """Collective thrust (N) and body moments (N m)."""

    thrust: float
    moments: NDArray = field(default_factory=lambda: np.zeros(3))


@dataclass
class NormalizedThrottleCommand:
    """Four throttle values in [0, 1]."""

    throttle: NDArray


@dataclass
class PositionTarget:
    """World-frame position setpoint with a yaw heading."""

    position: NDArray
    yaw: float = 0.0


class ControllerAdapter(ABC):
    """Maps (state, command) to desired rotor speeds."""

    @abstractmethod
    def compute(self, state: RigidBodyState, command: Any) -> NDArray:
        """Return four desired rotor speeds."""

    def reset(self) -> None:
        """Forget any internal state (e.g. a captured setpoint)."""


class DirectRPMController(ControllerAdapter):
    """Passes commanded rotor speeds straight through."""

    def __init__(self, default_rpm: NDArray | None = None) -> None:
        self.default_rpm = np.zeros(4) if default_rpm is None else np.asarray(default_rpm, dtype=float)

    def compute(self, state: RigidBodyState, command: MotorSpeedCommand | None) -> NDArray:
        if command is None:
            return self.default_rpm.copy()
        return np.asarray(command.rpm, dtype=float)


class ThrustMomentController(ControllerAdapter):
    """Inverts the rotor mixing matrix to realize a thrust/moment request."""

    def __init__(self, params: VehicleParams) -> None:
        self.params = params
        self.actuator = ActuatorModel(params)
        self.hover_thrust = params.mass * params.gravity

    def compute(self, state: RigidBodyState, command: ThrustMomentCommand | None) -> NDArray:
        if command is None:
            return self.actuator.mix(self.hover_thrust, np.zeros(3))
        return self.actuator.mix(command.thrust, np.asarray(command.moments, dtype=float))


class NormalizedThrottleController(ControllerAdapter):
    """Maps throttle in [0, 1] linearly onto the rotor speed range."""

    def __init__(self, params: VehicleParams) -> None:
        self.min_rpm = params.min_rpm
        self.max_rpm = params.max_rpm

    def compute(self, state: RigidBodyState, command: NormalizedThrottleCommand | None) -> NDArray:
        if command is None:
            return np.full(4, self.min_rpm)
        throttle = np.clip(np.asarray(command.throttle, dtype=float), 0.0, 1.0)
        return self.min_rpm + throttle * (self.max_rpm - self.min_rpm)


class PositionHoldController(ControllerAdapter):
    """PD position and attitude controller.

    Position error produces a desired acceleration, which sets the collective
    thrust and the tilt needed to point it. A second PD loop on attitude
    produces body moments. Both are mixed to rotor speeds.
    """

    def __init__(self, params: VehicleParams) -> None:
        self.params = params
        self.actuator = ActuatorModel(params)

        # PD gains
        self.kp_pos = np.array([2.0, 2.0, 4.0])  # Position
        self.kd_pos = np.array([2.5, 2.5, 3.0])  # Velocity
        self.kp_att = np.array([36.0, 36.0, 16.0])  # Attitude
        self.kd_att = np.array([12.0, 12.0, 8.0])  # Angular rate

        self.max_horizontal_accel = 5.0  # m/s^2
        self.max_tilt_rad = 0.6

        self._hold_target: PositionTarget | None = None

    def compute(self, state: RigidBodyState, command: PositionTarget | None) -> NDArray:
        if command is None:
            if self._hold_target is None:
                _, _, yaw = quaternion_to_euler(state.quaternion)
                self._hold_target = PositionTarget(position=state.position.copy(), yaw=yaw)
            command = self._hold_target

        p = self.params
        target = np.asarray(command.position, dtype=float)

        # Desired acceleration (PD on position)
        acc_cmd = self.kp_pos * (target - state.position) - self.kd_pos * state.velocity
        horizontal = np.linalg.norm(acc_cmd[:2])
        if horizontal > self.max_horizontal_accel:
            acc_cmd[:2] *= self.max_horizontal_accel / horizontal

        # Collective thrust along the current body z axis
        force_world = p.mass * (acc_cmd + np.array([0.0, 0.0, p.gravity]))
        body_z = state.rotation_matrix[:, 2]
        thrust = max(float(force_world @ body_z), 0.0)

        # Desired tilt from the horizontal acceleration, in the heading frame
        roll, pitch, yaw = quaternion_to_euler(state.quaternion)
        cos_yaw, sin_yaw = math.cos(command.yaw), math.sin(command.yaw)
        desired_pitch = (acc_cmd[0] * cos_yaw + acc_cmd[1] * sin_yaw) / p.gravity
        desired_roll = (acc_cmd[0] * sin_yaw - acc_cmd[1] * cos_yaw) / p.gravity
        desired_pitch = float(np.clip(desired_pitch, -self.max_tilt_rad, self.max_tilt_rad))
        desired_roll = float(np.clip(desired_roll, -self.max_tilt_rad, self.max_tilt_rad))

        att_error = np.array([
            desired_roll - roll,
            desired_pitch - pitch,
            self._wrap_angle(command.yaw - yaw),
        ])
        angular_accel = self.kp_att * att_error - self.kd_att * state.angular_velocity
        moments = p.inertia @ angular_accel

        return self.actuator.mix(thrust, moments)

    def reset(self) -> None:
        """Drop the captured hold position; the next ``None`` command recaptures it."""
        self._hold_target = None

    @staticmethod
    def _wrap_angle(angle: float) -> float:
        """Wrap angle to [-pi, pi]."""
        while angle > math.pi:
            angle -= 2 * math.pi
        while angle < -math.pi:
            angle += 2 * math.pi
        return angle
