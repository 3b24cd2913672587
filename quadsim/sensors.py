"""Derived IMU synthesis.

The accelerometer reports specific force in the body frame. Below the ground
contact threshold the vehicle is treated as resting on the floor: rotor thrust
is ignored and the reading is the reaction to gravity plus any external force.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from quadsim.dynamics import BODY_PLANE_PROJECTION, E3

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from quadsim.config import VehicleParams
    from quadsim.state import RigidBodyState


@dataclass
class ImuSample:
    """Synthesized IMU reading."""

    orientation: NDArray  # quaternion w, x, y, z
    angular_velocity: NDArray  # rad/s (body frame)
    linear_acceleration: NDArray  # m/s^2 (body frame, specific force)


class SensorSynthesizer:
    """Computes IMU samples from the rigid-body state."""

    def __init__(self, params: VehicleParams, ground_contact_threshold: float = 1e-4) -> None:
        self.params = params
        self.ground_contact_threshold = ground_contact_threshold

    def is_on_ground(self, state: RigidBodyState) -> bool:
        return bool(state.position[2] < self.ground_contact_threshold)

    def synthesize(self, state: RigidBodyState, external_force: NDArray | None = None) -> ImuSample:
        p = self.params
        f_ext = np.zeros(3) if external_force is None else np.asarray(external_force, dtype=float)
        R = state.rotation_matrix

        if self.is_on_ground(state):
            acc = R.T @ (f_ext / p.mass + p.gravity * E3)
        else:
            thrust = p.thrust_coefficient * float(np.sum(np.square(state.motor_rpm)))
            acc = thrust / p.mass * E3 + R.T @ f_ext / p.mass
            if p.drag_coefficient != 0.0:
                acc = acc - p.drag_coefficient / p.mass * (BODY_PLANE_PROJECTION @ R.T @ state.velocity)

        return ImuSample(
            orientation=state.quaternion.copy(),
            angular_velocity=state.angular_velocity.copy(),
            linear_acceleration=acc,
        )
