"""Vehicle state containers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import numpy as np

from quadsim.rotations import quaternion_to_rotation_matrix

if TYPE_CHECKING:
    from numpy.typing import NDArray


@dataclass
class RigidBodyState:
    """Complete rigid-body state of the vehicle."""

    # Position (world frame, z up, meters)
    position: NDArray = field(default_factory=lambda: np.zeros(3))

    # Attitude (quaternion: w, x, y, z, body -> world)
    quaternion: NDArray = field(default_factory=lambda: np.array([1.0, 0.0, 0.0, 0.0]))

    # Velocity (world frame, m/s)
    velocity: NDArray = field(default_factory=lambda: np.zeros(3))

    # Angular velocity (body frame, rad/s)
    angular_velocity: NDArray = field(default_factory=lambda: np.zeros(3))

    # Realized rotor speeds
    motor_rpm: NDArray = field(default_factory=lambda: np.zeros(4))

    @property
    def rotation_matrix(self) -> NDArray:
        """Body -> world rotation derived from the quaternion."""
        return quaternion_to_rotation_matrix(self.quaternion)

    def to_vector(self) -> NDArray:
        """Flatten to ``[p, v, q, w]`` (13 values)."""
        return np.concatenate([self.position, self.velocity, self.quaternion, self.angular_velocity])

    def copy(self) -> RigidBodyState:
        return RigidBodyState(
            position=self.position.copy(),
            quaternion=self.quaternion.copy(),
            velocity=self.velocity.copy(),
            angular_velocity=self.angular_velocity.copy(),
            motor_rpm=self.motor_rpm.copy(),
        )


@dataclass
class Disturbance:
    """External force (world frame, N) and moment (body frame, N m)."""

    force: NDArray = field(default_factory=lambda: np.zeros(3))
    moment: NDArray = field(default_factory=lambda: np.zeros(3))

    def copy(self) -> Disturbance:
        return Disturbance(force=self.force.copy(), moment=self.moment.copy())
