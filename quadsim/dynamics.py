"""Rigid-body equations of motion and the RK4 integrator.

The state is integrated as a flat 13-vector ``[p, v, q, w]``::

    p' = v
    v' = (R e3 T + F_ext - c_d R P R^T v) / m - g e3
    q' = 0.5 q (x) [0, w]
    w' = I^-1 (tau + M_ext - w x (I w))

with ``P = diag(1, 1, 0)`` projecting onto the body x/y plane.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

from quadsim.rotations import (
    normalize_quaternion,
    quaternion_derivative,
    quaternion_to_rotation_matrix,
)
from quadsim.state import Disturbance, RigidBodyState

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from quadsim.actuator import ActuatorOutput
    from quadsim.config import VehicleParams

E3 = np.array([0.0, 0.0, 1.0])
BODY_PLANE_PROJECTION = np.diag([1.0, 1.0, 0.0])


class DynamicsIntegrator:
    """Fixed-step RK4 integrator for the vehicle rigid body."""

    def __init__(self, params: VehicleParams, floor_enabled: bool = True) -> None:
        self.params = params
        self.floor_enabled = floor_enabled

        self._mass = params.mass
        self._gravity = params.gravity
        self._drag = params.drag_coefficient
        self._inertia = params.inertia
        self._inertia_inv = params.inertia_inv

    def derivatives(
        self,
        y: NDArray,
        thrust: float,
        moments: NDArray,
        disturbance: Disturbance,
    ) -> NDArray:
        """Time derivative of the 13-vector ``y``."""
        v = y[3:6]
        q = y[6:10]
        omega = y[10:13]

        R = quaternion_to_rotation_matrix(q)

        force = R @ E3 * thrust + disturbance.force
        if self._drag != 0.0:
            force = force - self._drag * (R @ BODY_PLANE_PROJECTION @ R.T @ v)
        v_dot = force / self._mass - self._gravity * E3

        q_dot = quaternion_derivative(q, omega)

        # Euler's rotation equations: I * omega_dot = tau - omega x (I * omega)
        omega_dot = self._inertia_inv @ (
            moments + disturbance.moment - np.cross(omega, self._inertia @ omega)
        )

        return np.concatenate([v, v_dot, q_dot, omega_dot])

    def step(
        self,
        state: RigidBodyState,
        actuator_output: ActuatorOutput,
        disturbance: Disturbance | None,
        dt: float,
    ) -> RigidBodyState:
        """Advance ``state`` by ``dt`` with inputs held constant over the step.

        Raises:
            ValueError: If ``dt`` is not positive.
        """
        if dt <= 0:
            raise ValueError(f"Integration step must be positive, got {dt}")
        disturbance = disturbance or Disturbance()

        thrust = actuator_output.thrust
        moments = np.asarray(actuator_output.moments, dtype=float)

        y = state.to_vector()
        k1 = self.derivatives(y, thrust, moments, disturbance)
        k2 = self.derivatives(y + 0.5 * dt * k1, thrust, moments, disturbance)
        k3 = self.derivatives(y + 0.5 * dt * k2, thrust, moments, disturbance)
        k4 = self.derivatives(y + dt * k3, thrust, moments, disturbance)
        y_next = y + (dt / 6.0) * (k1 + 2.0 * k2 + 2.0 * k3 + k4)

        new_state = RigidBodyState(
            position=y_next[0:3].copy(),
            velocity=y_next[3:6].copy(),
            quaternion=normalize_quaternion(y_next[6:10]),
            angular_velocity=y_next[10:13].copy(),
            motor_rpm=np.array(actuator_output.motor_rpm, dtype=float),
        )

        if self.floor_enabled and new_state.position[2] < 0.0 and new_state.velocity[2] < 0.0:
            new_state.position[2] = 0.0
            new_state.velocity[2] = 0.0

        return new_state
