"""Rotor actuator model.

Rotor layout ("+" configuration, body frame FLU)::

        0 (+x)
    2 (+y)   3 (-y)
        1 (-x)

Rotors 0 and 1 spin one way, 2 and 3 the other, so the yaw moment is the
imbalance between the two pairs.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, NamedTuple

import numpy as np
import structlog

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from quadsim.config import VehicleParams

logger = structlog.get_logger(__name__)


class ActuatorOutput(NamedTuple):
    """Realized rotor speeds and the wrench they produce."""

    motor_rpm: NDArray
    thrust: float
    moments: NDArray


class ActuatorModel:
    """First-order rotor speed lag with saturation."""

    def __init__(self, params: VehicleParams) -> None:
        self.params = params
        self.kf = params.thrust_coefficient
        self.km = params.moment_coefficient
        self.min_rpm = params.min_rpm
        self.max_rpm = params.max_rpm
        self._mid_rpm = 0.5 * (params.min_rpm + params.max_rpm)

        kf_l = self.kf * params.arm_length
        # [T, Mx, My, Mz] = mixing_matrix @ rpm^2
        self.mixing_matrix = np.array([
            [self.kf, self.kf, self.kf, self.kf],
            [0.0, 0.0, kf_l, -kf_l],
            [-kf_l, kf_l, 0.0, 0.0],
            [self.km, self.km, -self.km, -self.km],
        ])
        self._mixing_inv = np.linalg.inv(self.mixing_matrix)

    def clamp(self, rpm: NDArray) -> NDArray:
        """Clamp rotor speeds into ``[min_rpm, max_rpm]``.

        NaN entries become the mid-range speed.
        """
        rpm = np.asarray(rpm, dtype=float)
        nan_mask = np.isnan(rpm)
        if nan_mask.any():
            logger.warning("rotor_setpoint_nan", rotors=np.flatnonzero(nan_mask).tolist())
            rpm = np.where(nan_mask, self._mid_rpm, rpm)
        return np.clip(rpm, self.min_rpm, self.max_rpm)

    def update(self, desired: NDArray, realized: NDArray, dt: float) -> NDArray:
        """Advance realized speeds toward the (clamped) desired speeds by ``dt``."""
        desired = self.clamp(desired)
        realized = np.asarray(realized, dtype=float)
        new_rpm = realized + (desired - realized) * dt / self.params.motor_time_constant
        return self.clamp(new_rpm)

    def thrust(self, rpm: NDArray) -> float:
        """Collective thrust along body +z (N)."""
        return float(self.kf * np.sum(np.square(rpm)))

    def moments(self, rpm: NDArray) -> NDArray:
        """Body-frame moments (N m)."""
        w2 = np.square(rpm)
        arm = self.kf * self.params.arm_length
        return np.array([
            arm * (w2[2] - w2[3]),
            arm * (w2[1] - w2[0]),
            self.km * (w2[0] + w2[1] - w2[2] - w2[3]),
        ])

    def step(self, desired: NDArray, realized: NDArray, dt: float) -> ActuatorOutput:
        rpm = self.update(desired, realized, dt)
        return ActuatorOutput(motor_rpm=rpm, thrust=self.thrust(rpm), moments=self.moments(rpm))

    def output_for(self, rpm: NDArray) -> ActuatorOutput:
        """Wrench produced by already-realized speeds, without lag."""
        rpm = np.asarray(rpm, dtype=float)
        return ActuatorOutput(motor_rpm=rpm, thrust=self.thrust(rpm), moments=self.moments(rpm))

    def mix(self, thrust: float, moments: NDArray) -> NDArray:
        """Rotor speeds that produce the requested thrust and moments.

        Unreachable requests are saturated (negative squared speeds floor at 0,
        and the result is clamped to the rotor range).
        """
        wrench = np.array([thrust, moments[0], moments[1], moments[2]], dtype=float)
        rpm_sq = self._mixing_inv @ wrench
        return self.clamp(np.sqrt(np.maximum(rpm_sq, 0.0)))
