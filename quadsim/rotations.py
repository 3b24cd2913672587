"""Quaternion helpers.

Quaternions are stored as ``[w, x, y, z]`` and rotate body-frame vectors into
the world frame.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import numpy as np

if TYPE_CHECKING:
    from numpy.typing import NDArray

IDENTITY_QUATERNION = np.array([1.0, 0.0, 0.0, 0.0])


def quaternion_multiply(q1: NDArray, q2: NDArray) -> NDArray:
    """Hamilton product ``q1 * q2``."""
    w1, x1, y1, z1 = q1
    w2, x2, y2, z2 = q2
    return np.array([
        w1 * w2 - x1 * x2 - y1 * y2 - z1 * z2,
        w1 * x2 + x1 * w2 + y1 * z2 - z1 * y2,
        w1 * y2 - x1 * z2 + y1 * w2 + z1 * x2,
        w1 * z2 + x1 * y2 - y1 * x2 + z1 * w2,
    ])


def quaternion_to_rotation_matrix(q: NDArray) -> NDArray:
    """Convert a unit quaternion to a 3x3 rotation matrix (body -> world)."""
    w, x, y, z = q
    return np.array([
        [1 - 2 * y * y - 2 * z * z, 2 * x * y - 2 * z * w, 2 * x * z + 2 * y * w],
        [2 * x * y + 2 * z * w, 1 - 2 * x * x - 2 * z * z, 2 * y * z - 2 * x * w],
        [2 * x * z - 2 * y * w, 2 * y * z + 2 * x * w, 1 - 2 * x * x - 2 * y * y],
    ])


def normalize_quaternion(q: NDArray) -> NDArray:
    """Return ``q`` scaled to unit norm.

    Raises:
        ValueError: If ``q`` has zero (or non-finite) norm.
    """
    norm = float(np.linalg.norm(q))
    if norm == 0.0 or not np.isfinite(norm):
        raise ValueError(f"Cannot normalize quaternion with norm {norm}")
    return np.asarray(q, dtype=float) / norm


def quaternion_derivative(q: NDArray, omega_body: NDArray) -> NDArray:
    """Time derivative of ``q`` for a body-frame angular velocity."""
    omega_quat = np.array([0.0, omega_body[0], omega_body[1], omega_body[2]])
    return 0.5 * quaternion_multiply(q, omega_quat)


def flu_to_frd_quaternion(q: NDArray) -> NDArray:
    """Re-express a z-up/FLU attitude quaternion in the NED/FRD convention.

    Both frames differ by a 180 degree rotation about x, which flips the sign of
    the y and z components.
    """
    w, x, y, z = q
    return np.array([w, x, -y, -z])


def quaternion_to_euler(q: NDArray) -> tuple[float, float, float]:
    """Roll, pitch, yaw (rad) from a unit quaternion."""
    w, x, y, z = q
    roll = float(np.arctan2(2 * (w * x + y * z), 1 - 2 * (x * x + y * y)))
    sinp = 2 * (w * y - z * x)
    pitch = float(np.arcsin(np.clip(sinp, -1.0, 1.0)))
    yaw = float(np.arctan2(2 * (w * z + x * y), 1 - 2 * (y * y + z * z)))
    return roll, pitch, yaw
