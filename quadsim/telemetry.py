"""Telemetry records published by the simulator.

Records are pydantic models so transports can serialize them directly. All
vectors are in the simulator's native frames (world z-up with x north,
body FLU); transports that need another convention convert at their edge.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from quadsim.sensors import ImuSample
    from quadsim.state import RigidBodyState


class Vector3(BaseModel):
    """3D vector for position, velocity, acceleration."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @classmethod
    def from_array(cls, values: NDArray) -> Vector3:
        return cls(x=float(values[0]), y=float(values[1]), z=float(values[2]))

    def to_list(self) -> list[float]:
        """Return vector as [x, y, z]."""
        return [self.x, self.y, self.z]


class Quaternion(BaseModel):
    """Quaternion for orientation."""

    w: float = 1.0
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @classmethod
    def from_array(cls, values: NDArray) -> Quaternion:
        return cls(w=float(values[0]), x=float(values[1]), y=float(values[2]), z=float(values[3]))

    def to_list(self) -> list[float]:
        """Return quaternion as [w, x, y, z]."""
        return [self.w, self.x, self.y, self.z]


class Header(BaseModel):
    stamp: float  # seconds, monotonic clock at publication
    frame_id: str


class Odometry(BaseModel):
    """Pose and twist of the vehicle in the world frame."""

    header: Header
    child_frame_id: str
    position: Vector3
    orientation: Quaternion
    linear_velocity: Vector3  # world frame
    angular_velocity: Vector3  # body frame


class Imu(BaseModel):
    """Synthesized inertial measurement."""

    header: Header
    orientation: Quaternion
    angular_velocity: Vector3
    linear_acceleration: Vector3


class OutputData(BaseModel):
    """IMU channels plus the realized rotor speeds."""

    header: Header
    orientation: Quaternion
    angular_velocity: Vector3
    linear_acceleration: Vector3
    motor_rpm: list[float] = Field(min_length=4, max_length=4)


class TransformStamped(BaseModel):
    """World -> vehicle frame transform."""

    header: Header
    child_frame_id: str
    translation: Vector3
    rotation: Quaternion

    @classmethod
    def from_odometry(cls, odometry: Odometry) -> TransformStamped:
        return cls(
            header=odometry.header.model_copy(),
            child_frame_id=odometry.child_frame_id,
            translation=odometry.position.model_copy(),
            rotation=odometry.orientation.model_copy(),
        )


class TelemetryBundle(BaseModel):
    """Everything published at one publication boundary."""

    sim_time_s: float
    odometry: Odometry
    imu: Imu
    output: OutputData
    transform: TransformStamped

    def to_dict(self) -> dict[str, Any]:
        """Flat dict suitable for JSON logging or WebSocket broadcast."""
        return {
            "type": "quadsim_telemetry",
            "sim_time_s": self.sim_time_s,
            "stamp": self.odometry.header.stamp,
            "frame_id": self.odometry.header.frame_id,
            "child_frame_id": self.odometry.child_frame_id,
            "position": self.odometry.position.to_list(),
            "orientation": self.odometry.orientation.to_list(),
            "velocity": self.odometry.linear_velocity.to_list(),
            "angular_velocity": self.odometry.angular_velocity.to_list(),
            "imu": {
                "acceleration": self.imu.linear_acceleration.to_list(),
                "gyro": self.imu.angular_velocity.to_list(),
            },
            "motor_rpm": list(self.output.motor_rpm),
        }


def build_telemetry(
    state: RigidBodyState,
    imu_sample: ImuSample,
    sim_time_s: float,
    stamp: float,
    world_frame_id: str,
    vehicle_frame_id: str,
) -> TelemetryBundle:
    """Assemble a bundle from one state snapshot and its IMU sample."""
    odometry = Odometry(
        header=Header(stamp=stamp, frame_id=world_frame_id),
        child_frame_id=vehicle_frame_id,
        position=Vector3.from_array(state.position),
        orientation=Quaternion.from_array(state.quaternion),
        linear_velocity=Vector3.from_array(state.velocity),
        angular_velocity=Vector3.from_array(state.angular_velocity),
    )

    imu_header = Header(stamp=stamp, frame_id=vehicle_frame_id)
    orientation = Quaternion.from_array(imu_sample.orientation)
    gyro = Vector3.from_array(imu_sample.angular_velocity)
    accel = Vector3.from_array(imu_sample.linear_acceleration)

    return TelemetryBundle(
        sim_time_s=sim_time_s,
        odometry=odometry,
        imu=Imu(
            header=imu_header,
            orientation=orientation,
            angular_velocity=gyro,
            linear_acceleration=accel,
        ),
        output=OutputData(
            header=imu_header.model_copy(),
            orientation=orientation.model_copy(),
            angular_velocity=gyro.model_copy(),
            linear_acceleration=accel.model_copy(),
            motor_rpm=[float(v) for v in state.motor_rpm],
        ),
        transform=TransformStamped.from_odometry(odometry),
    )
