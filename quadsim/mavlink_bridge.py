"""
MAVLink Bridge

Streams simulator telemetry to a flight stack over MAVLink and feeds actuator
commands back into the simulator.

Egress (per publication boundary):
    ODOMETRY, HIGHRES_IMU, ACTUATOR_OUTPUT_STATUS
Ingress:
    HIL_ACTUATOR_CONTROLS -> NormalizedThrottleCommand

The simulator works in a z-up world frame (x north) with FLU body axes.
MAVLink expects NED / FRD, which is the same frame rotated 180 degrees about
x: vectors map through ``diag(1, -1, -1)`` and quaternions through
``[w, x, -y, -z]``.
"""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

import numpy as np
import structlog
from pymavlink import mavutil

from quadsim.controller import NormalizedThrottleCommand
from quadsim.rotations import flu_to_frd_quaternion, quaternion_to_rotation_matrix

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from quadsim.simulator import QuadrotorSimulator
    from quadsim.telemetry import TelemetryBundle

logger = structlog.get_logger(__name__)

FLU_TO_FRD = np.diag([1.0, -1.0, -1.0])

# HIGHRES_IMU fields_updated: xacc..zgyro
HIGHRES_IMU_ACCEL_GYRO = 0b111111

ACTUATOR_SLOTS = 32


class ConnectionState(Enum):
    """MAVLink connection states."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"


@dataclass
class MAVLinkBridgeConfig:
    """MAVLink connection configuration."""

    connection_string: str = "udpout:127.0.0.1:14560"
    source_system: int = 1
    source_component: int = 1
    heartbeat_interval_s: float = 1.0
    poll_interval_s: float = 0.01


def to_frd(vector: NDArray) -> NDArray:
    """Map a z-up/FLU vector into NED/FRD."""
    return FLU_TO_FRD @ np.asarray(vector, dtype=float)


class MAVLinkBridge:
    """
    Connects one simulator to a MAVLink endpoint.

    Example:
        bridge = MAVLinkBridge(MAVLinkBridgeConfig("udpout:127.0.0.1:14560"), simulator)
        await bridge.connect()
        scheduler.on_telemetry(bridge.publish)
    """

    def __init__(self, config: MAVLinkBridgeConfig | None, simulator: QuadrotorSimulator):
        self.config = config or MAVLinkBridgeConfig()
        self.simulator = simulator
        self._connection: Any = None
        self._state = ConnectionState.DISCONNECTED
        self._running = False

        self._receive_task: asyncio.Task | None = None
        self._heartbeat_task: asyncio.Task | None = None

        self.messages_sent = 0
        self.commands_received = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        return self._state == ConnectionState.CONNECTED

    async def connect(self, connection: Any = None) -> None:
        """Open the connection and start the receive and heartbeat tasks.

        Args:
            connection: Pre-built mavutil connection (used instead of opening
                ``config.connection_string``).
        """
        if self._connection is not None:
            logger.warning("mavlink_already_connected")
            await self.disconnect()

        if connection is None:
            logger.info("mavlink_connecting", connection_string=self.config.connection_string)
            connection = mavutil.mavlink_connection(
                self.config.connection_string,
                source_system=self.config.source_system,
                source_component=self.config.source_component,
            )

        self._connection = connection
        self._state = ConnectionState.CONNECTED
        self._running = True

        self._receive_task = asyncio.create_task(self._receive_loop())
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        logger.info("mavlink_connected", connection_string=self.config.connection_string)

    async def disconnect(self) -> None:
        """Close the MAVLink connection."""
        self._running = False

        for task in (self._receive_task, self._heartbeat_task):
            if task:
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._receive_task = None
        self._heartbeat_task = None

        if self._connection:
            self._connection.close()
            self._connection = None

        self._state = ConnectionState.DISCONNECTED
        logger.info("mavlink_disconnected", sent=self.messages_sent, received=self.commands_received)

    # Egress

    def publish(self, bundle: TelemetryBundle) -> None:
        """Send one telemetry bundle. Usable as a scheduler callback."""
        if not self._connection:
            return

        mav = self._connection.mav
        time_usec = int(bundle.odometry.header.stamp * 1e6)

        odom = bundle.odometry
        q_flu = np.array(odom.orientation.to_list())
        position_ned = to_frd(odom.position.to_list())
        # ODOMETRY velocity is expressed in the child (body) frame
        velocity_body = quaternion_to_rotation_matrix(q_flu).T @ np.array(odom.linear_velocity.to_list())
        velocity_frd = to_frd(velocity_body)
        rates_frd = to_frd(odom.angular_velocity.to_list())
        q_frd = flu_to_frd_quaternion(q_flu)

        unknown_covariance = [math.nan] + [0.0] * 20

        mav.odometry_send(
            time_usec,
            mavutil.mavlink.MAV_FRAME_LOCAL_NED,
            mavutil.mavlink.MAV_FRAME_BODY_FRD,
            *position_ned.tolist(),
            q_frd.tolist(),
            *velocity_frd.tolist(),
            *rates_frd.tolist(),
            unknown_covariance,
            unknown_covariance,
        )

        imu = bundle.imu
        accel_frd = to_frd(imu.linear_acceleration.to_list())
        gyro_frd = to_frd(imu.angular_velocity.to_list())
        mav.highres_imu_send(
            time_usec,
            *accel_frd.tolist(),
            *gyro_frd.tolist(),
            0.0, 0.0, 0.0,  # magnetometer
            0.0, 0.0, 0.0,  # abs/diff pressure, pressure altitude
            0.0,  # temperature
            HIGHRES_IMU_ACCEL_GYRO,
        )

        actuators = list(bundle.output.motor_rpm) + [0.0] * (ACTUATOR_SLOTS - 4)
        mav.actuator_output_status_send(time_usec, 0b1111, actuators)

        self.messages_sent += 3

    # Ingress

    def _process_message(self, msg: Any) -> None:
        """Process a received MAVLink message."""
        if msg.get_type() == "HIL_ACTUATOR_CONTROLS":
            throttle = np.array(msg.controls[:4], dtype=float)
            self.simulator.set_command(NormalizedThrottleCommand(throttle=throttle))
            self.commands_received += 1

    async def _receive_loop(self) -> None:
        """Background task to receive and process MAVLink messages."""
        while self._running and self._connection:
            try:
                msg = self._connection.recv_match(blocking=False)
                if msg:
                    self._process_message(msg)
                else:
                    await asyncio.sleep(self.config.poll_interval_s)
            except (OSError, ValueError) as e:
                logger.error("mavlink_receive_error", error=str(e))
                await asyncio.sleep(0.1)

    async def _heartbeat_loop(self) -> None:
        """Background task announcing the simulated vehicle."""
        while self._running and self._connection:
            try:
                self._connection.mav.heartbeat_send(
                    mavutil.mavlink.MAV_TYPE_QUADROTOR,
                    mavutil.mavlink.MAV_AUTOPILOT_INVALID,
                    0, 0,
                    mavutil.mavlink.MAV_STATE_ACTIVE,
                )
            except OSError as e:
                logger.error("mavlink_heartbeat_error", error=str(e))
            await asyncio.sleep(self.config.heartbeat_interval_s)
