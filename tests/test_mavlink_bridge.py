"""
Tests for the MAVLink bridge using a mocked pymavlink connection.
"""

import asyncio
import math
from unittest.mock import MagicMock

import numpy as np
import pytest

from quadsim.controller import NormalizedThrottleCommand
from quadsim.mavlink_bridge import (
    ACTUATOR_SLOTS,
    ConnectionState,
    MAVLinkBridge,
    MAVLinkBridgeConfig,
    to_frd,
)
from quadsim.simulator import QuadrotorSimulator


@pytest.fixture
def simulator(make_config) -> QuadrotorSimulator:
    return QuadrotorSimulator(
        make_config(
            initial_position={"x": 1.0, "y": 2.0, "z": 3.0},
            initial_motor_rpm=5000.0,
        )
    )


@pytest.fixture
def connection() -> MagicMock:
    conn = MagicMock()
    conn.recv_match.return_value = None
    return conn


@pytest.fixture
def bridge(simulator) -> MAVLinkBridge:
    return MAVLinkBridge(MAVLinkBridgeConfig(heartbeat_interval_s=0.01, poll_interval_s=0.001), simulator)


def _hil_message(controls):
    msg = MagicMock()
    msg.get_type.return_value = "HIL_ACTUATOR_CONTROLS"
    msg.controls = controls
    return msg


def test_to_frd() -> None:
    np.testing.assert_allclose(to_frd([1.0, 2.0, 3.0]), [1.0, -2.0, -3.0])


def test_publish_without_connection_is_noop(bridge, simulator) -> None:
    bridge.publish(simulator.telemetry(stamp=1.0))
    assert bridge.messages_sent == 0


class TestEgress:
    """Telemetry to MAVLink."""

    @pytest.mark.asyncio
    async def test_publish_sends_three_messages(self, bridge, simulator, connection):
        await bridge.connect(connection=connection)
        try:
            bridge.publish(simulator.telemetry(stamp=2.5))
        finally:
            await bridge.disconnect()

        mav = connection.mav
        assert mav.odometry_send.call_count == 1
        assert mav.highres_imu_send.call_count == 1
        assert mav.actuator_output_status_send.call_count == 1
        assert bridge.messages_sent == 3

    @pytest.mark.asyncio
    async def test_odometry_is_ned(self, bridge, simulator, connection):
        await bridge.connect(connection=connection)
        try:
            bridge.publish(simulator.telemetry(stamp=2.5))
        finally:
            await bridge.disconnect()

        args = connection.mav.odometry_send.call_args.args
        assert args[0] == 2_500_000
        assert args[3:6] == (1.0, -2.0, -3.0)
        assert args[6] == [1.0, 0.0, -0.0, -0.0]
        assert math.isnan(args[13][0])

    @pytest.mark.asyncio
    async def test_imu_is_frd(self, make_config, connection):
        """At rest on the floor the FRD accelerometer reads -g on z."""
        grounded = QuadrotorSimulator(make_config())
        bridge = MAVLinkBridge(MAVLinkBridgeConfig(), grounded)
        await bridge.connect(connection=connection)
        try:
            bridge.publish(grounded.telemetry(stamp=1.0))
        finally:
            await bridge.disconnect()

        args = connection.mav.highres_imu_send.call_args.args
        assert args[1:4] == pytest.approx((0.0, 0.0, -grounded.params.gravity))

    @pytest.mark.asyncio
    async def test_actuator_outputs(self, bridge, simulator, connection):
        await bridge.connect(connection=connection)
        try:
            bridge.publish(simulator.telemetry(stamp=1.0))
        finally:
            await bridge.disconnect()

        args = connection.mav.actuator_output_status_send.call_args.args
        assert args[1] == 0b1111
        assert len(args[2]) == ACTUATOR_SLOTS
        assert args[2][:4] == [5000.0] * 4


class TestIngress:
    """MAVLink actuator controls to simulator commands."""

    def test_hil_controls_become_throttle_command(self, bridge, simulator):
        bridge._process_message(_hil_message([0.5] * 16))
        command = simulator.get_command()
        assert isinstance(command, NormalizedThrottleCommand)
        np.testing.assert_allclose(command.throttle, [0.5] * 4)
        assert bridge.commands_received == 1

    def test_other_messages_ignored(self, bridge, simulator):
        msg = MagicMock()
        msg.get_type.return_value = "HEARTBEAT"
        bridge._process_message(msg)
        assert simulator.get_command() is None

    @pytest.mark.asyncio
    async def test_receive_loop_and_heartbeat(self, bridge, simulator, connection):
        pending = [_hil_message([0.25, 0.5, 0.75, 1.0] + [0.0] * 12)]
        connection.recv_match.side_effect = lambda blocking=False: pending.pop() if pending else None

        await bridge.connect(connection=connection)
        assert bridge.is_connected
        await asyncio.sleep(0.05)
        await bridge.disconnect()

        np.testing.assert_allclose(simulator.get_command().throttle, [0.25, 0.5, 0.75, 1.0])
        assert connection.mav.heartbeat_send.call_count >= 1
        connection.close.assert_called_once()
        assert bridge.state == ConnectionState.DISCONNECTED
