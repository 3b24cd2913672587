"""quadsim - real-time quadrotor simulator.

Rigid-body dynamics, rotor lag, IMU synthesis and a fixed-rate scheduler that
publishes odometry / IMU / output telemetry.
"""

from quadsim.actuator import ActuatorModel, ActuatorOutput
from quadsim.config import SimulatorConfig, VehicleParams, build_config, load_config
from quadsim.controller import (
    ControllerAdapter,
    DirectRPMController,
    MotorSpeedCommand,
    NormalizedThrottleCommand,
    NormalizedThrottleController,
    PositionHoldController,
    PositionTarget,
    ThrustMomentCommand,
    ThrustMomentController,
)
from quadsim.dynamics import DynamicsIntegrator
from quadsim.exceptions import ConfigurationError, QuadSimError
from quadsim.scheduler import SimulationScheduler
from quadsim.sensors import ImuSample, SensorSynthesizer
from quadsim.simulator import QuadrotorSimulator
from quadsim.state import Disturbance, RigidBodyState
from quadsim.telemetry import TelemetryBundle

__version__ = "0.1.0"

__all__ = [
    "ActuatorModel",
    "ActuatorOutput",
    "ConfigurationError",
    "ControllerAdapter",
    "DirectRPMController",
    "Disturbance",
    "DynamicsIntegrator",
    "ImuSample",
    "MotorSpeedCommand",
    "NormalizedThrottleCommand",
    "NormalizedThrottleController",
    "PositionHoldController",
    "PositionTarget",
    "QuadSimError",
    "QuadrotorSimulator",
    "RigidBodyState",
    "SensorSynthesizer",
    "SimulationScheduler",
    "SimulatorConfig",
    "TelemetryBundle",
    "ThrustMomentCommand",
    "ThrustMomentController",
    "VehicleParams",
    "build_config",
    "load_config",
]
