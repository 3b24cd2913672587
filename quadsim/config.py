"""Simulator Configuration.

Settings are plain pydantic models loaded once at startup from YAML, with a
small set of environment variable overrides. Nothing here is mutated after
the simulator has been constructed.

Example YAML::

    rate:
      simulation: 1000.0
      odom: 100.0
    world_frame_id: simulator
    quadrotor_name: quadrotor
    vehicle:
      mass: 0.5
      Ixx: 2.64e-3
      ...
"""

from __future__ import annotations

import copy
import math
import os
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import numpy as np
import structlog
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from quadsim.exceptions import ConfigurationError

logger = structlog.get_logger(__name__)

# Rotor drag torque over thrust, times propeller diameter scale (Cq/Ct ~ 0.07)
MOMENT_TO_THRUST_RATIO = 0.07


class VehicleParams(BaseModel):
    """Physical constants of one vehicle. Every field is required."""

    model_config = ConfigDict(frozen=True, allow_inf_nan=False)

    mass: float = Field(gt=0, description="Total mass (kg)")
    Ixx: float = Field(gt=0, description="Moment of inertia about body x (kg m^2)")
    Iyy: float = Field(gt=0, description="Moment of inertia about body y (kg m^2)")
    Izz: float = Field(gt=0, description="Moment of inertia about body z (kg m^2)")
    gravity: float = Field(gt=0, description="Gravity magnitude (m/s^2)")
    prop_radius: float = Field(gt=0, description="Propeller radius (m)")
    thrust_coefficient: float = Field(gt=0, description="k_f, thrust per rpm^2 (N)")
    arm_length: float = Field(gt=0, description="Rotor arm length (m)")
    motor_time_constant: float = Field(gt=0, description="First-order motor lag (s)")
    min_rpm: float = Field(ge=0, description="Lowest realizable rotor speed")
    max_rpm: float = Field(gt=0, description="Highest realizable rotor speed")
    drag_coefficient: float = Field(ge=0, description="Linear body-plane drag (N s/m)")

    @model_validator(mode="after")
    def _check_rpm_range(self) -> VehicleParams:
        if self.max_rpm < self.min_rpm:
            raise ValueError(f"max_rpm ({self.max_rpm}) must be >= min_rpm ({self.min_rpm})")
        return self

    @property
    def inertia(self) -> np.ndarray:
        """Diagonal inertia tensor."""
        return np.diag([self.Ixx, self.Iyy, self.Izz])

    @property
    def inertia_inv(self) -> np.ndarray:
        return np.diag([1.0 / self.Ixx, 1.0 / self.Iyy, 1.0 / self.Izz])

    @property
    def moment_coefficient(self) -> float:
        """k_m, yaw torque per rpm^2, derived from the propeller size."""
        return MOMENT_TO_THRUST_RATIO * (3 * self.prop_radius) * self.thrust_coefficient

    @property
    def hover_rpm(self) -> float:
        """Per-rotor speed whose combined thrust balances gravity."""
        return math.sqrt(self.mass * self.gravity / (4 * self.thrust_coefficient))


class RateSettings(BaseModel):
    """Loop rates (Hz)."""

    model_config = ConfigDict(allow_inf_nan=False)

    simulation: float = Field(default=1000.0, gt=0, description="Integration rate")
    odom: float = Field(default=100.0, gt=0, description="Telemetry publication rate")


class PositionSettings(BaseModel):
    """Initial position (world frame, m)."""

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z])


class OrientationSettings(BaseModel):
    """Initial orientation quaternion, normalized on load."""

    w: float = 1.0
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @model_validator(mode="after")
    def _normalize(self) -> OrientationSettings:
        norm = math.sqrt(self.w**2 + self.x**2 + self.y**2 + self.z**2)
        if norm == 0.0 or not math.isfinite(norm):
            raise ValueError("initial_orientation must have a non-zero finite norm")
        self.w, self.x, self.y, self.z = (self.w / norm, self.x / norm, self.y / norm, self.z / norm)
        return self

    def as_array(self) -> np.ndarray:
        return np.array([self.w, self.x, self.y, self.z])


class SensorSettings(BaseModel):
    """Sensor synthesis settings."""

    ground_contact_threshold: float = Field(
        default=1e-4, description="Altitude below which the vehicle is treated as resting"
    )


class SimulatorConfig(BaseModel):
    """Complete simulator configuration."""

    rate: RateSettings = Field(default_factory=RateSettings)
    world_frame_id: str = Field(default="simulator")
    quadrotor_name: str = Field(default="quadrotor")
    vehicle: VehicleParams
    initial_position: PositionSettings = Field(default_factory=PositionSettings)
    initial_orientation: OrientationSettings = Field(default_factory=OrientationSettings)
    initial_motor_rpm: float | None = Field(
        default=None, description="Initial realized rotor speed (defaults to min_rpm)"
    )
    sensor: SensorSettings = Field(default_factory=SensorSettings)
    floor_enabled: bool = Field(default=True, description="Keep the vehicle above z = 0")
    log_level: str = Field(default="INFO")


_TRUE_VALUES = ("true", "1", "yes", "on", "enabled")
_FALSE_VALUES = ("false", "0", "no", "off", "disabled")


def _parse_bool(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in _TRUE_VALUES:
        return True
    if normalized in _FALSE_VALUES:
        return False
    raise ValueError(f"Not a boolean: {value!r}")


# env var -> (path into the config dict, converter)
ENV_MAPPINGS: dict[str, tuple[tuple[str, ...], Callable[[str], Any]]] = {
    "QUADSIM_SIMULATION_RATE": (("rate", "simulation"), float),
    "QUADSIM_ODOM_RATE": (("rate", "odom"), float),
    "QUADSIM_WORLD_FRAME_ID": (("world_frame_id",), str),
    "QUADSIM_QUADROTOR_NAME": (("quadrotor_name",), str),
    "QUADSIM_FLOOR_ENABLED": (("floor_enabled",), _parse_bool),
    "QUADSIM_LOG_LEVEL": (("log_level",), str),
}


def apply_environment(data: dict[str, Any], environ: Mapping[str, str] | None = None) -> dict:
    """Overlay ``QUADSIM_*`` environment variables onto a raw config dict."""
    environ = os.environ if environ is None else environ
    for env_var, (path, converter) in ENV_MAPPINGS.items():
        value = environ.get(env_var)
        if value is None:
            continue
        try:
            converted = converter(value)
        except ValueError as e:
            raise ConfigurationError(f"Invalid value for {env_var}: {value!r}") from e

        target = data
        for key in path[:-1]:
            target = target.setdefault(key, {})
        target[path[-1]] = converted
        logger.debug("config_env_override", variable=env_var, path=".".join(path))
    return data


def build_config(data: Mapping[str, Any], environ: Mapping[str, str] | None = None) -> SimulatorConfig:
    """Validate a raw mapping (plus environment overrides) into a config.

    Raises:
        ConfigurationError: If a required constant is missing or a value is invalid.
    """
    raw = apply_environment(copy.deepcopy(dict(data)), environ)
    try:
        return SimulatorConfig.model_validate(raw)
    except ValidationError as e:
        raise ConfigurationError(f"Invalid simulator configuration:\n{e}") from e


def load_config(path: Path | str, environ: Mapping[str, str] | None = None) -> SimulatorConfig:
    """Load the simulator configuration from a YAML file.

    Priority (highest to lowest):
    1. Environment variables
    2. Config file
    3. Defaults

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid.
    """
    config_file = Path(path)
    if not config_file.exists():
        raise ConfigurationError(f"Config file not found: {config_file}")

    try:
        with open(config_file, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Failed to parse {config_file}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigurationError(f"Top level of {config_file} must be a mapping")

    config = build_config(data, environ)
    logger.info(
        "config_loaded",
        path=str(config_file),
        simulation_rate=config.rate.simulation,
        odom_rate=config.rate.odom,
        quadrotor_name=config.quadrotor_name,
    )
    return config
