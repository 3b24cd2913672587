"""
Shared test configuration and fixtures.
"""

import asyncio
from collections.abc import AsyncGenerator, Callable
from contextlib import asynccontextmanager
from typing import Any

import httpx
import pytest
from fastapi import FastAPI

from quadsim.config import SimulatorConfig, VehicleParams, build_config

# Test vehicle parameters (0.5 kg quadrotor)
TEST_VEHICLE = {
    "mass": 0.5,
    "Ixx": 2.64e-3,
    "Iyy": 2.64e-3,
    "Izz": 4.96e-3,
    "gravity": 9.81,
    "prop_radius": 0.062,
    "thrust_coefficient": 5.55e-8,
    "arm_length": 0.17,
    "motor_time_constant": 0.0333,
    "min_rpm": 1200.0,
    "max_rpm": 35000.0,
    "drag_coefficient": 0.1,
}


class FakeClock:
    """Monotonic clock advanced explicitly by tests."""

    def __init__(self, start: float = 100.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


@pytest.fixture
def vehicle_dict() -> dict[str, Any]:
    """Mutable copy of the test vehicle constants."""
    return dict(TEST_VEHICLE)


@pytest.fixture
def vehicle_params() -> VehicleParams:
    return VehicleParams(**TEST_VEHICLE)


@pytest.fixture
def make_config() -> Callable[..., SimulatorConfig]:
    """
    Factory fixture building a SimulatorConfig around the test vehicle.

    Usage:
        config = make_config(initial_position={"z": 1.0}, vehicle={"drag_coefficient": 0.0})
    """

    def _make_config(vehicle: dict[str, Any] | None = None, **overrides: Any) -> SimulatorConfig:
        data: dict[str, Any] = {"vehicle": {**TEST_VEHICLE, **(vehicle or {})}}
        data.update(overrides)
        return build_config(data, environ={})

    return _make_config


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_async_client() -> Callable[[FastAPI], "AsyncClientContextManager"]:
    """
    Factory fixture that creates httpx.AsyncClient instances for testing FastAPI apps.

    Usage:
        @pytest.mark.asyncio
        async def test_something(self, make_async_client, my_app):
            async with make_async_client(my_app) as client:
                response = await client.get("/endpoint")
                assert response.status_code == 200
    """

    @asynccontextmanager
    async def _make_client(
        app: FastAPI, base_url: str = "http://test"
    ) -> AsyncGenerator[httpx.AsyncClient, None]:
        transport = httpx.ASGITransport(app=app)
        async with httpx.AsyncClient(transport=transport, base_url=base_url) as client:
            yield client

    return _make_client


# Type alias for the async client context manager
AsyncClientContextManager = Callable[[FastAPI], AsyncGenerator[httpx.AsyncClient, None]]
