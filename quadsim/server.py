"""Simulator HTTP Server.

FastAPI application exposing a running simulator:
- REST API for status, state, command and disturbance ingress
- WebSocket endpoint streaming telemetry at publication boundaries
"""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any

import numpy as np
import structlog
import uvicorn
from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from quadsim.controller import (
    MotorSpeedCommand,
    NormalizedThrottleCommand,
    PositionTarget,
    ThrustMomentCommand,
)

if TYPE_CHECKING:
    from quadsim.scheduler import SimulationScheduler
    from quadsim.simulator import QuadrotorSimulator
    from quadsim.telemetry import TelemetryBundle

logger = structlog.get_logger(__name__)


# =========================================================================
# Request Models
# =========================================================================


class RPMRequest(BaseModel):
    rpm: list[float] = Field(min_length=4, max_length=4)


class ThrottleRequest(BaseModel):
    throttle: list[float] = Field(min_length=4, max_length=4)


class ThrustMomentRequest(BaseModel):
    thrust: float
    moments: list[float] = Field(default_factory=lambda: [0.0, 0.0, 0.0], min_length=3, max_length=3)


class PositionRequest(BaseModel):
    x: float
    y: float
    z: float
    yaw: float = 0.0


class VectorRequest(BaseModel):
    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    def as_array(self) -> np.ndarray:
        return np.array([self.x, self.y, self.z])


# =========================================================================
# Telemetry fan-out
# =========================================================================


class TelemetryHub:
    """Keeps the latest bundle and fans it out to WebSocket client queues."""

    def __init__(self, max_queue: int = 100) -> None:
        self.latest: TelemetryBundle | None = None
        self.max_queue = max_queue
        self._queues: list[asyncio.Queue] = []

    @property
    def client_count(self) -> int:
        return len(self._queues)

    def register(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue)
        self._queues.append(queue)
        logger.info("telemetry_client_registered", clients=len(self._queues))
        return queue

    def unregister(self, queue: asyncio.Queue) -> None:
        if queue in self._queues:
            self._queues.remove(queue)
            logger.info("telemetry_client_unregistered", clients=len(self._queues))

    def publish(self, bundle: TelemetryBundle) -> None:
        """Scheduler callback. Slow clients drop their oldest message."""
        self.latest = bundle
        message = bundle.to_dict()
        for queue in self._queues:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(message)


def create_app(
    simulator: QuadrotorSimulator,
    scheduler: SimulationScheduler | None = None,
    hub: TelemetryHub | None = None,
    duration_s: float | None = None,
) -> FastAPI:
    """Create FastAPI app with simulator endpoints.

    Args:
        simulator: Simulator receiving commands and disturbances.
        scheduler: Optional scheduler; started and stopped with the app.
        hub: Telemetry fan-out. Created and registered on ``scheduler`` if omitted.
        duration_s: Stop the scheduler after this much clock time. The server
            keeps serving the final state.

    Returns:
        Configured FastAPI application
    """
    hub = hub or TelemetryHub()
    if scheduler is not None:
        scheduler.on_telemetry(hub.publish)

    app = FastAPI(
        title="quadsim",
        description="Real-time quadrotor simulator",
        version="0.1.0",
    )
    app.state.simulator = simulator
    app.state.scheduler = scheduler
    app.state.hub = hub

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.on_event("startup")
    async def startup() -> None:
        if scheduler is not None and not scheduler.is_running:
            await scheduler.start(duration_s=duration_s)
            logger.info("scheduler_started_with_server", duration_s=duration_s)

    @app.on_event("shutdown")
    async def shutdown() -> None:
        if scheduler is not None:
            await scheduler.stop()

    # =========================================================================
    # REST API
    # =========================================================================

    @app.get("/")
    def root() -> dict:
        return {
            "name": "quadsim",
            "api_docs": "/docs",
            "websocket": "/ws/telemetry",
        }

    @app.get("/api/status")
    def get_status() -> dict:
        """Get simulator status."""
        status: dict[str, Any] = {
            "vehicle": simulator.config.quadrotor_name,
            "sim_time": simulator.sim_time_s,
            "steps": simulator.step_count,
            "running": scheduler.is_running if scheduler else False,
            "telemetry_clients": hub.client_count,
        }
        if scheduler is not None:
            status.update(
                simulation_rate=scheduler.simulation_rate,
                odom_rate=scheduler.odom_rate,
                publications=scheduler.publish_count,
                overruns=scheduler.overrun_count,
            )
        return status

    @app.get("/api/state")
    def get_state() -> dict:
        state = simulator.state
        return {
            "sim_time": simulator.sim_time_s,
            "position": state.position.tolist(),
            "orientation": state.quaternion.tolist(),
            "velocity": state.velocity.tolist(),
            "angular_velocity": state.angular_velocity.tolist(),
            "motor_rpm": state.motor_rpm.tolist(),
        }

    @app.get("/api/telemetry")
    def get_telemetry() -> dict:
        """Most recently published telemetry bundle."""
        if hub.latest is None:
            raise HTTPException(status_code=404, detail="No telemetry published yet")
        return hub.latest.to_dict()

    @app.post("/api/command/rpm")
    def command_rpm(request: RPMRequest) -> dict:
        simulator.set_command(MotorSpeedCommand(rpm=np.array(request.rpm)))
        return {"success": True}

    @app.post("/api/command/throttle")
    def command_throttle(request: ThrottleRequest) -> dict:
        simulator.set_command(NormalizedThrottleCommand(throttle=np.array(request.throttle)))
        return {"success": True}

    @app.post("/api/command/thrust")
    def command_thrust(request: ThrustMomentRequest) -> dict:
        simulator.set_command(
            ThrustMomentCommand(thrust=request.thrust, moments=np.array(request.moments))
        )
        return {"success": True}

    @app.post("/api/command/position")
    def command_position(request: PositionRequest) -> dict:
        simulator.set_command(
            PositionTarget(position=np.array([request.x, request.y, request.z]), yaw=request.yaw)
        )
        return {"success": True}

    @app.post("/api/disturbance/force")
    def set_force(request: VectorRequest) -> dict:
        """Set the external force (world frame, N)."""
        simulator.set_external_force(request.as_array())
        return {"success": True, "force": request.as_array().tolist()}

    @app.post("/api/disturbance/moment")
    def set_moment(request: VectorRequest) -> dict:
        """Set the external moment (body frame, N m)."""
        simulator.set_external_moment(request.as_array())
        return {"success": True, "moment": request.as_array().tolist()}

    @app.post("/api/reset")
    def reset() -> dict:
        """Reset the simulator pose and the controller's internal state."""
        simulator.reset()
        if scheduler is not None:
            scheduler.controller.reset()
        return {"success": True}

    # =========================================================================
    # WebSocket
    # =========================================================================

    @app.websocket("/ws/telemetry")
    async def telemetry_stream(websocket: WebSocket) -> None:
        """Stream telemetry bundles as JSON."""
        await websocket.accept()
        queue = hub.register()
        try:
            while True:
                message = await queue.get()
                await websocket.send_json(message)
        except WebSocketDisconnect:
            logger.info("telemetry_client_disconnected")
        finally:
            hub.unregister(queue)

    return app


def run_server(app: FastAPI, host: str = "127.0.0.1", port: int = 8081) -> None:
    """Run the simulator server (blocking)."""
    logger.info("server_starting", host=host, port=port)
    uvicorn.run(app, host=host, port=port, log_config=None)
