"""Run the quadrotor simulator.

Usage:
    quadsim [OPTIONS]

Examples:
    # Hover in place for 10 seconds, logging telemetry
    quadsim --controller hover --duration 10 --telemetry-dir logs/

    # Stream to a flight stack over MAVLink and accept HIL actuator controls
    quadsim --controller throttle --mavlink udpout:127.0.0.1:14560

    # Serve the REST/WebSocket API on port 8081
    quadsim --controller position --http-port 8081
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

import structlog

from metrics.telemetry_logger import TelemetryLogger
from quadsim.config import SimulatorConfig, load_config
from quadsim.controller import (
    ControllerAdapter,
    DirectRPMController,
    NormalizedThrottleController,
    PositionHoldController,
    ThrustMomentController,
)
from quadsim.exceptions import ConfigurationError
from quadsim.logging_setup import configure_logging
from quadsim.mavlink_bridge import MAVLinkBridge, MAVLinkBridgeConfig
from quadsim.scheduler import SimulationScheduler
from quadsim.server import create_app, run_server
from quadsim.simulator import QuadrotorSimulator

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG = Path("configs/quadsim.yaml")


def build_controller(name: str, config: SimulatorConfig) -> ControllerAdapter:
    """Controller adapter for a ``--controller`` choice."""
    params = config.vehicle
    if name == "rpm":
        return DirectRPMController()
    if name == "throttle":
        return NormalizedThrottleController(params)
    if name == "hover":
        return ThrustMomentController(params)
    if name == "position":
        return PositionHoldController(params)
    raise ValueError(f"Unknown controller: {name}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="quadsim",
        description="Real-time quadrotor simulator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG, help="YAML config file")
    parser.add_argument(
        "--controller",
        choices=["rpm", "throttle", "hover", "position"],
        default="hover",
        help="Controller adapter (use throttle with --mavlink HIL controls)",
    )
    parser.add_argument("--duration", type=float, default=None, help="Run time in seconds")
    parser.add_argument("--telemetry-dir", type=Path, default=None, help="Write JSONL telemetry here")
    parser.add_argument("--mavlink", default=None, help="MAVLink connection string")
    parser.add_argument("--http-port", type=int, default=None, help="Serve the HTTP API on this port")
    parser.add_argument("--host", default="127.0.0.1", help="HTTP API host")
    parser.add_argument("--log-level", default=None, help="Override the configured log level")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    return parser


async def run_headless(
    scheduler: SimulationScheduler,
    bridge: MAVLinkBridge | None,
    duration_s: float | None,
) -> None:
    if bridge is not None:
        await bridge.connect()
    try:
        await scheduler.run(duration_s=duration_s)
    finally:
        if bridge is not None:
            await bridge.disconnect()


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    configure_logging(args.log_level or "INFO", json_output=args.json_logs)

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        logger.error("configuration_error", error=str(e))
        return 2

    if args.log_level is None:
        configure_logging(config.log_level, json_output=args.json_logs)

    simulator = QuadrotorSimulator(config)
    controller = build_controller(args.controller, config)
    try:
        scheduler = SimulationScheduler(
            simulator,
            controller,
            simulation_rate=config.rate.simulation,
            odom_rate=config.rate.odom,
        )
    except ConfigurationError as e:
        logger.error("configuration_error", error=str(e))
        return 2

    telemetry_logger = None
    if args.telemetry_dir is not None:
        telemetry_logger = TelemetryLogger(args.telemetry_dir)
        telemetry_logger.start_run()
        scheduler.on_telemetry(telemetry_logger.log_bundle)

    bridge = None
    if args.mavlink:
        bridge = MAVLinkBridge(MAVLinkBridgeConfig(connection_string=args.mavlink), simulator)
        scheduler.on_telemetry(bridge.publish)

    logger.info(
        "quadsim_starting",
        config=str(args.config),
        controller=args.controller,
        duration_s=args.duration,
        mavlink=args.mavlink,
        http_port=args.http_port,
    )

    try:
        if args.http_port is not None:
            app = create_app(simulator, scheduler, duration_s=args.duration)
            if bridge is not None:
                app.add_event_handler("startup", bridge.connect)
                app.add_event_handler("shutdown", bridge.disconnect)
            run_server(app, host=args.host, port=args.http_port)
        else:
            asyncio.run(run_headless(scheduler, bridge, args.duration))
    except KeyboardInterrupt:
        logger.info("quadsim_interrupted")
    finally:
        if telemetry_logger is not None:
            telemetry_logger.end_run()

    logger.info(
        "quadsim_stopped",
        sim_time_s=round(simulator.sim_time_s, 3),
        publications=scheduler.publish_count,
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
