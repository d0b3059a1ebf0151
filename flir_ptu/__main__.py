"""
Main entry point for the FLIR PTU driver.

Usage:
    python -m flir_ptu [--config CONFIG_PATH] [--simulator]
    python -m flir_ptu --list-ports
    python -m flir_ptu --example-config PATH
"""

import argparse
import logging
import signal
import sys

import uvicorn

from flir_ptu import __version__
from flir_ptu.api.app import create_app
from flir_ptu.api.routes import router as ptu_router
from flir_ptu.config.loader import ConfigurationError, create_example_config, load_config
from flir_ptu.protocol.logger import get_protocol_logger
from flir_ptu.protocol.port_scanner import list_available_ports
from flir_ptu.protocol.transport import SerialTransport
from flir_ptu.ptu.controller import PTUController
from flir_ptu.simulator.mock_ptu import SimulatedPTUTransport
from flir_ptu.utils.exceptions import PTUException
from flir_ptu.utils.logging_setup import setup_logging


logger = logging.getLogger(__name__)


# Global resources for cleanup
ptu_controller = None


def signal_handler(signum, frame):
    """Handle shutdown signals (SIGINT, SIGTERM)."""
    logger.info(f"Received signal {signum}, shutting down...")
    if ptu_controller:
        ptu_controller.disconnect()
    sys.exit(0)


def print_ports() -> None:
    ports = list_available_ports()
    if not ports:
        print("No serial ports found")
        return
    for port in ports:
        marker = " (USB serial)" if port.is_usb_serial else ""
        print(f"{port.name}\t{port.description}{marker}")


def main():
    """Main application entry point."""
    global ptu_controller

    parser = argparse.ArgumentParser(description="FLIR PTU driver")
    parser.add_argument(
        "--config",
        type=str,
        default="config.json",
        help="Path to configuration file (default: config.json)"
    )
    parser.add_argument(
        "--simulator",
        action="store_true",
        help="Use the built-in simulator instead of hardware"
    )
    parser.add_argument(
        "--list-ports",
        action="store_true",
        help="List serial ports and exit"
    )
    parser.add_argument(
        "--example-config",
        metavar="PATH",
        help="Write an example configuration file and exit"
    )
    args = parser.parse_args()

    if args.list_ports:
        print_ports()
        return

    if args.example_config:
        create_example_config(args.example_config)
        print(f"Example configuration written to {args.example_config}")
        return

    try:
        config = load_config(args.config)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    if args.simulator:
        config.simulator.enabled = True

    setup_logging(config.logging)

    logger.info("=" * 60)
    logger.info(f"FLIR PTU Driver v{__version__}")
    logger.info("=" * 60)

    if config.simulator.enabled:
        logger.info("Using SIMULATOR mode")
        transport = SimulatedPTUTransport(config.simulator)
    else:
        if not config.transport.port:
            logger.error("No transport configured")
            logger.error("Set 'transport.port' in config.json to a device path or socket://host:port")
            sys.exit(1)
        logger.info(f"Using REAL HARDWARE on {config.transport.port}")
        transport = SerialTransport(config.transport)

    ptu_controller = PTUController(
        transport,
        config.transport,
        config.ptu,
        protocol_logger=get_protocol_logger(),
    )

    app = create_app(config)
    app.state.ptu = ptu_controller
    app.state.config = config
    app.include_router(ptu_router)

    try:
        ptu_controller.connect()
    except PTUException as e:
        # The server still starts; clients can retry with PUT connected
        logger.error(f"Initial connection failed: {e}")

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info(f"Starting API server on {config.server.ip}:{config.server.port}")
    logger.info("Press Ctrl+C to stop")

    try:
        uvicorn.run(
            app,
            host=config.server.ip,
            port=config.server.port,
            log_level=config.logging.level.lower(),
        )
    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received")
    except Exception as e:
        logger.error(f"Server error: {e}", exc_info=True)
        sys.exit(1)
    finally:
        if ptu_controller:
            ptu_controller.disconnect()
        logger.info("Shutdown complete")


if __name__ == "__main__":
    main()
