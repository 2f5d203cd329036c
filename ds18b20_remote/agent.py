#!/usr/bin/env python3
"""
ds18b20-remote Agent

Responsibilities:
- Keep one connection to the controller, reconnecting after 30 seconds
- Answer clientInfo with our systemId and protocol version
- Read single sensors and enumerate the 1-wire bus on request
- Shut down cleanly on SIGINT/SIGTERM
"""

import argparse
import asyncio
import signal
import sys
from typing import List, Optional

from loguru import logger

# Local modules
from . import __version__
from .config import Config, is_debug, load_config, read_env
from .connection import ConnectionManager, RECONNECT_DELAY
from .errors import ConfigError
from .framing import FrameCodec
from .sensors import SensorBus
from .session import SessionEngine

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)


def setup_logging(debug: bool = False) -> None:
    """Replace loguru's default sink with a leveled stderr sink."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if debug else "INFO", format=LOG_FORMAT)


class Agent:
    """Wires the sensor bus, codec, connection and session together."""

    def __init__(self, config: Config, reconnect_delay: float = RECONNECT_DELAY):
        self.config = config
        self.bus = SensorBus(config.w1_devices_path)
        self.codec = FrameCodec(config.adapter_key)
        self.connection = ConnectionManager(
            config.adapter_host,
            config.adapter_port,
            reconnect_delay=reconnect_delay,
        )
        self.session = SessionEngine(
            self.connection,
            self.codec,
            self.bus,
            config.system_id,
        )

    async def run(self) -> None:
        """Connect and serve until shutdown() is called."""
        self.connection.connect()
        await self.connection.wait_terminated()
        await self.session.drain()
        logger.info("Agent stopped")

    def shutdown(self) -> None:
        self.connection.shutdown()


async def serve(config: Config) -> None:
    agent = Agent(config)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, agent.shutdown)
        except (NotImplementedError, RuntimeError):
            # No loop signal support (Windows); fall back to KeyboardInterrupt.
            pass

    await agent.run()


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="ds18b20 remote client for 1-wire temperature sensors")
    parser.add_argument("--env-file", default=".env",
                        help="Optional file with KEY=value settings (default: .env)")
    parser.add_argument("--debug", "-d", action="store_true",
                        help="Enable debug logging (same as DEBUG=1)")

    args = parser.parse_args(argv)

    setup_logging(args.debug)
    if not args.debug and is_debug(read_env(env_file=args.env_file)):
        setup_logging(True)

    logger.info("- ds18b20 remote client v{} -", __version__)

    try:
        config = load_config(env_file=args.env_file)
    except ConfigError as e:
        logger.error("{}", e)
        sys.exit(1)

    try:
        asyncio.run(serve(config))
    except KeyboardInterrupt:
        logger.info("Agent interrupted")


if __name__ == "__main__":
    main()
