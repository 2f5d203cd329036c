#!/usr/bin/env python3
"""
ds18b20-remote Diagnostic Controller

Responsibilities:
- Listen for one agent connection
- Exchange clientInfo and record the agent's identity
- Issue search/read commands and match replies by their echoed ts
- Print results as JSON

Meant for bench testing an agent without the full home automation
controller.
"""

import argparse
import asyncio
import json
import sys
import time
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger

# Local modules
from . import protocol
from .agent import setup_logging
from .crypto import KEY_SIZE
from .errors import FrameError
from .framing import FrameBuffer, FrameCodec
from .protocol import Message

CONTROLLER_SYSTEM_ID = "ds18b20-controller"
REQUEST_TIMEOUT = 10.0


class AgentLink:
    """Represents a connected agent."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter, codec: FrameCodec):
        self.reader = reader
        self.writer = writer
        self.codec = codec
        peer = writer.get_extra_info("peername") or ("?", 0)
        self.id = f"{peer[0]}:{peer[1]}"
        self.system_id: Optional[str] = None
        self.protocol_version: Optional[int] = None
        self.identified = asyncio.Event()
        self.active = True

        self._buffer = FrameBuffer()
        self._waiters: Dict[Tuple[Any, ...], asyncio.Future] = {}
        self._last_ts = 0

    async def send_message(self, msg: Message) -> bool:
        """Send an encrypted message to the agent."""
        try:
            self.writer.write(self.codec.encode(msg))
            await self.writer.drain()
            return True
        except OSError as e:
            logger.warning("Agent {} send error: {}", self.id, e)
            self.close()
            return False

    async def listen(self) -> None:
        """Read frames until the agent goes away or sends garbage."""
        try:
            while self.active:
                data = await self.reader.read(4096)
                if not data:
                    logger.info("Agent {} disconnected", self.id)
                    break
                self._buffer.feed(data)
                for frame in self._buffer.drain():
                    if frame.strip():
                        self.handle_message(self.codec.decode(frame))
        except FrameError as e:
            logger.warning("Agent {} sent an undecodable frame: {}", self.id, e)
        except OSError as e:
            logger.warning("Agent {} recv error: {}", self.id, e)
        finally:
            self.close()

    def handle_message(self, msg: Message) -> None:
        """Process a message from the agent."""
        cmd = msg.get("cmd")
        logger.debug("message from agent {}: {}", self.id, msg)

        if cmd == protocol.CMD_CLIENT_INFO:
            self.system_id = msg.get("systemId")
            self.protocol_version = msg.get("protocolVersion")
            if self.protocol_version != protocol.REMOTE_PROTOCOL_VERSION:
                logger.warning(
                    "Agent {} speaks protocol version {}, expected {}",
                    self.id, self.protocol_version, protocol.REMOTE_PROTOCOL_VERSION,
                )
            logger.info("Agent {} identified as {}", self.id, self.system_id)
            self.identified.set()
            return

        if cmd == protocol.CMD_READ:
            key = (cmd, msg.get("ts"), msg.get("address"))
        elif cmd == protocol.CMD_SEARCH:
            key = (cmd, msg.get("ts"))
        else:
            logger.warning("Unknown command {!r} from agent {}", cmd, self.id)
            return

        waiter = self._waiters.pop(key, None)
        if waiter is None or waiter.done():
            logger.warning("Unexpected {} reply from agent {} (ts={})", cmd, self.id, msg.get("ts"))
            return
        waiter.set_result(msg)

    async def request(self, msg: Message, key: Tuple[Any, ...], timeout: float = REQUEST_TIMEOUT) -> Message:
        """Send a request and wait for the reply matching key."""
        if not self.active:
            raise ConnectionError(f"Agent {self.id} is not connected")

        waiter = asyncio.get_running_loop().create_future()
        self._waiters[key] = waiter
        try:
            if not await self.send_message(msg):
                raise ConnectionError(f"Could not send {msg['cmd']} to agent {self.id}")
            return await asyncio.wait_for(waiter, timeout)
        finally:
            self._waiters.pop(key, None)

    async def search(self, timeout: float = REQUEST_TIMEOUT) -> List[str]:
        ts = self.next_ts()
        reply = await self.request(
            protocol.search_request(ts, self.system_id or ""),
            (protocol.CMD_SEARCH, ts),
            timeout,
        )
        return reply.get("addresses") or []

    async def read(self, address: str, timeout: float = REQUEST_TIMEOUT) -> str:
        ts = self.next_ts()
        reply = await self.request(
            protocol.read_request(address, ts),
            (protocol.CMD_READ, ts, address),
            timeout,
        )
        return reply.get("raw") or ""

    def next_ts(self) -> int:
        """Millisecond timestamp, strictly increasing per link."""
        self._last_ts = max(self._last_ts + 1, int(time.time() * 1000))
        return self._last_ts

    def close(self) -> None:
        if not self.active:
            return
        self.active = False
        self.writer.close()
        for waiter in self._waiters.values():
            if not waiter.done():
                waiter.set_exception(ConnectionError(f"Agent {self.id} disconnected"))
        self._waiters.clear()


class Controller:
    def __init__(self, key: bytes, host: str = "", port: int = protocol.DEFAULT_PORT):
        self.codec = FrameCodec(key)
        self.host = host
        self.port = port
        self.agent: Optional[AgentLink] = None
        self._server: Optional[asyncio.AbstractServer] = None
        self._attached = asyncio.Event()

    async def start(self) -> int:
        """Start listening. Returns the bound port (useful with port 0)."""
        self._server = await asyncio.start_server(self._handle_agent, self.host or None, self.port)
        self.port = self._server.sockets[0].getsockname()[1]
        logger.info("Controller listening on :{}", self.port)
        return self.port

    async def close(self) -> None:
        if self.agent is not None:
            self.agent.close()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()

    async def wait_for_agent(self, timeout: Optional[float] = None) -> AgentLink:
        """Wait until an agent is connected and has sent its clientInfo."""

        async def _wait() -> AgentLink:
            while True:
                link = self.agent
                if link is not None and link.active:
                    await link.identified.wait()
                    return link
                self._attached.clear()
                await self._attached.wait()

        return await asyncio.wait_for(_wait(), timeout)

    async def _handle_agent(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter) -> None:
        if self.agent is not None and self.agent.active:
            logger.warning("Refusing agent {}, one is already attached", writer.get_extra_info("peername"))
            writer.close()
            return

        link = AgentLink(reader, writer, self.codec)
        self.agent = link
        self._attached.set()
        logger.info("Agent connected: {}", link.id)

        try:
            if await link.send_message(protocol.client_info(CONTROLLER_SYSTEM_ID)):
                await link.listen()
        finally:
            link.close()
            if self.agent is link:
                self.agent = None
            logger.info("Agent {} session ended", link.id)


async def run_command(controller: Controller, args: argparse.Namespace) -> Any:
    await controller.start()
    try:
        logger.info("Waiting for an agent...")
        link = await controller.wait_for_agent(args.wait)
        if args.command == "search":
            return {"systemId": link.system_id, "addresses": await link.search(args.timeout)}
        return {"address": args.address, "raw": await link.read(args.address, args.timeout)}
    finally:
        await controller.close()


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="ds18b20 diagnostic controller")
    parser.add_argument("--host", default="",
                        help="Address to listen on (default: all)")
    parser.add_argument("--port", "-p", type=int, default=protocol.DEFAULT_PORT,
                        help=f"Port to listen on (default: {protocol.DEFAULT_PORT})")
    parser.add_argument("--key", "-k", required=True,
                        help="Shared key (64 hex chars, 32 bytes)")
    parser.add_argument("--wait", type=float, default=None,
                        help="Seconds to wait for an agent (default: forever)")
    parser.add_argument("--timeout", type=float, default=REQUEST_TIMEOUT,
                        help=f"Seconds to wait for a reply (default: {REQUEST_TIMEOUT:g})")
    parser.add_argument("--debug", "-d", action="store_true")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("search", help="List the sensors of the agent")
    read = commands.add_parser("read", help="Read one sensor")
    read.add_argument("address")

    args = parser.parse_args(argv)
    setup_logging(args.debug)

    try:
        key = bytes.fromhex(args.key)
        if len(key) != KEY_SIZE:
            raise ValueError(f"key must be {KEY_SIZE} bytes ({KEY_SIZE * 2} hex chars)")
    except ValueError as e:
        logger.error("Invalid key: {}", e)
        sys.exit(1)

    controller = Controller(key, args.host, args.port)
    try:
        result = asyncio.run(run_command(controller, args))
    except (asyncio.TimeoutError, ConnectionError) as e:
        logger.error("{} failed: {}", args.command, str(e) or type(e).__name__)
        sys.exit(1)
    except KeyboardInterrupt:
        sys.exit(0)

    print(json.dumps(result, indent=2))


if __name__ == "__main__":
    main()
