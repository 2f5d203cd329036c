"""Session engine: frame reassembly and command dispatch.

Inbound chunks are buffered, every complete frame is decoded, and each
decoded message is handled in its own task. Handlers return a
CommandResult and the engine decides whether a frame goes back.
"""

import asyncio
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Dict, Optional, Set

from loguru import logger

from . import protocol
from .connection import ConnectionManager
from .errors import FrameError, SensorBusError
from .framing import FrameBuffer, FrameCodec
from .protocol import Message
from .sensors import SensorBus


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one command.

    response set     -> send it
    error set        -> the command failed, nothing sent
    neither          -> handled, nothing to send
    """

    response: Optional[Message] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


Handler = Callable[[Message], Awaitable[CommandResult]]


class SessionEngine:
    def __init__(
        self,
        connection: ConnectionManager,
        codec: FrameCodec,
        bus: SensorBus,
        system_id: str,
        protocol_version: int = protocol.REMOTE_PROTOCOL_VERSION,
    ):
        self.connection = connection
        self.codec = codec
        self.bus = bus
        self.system_id = system_id
        self.protocol_version = protocol_version

        self._buffer = FrameBuffer()
        self._tasks: Set[asyncio.Task] = set()
        self._handlers: Dict[str, Handler] = {
            protocol.CMD_CLIENT_INFO: self.handle_client_info,
            protocol.CMD_READ: self.handle_read,
            protocol.CMD_SEARCH: self.handle_search,
        }

        connection.on_connect = self.reset
        connection.on_data = self.feed

    @property
    def pending(self) -> int:
        """Number of commands still being handled."""
        return len(self._tasks)

    def reset(self) -> None:
        """Forget any partial frame from a previous connection."""
        self._buffer.clear()

    def feed(self, data: bytes) -> None:
        """Buffer a chunk and start handling every complete frame in it."""
        self._buffer.feed(data)

        for frame in self._buffer.drain():
            if not frame.strip():
                logger.debug("Skipping empty frame")
                continue

            try:
                message = self.codec.decode(frame)
            except FrameError as e:
                logger.warning("Decrypt of data failed! {}", e)
                self._buffer.clear()
                self.connection.close()
                return

            logger.debug("message from controller: {}", message)
            task = asyncio.get_running_loop().create_task(self.process(message))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

    async def process(self, message: Message) -> CommandResult:
        """Dispatch one message and send its response, if any."""
        try:
            result = await self.dispatch(message)
        except Exception as e:
            logger.exception("Handling {!r} failed", message.get("cmd"))
            return CommandResult(error=str(e))

        if result.response is not None and not await self.send(result.response):
            return replace(result, error="send failed")
        return result

    async def dispatch(self, message: Message) -> CommandResult:
        cmd = message.get("cmd")
        handler = self._handlers.get(cmd) if isinstance(cmd, str) else None
        if handler is None:
            logger.warning("Unknown command {!r} from controller", cmd)
            return CommandResult()
        return await handler(message)

    async def send(self, message: Message) -> bool:
        logger.debug("send to controller: {}", message)
        return await self.connection.write(self.codec.encode(message))

    async def drain(self) -> None:
        """Wait for in-flight commands to finish."""
        if self._tasks:
            logger.info("Waiting for {} command(s) to finish", len(self._tasks))
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def handle_client_info(self, message: Message) -> CommandResult:
        version = message.get("protocolVersion")
        if version != self.protocol_version:
            logger.warning(
                "Protocol version {} from the controller does not match the remote "
                "client protocol version {}! Please reinstall the remote client.",
                version, self.protocol_version,
            )

        logger.info("Sending client info to the controller")
        return CommandResult(response=protocol.client_info(self.system_id, self.protocol_version))

    async def handle_read(self, message: Message) -> CommandResult:
        address = message.get("address")
        if not address:
            logger.warning("Got read command without address from controller!")
            return CommandResult()

        if isinstance(address, str):
            raw = await self.bus.read_sensor(address)
        else:
            logger.warning("Got read command with non-string address {!r}", address)
            raw = ""
        return CommandResult(response=protocol.read_response(address, message.get("ts"), raw))

    async def handle_search(self, message: Message) -> CommandResult:
        try:
            addresses = await self.bus.enumerate_sensors()
        except SensorBusError as e:
            logger.warning("Searching for sensors failed! {}", e)
            return CommandResult(error=str(e))

        logger.debug("Found {} sensor(s)", len(addresses))
        return CommandResult(
            response=protocol.search_response(message.get("ts"), message.get("systemId"), addresses)
        )
