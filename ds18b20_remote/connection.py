"""Persistent outbound connection to the controller.

Every transport event is routed through ConnectionManager._handle_event(),
which owns all state transitions::

    IDLE --connect()--> CONNECTING --connected--> CONNECTED
    CONNECTING/CONNECTED --error/closed/close()--> CLOSING --> IDLE (+ reconnect timer)
    any --shutdown()--> TERMINATED

Each connection attempt gets a new generation number. Events carrying an
older generation come from a stream that was already torn down and are
ignored.
"""

import asyncio
from enum import Enum
from typing import Awaitable, Callable, Optional, Tuple

from loguru import logger

RECONNECT_DELAY = 30.0
READ_SIZE = 4096

Streams = Tuple[asyncio.StreamReader, asyncio.StreamWriter]
OpenConnection = Callable[[str, int], Awaitable[Streams]]


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSING = "closing"
    TERMINATED = "terminated"


class TransportEvent(str, Enum):
    CONNECTED = "connected"
    DATA = "data"
    ERROR = "error"
    CLOSED = "closed"


class ConnectionManager:
    """
    Owns the socket to the controller and keeps it alive.

    Listeners:
      on_connect()     called after every successful connect
      on_data(bytes)   called for every inbound chunk, in order
    """

    def __init__(
        self,
        host: str,
        port: int,
        reconnect_delay: float = RECONNECT_DELAY,
        open_connection: Optional[OpenConnection] = None,
    ):
        self.host = host
        self.port = port
        self.reconnect_delay = reconnect_delay
        self.on_connect: Optional[Callable[[], None]] = None
        self.on_data: Optional[Callable[[bytes], None]] = None

        self._open_connection = open_connection or asyncio.open_connection
        self._state = ConnectionState.IDLE
        self._generation = 0
        self._writer: Optional[asyncio.StreamWriter] = None
        self._task: Optional[asyncio.Task] = None
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._should_exit = False
        self._terminated = asyncio.Event()

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    @property
    def should_exit(self) -> bool:
        return self._should_exit

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def connect(self) -> None:
        """Start a connection attempt. Also the reconnect timer callback."""
        self._cancel_reconnect()

        if self._should_exit:
            return
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            logger.debug("Connect ignored, already {}", self._state.value)
            return

        self._generation += 1
        self._set_state(ConnectionState.CONNECTING)
        logger.info("Connecting to {}:{} ...", self.host, self.port)
        self._task = asyncio.get_running_loop().create_task(self._run(self._generation))

    def close(self) -> None:
        """Drop the current connection and schedule a reconnect.

        Used when the inbound stream can no longer be trusted.
        """
        if self._state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            self._handle_event(self._generation, TransportEvent.CLOSED)

    def shutdown(self) -> None:
        """Terminate for good. No reconnect happens after this."""
        if self._should_exit:
            return
        logger.info("Shutting down connection")

        self._should_exit = True
        self._cancel_reconnect()
        self._generation += 1
        self._close_writer()
        self._set_state(ConnectionState.TERMINATED)
        self._terminated.set()

    async def wait_terminated(self) -> None:
        await self._terminated.wait()

    def schedule_reconnect(self) -> bool:
        """Arm the reconnect timer unless one is pending or we are exiting."""
        if self._should_exit:
            return False
        if self._reconnect_handle is not None:
            logger.debug("Reconnect already scheduled")
            return False

        logger.info("Reconnect in {:g} seconds", self.reconnect_delay)
        self._reconnect_handle = asyncio.get_running_loop().call_later(
            self.reconnect_delay, self.connect
        )
        return True

    async def write(self, data: bytes) -> bool:
        """Write one chunk. Returns False if not connected or the write failed."""
        writer = self._writer
        if not self.connected or writer is None:
            logger.warning("Cannot send, not connected")
            return False

        try:
            writer.write(data)
            await writer.drain()
        except OSError as e:
            logger.warning("Send failed: {}", e)
            return False
        return True

    async def _run(self, generation: int) -> None:
        try:
            reader, writer = await self._open_connection(self.host, self.port)
        except Exception as e:
            self._transport_failed(generation, e)
            return

        self._handle_event(generation, TransportEvent.CONNECTED, streams=(reader, writer))

        while generation == self._generation:
            try:
                data = await reader.read(READ_SIZE)
            except Exception as e:
                self._transport_failed(generation, e)
                return

            if not data:
                self._handle_event(generation, TransportEvent.CLOSED)
                return
            self._handle_event(generation, TransportEvent.DATA, data=data)

    def _transport_failed(self, generation: int, error: Exception) -> None:
        # Anything raised by the transport ends in a reconnect, never a dead task.
        if not isinstance(error, OSError):
            logger.opt(exception=error).error("Unexpected transport failure")
        self._handle_event(generation, TransportEvent.ERROR, error=error)

    def _handle_event(
        self,
        generation: int,
        event: TransportEvent,
        data: bytes = b"",
        error: Optional[BaseException] = None,
        streams: Optional[Streams] = None,
    ) -> None:
        if generation != self._generation:
            logger.debug("Ignoring {} event from a stale connection", event.value)
            if streams is not None:
                streams[1].close()
            return

        if event is TransportEvent.CONNECTED:
            self._writer = streams[1]
            self._set_state(ConnectionState.CONNECTED)
            self._cancel_reconnect()
            logger.info("Connected with controller")
            if self.on_connect:
                self.on_connect()

        elif event is TransportEvent.DATA:
            if self.on_data:
                self.on_data(data)

        elif event is TransportEvent.ERROR:
            logger.warning("Socket error: {}", error)
            self._teardown()

        elif event is TransportEvent.CLOSED:
            logger.info("Socket closed")
            self._teardown()

    def _teardown(self) -> None:
        self._set_state(ConnectionState.CLOSING)
        self._generation += 1
        self._close_writer()
        self._set_state(ConnectionState.IDLE)
        self.schedule_reconnect()

    def _close_writer(self) -> None:
        writer, self._writer = self._writer, None
        if writer is not None:
            writer.close()

    def _cancel_reconnect(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None

    def _set_state(self, state: ConnectionState) -> None:
        if state is not self._state:
            logger.debug("Connection {} -> {}", self._state.value, state.value)
            self._state = state
