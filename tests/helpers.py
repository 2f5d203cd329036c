"""Shared test utilities."""

import asyncio
from typing import Callable, List

from ds18b20_remote.framing import FrameBuffer, FrameCodec

KEY = bytes(range(32))

SAMPLE_RAW = (
    "72 01 4b 46 7f ff 0e 10 57 : crc=57 YES\n"
    "72 01 4b 46 7f ff 0e 10 57 t=23125\n"
)


async def wait_until(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.01)

    await asyncio.wait_for(_poll(), timeout)


class FakeConnection:
    """Stands in for ConnectionManager in session tests."""

    def __init__(self, codec: FrameCodec, write_ok: bool = True):
        self.codec = codec
        self.write_ok = write_ok
        self.on_connect = None
        self.on_data = None
        self.frames: List[bytes] = []
        self.close_calls = 0

    async def write(self, data: bytes) -> bool:
        if not self.write_ok:
            return False
        self.frames.append(data)
        return True

    def close(self) -> None:
        self.close_calls += 1

    @property
    def sent(self):
        return [self.codec.decode(frame[:-1]) for frame in self.frames]


class LoopbackServer:
    """A local TCP server that hands accepted streams to the test."""

    def __init__(self):
        self.port = 0
        self._server = None
        self._accepted = asyncio.Queue()
        self._writers = []

    async def start(self) -> int:
        self._server = await asyncio.start_server(self._on_client, "127.0.0.1", 0)
        self.port = self._server.sockets[0].getsockname()[1]
        return self.port

    async def _on_client(self, reader, writer):
        self._writers.append(writer)
        await self._accepted.put((reader, writer))

    async def accept(self, timeout: float = 2.0):
        return await asyncio.wait_for(self._accepted.get(), timeout)

    async def close(self):
        for writer in self._writers:
            writer.close()
        self._server.close()
        await self._server.wait_closed()


async def read_frames(reader: asyncio.StreamReader, codec: FrameCodec, count: int, timeout: float = 2.0):
    """Read count messages from a raw stream."""
    buffer = FrameBuffer()
    messages = []

    async def _read():
        while len(messages) < count:
            data = await reader.read(4096)
            if not data:
                raise ConnectionError("stream closed")
            buffer.feed(data)
            messages.extend(codec.decode(frame) for frame in buffer.drain())

    await asyncio.wait_for(_read(), timeout)
    return messages
