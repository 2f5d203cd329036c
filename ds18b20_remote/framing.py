"""Newline-delimited encrypted frames.

Frame layout::

    encrypt(json(message), key) + b"\\n"

The ciphertext is hex text, so the delimiter can only appear at the end
of a frame. Receivers split on the first delimiter per iteration.
"""

import json
from typing import List

from loguru import logger

from . import crypto
from .errors import FrameError
from .protocol import Message

DELIMITER = b"\n"


class FrameCodec:
    """Maps messages to wire frames and back with a fixed key."""

    def __init__(self, key: bytes):
        if len(key) != crypto.KEY_SIZE:
            raise ValueError(f"Key must be {crypto.KEY_SIZE} bytes, got {len(key)}")
        self._key = key

    def encode(self, message: Message) -> bytes:
        """Serialize, encrypt and terminate a message."""
        text = json.dumps(message, separators=(',', ':'), ensure_ascii=False)
        return crypto.encrypt(text, self._key).encode('ascii') + DELIMITER

    def decode(self, frame: bytes) -> Message:
        """Decrypt and parse one frame, delimiter already stripped.

        Raises:
            FrameError: The frame cannot be trusted. The caller must drop
                the connection, not just the frame.
        """
        try:
            text = frame.decode('ascii')
        except UnicodeDecodeError as e:
            raise FrameError(f"Frame is not ASCII: {e}") from e

        plaintext = crypto.decrypt(text.strip(), self._key)

        try:
            message = json.loads(plaintext)
        except ValueError as e:
            raise FrameError(f"Invalid JSON: {e}") from e

        if not isinstance(message, dict):
            raise FrameError(f"Expected a JSON object, got {type(message).__name__}")
        return message


class FrameBuffer:
    """Receive buffer that reassembles frames from arbitrary chunks.

    The position where the last delimiter search stopped is remembered, so
    a large partial frame is not rescanned on every chunk, and consumed
    bytes are removed once per drain rather than once per frame.
    """

    def __init__(self) -> None:
        self._buf = bytearray()
        self._scanned = 0

    def __len__(self) -> int:
        return len(self._buf)

    def feed(self, data: bytes) -> None:
        self._buf += data

    def drain(self) -> List[bytes]:
        """Remove and return every complete frame, delimiters stripped.

        Afterwards the buffer holds at most one partial frame.
        """
        frames: List[bytes] = []
        start = 0
        pos = self._scanned

        while True:
            idx = self._buf.find(DELIMITER, pos)
            if idx < 0:
                break
            frames.append(bytes(self._buf[start:idx]))
            start = pos = idx + 1

        if start:
            del self._buf[:start]
        self._scanned = len(self._buf)

        if frames:
            logger.trace("Drained {} frame(s), {} byte(s) pending", len(frames), len(self._buf))
        return frames

    def clear(self) -> None:
        self._buf.clear()
        self._scanned = 0
