"""
Stream framing.

Format of every frame on a streaming method:

    [flag 1B][payload length 4B uint32 BE][payload]

Flags:
- ``MESSAGE``: JSON document (the ``CreateFile`` header)
- ``DATA``:    raw blob bytes
- ``TRAILER``: JSON status closing a server stream
"""
import asyncio
import struct
from collections.abc import AsyncIterator
from enum import IntEnum
from typing import Any, NamedTuple, Optional

import orjson

from ..conf import DEFAULT_MAX_FRAME_SIZE
from ..exceptions import FramingError

HEADER = struct.Struct("!BI")


class Flag(IntEnum):
    MESSAGE = 0
    DATA = 1
    TRAILER = 2


class Frame(NamedTuple):
    flag: Flag
    payload: bytes


def encode_frame(flag: Flag, payload: bytes) -> bytes:
    return HEADER.pack(flag, len(payload)) + payload


def encode_message(flag: Flag, document: Any) -> bytes:
    return encode_frame(flag, orjson.dumps(document))


class FrameReader:
    """Reads frames from an object exposing ``readexactly`` (aiohttp's
    ``StreamReader`` or ``asyncio.StreamReader``).
    """

    def __init__(self, stream: Any, max_size: int = DEFAULT_MAX_FRAME_SIZE):
        self._stream = stream
        self._max_size = max_size

    async def read_frame(self) -> Optional[Frame]:
        """Return the next frame, or ``None`` on a clean end of stream.

        Raises:
            FramingError: On a truncated frame, an unknown flag or a
                payload larger than ``max_size``.
        """
        try:
            head = await self._stream.readexactly(HEADER.size)
        except asyncio.IncompleteReadError as err:
            if not err.partial:
                return None
            raise FramingError("truncated frame header") from err
        raw_flag, size = HEADER.unpack(head)
        try:
            flag = Flag(raw_flag)
        except ValueError as err:
            raise FramingError(f"unknown frame flag {raw_flag}") from err
        if size > self._max_size:
            raise FramingError(
                f"frame of {size} bytes exceeds limit of {self._max_size}"
            )
        try:
            payload = await self._stream.readexactly(size)
        except asyncio.IncompleteReadError as err:
            raise FramingError(
                f"truncated frame: {len(err.partial)} of {size} bytes"
            ) from err
        return Frame(flag, payload)

    async def data(self) -> AsyncIterator[bytes]:
        """Yield the payload of each following ``DATA`` frame until end of stream."""
        while (frame := await self.read_frame()) is not None:
            if frame.flag is not Flag.DATA:
                raise FramingError(f"expected a data frame, got {frame.flag.name}")
            yield frame.payload

    def __aiter__(self) -> AsyncIterator[Frame]:
        return self._frames()

    async def _frames(self) -> AsyncIterator[Frame]:
        while (frame := await self.read_frame()) is not None:
            yield frame
