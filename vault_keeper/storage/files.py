"""
Blob store — one regular file per uploaded blob under a root directory.

Blob names are single path segments generated by the server (UUIDs).
File I/O runs in the default executor so that the event loop never
blocks on disk.
"""
import asyncio
import logging
from collections.abc import AsyncIterator
from pathlib import Path
from typing import BinaryIO, Union

logger = logging.getLogger("keeper.storage")


class BlobFile:
    """Handle on one open blob.

    A handle belongs to exactly one in-flight request and is not safe
    for concurrent use.
    """

    def __init__(self, fp: BinaryIO, chunk_size: int):
        self._fp = fp
        self._chunk_size = chunk_size

    @property
    def name(self) -> str:
        return Path(self._fp.name).name

    @property
    def closed(self) -> bool:
        return self._fp.closed

    async def write(self, data: bytes) -> int:
        """Append ``data``; returns the number of bytes written."""
        return await asyncio.to_thread(self._fp.write, data)

    async def read_chunk(self) -> bytes:
        """Return up to ``chunk_size`` bytes; ``b""`` marks end of stream."""
        return await asyncio.to_thread(self._fp.read, self._chunk_size)

    async def close(self) -> None:
        if not self._fp.closed:
            await asyncio.to_thread(self._fp.close)

    def __aiter__(self) -> AsyncIterator[bytes]:
        return self._chunks()

    async def _chunks(self) -> AsyncIterator[bytes]:
        while chunk := await self.read_chunk():
            yield chunk

    async def __aenter__(self) -> "BlobFile":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()


class FileStorage:
    """Creates, opens and deletes blobs below ``root``."""

    def __init__(self, root: Union[str, Path], chunk_size: int):
        if chunk_size < 1:
            raise ValueError(f"chunk_size must be positive, got {chunk_size}")
        self._root = Path(root)
        self._chunk_size = chunk_size

    @property
    def root(self) -> Path:
        return self._root

    @property
    def chunk_size(self) -> int:
        return self._chunk_size

    def path(self, name: str) -> Path:
        """Join ``name`` to the root.

        Raises:
            ValueError: If ``name`` is not a single path segment.
        """
        if not name or name in (".", "..") or Path(name).name != name:
            raise ValueError(f"Invalid blob name: {name!r}")
        return self._root / name

    async def create(self, name: str) -> BlobFile:
        """Create a new blob opened for append.

        Raises:
            FileExistsError: If a blob with this name already exists.
        """
        fp = await asyncio.to_thread(open, self.path(name), "xb")
        logger.debug("Blob created: %s", name)
        return BlobFile(fp, self._chunk_size)

    async def open(self, name: str) -> BlobFile:
        """Open an existing blob for chunk-wise reading.

        Raises:
            FileNotFoundError: If the blob does not exist.
        """
        fp = await asyncio.to_thread(open, self.path(name), "rb")
        return BlobFile(fp, self._chunk_size)

    async def delete(self, name: str) -> None:
        """Remove a blob; a missing blob is not an error."""
        await asyncio.to_thread(self.path(name).unlink, missing_ok=True)
        logger.debug("Blob deleted: %s", name)
