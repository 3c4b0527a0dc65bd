"""
Crypter — client-side AES-GCM sealing of record fields and file chunks.

The server stores whatever it receives. Clients holding a ``Crypter`` seal
every field value and every file chunk before upload and open them on read,
so record bodies never reach the server in clear.

Formats:
- sealed bytes:  ``[nonce 12B][ciphertext + GCM tag 16B]``
- sealed field:  base64 of sealed bytes
- sealed chunk:  ``[length 4B uint32 BE][sealed bytes]``; the length prefix
  lets a download re-split chunks regardless of the server chunk size.

Security Note:
    Never log keys, plaintext or ciphertext. Nonces are random 96-bit, one
    per sealed value.
"""
import base64
import binascii
import logging
import os
import struct
from collections.abc import AsyncIterable, AsyncIterator
from pathlib import Path
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from ..exceptions import DecryptionFailed

logger = logging.getLogger("keeper.security")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16
KEY_LENGTH = 32  # AES-256
KEY_FILE = "key.aes"

CHUNK_LENGTH = struct.Struct("!I")


class Crypter:
    """AES-GCM sealing with a single symmetric key."""

    def __init__(self, key: bytes):
        if len(key) not in (16, 24, 32):
            raise ValueError(f"AES key must be 16, 24 or 32 bytes, got {len(key)}")
        self._aead = AESGCM(key)

    @classmethod
    def generate(cls, folder: Union[str, Path]) -> tuple["Crypter", Path]:
        """Create a fresh key in ``folder``/key.aes and return it with its path.

        Raises:
            FileExistsError: If a key file already exists there.
        """
        key = AESGCM.generate_key(bit_length=KEY_LENGTH * 8)
        path = Path(folder) / KEY_FILE
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
        with os.fdopen(fd, "wb") as fp:
            fp.write(key)
        logger.info("Generated client key at %s", path)
        return cls(key), path

    @classmethod
    def from_file(cls, path: Union[str, Path]) -> "Crypter":
        return cls(Path(path).read_bytes())

    # bytes

    def seal(self, plaintext: bytes) -> bytes:
        nonce = os.urandom(NONCE_SIZE)
        return nonce + self._aead.encrypt(nonce, plaintext, None)

    def open(self, sealed: bytes) -> bytes:
        """Authenticate and decrypt ``sealed``.

        Raises:
            DecryptionFailed: On short input, a wrong key or tampered data.
        """
        if len(sealed) < NONCE_SIZE + TAG_SIZE:
            raise DecryptionFailed(f"sealed value too short: {len(sealed)} bytes")
        try:
            return self._aead.decrypt(sealed[:NONCE_SIZE], sealed[NONCE_SIZE:], None)
        except InvalidTag as err:
            raise DecryptionFailed("authentication tag mismatch") from err

    # record fields

    def seal_string(self, value: str) -> str:
        return base64.b64encode(self.seal(value.encode("utf-8"))).decode("ascii")

    def open_string(self, value: str) -> str:
        try:
            sealed = base64.b64decode(value, validate=True)
        except binascii.Error as err:
            raise DecryptionFailed("sealed field is not base64") from err
        return self.open(sealed).decode("utf-8")

    # file chunks

    def seal_chunk(self, chunk: bytes) -> bytes:
        sealed = self.seal(chunk)
        return CHUNK_LENGTH.pack(len(sealed)) + sealed

    async def open_chunks(self, data: AsyncIterable[bytes]) -> AsyncIterator[bytes]:
        """Re-split downloaded bytes into sealed chunks and yield their plaintext.

        Raises:
            DecryptionFailed: If a chunk fails to open or the stream ends
                inside a chunk.
        """
        buffer = bytearray()
        async for piece in data:
            buffer += piece
            while len(buffer) >= CHUNK_LENGTH.size:
                (size,) = CHUNK_LENGTH.unpack_from(buffer)
                end = CHUNK_LENGTH.size + size
                if len(buffer) < end:
                    break
                sealed = bytes(buffer[CHUNK_LENGTH.size:end])
                del buffer[:end]
                yield self.open(sealed)
        if buffer:
            raise DecryptionFailed(f"stream ended inside a sealed chunk ({len(buffer)} bytes)")
