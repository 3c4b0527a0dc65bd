"""
KeeperClient — asyncio client for the keeper service.

Record fields and file chunks are sealed client-side when a
:class:`~vault_keeper.security.Crypter` is given; the server never sees
them in clear.

Example::

    crypter = Crypter.from_file("key.aes")
    async with KeeperClient("http://localhost:3388", crypter=crypter) as client:
        await client.login("alice", "pw")
        record = await client.create_file("x.bin", [b"\\x00\\x01", b"\\x02"])
        data = b"".join([chunk async for chunk in client.get_file(record.id)])
"""
from collections.abc import AsyncIterable, AsyncIterator, Iterable
from typing import Any, Optional, TypeVar, Union
from uuid import UUID

import aiohttp
import orjson
from pydantic import BaseModel

from .conf import AUTH_HEADER, AUTH_SCHEME, SERVICE_NAME, TIMEOUT_HEADER
from .exceptions import FramingError
from .rpc import messages
from .rpc.framing import Flag, FrameReader, encode_frame, encode_message
from .rpc.status import Code, RPCError
from .security import Crypter
from .storage.models import Bank, File, Password, Record, Text

T = TypeVar("T", bound=BaseModel)
R = TypeVar("R", bound=Record)

# fields sealed with the client key, per record type
SEALED_FIELDS: dict[type[Record], tuple[str, ...]] = {
    Password: ("name", "login", "password", "meta"),
    Bank: ("name", "card_number", "cvc", "owner", "exp", "meta"),
    Text: ("name", "text", "meta"),
    File: ("name", "meta"),
}

RecordID = Union[UUID, str]
Chunks = Union[Iterable[bytes], AsyncIterable[bytes]]


class KeeperClient:
    """Client bound to one server and, after login, one user.

    Args:
        base_url: ``http://host:port`` of the server.
        session: Optional session to reuse; it is not closed by the client.
        token: Bearer token from a previous login.
        compress: gzip-compress request bodies.
        timeout_ms: Deadline sent with every call.
        crypter: Seals field values and file chunks before upload and opens
            them on read. Without one, values travel as given.
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        token: Optional[str] = None,
        compress: bool = False,
        timeout_ms: Optional[int] = None,
        crypter: Optional[Crypter] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._session = session
        self._owns_session = session is None
        self.token = token
        self._compress = "gzip" if compress else None
        self._timeout_ms = timeout_ms
        self._crypter = crypter

    async def __aenter__(self) -> "KeeperClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    @property
    def session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    def _url(self, method: str) -> str:
        return f"{self._base_url}/{SERVICE_NAME}/{method}"

    def _headers(self) -> dict[str, str]:
        headers = {}
        if self.token:
            headers[AUTH_HEADER] = f"{AUTH_SCHEME} {self.token}"
        if self._timeout_ms is not None:
            headers[TIMEOUT_HEADER] = str(self._timeout_ms)
        return headers

    @staticmethod
    async def _raise_for_status(response: aiohttp.ClientResponse) -> None:
        if response.status == 200:
            return
        try:
            document = orjson.loads(await response.read())
            code, kind = document["code"], document["kind"]
        except (orjson.JSONDecodeError, KeyError, TypeError):
            code, kind = Code.INTERNAL.value, f"http_{response.status}"
        raise RPCError(code, kind)

    async def _call(self, method: str, payload: dict[str, Any], model: type[T]) -> T:
        async with self.session.post(
            self._url(method),
            data=orjson.dumps(payload),
            headers={**self._headers(), "Content-Type": "application/json"},
            compress=self._compress,
        ) as response:
            await self._raise_for_status(response)
            return model.model_validate(orjson.loads(await response.read()))

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def register(self, login: str, password: str) -> str:
        reply = await self._call(
            "Register", {"login": login, "password": password}, messages.TokenResponse,
        )
        self.token = reply.token
        return reply.token

    async def login(self, login: str, password: str) -> str:
        reply = await self._call(
            "Login", {"login": login, "password": password}, messages.TokenResponse,
        )
        self.token = reply.token
        return reply.token

    # ------------------------------------------------------------------
    # Sealing
    # ------------------------------------------------------------------

    def _seal(self, **fields: str) -> dict[str, str]:
        if self._crypter is None:
            return fields
        return {name: self._crypter.seal_string(value) for name, value in fields.items()}

    def _open(self, record: R) -> R:
        """Return ``record`` with its sealed fields opened.

        Raises:
            DecryptionFailed: If a field was not sealed with this client's key.
        """
        if self._crypter is None:
            return record
        return record.model_copy(update={
            name: self._crypter.open_string(getattr(record, name))
            for name in SEALED_FIELDS[type(record)]
        })

    async def _call_record(
        self, method: str, payload: dict[str, Any], model: type[R],
    ) -> R:
        return self._open(await self._call(method, payload, model))

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    async def create_password(
        self, name: str, login: str = "", password: str = "", meta: str = "",
    ) -> Password:
        return await self._call_record(
            "CreatePassword",
            self._seal(name=name, login=login, password=password, meta=meta),
            Password,
        )

    async def update_password(
        self, password_id: RecordID, name: str,
        login: str = "", password: str = "", meta: str = "",
    ) -> Password:
        return await self._call_record(
            "UpdatePassword",
            {"id": str(password_id),
             **self._seal(name=name, login=login, password=password, meta=meta)},
            Password,
        )

    async def get_password(self, password_id: RecordID) -> Password:
        return await self._call_record("GetPassword", {"id": str(password_id)}, Password)

    async def get_all_passwords(self) -> list[Password]:
        reply = await self._call("GetAllPasswords", {}, messages.PasswordList)
        return [self._open(password) for password in reply.passwords]

    async def delete_password(self, password_id: RecordID) -> None:
        await self._call("DeletePassword", {"id": str(password_id)}, messages.Empty)

    # ------------------------------------------------------------------
    # Banks
    # ------------------------------------------------------------------

    async def create_bank(
        self, name: str, card_number: str = "", cvc: str = "",
        owner: str = "", exp: str = "", meta: str = "",
    ) -> Bank:
        return await self._call_record(
            "CreateBank",
            self._seal(name=name, card_number=card_number, cvc=cvc,
                       owner=owner, exp=exp, meta=meta),
            Bank,
        )

    async def update_bank(
        self, bank_id: RecordID, name: str, card_number: str = "", cvc: str = "",
        owner: str = "", exp: str = "", meta: str = "",
    ) -> Bank:
        return await self._call_record(
            "UpdateBank",
            {"id": str(bank_id),
             **self._seal(name=name, card_number=card_number, cvc=cvc,
                          owner=owner, exp=exp, meta=meta)},
            Bank,
        )

    async def get_bank(self, bank_id: RecordID) -> Bank:
        return await self._call_record("GetBank", {"id": str(bank_id)}, Bank)

    async def get_all_banks(self) -> list[Bank]:
        reply = await self._call("GetAllBanks", {}, messages.BankList)
        return [self._open(bank) for bank in reply.banks]

    async def delete_bank(self, bank_id: RecordID) -> None:
        await self._call("DeleteBank", {"id": str(bank_id)}, messages.Empty)

    # ------------------------------------------------------------------
    # Texts
    # ------------------------------------------------------------------

    async def create_text(self, name: str, text: str = "", meta: str = "") -> Text:
        return await self._call_record(
            "CreateText", self._seal(name=name, text=text, meta=meta), Text,
        )

    async def update_text(
        self, text_id: RecordID, name: str, text: str = "", meta: str = "",
    ) -> Text:
        return await self._call_record(
            "UpdateText",
            {"id": str(text_id), **self._seal(name=name, text=text, meta=meta)},
            Text,
        )

    async def get_text(self, text_id: RecordID) -> Text:
        return await self._call_record("GetText", {"id": str(text_id)}, Text)

    async def get_all_texts(self) -> list[Text]:
        reply = await self._call("GetAllTexts", {}, messages.TextList)
        return [self._open(text) for text in reply.texts]

    async def delete_text(self, text_id: RecordID) -> None:
        await self._call("DeleteText", {"id": str(text_id)}, messages.Empty)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def create_file(self, name: str, chunks: Chunks, meta: str = "") -> File:
        """Upload ``chunks`` as one file; each chunk travels in its own frame."""
        seal = self._crypter.seal_chunk if self._crypter is not None else bytes

        async def body() -> AsyncIterator[bytes]:
            yield encode_message(Flag.MESSAGE, self._seal(name=name, meta=meta))
            if isinstance(chunks, AsyncIterable):
                async for chunk in chunks:
                    yield encode_frame(Flag.DATA, seal(chunk))
            else:
                for chunk in chunks:
                    yield encode_frame(Flag.DATA, seal(chunk))

        async with self.session.post(
            self._url("CreateFile"),
            data=body(),
            headers=self._headers(),
            compress=self._compress,
        ) as response:
            await self._raise_for_status(response)
            record = File.model_validate(orjson.loads(await response.read()))
        return self._open(record)

    async def update_file(self, file_id: RecordID, name: str, meta: str = "") -> File:
        return await self._call_record(
            "UpdateFile",
            {"id": str(file_id), **self._seal(name=name, meta=meta)},
            File,
        )

    async def get_file(self, file_id: RecordID) -> AsyncIterator[bytes]:
        """Yield the content of a file chunk by chunk.

        Raises:
            RPCError: If the server reports an error, before or mid-stream.
            FramingError: If the stream ends without a trailer.
            DecryptionFailed: If the content was not sealed with this
                client's key.
        """
        data = self._download(file_id)
        if self._crypter is not None:
            data = self._crypter.open_chunks(data)
        async for chunk in data:
            yield chunk

    async def _download(self, file_id: RecordID) -> AsyncIterator[bytes]:
        async with self.session.post(
            self._url("GetFile"),
            data=orjson.dumps({"id": str(file_id)}),
            headers={**self._headers(), "Content-Type": "application/json"},
        ) as response:
            await self._raise_for_status(response)
            async for frame in FrameReader(response.content):
                if frame.flag is Flag.DATA:
                    yield frame.payload
                    continue
                trailer = orjson.loads(frame.payload)
                if trailer.get("code") != Code.OK.value:
                    raise RPCError(trailer.get("code"), trailer.get("kind"))
                return
        raise FramingError("file stream ended without a trailer")

    async def get_all_files(self) -> list[File]:
        reply = await self._call("GetAllFiles", {}, messages.FileList)
        return [self._open(file) for file in reply.files]

    async def delete_file(self, file_id: RecordID) -> None:
        await self._call("DeleteFile", {"id": str(file_id)}, messages.Empty)
