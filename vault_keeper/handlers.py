"""
KeeperHandler — binds RPC messages to store operations.

Every non-auth operation receives the caller's user id, resolved from the
bearer credential by the authentication middleware, and passes it to the
store so that ``(id, user_id)`` is matched in SQL. A record owned by
somebody else is therefore reported exactly like a missing one.

File uploads claim a slot (blob + metadata row) on the header message and
then append chunks in arrival order. Any failure after the claim, client
cancellation included, closes the handle, removes the blob and deletes the
metadata row before the error propagates.
"""
import asyncio
import logging
import uuid
from collections.abc import AsyncIterable
from typing import Optional
from uuid import UUID

from .conf import DEFAULT_LIST_LIMIT, DEFAULT_SALT_LENGTH
from .exceptions import InvalidCredentials, UserNotFound
from .rpc.messages import (
    BankFields,
    BankList,
    Credentials,
    Empty,
    FileHeader,
    FileList,
    PasswordFields,
    PasswordList,
    RecordId,
    TextFields,
    TextList,
    TokenResponse,
    UpdateBankRequest,
    UpdateFileRequest,
    UpdatePasswordRequest,
    UpdateTextRequest,
)
from .security import Hasher, Tokener
from .storage import Bank, BlobFile, File, FileStorage, Password, Storage, Text

logger = logging.getLogger("keeper.handlers")


class KeeperHandler:
    """Implements every service method listed in :data:`rpc.service.METHODS`."""

    def __init__(
        self,
        storage: Storage,
        files: FileStorage,
        hasher: Hasher,
        tokener: Tokener,
        list_limit: int = DEFAULT_LIST_LIMIT,
        salt_length: int = DEFAULT_SALT_LENGTH,
    ):
        self._storage = storage
        self._files = files
        self._hasher = hasher
        self._tokener = tokener
        self._list_limit = list_limit
        self._salt_length = salt_length

    @property
    def chunk_size(self) -> int:
        return self._files.chunk_size

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    async def register(self, user_id: Optional[UUID], message: Credentials) -> TokenResponse:
        login = message.login.strip()
        password = message.password.strip()
        salt = self._hasher.generate_salt(self._salt_length)
        user = await self._storage.create_user(
            login,
            self._hasher.hash(login),
            salt,
            self._hasher.hash_with_salt(password, salt),
        )
        logger.info("Registered user=%s", user.id)
        return TokenResponse(token=self._tokener.issue(user.id))

    async def login(self, user_id: Optional[UUID], message: Credentials) -> TokenResponse:
        login = message.login.strip()
        password = message.password.strip()
        try:
            user = await self._storage.get_user(login, self._hasher.hash(login))
        except UserNotFound as err:
            raise InvalidCredentials("unknown user") from err
        if not self._hasher.verify(password, user.salt, user.password):
            raise InvalidCredentials("digest mismatch")
        return TokenResponse(token=self._tokener.issue(user.id))

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    async def create_password(self, user_id: UUID, message: PasswordFields) -> Password:
        return await self._storage.create_password(
            user_id, message.name, message.login, message.password, message.meta,
        )

    async def update_password(self, user_id: UUID, message: UpdatePasswordRequest) -> Password:
        return await self._storage.update_password(
            message.id, user_id,
            message.name, message.login, message.password, message.meta,
        )

    async def get_password(self, user_id: UUID, message: RecordId) -> Password:
        return await self._storage.get_password(message.id, user_id)

    async def get_all_passwords(self, user_id: UUID, message: Empty) -> PasswordList:
        passwords = await self._storage.get_all_passwords(user_id, self._list_limit)
        return PasswordList(passwords=passwords)

    async def delete_password(self, user_id: UUID, message: RecordId) -> Empty:
        await self._storage.delete_password(message.id, user_id)
        return Empty()

    # ------------------------------------------------------------------
    # Banks
    # ------------------------------------------------------------------

    async def create_bank(self, user_id: UUID, message: BankFields) -> Bank:
        return await self._storage.create_bank(
            user_id, message.name, message.card_number, message.cvc,
            message.owner, message.exp, message.meta,
        )

    async def update_bank(self, user_id: UUID, message: UpdateBankRequest) -> Bank:
        return await self._storage.update_bank(
            message.id, user_id, message.name, message.card_number,
            message.cvc, message.owner, message.exp, message.meta,
        )

    async def get_bank(self, user_id: UUID, message: RecordId) -> Bank:
        return await self._storage.get_bank(message.id, user_id)

    async def get_all_banks(self, user_id: UUID, message: Empty) -> BankList:
        return BankList(banks=await self._storage.get_all_banks(user_id, self._list_limit))

    async def delete_bank(self, user_id: UUID, message: RecordId) -> Empty:
        await self._storage.delete_bank(message.id, user_id)
        return Empty()

    # ------------------------------------------------------------------
    # Texts
    # ------------------------------------------------------------------

    async def create_text(self, user_id: UUID, message: TextFields) -> Text:
        return await self._storage.create_text(
            user_id, message.name, message.text, message.meta,
        )

    async def update_text(self, user_id: UUID, message: UpdateTextRequest) -> Text:
        return await self._storage.update_text(
            message.id, user_id, message.name, message.text, message.meta,
        )

    async def get_text(self, user_id: UUID, message: RecordId) -> Text:
        return await self._storage.get_text(message.id, user_id)

    async def get_all_texts(self, user_id: UUID, message: Empty) -> TextList:
        return TextList(texts=await self._storage.get_all_texts(user_id, self._list_limit))

    async def delete_text(self, user_id: UUID, message: RecordId) -> Empty:
        await self._storage.delete_text(message.id, user_id)
        return Empty()

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def create_file(
        self,
        user_id: UUID,
        header: FileHeader,
        chunks: AsyncIterable[bytes],
    ) -> File:
        """Store an uploaded blob and its metadata row.

        ``chunks`` is consumed serially; appends follow arrival order.
        """
        blob_name = str(uuid.uuid4())
        blob = await self._files.create(blob_name)
        try:
            record = await self._storage.create_file(
                user_id, header.name, blob_name, header.meta,
            )
        except (Exception, asyncio.CancelledError):
            await self._discard_blob(blob)
            raise

        size = 0
        try:
            async for chunk in chunks:
                size += await blob.write(chunk)
            await blob.close()
        except (Exception, asyncio.CancelledError) as err:
            logger.warning(
                "Upload aborted file=%s user=%s after %d bytes: %r",
                record.id, user_id, size, err,
            )
            try:
                await self._discard_blob(blob)
            finally:
                await self._discard_record(record)
            raise

        logger.info("Uploaded file=%s user=%s size=%d", record.id, user_id, size)
        return record

    async def _discard_blob(self, blob: BlobFile) -> None:
        """Close and remove an aborted blob; failures are logged, not raised."""
        try:
            await blob.close()
        except OSError as err:
            logger.warning("Cannot close aborted blob %s: %s", blob.name, err)
        try:
            await self._files.delete(blob.name)
        except OSError as err:
            logger.error("Cannot remove aborted blob %s: %s", blob.name, err)

    async def _discard_record(self, record: File) -> None:
        try:
            await self._storage.delete_file(record.id, record.user_id)
        except Exception as err:
            # the upload error is the one propagated
            logger.error(
                "Cannot delete metadata of aborted upload file=%s: %s",
                record.id, err,
            )

    async def update_file(self, user_id: UUID, message: UpdateFileRequest) -> File:
        return await self._storage.update_file(
            message.id, user_id, message.name, message.meta, path=message.path,
        )

    async def get_file(self, user_id: UUID, message: RecordId) -> tuple[File, BlobFile]:
        """Resolve the caller's file and open its blob for chunked reading.

        The caller owns the returned handle and must close it.
        """
        record = await self._storage.get_file(message.id, user_id)
        blob = await self._files.open(record.path)
        return record, blob

    async def get_all_files(self, user_id: UUID, message: Empty) -> FileList:
        return FileList(files=await self._storage.get_all_files(user_id, self._list_limit))

    async def delete_file(self, user_id: UUID, message: RecordId) -> Empty:
        record = await self._storage.delete_file(message.id, user_id)
        await self._files.delete(record.path)
        return Empty()

