"""
Tests for KeeperHandler: auth, record ownership and file streaming.
"""
import asyncio
from uuid import uuid4

import pytest

from vault_keeper.exceptions import (
    FileNotFound,
    InvalidCredentials,
    PasswordNotFound,
    TextNotFound,
    UserAlreadyExists,
    UserNotFound,
)
from vault_keeper.handlers import KeeperHandler
from vault_keeper.rpc import messages
from vault_keeper.storage import BlobFile, File, FileStorage


async def chunks_of(*parts: bytes):
    for part in parts:
        yield part


async def register(handler, tokener, login="alice", password="pw"):
    reply = await handler.register(None, messages.Credentials(login=login, password=password))
    return tokener.user_id(reply.token)


@pytest.fixture
async def alice(handler, tokener):
    return await register(handler, tokener, "alice")


@pytest.fixture
async def bob(handler, tokener):
    return await register(handler, tokener, "bob")


class TestAuth:

    async def test_register_stores_salted_digest(self, handler, storage, hasher, alice):
        user = storage.users["alice"]
        assert user.id == alice
        assert user.password != "pw"
        assert hasher.verify("pw", user.salt, user.password)
        assert len(bytes.fromhex(user.salt)) == 16

    async def test_register_trims_input(self, handler, storage, tokener):
        await register(handler, tokener, login="  carol ", password=" pw ")
        assert "carol" in storage.users
        reply = await handler.login(None, messages.Credentials(login="carol", password="pw"))
        assert reply.token

    async def test_duplicate_login(self, handler, tokener, alice):
        with pytest.raises(UserAlreadyExists):
            await register(handler, tokener, "alice", "other")

    async def test_login(self, handler, tokener, alice):
        reply = await handler.login(None, messages.Credentials(login="alice", password="pw"))
        assert tokener.user_id(reply.token) == alice

    async def test_login_wrong_password(self, handler, alice):
        with pytest.raises(InvalidCredentials):
            await handler.login(None, messages.Credentials(login="alice", password="nope"))

    async def test_login_unknown_user(self, handler):
        with pytest.raises(InvalidCredentials):
            await handler.login(None, messages.Credentials(login="ghost", password="pw"))


class TestRecords:

    async def test_password_lifecycle(self, handler, alice):
        created = await handler.create_password(
            alice, messages.PasswordFields(name="mail", login="a", password="p"),
        )
        fetched = await handler.get_password(alice, messages.RecordId(id=created.id))
        assert fetched == created

        updated = await handler.update_password(alice, messages.UpdatePasswordRequest(
            id=created.id, name="mail", login="a", password="p2", meta="m",
        ))
        assert updated.password == "p2"
        assert updated.updated_at >= created.updated_at

        assert await handler.delete_password(
            alice, messages.RecordId(id=created.id),
        ) == messages.Empty()
        with pytest.raises(PasswordNotFound):
            await handler.get_password(alice, messages.RecordId(id=created.id))

    async def test_other_user_sees_not_found(self, handler, alice, bob):
        text = await handler.create_text(alice, messages.TextFields(name="note", text="x"))
        with pytest.raises(TextNotFound):
            await handler.get_text(bob, messages.RecordId(id=text.id))
        with pytest.raises(TextNotFound):
            await handler.update_text(
                bob, messages.UpdateTextRequest(id=text.id, name="stolen"),
            )
        with pytest.raises(TextNotFound):
            await handler.delete_text(bob, messages.RecordId(id=text.id))
        assert (await handler.get_all_texts(bob, messages.Empty())).texts == []

    async def test_list_is_capped(self, storage, files, hasher, tokener):
        handler = KeeperHandler(storage, files, hasher, tokener, list_limit=2)
        user_id = await register(handler, tokener)
        for name in ("a", "b", "c"):
            await handler.create_bank(user_id, messages.BankFields(name=name))
        banks = (await handler.get_all_banks(user_id, messages.Empty())).banks
        assert [bank.name for bank in banks] == ["a", "b"]

    async def test_empty_list(self, handler, alice):
        assert (await handler.get_all_passwords(alice, messages.Empty())).passwords == []


class TestFiles:

    async def test_upload_and_download(self, handler, alice, tmp_path):
        record = await handler.create_file(
            alice, messages.FileHeader(name="x.bin", meta="m"),
            chunks_of(b"\x00\x01", b"\x02", b"\x03\x04\x05\x06\x07"),
        )
        assert isinstance(record, File)
        assert (tmp_path / record.path).read_bytes() == bytes(range(8))

        fetched, blob = await handler.get_file(alice, messages.RecordId(id=record.id))
        async with blob:
            chunks = [chunk async for chunk in blob]
        assert fetched == record
        # chunk size is 4
        assert chunks == [b"\x00\x01\x02\x03", b"\x04\x05\x06\x07"]

    async def test_empty_file(self, handler, alice):
        record = await handler.create_file(alice, messages.FileHeader(name="e"), chunks_of())
        _, blob = await handler.get_file(alice, messages.RecordId(id=record.id))
        async with blob:
            assert [chunk async for chunk in blob] == []

    async def test_single_byte_chunks(self, storage, hasher, tokener, tmp_path):
        handler = KeeperHandler(storage, FileStorage(tmp_path, 1), hasher, tokener)
        user_id = await register(handler, tokener)
        record = await handler.create_file(user_id, messages.FileHeader(name="b"), chunks_of(b"abc"))
        _, blob = await handler.get_file(user_id, messages.RecordId(id=record.id))
        async with blob:
            assert [chunk async for chunk in blob] == [b"a", b"b", b"c"]

    async def test_aborted_upload_leaves_nothing(self, handler, storage, alice, tmp_path):
        async def broken():
            yield b"partial"
            raise ConnectionResetError("client went away")

        with pytest.raises(ConnectionResetError):
            await handler.create_file(alice, messages.FileHeader(name="x"), broken())
        assert list(tmp_path.iterdir()) == []
        assert storage.rows[File] == {}

    async def test_cancelled_upload_leaves_nothing(self, handler, storage, alice, tmp_path):
        started = asyncio.Event()

        async def stalled():
            yield b"partial"
            started.set()
            await asyncio.Event().wait()

        task = asyncio.ensure_future(
            handler.create_file(alice, messages.FileHeader(name="x"), stalled()),
        )
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        assert list(tmp_path.iterdir()) == []
        assert storage.rows[File] == {}

    async def test_failed_close_still_discards(
        self, handler, storage, alice, tmp_path, monkeypatch,
    ):
        """A blob whose final flush fails leaves neither blob nor row behind."""
        close = BlobFile.close

        async def failing_close(blob):
            await close(blob)
            raise OSError(28, "No space left on device")

        monkeypatch.setattr(BlobFile, "close", failing_close)
        with pytest.raises(OSError):
            await handler.create_file(alice, messages.FileHeader(name="x"), chunks_of(b"a"))
        assert list(tmp_path.iterdir()) == []
        assert storage.rows[File] == {}

    async def test_failed_blob_removal_still_deletes_row(
        self, handler, storage, files, alice, monkeypatch,
    ):
        async def failing_delete(name):
            raise PermissionError(13, "Permission denied")

        async def broken():
            yield b"a"
            raise ConnectionResetError("client went away")

        monkeypatch.setattr(files, "delete", failing_delete)
        with pytest.raises(ConnectionResetError):
            await handler.create_file(alice, messages.FileHeader(name="x"), broken())
        assert storage.rows[File] == {}

    async def test_metadata_failure_removes_blob(self, handler, tmp_path):
        # unknown user: the row insert fails after the blob was claimed
        with pytest.raises(UserNotFound):
            await handler.create_file(uuid4(), messages.FileHeader(name="x"), chunks_of(b"a"))
        assert list(tmp_path.iterdir()) == []

    async def test_update_keeps_path(self, handler, alice):
        record = await handler.create_file(alice, messages.FileHeader(name="x"), chunks_of(b"a"))
        updated = await handler.update_file(alice, messages.UpdateFileRequest(
            id=record.id, name="y", meta="new", path="/etc/passwd",
        ))
        assert (updated.name, updated.meta, updated.path) == ("y", "new", record.path)

    async def test_delete_removes_blob(self, handler, alice, tmp_path):
        record = await handler.create_file(alice, messages.FileHeader(name="x"), chunks_of(b"a"))
        await handler.delete_file(alice, messages.RecordId(id=record.id))
        assert not (tmp_path / record.path).exists()
        with pytest.raises(FileNotFound):
            await handler.get_file(alice, messages.RecordId(id=record.id))

    async def test_other_user_cannot_download(self, handler, alice, bob):
        record = await handler.create_file(alice, messages.FileHeader(name="x"), chunks_of(b"a"))
        with pytest.raises(FileNotFound):
            await handler.get_file(bob, messages.RecordId(id=record.id))
