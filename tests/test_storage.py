"""
Tests for the relational store against a mocked asyncpg pool.
"""
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import asyncpg
import pytest

from vault_keeper.exceptions import (
    BankNotFound,
    PasswordNotFound,
    StorageError,
    UserAlreadyExists,
    UserNotFound,
)
from vault_keeper.storage import Bank, File, Password, RetryPolicy, Storage
from vault_keeper.storage import queries

NOW = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)


@pytest.fixture
def conn():
    conn = MagicMock()
    conn.fetchrow = AsyncMock()
    conn.fetch = AsyncMock()
    tx = MagicMock()
    tx.start = AsyncMock()
    tx.commit = AsyncMock()
    tx.rollback = AsyncMock()
    conn.transaction.return_value = tx
    return conn


@pytest.fixture
def pool(conn):
    pool = MagicMock()
    pool.acquire.return_value.__aenter__.return_value = conn
    pool.acquire.return_value.__aexit__.return_value = False
    pool.close = AsyncMock()
    return pool


@pytest.fixture
def store(pool):
    return Storage(pool, RetryPolicy(attempts=2, delay=0, increment=0))


class TestUsers:

    async def test_create_user_commits(self, store, conn):
        user_id = uuid4()
        conn.fetchrow.side_effect = [(user_id, "alice", "digest"), ("salt",)]

        user = await store.create_user("alice", "login-hash", "salt", "digest")

        assert user.id == user_id
        assert user.salt == "salt"
        tx = conn.transaction.return_value
        tx.commit.assert_awaited_once()
        tx.rollback.assert_not_awaited()
        conn.fetchrow.assert_any_await(queries.INSERT_SALT, "login-hash", "salt")

    async def test_duplicate_login(self, store, conn):
        conn.fetchrow.side_effect = asyncpg.UniqueViolationError("duplicate key")
        with pytest.raises(UserAlreadyExists):
            await store.create_user("alice", "h", "salt", "digest")
        conn.transaction.return_value.rollback.assert_awaited_once()
        conn.transaction.return_value.commit.assert_not_awaited()

    async def test_salt_insert_failure_rolls_back(self, store, conn):
        conn.fetchrow.side_effect = [
            (uuid4(), "alice", "digest"),
            asyncpg.CheckViolationError("bad salt"),
        ]
        with pytest.raises(StorageError, match="insert salts failed"):
            await store.create_user("alice", "h", "salt", "digest")
        conn.transaction.return_value.rollback.assert_awaited_once()

    async def test_get_user_missing(self, store, conn):
        conn.fetchrow.return_value = None
        with pytest.raises(UserNotFound):
            await store.get_user("nobody", "h")

    async def test_get_user(self, store, conn):
        user_id = uuid4()
        conn.fetchrow.return_value = (user_id, "alice", "digest", "salt")
        user = await store.get_user("alice", "h")
        assert (user.id, user.password, user.salt) == (user_id, "digest", "salt")


class TestRecords:

    async def test_create_password(self, store, conn):
        user_id, record_id = uuid4(), uuid4()
        conn.fetchrow.return_value = (record_id, user_id, "mail", "a", "pw", "", NOW)

        record = await store.create_password(user_id, "mail", "a", "pw", "")

        assert isinstance(record, Password)
        assert record.id == record_id
        assert record.updated_at == NOW
        conn.fetchrow.assert_awaited_once_with(
            queries.INSERT_PASSWORD, user_id, "mail", "a", "pw", "",
        )

    async def test_insert_for_unknown_user(self, store, conn):
        conn.fetchrow.side_effect = asyncpg.ForeignKeyViolationError("fk")
        with pytest.raises(UserNotFound):
            await store.create_text(uuid4(), "note", "body", "")

    async def test_get_matches_owner(self, store, conn):
        user_id, record_id = uuid4(), uuid4()
        conn.fetchrow.return_value = None
        with pytest.raises(PasswordNotFound):
            await store.get_password(record_id, user_id)
        conn.fetchrow.assert_awaited_once_with(queries.SELECT_PASSWORD, record_id, user_id)

    async def test_get_all_passes_limit(self, store, conn):
        user_id = uuid4()
        conn.fetch.return_value = [
            (uuid4(), user_id, f"n{i}", "", "", "", NOW) for i in range(2)
        ]
        records = await store.get_all_passwords(user_id, limit=2)
        assert [r.name for r in records] == ["n0", "n1"]
        conn.fetch.assert_awaited_once_with(queries.SELECT_PASSWORDS, user_id, 2)

    async def test_empty_list(self, store, conn):
        conn.fetch.return_value = []
        assert await store.get_all_texts(uuid4()) == []

    async def test_delete_returns_record(self, store, conn):
        user_id, record_id = uuid4(), uuid4()
        conn.fetchrow.return_value = (
            record_id, user_id, "visa", "4111", "123", "A B", "12/30", "", NOW,
        )
        record = await store.delete_bank(record_id, user_id)
        assert isinstance(record, Bank)
        assert record.card_number == "4111"

    async def test_delete_missing(self, store, conn):
        conn.fetchrow.return_value = None
        with pytest.raises(BankNotFound):
            await store.delete_bank(uuid4(), uuid4())

    async def test_update_file_never_writes_path(self, store, conn):
        user_id, file_id = uuid4(), uuid4()
        conn.fetchrow.return_value = (file_id, user_id, "new", "blob", "m", NOW)

        record = await store.update_file(file_id, user_id, "new", "m", path="elsewhere")

        assert isinstance(record, File)
        assert record.path == "blob"
        conn.fetchrow.assert_awaited_once_with(
            queries.UPDATE_FILE, file_id, user_id, "new", "m",
        )
        assert "path" not in queries.UPDATE_FILE.split("SET")[1].split("WHERE")[0]

    async def test_driver_error_becomes_storage_error(self, store, conn):
        conn.fetchrow.side_effect = asyncpg.UndefinedTableError("no table")
        with pytest.raises(StorageError) as exc_info:
            await store.get_text(uuid4(), uuid4())
        assert isinstance(exc_info.value.__cause__, asyncpg.UndefinedTableError)

    async def test_connection_error_is_retried(self, store, conn):
        user_id = uuid4()
        conn.fetchrow.side_effect = [
            asyncpg.ConnectionFailureError("reset"),
            (uuid4(), user_id, "t", "x", "", NOW),
        ]
        record = await store.create_text(user_id, "t", "x", "")
        assert record.name == "t"
        assert conn.fetchrow.await_count == 2

    async def test_connection_error_exhausts_policy(self, store, conn):
        conn.fetchrow.side_effect = asyncpg.ConnectionFailureError("down")
        with pytest.raises(StorageError):
            await store.get_password(uuid4(), uuid4())
        # initial attempt plus two retries
        assert conn.fetchrow.await_count == 3


class TestQueries:

    @pytest.mark.parametrize("statement", [
        queries.UPDATE_PASSWORD, queries.SELECT_PASSWORD, queries.DELETE_PASSWORD,
        queries.UPDATE_BANK, queries.SELECT_BANK, queries.DELETE_BANK,
        queries.UPDATE_TEXT, queries.SELECT_TEXT, queries.DELETE_TEXT,
        queries.UPDATE_FILE, queries.SELECT_FILE, queries.DELETE_FILE,
    ])
    def test_record_statements_match_owner(self, statement):
        assert "WHERE id = $1 AND user_id = $2" in statement

    @pytest.mark.parametrize("statement", [
        queries.UPDATE_PASSWORD, queries.UPDATE_BANK, queries.UPDATE_TEXT, queries.UPDATE_FILE,
    ])
    def test_updates_leave_owner_alone(self, statement):
        assignments = statement.split("SET")[1].split("WHERE")[0]
        assert "user_id" not in assignments


async def test_close_releases_pool(store, pool):
    await store.close()
    pool.close.assert_awaited_once()
