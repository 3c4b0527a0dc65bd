"""
Storage — relational store for users and user-owned records.

Wraps an asyncpg connection pool. Every public operation runs through the
retry executor, so connection exceptions are retried according to the
configured :class:`RetryPolicy` while semantic failures surface at once:

- unique violation on ``users.login``   → :class:`UserAlreadyExists`
- foreign-key violation on ``user_id``  → :class:`UserNotFound`
- no row for ``(id, user_id)``          → ``<Kind>NotFound``
- anything else                         → :class:`StorageError`

Security Note:
    Record bodies are opaque. Never log them; log ids and table names only.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional
from uuid import UUID

import asyncpg

from ..conf import DEFAULT_LIST_LIMIT
from ..exceptions import (
    BankNotFound,
    FileNotFound,
    PasswordNotFound,
    RecordNotFound,
    StorageError,
    TextNotFound,
    UserAlreadyExists,
    UserNotFound,
)
from . import queries
from .errors import is_foreign_key_violation, is_unique_violation
from .models import Bank, File, Password, Record, Text, User
from .retry import RetryPolicy, retry

logger = logging.getLogger("keeper.storage")


@dataclass(frozen=True)
class RecordKind:
    """Statements and types for one kind of user-owned record."""

    table: str
    model: type[Record]
    missing: type[RecordNotFound]
    insert: str
    update: str
    select: str
    select_all: str
    delete: str


PASSWORDS = RecordKind(
    "passwords", Password, PasswordNotFound,
    queries.INSERT_PASSWORD, queries.UPDATE_PASSWORD, queries.SELECT_PASSWORD,
    queries.SELECT_PASSWORDS, queries.DELETE_PASSWORD,
)
BANKS = RecordKind(
    "banks", Bank, BankNotFound,
    queries.INSERT_BANK, queries.UPDATE_BANK, queries.SELECT_BANK,
    queries.SELECT_BANKS, queries.DELETE_BANK,
)
TEXTS = RecordKind(
    "texts", Text, TextNotFound,
    queries.INSERT_TEXT, queries.UPDATE_TEXT, queries.SELECT_TEXT,
    queries.SELECT_TEXTS, queries.DELETE_TEXT,
)
FILES = RecordKind(
    "files", File, FileNotFound,
    queries.INSERT_FILE, queries.UPDATE_FILE, queries.SELECT_FILE,
    queries.SELECT_FILES, queries.DELETE_FILE,
)


class Storage:
    """PostgreSQL-backed store.

    The store owns ``db_pool`` for its whole lifetime; :meth:`close`
    releases it.
    """

    def __init__(self, db_pool: Any, policy: Optional[RetryPolicy] = None):
        self._db = db_pool
        self._policy = policy or RetryPolicy()

    @classmethod
    async def connect(
        cls,
        dsn: str,
        policy: Optional[RetryPolicy] = None,
        **pool_options: Any,
    ) -> "Storage":
        """Create the connection pool and return a ready store."""
        db_pool = await asyncpg.create_pool(dsn, **pool_options)
        logger.info("Connection pool ready")
        return cls(db_pool, policy)

    async def close(self) -> None:
        if self._db is not None:
            await self._db.close()
            logger.info("Connection pool closed")

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    async def create_user(
        self, login: str, login_hashed: str, salt: str, password: str,
    ) -> User:
        """Insert a user and its salt in one transaction."""
        return await retry(
            self._policy, self._create_user, login, login_hashed, salt, password,
        )

    async def _create_user(
        self, login: str, login_hashed: str, salt: str, password: str,
    ) -> User:
        async with self._db.acquire() as conn:
            tx = conn.transaction()
            await tx.start()
            try:
                try:
                    user_row = await conn.fetchrow(queries.INSERT_USER, login, password)
                except asyncpg.PostgresError as err:
                    if is_unique_violation(err):
                        raise UserAlreadyExists(login) from err
                    raise StorageError(f"insert users failed: {login}") from err
                try:
                    salt_row = await conn.fetchrow(queries.INSERT_SALT, login_hashed, salt)
                except asyncpg.PostgresError as err:
                    raise StorageError(f"insert salts failed: {login}") from err
                await tx.commit()
            except Exception:
                await tx.rollback()
                raise

        user_id, user_login, digest = user_row
        logger.info("User created: id=%s", user_id)
        return User(id=user_id, login=user_login, password=digest, salt=salt_row[0])

    async def get_user(self, login: str, login_hashed: str) -> User:
        return await retry(self._policy, self._get_user, login, login_hashed)

    async def _get_user(self, login: str, login_hashed: str) -> User:
        async with self._db.acquire() as conn:
            try:
                row = await conn.fetchrow(queries.SELECT_USER, login, login_hashed)
            except asyncpg.PostgresError as err:
                raise StorageError(f"get user failed: {login}") from err
        if row is None:
            raise UserNotFound(login)
        user_id, user_login, digest, salt = row
        return User(id=user_id, login=user_login, password=digest, salt=salt)

    # ------------------------------------------------------------------
    # Generic record operations
    # ------------------------------------------------------------------

    async def _insert(self, kind: RecordKind, user_id: UUID, *values: Any) -> Record:
        async with self._db.acquire() as conn:
            try:
                row = await conn.fetchrow(kind.insert, user_id, *values)
            except asyncpg.PostgresError as err:
                if is_foreign_key_violation(err):
                    raise UserNotFound(str(user_id)) from err
                raise StorageError(f"insert into {kind.table} failed") from err
        record = kind.model.from_row(row)
        logger.debug("Created %s id=%s user=%s", kind.table, record.id, user_id)
        return record

    async def _update(
        self, kind: RecordKind, record_id: UUID, user_id: UUID, *values: Any,
    ) -> Record:
        async with self._db.acquire() as conn:
            try:
                row = await conn.fetchrow(kind.update, record_id, user_id, *values)
            except asyncpg.PostgresError as err:
                raise StorageError(f"update {kind.table} failed: {record_id}") from err
        if row is None:
            raise kind.missing(str(record_id))
        return kind.model.from_row(row)

    async def _get(self, kind: RecordKind, record_id: UUID, user_id: UUID) -> Record:
        async with self._db.acquire() as conn:
            try:
                row = await conn.fetchrow(kind.select, record_id, user_id)
            except asyncpg.PostgresError as err:
                raise StorageError(f"get from {kind.table} failed: {record_id}") from err
        if row is None:
            raise kind.missing(str(record_id))
        return kind.model.from_row(row)

    async def _get_all(self, kind: RecordKind, user_id: UUID, limit: int) -> list:
        async with self._db.acquire() as conn:
            try:
                rows = await conn.fetch(kind.select_all, user_id, limit)
            except asyncpg.PostgresError as err:
                raise StorageError(f"list {kind.table} failed: user={user_id}") from err
        return [kind.model.from_row(row) for row in rows]

    async def _delete(self, kind: RecordKind, record_id: UUID, user_id: UUID) -> Record:
        async with self._db.acquire() as conn:
            try:
                row = await conn.fetchrow(kind.delete, record_id, user_id)
            except asyncpg.PostgresError as err:
                raise StorageError(f"delete from {kind.table} failed: {record_id}") from err
        if row is None:
            raise kind.missing(str(record_id))
        logger.debug("Deleted %s id=%s user=%s", kind.table, record_id, user_id)
        return kind.model.from_row(row)

    # ------------------------------------------------------------------
    # Passwords
    # ------------------------------------------------------------------

    async def create_password(
        self, user_id: UUID, name: str, login: str, password: str, meta: str,
    ) -> Password:
        return await retry(
            self._policy, self._insert, PASSWORDS, user_id, name, login, password, meta,
        )

    async def update_password(
        self, password_id: UUID, user_id: UUID,
        name: str, login: str, password: str, meta: str,
    ) -> Password:
        return await retry(
            self._policy, self._update, PASSWORDS, password_id, user_id,
            name, login, password, meta,
        )

    async def get_password(self, password_id: UUID, user_id: UUID) -> Password:
        return await retry(self._policy, self._get, PASSWORDS, password_id, user_id)

    async def get_all_passwords(
        self, user_id: UUID, limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[Password]:
        return await retry(self._policy, self._get_all, PASSWORDS, user_id, limit)

    async def delete_password(self, password_id: UUID, user_id: UUID) -> Password:
        return await retry(self._policy, self._delete, PASSWORDS, password_id, user_id)

    # ------------------------------------------------------------------
    # Banks
    # ------------------------------------------------------------------

    async def create_bank(
        self, user_id: UUID, name: str, card_number: str, cvc: str,
        owner: str, exp: str, meta: str,
    ) -> Bank:
        return await retry(
            self._policy, self._insert, BANKS, user_id,
            name, card_number, cvc, owner, exp, meta,
        )

    async def update_bank(
        self, bank_id: UUID, user_id: UUID, name: str, card_number: str,
        cvc: str, owner: str, exp: str, meta: str,
    ) -> Bank:
        return await retry(
            self._policy, self._update, BANKS, bank_id, user_id,
            name, card_number, cvc, owner, exp, meta,
        )

    async def get_bank(self, bank_id: UUID, user_id: UUID) -> Bank:
        return await retry(self._policy, self._get, BANKS, bank_id, user_id)

    async def get_all_banks(
        self, user_id: UUID, limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[Bank]:
        return await retry(self._policy, self._get_all, BANKS, user_id, limit)

    async def delete_bank(self, bank_id: UUID, user_id: UUID) -> Bank:
        return await retry(self._policy, self._delete, BANKS, bank_id, user_id)

    # ------------------------------------------------------------------
    # Texts
    # ------------------------------------------------------------------

    async def create_text(self, user_id: UUID, name: str, text: str, meta: str) -> Text:
        return await retry(self._policy, self._insert, TEXTS, user_id, name, text, meta)

    async def update_text(
        self, text_id: UUID, user_id: UUID, name: str, text: str, meta: str,
    ) -> Text:
        return await retry(
            self._policy, self._update, TEXTS, text_id, user_id, name, text, meta,
        )

    async def get_text(self, text_id: UUID, user_id: UUID) -> Text:
        return await retry(self._policy, self._get, TEXTS, text_id, user_id)

    async def get_all_texts(
        self, user_id: UUID, limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[Text]:
        return await retry(self._policy, self._get_all, TEXTS, user_id, limit)

    async def delete_text(self, text_id: UUID, user_id: UUID) -> Text:
        return await retry(self._policy, self._delete, TEXTS, text_id, user_id)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    async def create_file(
        self, user_id: UUID, name: str, path: str, meta: str,
    ) -> File:
        return await retry(self._policy, self._insert, FILES, user_id, name, path, meta)

    async def update_file(
        self, file_id: UUID, user_id: UUID, name: str, meta: str,
        path: Optional[str] = None,
    ) -> File:
        """Update name and meta. ``path`` is never written once the row exists."""
        if path is not None:
            logger.debug("Ignoring path change for file id=%s", file_id)
        return await retry(
            self._policy, self._update, FILES, file_id, user_id, name, meta,
        )

    async def get_file(self, file_id: UUID, user_id: UUID) -> File:
        return await retry(self._policy, self._get, FILES, file_id, user_id)

    async def get_all_files(
        self, user_id: UUID, limit: int = DEFAULT_LIST_LIMIT,
    ) -> list[File]:
        return await retry(self._policy, self._get_all, FILES, user_id, limit)

    async def delete_file(self, file_id: UUID, user_id: UUID) -> File:
        return await retry(self._policy, self._delete, FILES, file_id, user_id)
