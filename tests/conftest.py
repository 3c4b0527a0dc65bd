"""Shared fixtures: an in-memory store, real blob storage and a live app."""
import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional
from uuid import UUID, uuid4

import pytest

from vault_keeper.client import KeeperClient
from vault_keeper.exceptions import (
    BankNotFound,
    FileNotFound,
    PasswordNotFound,
    TextNotFound,
    UserAlreadyExists,
    UserNotFound,
)
from vault_keeper.handlers import KeeperHandler
from vault_keeper.rpc.app import create_app
from vault_keeper.security import Hasher, Tokener
from vault_keeper.storage import Bank, File, FileStorage, Password, Text, User

MISSING = {
    Password: PasswordNotFound,
    Bank: BankNotFound,
    Text: TextNotFound,
    File: FileNotFound,
}


class FakeStorage:
    """In-memory stand-in for :class:`Storage` raising the same errors."""

    def __init__(self):
        self.users: dict[str, User] = {}
        self.rows: dict[type, dict[UUID, object]] = {model: {} for model in MISSING}
        self.delay: float = 0

    def _now(self) -> datetime:
        return datetime.now(timezone.utc)

    # users

    async def create_user(self, login, login_hashed, salt, password) -> User:
        if login in self.users:
            raise UserAlreadyExists(login)
        user = User(id=uuid4(), login=login, password=password, salt=salt)
        self.users[login] = user
        return user

    async def get_user(self, login, login_hashed) -> User:
        try:
            return self.users[login]
        except KeyError:
            raise UserNotFound(login) from None

    # generic

    def _check_user(self, user_id: UUID) -> None:
        if not any(user.id == user_id for user in self.users.values()):
            raise UserNotFound(str(user_id))

    async def _insert(self, model, user_id, **fields):
        self._check_user(user_id)
        record = model(id=uuid4(), user_id=user_id, updated_at=self._now(), **fields)
        self.rows[model][record.id] = record
        return record

    def _lookup(self, model, record_id, user_id):
        record = self.rows[model].get(record_id)
        if record is None or record.user_id != user_id:
            raise MISSING[model](str(record_id))
        return record

    async def _update(self, model, record_id, user_id, **fields):
        record = self._lookup(model, record_id, user_id)
        record = record.model_copy(update={**fields, "updated_at": self._now()})
        self.rows[model][record_id] = record
        return record

    async def _get(self, model, record_id, user_id):
        return self._lookup(model, record_id, user_id)

    async def _get_all(self, model, user_id, limit):
        if self.delay:
            await asyncio.sleep(self.delay)
        owned = [r for r in self.rows[model].values() if r.user_id == user_id]
        return sorted(owned, key=lambda r: r.updated_at)[:limit]

    async def _delete(self, model, record_id, user_id):
        self._lookup(model, record_id, user_id)
        return self.rows[model].pop(record_id)

    # passwords

    async def create_password(self, user_id, name, login, password, meta):
        return await self._insert(
            Password, user_id, name=name, login=login, password=password, meta=meta,
        )

    async def update_password(self, password_id, user_id, name, login, password, meta):
        return await self._update(
            Password, password_id, user_id,
            name=name, login=login, password=password, meta=meta,
        )

    async def get_password(self, password_id, user_id):
        return await self._get(Password, password_id, user_id)

    async def get_all_passwords(self, user_id, limit=75):
        return await self._get_all(Password, user_id, limit)

    async def delete_password(self, password_id, user_id):
        return await self._delete(Password, password_id, user_id)

    # banks

    async def create_bank(self, user_id, name, card_number, cvc, owner, exp, meta):
        return await self._insert(
            Bank, user_id, name=name, card_number=card_number, cvc=cvc,
            owner=owner, exp=exp, meta=meta,
        )

    async def update_bank(self, bank_id, user_id, name, card_number, cvc, owner, exp, meta):
        return await self._update(
            Bank, bank_id, user_id, name=name, card_number=card_number, cvc=cvc,
            owner=owner, exp=exp, meta=meta,
        )

    async def get_bank(self, bank_id, user_id):
        return await self._get(Bank, bank_id, user_id)

    async def get_all_banks(self, user_id, limit=75):
        return await self._get_all(Bank, user_id, limit)

    async def delete_bank(self, bank_id, user_id):
        return await self._delete(Bank, bank_id, user_id)

    # texts

    async def create_text(self, user_id, name, text, meta):
        return await self._insert(Text, user_id, name=name, text=text, meta=meta)

    async def update_text(self, text_id, user_id, name, text, meta):
        return await self._update(Text, text_id, user_id, name=name, text=text, meta=meta)

    async def get_text(self, text_id, user_id):
        return await self._get(Text, text_id, user_id)

    async def get_all_texts(self, user_id, limit=75):
        return await self._get_all(Text, user_id, limit)

    async def delete_text(self, text_id, user_id):
        return await self._delete(Text, text_id, user_id)

    # files

    async def create_file(self, user_id, name, path, meta):
        return await self._insert(File, user_id, name=name, path=path, meta=meta)

    async def update_file(self, file_id, user_id, name, meta, path: Optional[str] = None):
        return await self._update(File, file_id, user_id, name=name, meta=meta)

    async def get_file(self, file_id, user_id):
        return await self._get(File, file_id, user_id)

    async def get_all_files(self, user_id, limit=75):
        return await self._get_all(File, user_id, limit)

    async def delete_file(self, file_id, user_id):
        return await self._delete(File, file_id, user_id)


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def hasher():
    return Hasher()


@pytest.fixture
def tokener():
    return Tokener("test-secret", timedelta(minutes=5))


@pytest.fixture
def files(tmp_path):
    """Blob storage with a small chunk size so downloads span several chunks."""
    return FileStorage(tmp_path, chunk_size=4)


@pytest.fixture
def handler(storage, files, hasher, tokener):
    return KeeperHandler(storage, files, hasher, tokener, list_limit=75, salt_length=16)


@pytest.fixture
def app(handler, tokener):
    return create_app(handler, tokener, max_frame_size=64 * 1024)


@pytest.fixture
async def client(aiohttp_client, app):
    """Raw aiohttp test client."""
    return await aiohttp_client(app)


@pytest.fixture
def keeper(client):
    """KeeperClient bound to the test server; not logged in."""
    return KeeperClient(str(client.server.make_url("/")), session=client.session)


@pytest.fixture
def make_keeper(client):
    def factory(**kwargs) -> KeeperClient:
        return KeeperClient(
            str(client.server.make_url("/")), session=client.session, **kwargs,
        )
    return factory
