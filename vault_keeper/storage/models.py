"""
Stored records.

Field order mirrors the column order of every ``RETURNING``/``SELECT``
list in :mod:`.queries`; rows are bound positionally through
:meth:`Record.from_row`.
"""
from collections.abc import Sequence
from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel


class User(BaseModel):
    id: UUID
    login: str
    password: str
    salt: str


class Record(BaseModel):
    """Base for user-owned records."""

    id: UUID
    user_id: UUID

    @classmethod
    def from_row(cls, row: Sequence[Any]):
        return cls(**dict(zip(cls.model_fields, row)))


class Password(Record):
    name: str
    login: str
    password: str
    meta: str
    updated_at: datetime


class Bank(Record):
    name: str
    card_number: str
    cvc: str
    owner: str
    exp: str
    meta: str
    updated_at: datetime


class Text(Record):
    name: str
    text: str
    meta: str
    updated_at: datetime


class File(Record):
    """File metadata; ``path`` names the blob inside the blob-store root."""

    name: str
    path: str
    meta: str
    updated_at: datetime
