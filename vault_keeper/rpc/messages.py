"""
Request and response schemas.

Validating a request body against its schema is the validator step of the
unary pipeline. Unknown fields are ignored.
"""
from typing import Annotated
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from ..storage.models import Bank, File, Password, Text

Name = Annotated[str, Field(min_length=1, max_length=150)]


class Message(BaseModel):
    model_config = ConfigDict(extra="ignore")


class Empty(Message):
    pass


# --- Auth -----------------------------------------------------------------

class Credentials(Message):
    login: str = Field(min_length=1, max_length=150)
    password: str = Field(min_length=1)


class TokenResponse(Message):
    token: str


# --- Passwords ------------------------------------------------------------

class PasswordFields(Message):
    name: Name
    login: str = ""
    password: str = ""
    meta: str = ""


class UpdatePasswordRequest(PasswordFields):
    id: UUID


class PasswordList(Message):
    passwords: list[Password]


# --- Banks ----------------------------------------------------------------

class BankFields(Message):
    name: Name
    card_number: str = ""
    cvc: str = ""
    owner: str = ""
    exp: str = ""
    meta: str = ""


class UpdateBankRequest(BankFields):
    id: UUID


class BankList(Message):
    banks: list[Bank]


# --- Texts ----------------------------------------------------------------

class TextFields(Message):
    name: Name
    text: str = ""
    meta: str = ""


class UpdateTextRequest(TextFields):
    id: UUID


class TextList(Message):
    texts: list[Text]


# --- Files ----------------------------------------------------------------

class FileHeader(Message):
    """First message of a ``CreateFile`` stream."""

    name: Name
    meta: str = ""


class UpdateFileRequest(FileHeader):
    id: UUID
    # accepted and ignored; the blob location never changes
    path: str | None = None


class FileList(Message):
    files: list[File]


# --- Shared ---------------------------------------------------------------

class RecordId(Message):
    """Addresses one record of the caller."""

    id: UUID
