"""
Wire status codes.

Errors travel as ``{"code": <code>, "kind": <kind>}``; the HTTP status is
derived from the code. Only the kind crosses the wire, the message and the
chained causes stay in the server log.
"""
from enum import Enum

import orjson
from aiohttp import web

from ..exceptions import (
    DeadlineExceeded,
    InvalidCredentials,
    KeeperError,
    RecordNotFound,
    Unauthenticated,
    UserAlreadyExists,
    UserNotFound,
    ValidationFailed,
)


class Code(str, Enum):
    OK = "ok"
    CANCELLED = "cancelled"
    INVALID_ARGUMENT = "invalid-argument"
    DEADLINE_EXCEEDED = "deadline-exceeded"
    NOT_FOUND = "not-found"
    ALREADY_EXISTS = "already-exists"
    UNAUTHENTICATED = "unauthenticated"
    INTERNAL = "internal"


HTTP_STATUS = {
    Code.OK: 200,
    Code.CANCELLED: 499,
    Code.INVALID_ARGUMENT: 400,
    Code.DEADLINE_EXCEEDED: 504,
    Code.NOT_FOUND: 404,
    Code.ALREADY_EXISTS: 409,
    Code.UNAUTHENTICATED: 401,
    Code.INTERNAL: 500,
}

# most specific first
_CODES: tuple[tuple[type[KeeperError], Code], ...] = (
    (UserAlreadyExists, Code.ALREADY_EXISTS),
    (InvalidCredentials, Code.UNAUTHENTICATED),
    (Unauthenticated, Code.UNAUTHENTICATED),
    (UserNotFound, Code.NOT_FOUND),
    (RecordNotFound, Code.NOT_FOUND),
    (ValidationFailed, Code.INVALID_ARGUMENT),
    (DeadlineExceeded, Code.DEADLINE_EXCEEDED),
)


def dumps(obj) -> str:
    return orjson.dumps(obj).decode("utf-8")


def code_for(err: BaseException) -> Code:
    for exc_type, code in _CODES:
        if isinstance(err, exc_type):
            return code
    return Code.INTERNAL


def kind_for(err: BaseException) -> str:
    if isinstance(err, KeeperError) and code_for(err) is not Code.INTERNAL:
        return err.kind
    return "internal"


def status_document(err: BaseException) -> dict:
    return {"code": code_for(err).value, "kind": kind_for(err)}


class RPCError(Exception):
    """Error status received from the remote side."""

    def __init__(self, code: str, kind: str):
        super().__init__(f"{code}: {kind}")
        self.code = code
        self.kind = kind


def error_response(err: BaseException) -> web.Response:
    code = code_for(err)
    return web.json_response(
        status_document(err),
        status=HTTP_STATUS[code],
        dumps=dumps,
    )

