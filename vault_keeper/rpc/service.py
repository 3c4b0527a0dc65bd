"""
Service description and aiohttp route adapters.

Each method is served at ``POST /<service>/<Method>``.
Adapters translate between the wire and :class:`KeeperHandler`:

- unary:         JSON request (already validated) → JSON response
- client stream: header frame + data frames → JSON response
- server stream: JSON request → data frames + trailer frame
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

import orjson
from aiohttp import web
from pydantic import BaseModel, ValidationError

from ..conf import (
    DEADLINE_KEY,
    FRAMES_CONTENT_TYPE,
    MESSAGE_KEY,
    SERVICE_NAME,
    STREAM_KEY,
    USER_ID_KEY,
)
from ..exceptions import DeadlineExceeded, FramingError, ValidationFailed
from . import messages
from .framing import Flag, FrameReader, encode_frame, encode_message
from .status import Code, status_document

logger = logging.getLogger("keeper.rpc")

HANDLER_KEY = web.AppKey("keeper.handler", object)
MAX_FRAME_KEY = web.AppKey("keeper.max_frame_size", int)


class Kind(Enum):
    UNARY = "unary"
    CLIENT_STREAM = "client_stream"
    SERVER_STREAM = "server_stream"


@dataclass(frozen=True)
class Method:
    name: str
    handler: str
    request: type[BaseModel]
    kind: Kind = Kind.UNARY
    public: bool = False

    @property
    def path(self) -> str:
        return f"/{SERVICE_NAME}/{self.name}"


METHODS: dict[str, Method] = {
    method.path: method for method in (
        Method("Register", "register", messages.Credentials, public=True),
        Method("Login", "login", messages.Credentials, public=True),
        Method("CreatePassword", "create_password", messages.PasswordFields),
        Method("UpdatePassword", "update_password", messages.UpdatePasswordRequest),
        Method("GetPassword", "get_password", messages.RecordId),
        Method("GetAllPasswords", "get_all_passwords", messages.Empty),
        Method("DeletePassword", "delete_password", messages.RecordId),
        Method("CreateBank", "create_bank", messages.BankFields),
        Method("UpdateBank", "update_bank", messages.UpdateBankRequest),
        Method("GetBank", "get_bank", messages.RecordId),
        Method("GetAllBanks", "get_all_banks", messages.Empty),
        Method("DeleteBank", "delete_bank", messages.RecordId),
        Method("CreateText", "create_text", messages.TextFields),
        Method("UpdateText", "update_text", messages.UpdateTextRequest),
        Method("GetText", "get_text", messages.RecordId),
        Method("GetAllTexts", "get_all_texts", messages.Empty),
        Method("DeleteText", "delete_text", messages.RecordId),
        Method("CreateFile", "create_file", messages.FileHeader, Kind.CLIENT_STREAM),
        Method("UpdateFile", "update_file", messages.UpdateFileRequest),
        Method("GetFile", "get_file", messages.RecordId, Kind.SERVER_STREAM),
        Method("GetAllFiles", "get_all_files", messages.Empty),
        Method("DeleteFile", "delete_file", messages.RecordId),
    )
}


def method_for(request: web.Request) -> Optional[Method]:
    return METHODS.get(request.path)


def decode_message(model: type[BaseModel], payload: bytes) -> Any:
    """Parse and validate a JSON payload; an empty payload is ``{}``.

    Raises:
        ValidationFailed: On malformed JSON or a schema violation.
    """
    try:
        return model.model_validate(orjson.loads(payload or b"{}"))
    except (orjson.JSONDecodeError, ValidationError) as err:
        raise ValidationFailed(f"{model.__name__}: {err}") from err


def respond(result: BaseModel) -> web.Response:
    response = web.Response(
        body=orjson.dumps(result.model_dump(mode="json")),
        content_type="application/json",
    )
    response.enable_compression()
    return response


def _target(request: web.Request):
    method = method_for(request)
    return method, getattr(request.app[HANDLER_KEY], method.handler)


async def unary(request: web.Request) -> web.Response:
    _, call = _target(request)
    result = await call(request.get(USER_ID_KEY), request[MESSAGE_KEY])
    return respond(result)


async def client_stream(request: web.Request) -> web.Response:
    method, call = _target(request)
    reader = FrameReader(request.content, request.app[MAX_FRAME_KEY])
    first = await reader.read_frame()
    if first is None or first.flag is not Flag.MESSAGE:
        raise FramingError(f"{method.name} must open with a header message")
    header = decode_message(method.request, first.payload)
    result = await call(request[USER_ID_KEY], header, reader.data())
    return respond(result)


def _take_over_deadline(request: web.Request) -> Optional[float]:
    """Disarm the request-wide deadline and return its loop time.

    Once frames are on the wire, expiry must end the stream with a trailer
    instead of cancelling the handler.
    """
    deadline = request.get(DEADLINE_KEY)
    if deadline is None or deadline.expired():
        return None
    when = deadline.when()
    deadline.reschedule(None)
    return when


async def server_stream(request: web.Request) -> web.StreamResponse:
    method, call = _target(request)
    message = decode_message(method.request, await request.read())
    record, blob = await call(request[USER_ID_KEY], message)

    # frames are written uncompressed so each chunk leaves at once
    response = web.StreamResponse(headers={"Content-Type": FRAMES_CONTENT_TYPE})
    request[STREAM_KEY] = response
    try:
        await response.prepare(request)
        trailer = {"code": Code.OK.value}
        try:
            async with asyncio.timeout_at(_take_over_deadline(request)):
                async for chunk in blob:
                    await response.write(encode_frame(Flag.DATA, chunk))
        except ConnectionResetError:
            raise
        except TimeoutError:
            logger.warning("%s deadline exceeded id=%s", method.name, record.id)
            trailer = status_document(DeadlineExceeded("deadline exceeded mid-stream"))
        except Exception as err:
            logger.warning("%s aborted id=%s: %r", method.name, record.id, err)
            trailer = status_document(err)
        await response.write(encode_message(Flag.TRAILER, trailer))
        await response.write_eof()
    except ConnectionResetError:
        logger.info("%s peer went away id=%s", method.name, record.id)
    finally:
        await blob.close()
    return response


ADAPTERS = {
    Kind.UNARY: unary,
    Kind.CLIENT_STREAM: client_stream,
    Kind.SERVER_STREAM: server_stream,
}


def register_routes(app: web.Application) -> None:
    for method in METHODS.values():
        app.router.add_post(method.path, ADAPTERS[method.kind])
