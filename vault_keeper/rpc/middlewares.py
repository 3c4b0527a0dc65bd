"""
Request interceptors.

Chain, outermost first::

    logging → status → deadline → authentication → validation → adapter

The status middleware is the only place where exceptions become wire
responses. Validation runs for unary methods only; stream adapters decode
their own opening message.
"""
import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from aiohttp import web

from ..conf import (
    AUTH_HEADER,
    DEADLINE_KEY,
    MESSAGE_KEY,
    STREAM_KEY,
    TIMEOUT_HEADER,
    USER_ID_KEY,
)
from ..exceptions import DeadlineExceeded, KeeperError, ValidationFailed
from ..security import Tokener
from .service import Kind, decode_message, method_for
from .status import Code, code_for, error_response

logger = logging.getLogger("keeper.rpc")

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]


def _method_name(request: web.Request) -> str:
    method = method_for(request)
    return method.name if method is not None else request.path


@web.middleware
async def logging_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    name = _method_name(request)
    start = time.monotonic()
    logger.info("Got incoming request method=%s", name)
    try:
        response = await handler(request)
    except web.HTTPException as exc:
        logger.warning("Rejected request method=%s status=%d", name, exc.status)
        raise
    duration = time.monotonic() - start
    if response.status >= 400:
        logger.warning(
            "Failed request method=%s status=%d duration=%.3fs",
            name, response.status, duration,
        )
    else:
        logger.info("Sending response method=%s duration=%.3fs", name, duration)
    return response


def _stream_started(request: web.Request) -> bool:
    stream = request.get(STREAM_KEY)
    return stream is not None and stream.prepared


@web.middleware
async def status_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as err:
        if _stream_started(request):
            # the status line is already out; the transport gets dropped instead
            logger.error(
                "Error after %s started streaming", _method_name(request), exc_info=err,
            )
            raise
        if not isinstance(err, KeeperError):
            logger.exception("Unhandled error in %s", _method_name(request))
        elif code_for(err) is Code.INTERNAL:
            logger.error(
                "Internal error in %s user=%s", _method_name(request),
                request.get(USER_ID_KEY), exc_info=err,
            )
        else:
            logger.info("%s: %s (%s)", _method_name(request), err.kind, err)
        return error_response(err)


@web.middleware
async def deadline_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Run the request under the caller's deadline, if one was sent.

    The header value is a positive number of milliseconds. The running
    ``asyncio.Timeout`` is kept on the request so that streaming adapters
    can take it over once their response has started.
    """
    raw = request.headers.get(TIMEOUT_HEADER)
    if raw is None:
        return await handler(request)
    try:
        timeout = int(raw) / 1000
    except ValueError as err:
        raise ValidationFailed(f"bad {TIMEOUT_HEADER} header: {raw!r}") from err
    if timeout <= 0:
        raise ValidationFailed(f"bad {TIMEOUT_HEADER} header: {raw!r}")
    try:
        async with asyncio.timeout(timeout) as deadline:
            request[DEADLINE_KEY] = deadline
            return await handler(request)
    except TimeoutError as err:
        raise DeadlineExceeded(f"deadline of {raw}ms exceeded") from err


def auth_middleware(tokener: Tokener):
    """Resolve the bearer credential of every non-public method."""

    @web.middleware
    async def authenticate(request: web.Request, handler: Handler) -> web.StreamResponse:
        method = method_for(request)
        if method is not None and not method.public:
            request[USER_ID_KEY] = tokener.authenticate(request.headers.get(AUTH_HEADER))
        return await handler(request)

    return authenticate


@web.middleware
async def validation_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    method = method_for(request)
    if method is not None and method.kind is Kind.UNARY:
        request[MESSAGE_KEY] = decode_message(method.request, await request.read())
    return await handler(request)
