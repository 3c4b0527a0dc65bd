"""aiohttp application factory for the keeper service."""
from aiohttp import web

from ..conf import DEFAULT_MAX_FRAME_SIZE
from ..security import Tokener
from .middlewares import (
    auth_middleware,
    deadline_middleware,
    logging_middleware,
    status_middleware,
    validation_middleware,
)
from .service import HANDLER_KEY, MAX_FRAME_KEY, register_routes


def create_app(
    handler,
    tokener: Tokener,
    max_frame_size: int = DEFAULT_MAX_FRAME_SIZE,
) -> web.Application:
    """Build the application serving ``handler`` (a :class:`KeeperHandler`)."""
    app = web.Application(
        middlewares=[
            logging_middleware,
            status_middleware,
            deadline_middleware,
            auth_middleware(tokener),
            validation_middleware,
        ],
        client_max_size=max_frame_size,
    )
    app[HANDLER_KEY] = handler
    app[MAX_FRAME_KEY] = max_frame_size
    register_routes(app)
    return app
