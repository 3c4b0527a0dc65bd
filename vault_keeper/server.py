"""
Server shell — wires the components and runs until a termination signal.

Shutdown order on SIGINT/SIGTERM/SIGQUIT: stop accepting connections,
let in-flight requests finish, then close the relational store.
"""
import asyncio
import logging
import signal
import sys
from collections.abc import Sequence
from typing import Optional

from aiohttp import web
from pydantic import ValidationError

from .config import ServerConfig
from .handlers import KeeperHandler
from .rpc.app import create_app
from .security import Hasher, Tokener
from .storage import FileStorage, Storage

logger = logging.getLogger("keeper.server")

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM, signal.SIGQUIT)


def build_app(config: ServerConfig, storage: Storage) -> web.Application:
    tokener = Tokener(config.token_secret, config.token_lifetime)
    handler = KeeperHandler(
        storage,
        FileStorage(config.storage_path, config.chunk_size),
        Hasher(),
        tokener,
        list_limit=config.list_limit,
        salt_length=config.salt_length,
    )
    return create_app(handler, tokener, max_frame_size=config.max_frame_size)


async def _wait_for_signal(stopping: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in SHUTDOWN_SIGNALS:
        loop.add_signal_handler(sig, stopping.set)
    try:
        await stopping.wait()
    finally:
        for sig in SHUTDOWN_SIGNALS:
            loop.remove_signal_handler(sig)


async def _listen(runner: web.AppRunner, config: ServerConfig, stopping: asyncio.Event) -> None:
    site = web.TCPSite(runner, config.host, config.port)
    await site.start()
    logger.info("Listening on %s", config.address)
    await stopping.wait()
    logger.info("Shutting down: draining in-flight requests")


async def serve(config: ServerConfig) -> None:
    """Serve until a shutdown signal arrives or a task fails."""
    if not config.storage_path.is_dir():
        raise NotADirectoryError(f"file storage {config.storage_path} is not a directory")
    storage = await Storage.connect(config.dsn, config.retry_policy())
    logger.info("Connected to %s", config.safe_dsn())
    runner = web.AppRunner(
        build_app(config, storage),
        handler_cancellation=True,
        access_log=None,
    )
    stopping = asyncio.Event()
    try:
        await runner.setup()
        async with asyncio.TaskGroup() as group:
            group.create_task(_wait_for_signal(stopping))
            group.create_task(_listen(runner, config, stopping))
    finally:
        await runner.cleanup()
        await storage.close()
        logger.info("Server stopped")


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Entry point; returns the process exit code."""
    try:
        config = ServerConfig.load(argv)
    except ValidationError as err:
        print(f"invalid configuration: {err}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        asyncio.run(serve(config))
    except Exception:
        logger.critical("Server terminated with an error", exc_info=True)
        return 1
    return 0
