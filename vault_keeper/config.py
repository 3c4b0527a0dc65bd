"""
Server Configuration — command-line flags and environment variables.

Every setting has a flag and an environment variable; when both are given
the environment wins. Values are validated by :class:`ServerConfig`.

Security Note:
    Never log the token secret or the DSN password. Use
    :meth:`ServerConfig.safe_dsn` when the DSN must appear in a log line.
"""
import argparse
import logging
import os
from collections.abc import Mapping, Sequence
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator

from .conf import (
    DEFAULT_ADDRESS,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_DSN,
    DEFAULT_LIST_LIMIT,
    DEFAULT_MAX_FRAME_SIZE,
    DEFAULT_SALT_LENGTH,
    DEFAULT_TOKEN_DURATION,
)
from .storage.retry import RetryPolicy

logger = logging.getLogger("keeper.config")

# field name → environment variable
ENV_VARS = {
    "dsn": "DSN",
    "address": "ADDRESS",
    "token_secret": "TOKEN_SECRET",
    "token_duration": "TOKEN_DURATION",
    "storage_path": "FILE_STORAGE_PATH",
    "chunk_size": "CHUNK_SIZE",
    "list_limit": "LIST_LIMIT",
    "salt_length": "SALT_LENGTH",
    "retry_attempts": "RETRY_ATTEMPTS",
    "retry_delay": "RETRY_DELAY",
    "retry_increment": "RETRY_INCREMENT",
    "max_frame_size": "MAX_FRAME_SIZE",
    "log_level": "LOG_LEVEL",
}


class ServerConfig(BaseModel):
    """Validated server configuration."""

    dsn: str = DEFAULT_DSN
    address: str = DEFAULT_ADDRESS
    token_secret: str = Field(default="secret", min_length=1)
    token_duration: int = Field(default=DEFAULT_TOKEN_DURATION, ge=1)
    storage_path: Path = Path("/tmp")
    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, ge=1)
    list_limit: int = Field(default=DEFAULT_LIST_LIMIT, ge=1)
    salt_length: int = Field(default=DEFAULT_SALT_LENGTH, ge=1)
    retry_attempts: int = Field(default=3, ge=0)
    retry_delay: int = Field(default=5, ge=0)
    retry_increment: int = Field(default=3, ge=0)
    max_frame_size: int = Field(default=DEFAULT_MAX_FRAME_SIZE, ge=1024)
    log_level: str = "INFO"

    @field_validator("address")
    @classmethod
    def validate_address(cls, v: str) -> str:
        """Require ``host:port`` with a numeric port."""
        host, sep, port = v.rpartition(":")
        if not sep or not port.isdigit() or not 0 < int(port) < 65536:
            raise ValueError(f"address must be host:port, got {v!r}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {v}")
        return level

    @property
    def host(self) -> str:
        return self.address.rpartition(":")[0] or "0.0.0.0"

    @property
    def port(self) -> int:
        return int(self.address.rpartition(":")[2])

    @property
    def token_lifetime(self) -> timedelta:
        return timedelta(minutes=self.token_duration)

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            attempts=self.retry_attempts,
            delay=self.retry_delay,
            increment=self.retry_increment,
        )

    def safe_dsn(self) -> str:
        """DSN without credentials, for logging."""
        parts = urlsplit(self.dsn)
        if not parts.hostname:
            return "<dsn>"
        port = f":{parts.port}" if parts.port else ""
        return f"{parts.scheme}://{parts.hostname}{port}{parts.path}"

    @classmethod
    def load(
        cls,
        argv: Optional[Sequence[str]] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "ServerConfig":
        """Build the configuration from flags, then environment overrides.

        Raises:
            pydantic.ValidationError: If a value is out of range or malformed.
            SystemExit: On unknown flags or ``--help`` (argparse).
        """
        environ = os.environ if environ is None else environ
        values: dict[str, Any] = {
            name: value
            for name, value in vars(build_parser().parse_args(argv)).items()
            if value is not None
        }
        for name, env_name in ENV_VARS.items():
            if env_name in environ:
                values[name] = environ[env_name]
        return cls(**values)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vault-keeper",
        description="Serve the vault keeper RPC service.",
    )
    parser.add_argument("--dsn", help="database DSN")
    parser.add_argument("-a", "--address", help="host:port to listen on")
    parser.add_argument("--secret", dest="token_secret", help="token signing secret")
    parser.add_argument(
        "--token-duration", type=int, help="token lifetime in minutes",
    )
    parser.add_argument(
        "-f", "--file-storage", dest="storage_path", help="blob storage directory",
    )
    parser.add_argument("--chunk-size", type=int, help="download chunk size in bytes")
    parser.add_argument("--list-limit", type=int, help="maximum records per list call")
    parser.add_argument("--salt-length", type=int, help="salt length in bytes")
    parser.add_argument("--retry-attempts", type=int, help="retries on connection errors")
    parser.add_argument("--retry-delay", type=int, help="first retry delay in ms")
    parser.add_argument("--retry-increment", type=int, help="retry delay increment in ms")
    parser.add_argument("--max-frame-size", type=int, help="largest accepted frame in bytes")
    parser.add_argument("--log-level", help="logging level")
    return parser
