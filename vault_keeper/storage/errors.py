"""
Driver error classification.

PostgreSQL reports failures through five-character SQLSTATE codes whose
first two characters name the class. Class ``08`` (connection exception)
is the only class eligible for transparent retry.
"""
from typing import Optional

import asyncpg

CONNECTION_EXCEPTION_CLASS = "08"


def _causes(err: Optional[BaseException]):
    """Walk an exception and its explicit/implicit causes, once each."""
    seen = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        err = err.__cause__ or err.__context__


def _sqlstate(err: BaseException) -> str:
    if isinstance(err, asyncpg.PostgresError):
        return getattr(err, "sqlstate", None) or ""
    return ""


def is_connection_exception(err: BaseException) -> bool:
    """True if ``err`` or any error in its chain is a SQLSTATE class 08 error."""
    return any(
        _sqlstate(e).startswith(CONNECTION_EXCEPTION_CLASS) for e in _causes(err)
    )


def is_unique_violation(err: BaseException) -> bool:
    return isinstance(err, asyncpg.UniqueViolationError)


def is_foreign_key_violation(err: BaseException) -> bool:
    return isinstance(err, asyncpg.ForeignKeyViolationError)
