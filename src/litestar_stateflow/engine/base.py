"""Transaction boundary shared by every engine operation."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from advanced_alchemy.exceptions import AdvancedAlchemyError
from sqlalchemy.exc import SQLAlchemyError

from litestar_stateflow.exceptions import PersistenceError

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from sqlalchemy.ext.asyncio import AsyncSession

__all__ = ["transaction"]


@asynccontextmanager
async def transaction(session: AsyncSession, operation: str) -> AsyncIterator[AsyncSession]:
    """Run a block in one database transaction.

    A fresh session gets its own transaction, committed when the block exits.
    When the caller already has a transaction open the block runs in a
    SAVEPOINT instead: a failure rolls back only the block's writes and the
    caller stays responsible for the final commit.

    Storage-layer failures are re-raised as :class:`PersistenceError`; engine
    errors propagate unchanged after the rollback.

    Args:
        session: The session to run in.
        operation: Name of the engine operation, used in error messages.

    Yields:
        The same session.
    """
    try:
        if session.in_transaction():
            async with session.begin_nested():
                yield session
        else:
            async with session.begin():
                yield session
    except (SQLAlchemyError, AdvancedAlchemyError) as exc:
        raise PersistenceError(operation, exc) from exc
