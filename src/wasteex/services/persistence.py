"""Loading, row locking and optimistic-concurrency helpers shared by services."""

import logging
from typing import TypeVar

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from wasteex.domain.errors import ConcurrentModificationError, NotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def load(
    db: AsyncSession,
    model: type[T],
    entity_id: str,
    entity_name: str,
    lock: bool = False,
) -> T:
    """Fetch a row by primary key or raise NotFoundError.

    ``lock=True`` issues SELECT ... FOR UPDATE (ignored by SQLite) and
    refreshes any copy already in the identity map so callers see the
    committed version.
    """
    stmt = select(model).where(model.id == entity_id).execution_options(populate_existing=True)
    if lock:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    row = result.scalar_one_or_none()
    if row is None:
        raise NotFoundError(entity_name, entity_id)
    return row


async def flush(db: AsyncSession, entity_name: str, entity_id: str) -> None:
    """Flush pending changes, converting version conflicts to ConcurrentModificationError."""
    try:
        await db.flush()
    except StaleDataError:
        await db.rollback()
        logger.warning("Concurrent modification of %s %s", entity_name, entity_id)
        raise ConcurrentModificationError(entity_name, entity_id) from None


async def commit(db: AsyncSession, entity_name: str, entity_id: str) -> None:
    """Commit, converting version conflicts to ConcurrentModificationError."""
    try:
        await db.commit()
    except StaleDataError:
        await db.rollback()
        logger.warning("Concurrent modification of %s %s", entity_name, entity_id)
        raise ConcurrentModificationError(entity_name, entity_id) from None
