"""Human-readable document numbers backed by an atomic per-year counter.

Contract, payment and shipment numbers are ``{PREFIX}-{year}-{ordinal}``.
The ordinal comes from a single upsert against ``sequence_counters`` so two
concurrent requests can never read the same value.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from wasteex.domain.models import SequenceCounter

logger = logging.getLogger(__name__)

# scope -> (prefix, zero-padded width)
NUMBER_FORMATS: dict[str, tuple[str, int]] = {
    "contract": ("WE", 6),
    "payment": ("PAY", 8),
    "shipment": ("SH", 6),
}


def format_number(scope: str, year: int, ordinal: int) -> str:
    prefix, width = NUMBER_FORMATS[scope]
    return f"{prefix}-{year}-{ordinal:0{width}d}"


async def next_ordinal(db: AsyncSession, scope: str, year: int) -> int:
    """Atomically increment and return the counter for (scope, year)."""
    dialect = db.get_bind().dialect.name

    if dialect in ("sqlite", "postgresql"):
        if dialect == "sqlite":
            from sqlalchemy.dialects.sqlite import insert
        else:
            from sqlalchemy.dialects.postgresql import insert

        stmt = insert(SequenceCounter).values(scope=scope, year=year, value=1)
        stmt = stmt.on_conflict_do_update(
            index_elements=[SequenceCounter.scope, SequenceCounter.year],
            set_={"value": SequenceCounter.value + 1},
        ).returning(SequenceCounter.value)
        result = await db.execute(stmt)
        return result.scalar_one()

    # Other backends: lock the counter row, then increment it.
    result = await db.execute(
        select(SequenceCounter)
        .where(SequenceCounter.scope == scope, SequenceCounter.year == year)
        .with_for_update()
    )
    counter = result.scalar_one_or_none()
    if counter is None:
        db.add(SequenceCounter(scope=scope, year=year, value=1))
        await db.flush()
        return 1
    await db.execute(
        update(SequenceCounter)
        .where(SequenceCounter.scope == scope, SequenceCounter.year == year)
        .values(value=SequenceCounter.value + 1)
    )
    await db.refresh(counter)
    return counter.value


async def next_number(db: AsyncSession, scope: str, now: datetime | None = None) -> str:
    """Return the next formatted document number for scope in the current year."""
    year = (now or datetime.now(timezone.utc)).year
    ordinal = await next_ordinal(db, scope, year)
    number = format_number(scope, year, ordinal)
    logger.debug("Allocated %s number %s", scope, number)
    return number
