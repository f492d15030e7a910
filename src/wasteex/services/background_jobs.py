"""Periodic jobs started from the application lifespan.

- Catalog sweep: expire listings and requests past their expiry date.
- Ledger retry: re-mirror contracts whose signature mirroring failed.
"""

import asyncio
import logging

from wasteex.app.config import get_settings
from wasteex.infra.database import async_session
from wasteex.services.catalog_service import CatalogService
from wasteex.services.ledger_mirror import retry_failed_mirrors

logger = logging.getLogger(__name__)

catalog_service = CatalogService()


async def run_catalog_sweep() -> dict:
    async with async_session() as db:
        counts = await catalog_service.expire_stale(db)
        await db.commit()
    if counts["listings"] or counts["requests"]:
        logger.info(
            "Catalog sweep: expired %d listings, %d requests", counts["listings"], counts["requests"]
        )
    return counts


async def catalog_sweep_loop():
    """Expire stale catalog entries on a fixed interval."""
    interval = get_settings().catalog_sweep_interval_minutes * 60
    while True:
        try:
            await run_catalog_sweep()
        except Exception as e:
            logger.error("Catalog sweep error: %s", e)
        await asyncio.sleep(interval)


async def ledger_retry_loop():
    """Retry failed signature-ledger mirrors on a fixed interval."""
    interval = get_settings().ledger_retry_interval_minutes * 60
    while True:
        await asyncio.sleep(interval)
        try:
            synced = await retry_failed_mirrors()
            if synced:
                logger.info("Ledger retry: synced %d contracts", synced)
        except Exception as e:
            logger.error("Ledger retry error: %s", e)
