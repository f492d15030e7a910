"""Mirror fully-signed contracts to the signature ledger.

Runs after the signing transaction has committed (FastAPI BackgroundTasks,
or the retry loop in ``background_jobs``) in its own session. No row lock is
held while the ledger is called, and sync bookkeeping is written with a plain
UPDATE so it never bumps the contract's optimistic-lock version. A failed
mirror leaves the contract's business status untouched.
"""

import logging
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wasteex.domain.enums import Actor, ContractEventType, LedgerSyncStatus
from wasteex.domain.errors import LedgerError
from wasteex.domain.models import Contract, ContractEvent, LedgerReceipt, utcnow
from wasteex.infra.database import async_session
from wasteex.services.signature_ledger import SignatureLedger, get_signature_ledger

logger = logging.getLogger(__name__)

PARTY_ROLES = ("seller", "buyer")


async def _set_sync_state(db: AsyncSession, contract_id: str, **values) -> None:
    await db.execute(update(Contract).where(Contract.id == contract_id).values(**values))


async def mirror_contract_signatures(
    contract_id: str,
    ledger: Optional[SignatureLedger] = None,
    session_factory: Callable[[], AsyncSession] = async_session,
) -> str:
    """Record each party's signature on the ledger. Returns the resulting sync status."""
    ledger = ledger or get_signature_ledger()

    async with session_factory() as db:
        contract = (
            await db.execute(select(Contract).where(Contract.id == contract_id))
        ).scalar_one_or_none()
        if contract is None:
            logger.warning("Ledger mirror: contract %s not found", contract_id)
            return LedgerSyncStatus.FAILED.value
        if not contract.is_fully_signed:
            logger.warning("Ledger mirror: contract %s is not fully signed, skipping", contract_id)
            return contract.ledger_sync_status

        if not ledger.enabled:
            await _set_sync_state(db, contract_id, ledger_sync_status=LedgerSyncStatus.SKIPPED.value)
            await db.commit()
            return LedgerSyncStatus.SKIPPED.value

        recorded = {r.party_role for r in contract.ledger_receipts}
        attempts = (contract.ledger_attempts or 0) + 1
        # End the read transaction before calling out.
        await db.commit()

        receipts = []
        try:
            for role in PARTY_ROLES:
                if role in recorded:
                    continue
                receipt = await ledger.record_signature(contract_id, role)
                receipts.append((role, receipt))
        except LedgerError as exc:
            logger.warning(
                "Ledger mirror failed for contract %s (attempt %d): %s", contract_id, attempts, exc
            )
            for role, receipt in receipts:
                db.add(_receipt_row(contract_id, role, receipt))
            await _set_sync_state(
                db,
                contract_id,
                ledger_sync_status=LedgerSyncStatus.FAILED.value,
                ledger_attempts=attempts,
                ledger_last_error=str(exc),
            )
            db.add(
                ContractEvent(
                    contract_id=contract_id,
                    event_type=ContractEventType.LEDGER_FAILED.value,
                    actor=Actor.SYSTEM.value,
                    data={"attempt": attempts, "error": str(exc)},
                    created_at=utcnow(),
                )
            )
            await db.commit()
            return LedgerSyncStatus.FAILED.value

        for role, receipt in receipts:
            db.add(_receipt_row(contract_id, role, receipt))
        await _set_sync_state(
            db,
            contract_id,
            ledger_sync_status=LedgerSyncStatus.SYNCED.value,
            ledger_attempts=attempts,
            ledger_last_error=None,
            ledger_synced_at=utcnow(),
        )
        db.add(
            ContractEvent(
                contract_id=contract_id,
                event_type=ContractEventType.LEDGER_SYNCED.value,
                actor=Actor.SYSTEM.value,
                data={"transactions": {role: r.transaction_hash for role, r in receipts}},
                created_at=utcnow(),
            )
        )
        try:
            await db.commit()
        except IntegrityError:
            # Receipts are write-once; a concurrent mirror already stored them.
            await db.rollback()
            logger.info("Ledger mirror: receipts for contract %s already recorded", contract_id)
        else:
            logger.info("Ledger mirror: contract %s synced (attempt %d)", contract_id, attempts)
        return LedgerSyncStatus.SYNCED.value


def _receipt_row(contract_id: str, role: str, receipt) -> LedgerReceipt:
    return LedgerReceipt(
        contract_id=contract_id,
        party_role=role,
        transaction_hash=receipt.transaction_hash,
        block_number=receipt.block_number,
        contract_address=receipt.contract_address,
        gas_used=receipt.gas_used,
        recorded_at=utcnow(),
    )


async def retry_failed_mirrors(
    ledger: Optional[SignatureLedger] = None,
    session_factory: Callable[[], AsyncSession] = async_session,
) -> int:
    """Re-run mirroring for contracts left pending or failed. Returns the number synced."""
    ledger = ledger or get_signature_ledger()
    if not ledger.enabled:
        return 0

    async with session_factory() as db:
        result = await db.execute(
            select(Contract.id).where(
                Contract.ledger_sync_status.in_(
                    [LedgerSyncStatus.FAILED.value, LedgerSyncStatus.PENDING.value]
                ),
                Contract.seller_signed_at.isnot(None),
                Contract.buyer_signed_at.isnot(None),
            )
        )
        contract_ids = list(result.scalars().all())

    synced = 0
    for contract_id in contract_ids:
        status = await mirror_contract_signatures(contract_id, ledger=ledger, session_factory=session_factory)
        if status == LedgerSyncStatus.SYNCED.value:
            synced += 1
    return synced
