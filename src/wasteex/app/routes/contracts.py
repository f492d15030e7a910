"""Contract routes: generation, signing, ledger status, milestones and disputes."""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from wasteex.app.routes.auth import get_current_user_dep, require_role
from wasteex.app.routes.common import client_ip, to_http
from wasteex.domain.enums import LedgerSyncStatus
from wasteex.domain.errors import MarketplaceError
from wasteex.domain.models import User
from wasteex.domain.schemas import (
    ContractCancel,
    ContractCreate,
    DisputeCreate,
    DisputeResolve,
    MilestoneCreate,
    SignRequest,
)
from wasteex.infra.database import get_db
from wasteex.services import persistence
from wasteex.services.contract_service import ContractService
from wasteex.services.ledger_mirror import mirror_contract_signatures
from wasteex.services.serializers import pagination, serialize_contract
from wasteex.services.signature_ledger import SignatureLedger, get_signature_ledger

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/contracts", tags=["contracts"])

contracts = ContractService()


@router.get("")
async def list_contracts(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    items, total = await contracts.list_for_user(db, user, status=status, page=page, limit=limit)
    return {
        "contracts": [serialize_contract(c) for c in items],
        "pagination": pagination(page, limit, total),
    }


@router.get("/{contract_id}")
async def get_contract(
    contract_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        contract = await contracts.get_for_user(db, contract_id, user)
    except MarketplaceError as e:
        raise to_http(e)
    return {"contract": serialize_contract(contract)}


@router.post("", status_code=201)
async def create_contract(
    data: ContractCreate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        contract = await contracts.create_contract(db, user, data)
        await persistence.commit(db, "contract", contract.id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"message": "Contract created successfully", "contract": serialize_contract(contract)}


@router.post("/{contract_id}/sign")
async def sign_contract(
    contract_id: str,
    data: SignRequest,
    request: Request,
    background_tasks: BackgroundTasks,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
    ledger: SignatureLedger = Depends(get_signature_ledger),
):
    """Sign as seller or buyer. Once both have signed, signatures are mirrored to the ledger after commit."""
    try:
        contract = await contracts.sign(db, contract_id, user, data.signature, client_ip(request))
        mirror = contract.is_fully_signed and ledger.enabled
        if contract.is_fully_signed and not ledger.enabled:
            contract.ledger_sync_status = LedgerSyncStatus.SKIPPED.value
        await persistence.commit(db, "contract", contract.id)
    except MarketplaceError as e:
        raise to_http(e)

    if mirror:
        background_tasks.add_task(mirror_contract_signatures, contract.id, ledger)
    return {"message": "Contract signed successfully", "contract": serialize_contract(contract)}


@router.get("/{contract_id}/ledger-status")
async def ledger_status(
    contract_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
    ledger: SignatureLedger = Depends(get_signature_ledger),
):
    try:
        return await contracts.get_signature_status(db, contract_id, user, ledger)
    except MarketplaceError as e:
        raise to_http(e)


@router.post("/{contract_id}/cancel")
async def cancel_contract(
    contract_id: str,
    data: ContractCancel,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        contract = await contracts.cancel(db, contract_id, user, data.reason)
        await persistence.commit(db, "contract", contract.id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"contract": serialize_contract(contract)}


@router.post("/{contract_id}/milestones", status_code=201)
async def add_milestone(
    contract_id: str,
    data: MilestoneCreate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        await contracts.add_milestone(db, contract_id, user, data)
        contract = await contracts.get(db, contract_id)
        await persistence.commit(db, "contract", contract_id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"contract": serialize_contract(contract)}


@router.post("/{contract_id}/milestones/{milestone_id}/complete")
async def complete_milestone(
    contract_id: str,
    milestone_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        await contracts.complete_milestone(db, contract_id, milestone_id, user)
        contract = await contracts.get(db, contract_id)
        await persistence.commit(db, "contract", contract_id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"contract": serialize_contract(contract)}


@router.post("/{contract_id}/disputes", status_code=201)
async def raise_dispute(
    contract_id: str,
    data: DisputeCreate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        dispute = await contracts.raise_dispute(db, contract_id, user, data)
        contract = await contracts.get(db, contract_id)
        await persistence.commit(db, "contract", contract_id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"disputeId": dispute.id, "contract": serialize_contract(contract)}


@router.post("/{contract_id}/disputes/{dispute_id}/resolve")
async def resolve_dispute(
    contract_id: str,
    dispute_id: str,
    data: DisputeResolve,
    user: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    try:
        await contracts.resolve_dispute(db, contract_id, dispute_id, user, data.resolution)
        contract = await contracts.get(db, contract_id)
        await persistence.commit(db, "contract", contract_id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"contract": serialize_contract(contract)}
