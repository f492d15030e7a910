"""Logistics routes: shipments and their tracking log."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wasteex.app.routes.auth import get_current_user_dep
from wasteex.app.routes.common import to_http
from wasteex.domain.errors import MarketplaceError
from wasteex.domain.models import User
from wasteex.domain.schemas import ShipmentCreate, ShipmentStatusUpdate, TrackingEventCreate
from wasteex.infra.database import get_db
from wasteex.services import persistence
from wasteex.services.serializers import pagination, serialize_shipment
from wasteex.services.shipment_service import ShipmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/logistics", tags=["logistics"])

shipments = ShipmentService()


@router.get("/shipments")
async def list_shipments(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
    status: Optional[str] = Query(None),
    contract_id: Optional[str] = Query(None, alias="contractId"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    items, total = await shipments.list_for_user(
        db, user, status=status, contract_id=contract_id, page=page, limit=limit
    )
    return {
        "shipments": [serialize_shipment(s) for s in items],
        "pagination": pagination(page, limit, total),
    }


@router.get("/shipments/{shipment_id}")
async def get_shipment(
    shipment_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        shipment = await shipments.get_for_user(db, shipment_id, user)
    except MarketplaceError as e:
        raise to_http(e)
    return {"shipment": serialize_shipment(shipment)}


@router.post("/shipments", status_code=201)
async def create_shipment(
    data: ShipmentCreate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        shipment = await shipments.create_shipment(db, user, data)
        await persistence.commit(db, "shipment", shipment.id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"message": "Shipment created successfully", "shipment": serialize_shipment(shipment)}


@router.put("/shipments/{shipment_id}/status")
async def update_shipment_status(
    shipment_id: str,
    data: ShipmentStatusUpdate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        shipment = await shipments.update_status(
            db,
            shipment_id,
            user,
            data.status,
            description=data.description,
            location=data.location,
            source=data.source,
        )
        await persistence.commit(db, "shipment", shipment_id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"shipment": serialize_shipment(shipment)}


@router.post("/shipments/{shipment_id}/tracking", status_code=201)
async def add_tracking_event(
    shipment_id: str,
    data: TrackingEventCreate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        shipment = await shipments.add_tracking_event(
            db,
            shipment_id,
            user,
            data.status,
            data.description,
            location=data.location,
            source=data.source,
        )
        await persistence.commit(db, "shipment", shipment_id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"shipment": serialize_shipment(shipment)}
