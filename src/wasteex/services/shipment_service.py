"""Shipment tracker: shipments for signed contracts and their tracking log.

Status moves follow ``shipment_machine``: forward along
created → pickup-scheduled → picked-up → in-transit → out-for-delivery → delivered,
plus cancellation, loss, damage and returns. Moving backwards or out of a
terminal state is only accepted from a ``manual`` source (an operator
correction). Every accepted event is appended to the tracking log.
"""

import logging
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from wasteex.domain.enums import (
    Actor,
    ContractStatus,
    ShipmentStatus,
    TrackingSource,
    UserRole,
)
from wasteex.domain.errors import ContractNotSigned, NotParty
from wasteex.domain.models import Contract, Shipment, ShipmentTrackingEvent, User, utcnow
from wasteex.domain.schemas import ShipmentCreate
from wasteex.services import persistence
from wasteex.services.numbering import next_number
from wasteex.services.state_machines import shipment_is_regression, shipment_machine

logger = logging.getLogger(__name__)

SHIPPABLE_CONTRACT_STATUSES = {ContractStatus.SIGNED.value, ContractStatus.EXECUTED.value}


def _actor(seller_id: str, buyer_id: str, user: User, entity: str, entity_id: str) -> Actor:
    if user.id == seller_id:
        return Actor.SELLER
    if user.id == buyer_id:
        return Actor.BUYER
    if user.role == UserRole.ADMIN.value:
        return Actor.ADMIN
    raise NotParty(user.id, entity, entity_id)


def _jsonable(model) -> Optional[dict]:
    return model.model_dump(mode="json", by_alias=True, exclude_none=True) if model else None


class ShipmentService:
    """Creates shipments and records tracking events."""

    async def get(self, db: AsyncSession, shipment_id: str, lock: bool = False) -> Shipment:
        return await persistence.load(db, Shipment, shipment_id, "shipment", lock=lock)

    async def get_for_user(self, db: AsyncSession, shipment_id: str, user: User) -> Shipment:
        shipment = await self.get(db, shipment_id)
        _actor(shipment.seller_id, shipment.buyer_id, user, "shipment", shipment.id)
        return shipment

    async def list_for_user(
        self,
        db: AsyncSession,
        user: User,
        status: Optional[str] = None,
        contract_id: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Shipment], int]:
        query = select(Shipment)
        if user.role != UserRole.ADMIN.value:
            query = query.where(or_(Shipment.seller_id == user.id, Shipment.buyer_id == user.id))
        if status:
            query = query.where(Shipment.status == status)
        if contract_id:
            query = query.where(Shipment.contract_id == contract_id)
        total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
        result = await db.execute(
            query.order_by(Shipment.created_at.desc()).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total

    async def create_shipment(self, db: AsyncSession, user: User, data: ShipmentCreate) -> Shipment:
        contract = await persistence.load(db, Contract, data.contract_id, "contract")
        _actor(contract.seller_id, contract.buyer_id, user, "contract", contract.id)
        if contract.status not in SHIPPABLE_CONTRACT_STATUSES:
            raise ContractNotSigned(contract.id, contract.status)

        shipment_number = await next_number(db, "shipment")
        now = utcnow()
        shipment = Shipment(
            shipment_number=shipment_number,
            contract_id=contract.id,
            seller_id=contract.seller_id,
            buyer_id=contract.buyer_id,
            provider=data.logistics.provider.value,
            tracking_number=data.logistics.tracking_number,
            partner_order_id=data.logistics.partner_order_id,
            logistics_contact=data.logistics.contact_person,
            pickup=_jsonable(data.pickup),
            delivery=_jsonable(data.delivery),
            cargo=_jsonable(data.cargo),
            status=ShipmentStatus.CREATED.value,
            cost=data.cost,
            insurance=data.insurance,
            created_at=now,
            updated_at=now,
            tracking=[
                ShipmentTrackingEvent(
                    status=ShipmentStatus.CREATED.value,
                    description="Shipment created",
                    source=TrackingSource.SYSTEM.value,
                    recorded_by=user.id,
                    timestamp=now,
                )
            ],
        )
        db.add(shipment)
        await db.flush()
        logger.info(
            "Shipment %s created for contract %s by %s",
            shipment_number, contract.contract_number, user.id,
        )
        return shipment

    async def add_tracking_event(
        self,
        db: AsyncSession,
        shipment_id: str,
        user: User,
        status: ShipmentStatus,
        description: str,
        location: Optional[dict] = None,
        source: TrackingSource = TrackingSource.PARTNER,
    ) -> Shipment:
        """Append a tracking event, moving the shipment status when it changes."""
        shipment = await self.get(db, shipment_id, lock=True)
        actor = _actor(shipment.seller_id, shipment.buyer_id, user, "shipment", shipment.id)
        from_status = shipment.status

        if status.value != from_status:
            correction = source == TrackingSource.MANUAL and (
                shipment_machine.is_terminal(from_status)
                or shipment_is_regression(from_status, status)
            )
            if not correction:
                shipment_machine.validate_transition(from_status, status, actor)
            shipment.status = status.value

            now = utcnow()
            if status == ShipmentStatus.PICKED_UP and shipment.pickup_actual_date is None:
                shipment.pickup_actual_date = now
            if status == ShipmentStatus.DELIVERED and shipment.delivery_actual_date is None:
                shipment.delivery_actual_date = now

            logger.info(
                "Shipment %s: %s → %s (actor=%s, user=%s, source=%s%s)",
                shipment.shipment_number, from_status, status.value, actor.value, user.id,
                source.value, ", correction" if correction else "",
            )

        shipment.tracking.append(
            ShipmentTrackingEvent(
                status=status.value,
                location=location,
                description=description,
                source=source.value,
                recorded_by=user.id,
                timestamp=utcnow(),
            )
        )
        shipment.updated_at = utcnow()
        await persistence.flush(db, "shipment", shipment.id)
        return shipment

    async def update_status(
        self,
        db: AsyncSession,
        shipment_id: str,
        user: User,
        status: ShipmentStatus,
        description: Optional[str] = None,
        location: Optional[dict] = None,
        source: TrackingSource = TrackingSource.SYSTEM,
    ) -> Shipment:
        return await self.add_tracking_event(
            db,
            shipment_id,
            user,
            status,
            description or f"Status updated to {status.value}",
            location=location,
            source=source,
        )
