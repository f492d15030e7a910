"""Contract generator: contracts from agreed negotiation terms, dual signing,
milestones and disputes.

Every status change goes through ``contract_machine`` and leaves a
``ContractEvent`` audit row. Methods flush but do not commit; the caller owns
the transaction and schedules ledger mirroring after commit.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wasteex.app.config import get_settings
from wasteex.domain.enums import (
    Actor,
    ContractEventType,
    ContractPaymentStatus,
    ContractStatus,
    DisputeStatus,
    LedgerSyncStatus,
    MilestoneStatus,
    NegotiationStatus,
    PaymentTerms,
    UserRole,
)
from wasteex.domain.errors import (
    AlreadySigned,
    AuthorizationError,
    ConflictError,
    DuplicateContract,
    NegotiationNotAgreed,
    NotFoundError,
    NotParticipant,
    NotParty,
)
from wasteex.domain.models import (
    Contract,
    ContractDispute,
    ContractEvent,
    ContractMilestone,
    Negotiation,
    Payment,
    PaymentTimelineEntry,
    User,
    utcnow,
)
from wasteex.domain.schemas import ContractCreate, DisputeCreate, MilestoneCreate
from wasteex.services import persistence
from wasteex.services.numbering import next_number
from wasteex.services.state_machines import contract_machine, negotiation_machine
from wasteex.services.signature_ledger import SignatureLedger

logger = logging.getLogger(__name__)

UNSIGNABLE_STATUSES = {
    ContractStatus.CANCELLED.value,
    ContractStatus.DISPUTED.value,
    ContractStatus.COMPLETED.value,
}


def party_actor(contract: Contract, user: User, allow_admin: bool = True) -> Actor:
    role = contract.party_role(user.id)
    if role is not None:
        return Actor(role)
    if allow_admin and user.role == UserRole.ADMIN.value:
        return Actor.ADMIN
    raise NotParty(user.id, "contract", contract.id)


def refresh_dispute_resolved(payment: Payment, contract: Contract) -> bool:
    """Recompute ``payment.dispute_resolved`` from every dispute source.

    Resolved only when the contract has no unresolved dispute and no refund
    request is awaiting a decision. Returns the new value.
    """
    open_dispute = any(d.status != DisputeStatus.RESOLVED.value for d in contract.disputes)
    pending_refund = bool(payment.refund_requested) and payment.refund_approved is None
    resolved = not open_dispute and not pending_refund
    payment.dispute_resolved = resolved
    if payment.dispute_raised:
        payment.dispute_status = DisputeStatus.RESOLVED.value if resolved else DisputeStatus.OPEN.value
    return resolved


async def transition_contract(
    db: AsyncSession,
    contract: Contract,
    target: ContractStatus,
    actor: Actor,
    actor_id: Optional[str],
    event_type: ContractEventType = ContractEventType.STATUS_CHANGED,
    extra_data: Optional[dict] = None,
    ip_address: Optional[str] = None,
) -> Contract:
    """Validate and execute a contract state transition, recording an audit event."""
    from_status = contract.status
    contract_machine.validate_transition(from_status, target, actor)
    contract.status = target.value
    contract.updated_at = utcnow()

    contract.events.append(
        ContractEvent(
            event_type=event_type.value,
            actor=actor.value,
            actor_id=actor_id,
            from_status=from_status,
            to_status=target.value,
            ip_address=ip_address,
            data=extra_data,
            created_at=utcnow(),
        )
    )
    await persistence.flush(db, "contract", contract.id)

    logger.info(
        "Contract %s: %s → %s (actor=%s, user=%s)",
        contract.id, from_status, target.value, actor.value, actor_id,
    )
    return contract


def _record_event(
    contract: Contract,
    event_type: ContractEventType,
    actor: Actor,
    actor_id: Optional[str],
    data: Optional[dict] = None,
) -> None:
    contract.events.append(
        ContractEvent(
            event_type=event_type.value,
            actor=actor.value,
            actor_id=actor_id,
            data=data,
            created_at=utcnow(),
        )
    )


class ContractService:
    """Creates contracts from negotiations and drives their lifecycle."""

    # ------------------------------------------------------------------
    # Loading / access
    # ------------------------------------------------------------------

    async def get(self, db: AsyncSession, contract_id: str, lock: bool = False) -> Contract:
        return await persistence.load(db, Contract, contract_id, "contract", lock=lock)

    async def get_for_user(self, db: AsyncSession, contract_id: str, user: User) -> Contract:
        contract = await self.get(db, contract_id)
        party_actor(contract, user)
        return contract

    async def list_for_user(
        self,
        db: AsyncSession,
        user: User,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Contract], int]:
        query = select(Contract)
        if user.role != UserRole.ADMIN.value:
            query = query.where(or_(Contract.seller_id == user.id, Contract.buyer_id == user.id))
        if status:
            query = query.where(Contract.status == status)
        total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
        result = await db.execute(
            query.order_by(Contract.created_at.desc()).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_contract(
        self, db: AsyncSession, requester: User, data: ContractCreate
    ) -> Contract:
        """Generate a draft contract from a negotiation's agreed terms."""
        negotiation = await persistence.load(
            db, Negotiation, data.negotiation_id, "negotiation", lock=True
        )
        if negotiation.participant_role(requester.id) is None:
            raise NotParticipant(requester.id, negotiation.id)
        if not negotiation.agreed_terms:
            raise NegotiationNotAgreed(negotiation.id)

        existing = (
            await db.execute(select(Contract.id).where(Contract.negotiation_id == negotiation.id))
        ).scalar_one_or_none()
        if existing:
            raise DuplicateContract(negotiation.id, existing)

        agreed = negotiation.agreed_terms
        listing = negotiation.related_listing
        request = negotiation.related_request
        if listing is not None:
            material_type, unit = listing.waste_type, listing.quantity_unit
            currency = listing.currency
        elif request is not None:
            material_type, unit = request.material_type, request.quantity_unit
            currency = request.currency
        else:
            material_type, unit, currency = None, None, get_settings().default_currency

        price = Decimal(str(agreed["price"]))
        quantity = Decimal(str(agreed["quantity"]))
        total_value = (price * quantity).quantize(Decimal("0.01"))
        payment_terms = (
            data.payment_terms.value if data.payment_terms
            else agreed.get("paymentTerms") or PaymentTerms.ADVANCE.value
        )
        terms = {
            "materialType": material_type,
            "quantity": {"value": agreed["quantity"], "unit": unit},
            "price": {"value": agreed["price"], "currency": currency},
            "totalValue": float(total_value),
            "deliveryDate": agreed.get("deliveryDate"),
            "deliveryLocation": data.delivery_location,
            "paymentTerms": payment_terms,
            "qualitySpecs": data.quality_specs or agreed.get("qualitySpecs"),
            "packagingRequirements": data.packaging_requirements,
            "inspectionRights": data.inspection_rights,
            "penalties": data.penalties,
            "logistics": agreed.get("logistics"),
        }

        settings = get_settings()
        contract_number = await next_number(db, "contract")
        now = utcnow()
        contract = Contract(
            contract_number=contract_number,
            title=data.title or negotiation.title,
            seller_id=negotiation.seller_id,
            seller=negotiation.seller,
            seller_company_id=negotiation.seller.company_id if negotiation.seller else None,
            buyer_id=negotiation.buyer_id,
            buyer=negotiation.buyer,
            buyer_company_id=negotiation.buyer.company_id if negotiation.buyer else None,
            negotiation_id=negotiation.id,
            listing_id=negotiation.related_listing_id,
            request_id=negotiation.related_request_id,
            terms=terms,
            status=ContractStatus.DRAFT.value,
            payment_status=ContractPaymentStatus.NOT_INITIATED.value,
            platform_fee_percentage=Decimal(str(settings.platform_fee_rate)) * 100,
            ledger_sync_status=LedgerSyncStatus.NOT_REQUESTED.value,
            ledger_attempts=0,
            created_at=now,
            updated_at=now,
            milestones=[],
            disputes=[],
            events=[],
            ledger_receipts=[],
        )
        actor = Actor(negotiation.participant_role(requester.id))
        _record_event(
            contract,
            ContractEventType.CREATED,
            actor,
            requester.id,
            {"negotiationId": negotiation.id, "contractNumber": contract_number},
        )
        db.add(contract)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise DuplicateContract(negotiation.id, "concurrent") from None

        negotiation.contract_id = contract.id
        negotiation.last_activity = now
        if negotiation.status != NegotiationStatus.COMPLETED.value:
            from_status = negotiation.status
            negotiation_machine.validate_transition(from_status, NegotiationStatus.COMPLETED, Actor.SYSTEM)
            negotiation.status = NegotiationStatus.COMPLETED.value
            logger.info(
                "Negotiation %s: %s → %s (actor=system, user=%s)",
                negotiation.id, from_status, negotiation.status, requester.id,
            )
        await persistence.flush(db, "negotiation", negotiation.id)

        logger.info(
            "Contract %s (%s) created from negotiation %s (total=%s)",
            contract.id, contract_number, negotiation.id, total_value,
        )
        return contract

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    async def sign(
        self,
        db: AsyncSession,
        contract_id: str,
        user: User,
        signature: str,
        ip_address: Optional[str] = None,
    ) -> Contract:
        """Record one party's signature. The second distinct signature makes the contract signed."""
        contract = await self.get(db, contract_id, lock=True)
        role = contract.party_role(user.id)
        if role is None:
            raise NotParty(user.id, "contract", contract.id)
        if contract.status in UNSIGNABLE_STATUSES:
            raise ConflictError(f"contract {contract.id} cannot be signed (status={contract.status})")
        if getattr(contract, f"{role}_signed_at") is not None:
            raise AlreadySigned(contract.id, role)

        now = utcnow()
        setattr(contract, f"{role}_signed_at", now)
        setattr(contract, f"{role}_signature", signature)
        setattr(contract, f"{role}_ip", ip_address)

        target = ContractStatus.SIGNED if contract.is_fully_signed else ContractStatus.PENDING
        if contract.is_fully_signed:
            contract.ledger_sync_status = LedgerSyncStatus.PENDING.value
        await transition_contract(
            db,
            contract,
            target,
            Actor.SYSTEM,
            user.id,
            event_type=ContractEventType.SIGNED,
            extra_data={"party": role},
            ip_address=ip_address,
        )
        return contract

    async def get_signature_status(
        self, db: AsyncSession, contract_id: str, user: User, ledger: SignatureLedger
    ) -> dict:
        """Signature status from the ledger when configured, otherwise from the contract row."""
        contract = await self.get_for_user(db, contract_id, user)
        if not ledger.enabled:
            return {
                "sellerSigned": contract.seller_signed_at is not None,
                "buyerSigned": contract.buyer_signed_at is not None,
                "source": "local",
                "syncStatus": contract.ledger_sync_status,
            }
        status = await ledger.get_signature_status(contract.id)
        return {
            "sellerSigned": status.seller_signed,
            "buyerSigned": status.buyer_signed,
            "source": "ledger",
            "syncStatus": contract.ledger_sync_status,
        }

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def cancel(
        self, db: AsyncSession, contract_id: str, user: User, reason: Optional[str] = None
    ) -> Contract:
        contract = await self.get(db, contract_id, lock=True)
        actor = party_actor(contract, user)
        if contract.payment_status in (
            ContractPaymentStatus.PENDING.value,
            ContractPaymentStatus.HELD_IN_ESCROW.value,
        ):
            raise ConflictError(
                f"contract {contract.id} has an open payment (paymentStatus={contract.payment_status})"
            )
        return await transition_contract(
            db, contract, ContractStatus.CANCELLED, actor, user.id, extra_data={"reason": reason}
        )

    # ------------------------------------------------------------------
    # Milestones
    # ------------------------------------------------------------------

    async def add_milestone(
        self, db: AsyncSession, contract_id: str, user: User, data: MilestoneCreate
    ) -> ContractMilestone:
        contract = await self.get(db, contract_id, lock=True)
        actor = party_actor(contract, user, allow_admin=False)
        if contract_machine.is_terminal(contract.status):
            raise ConflictError(f"contract {contract.id} is closed (status={contract.status})")

        milestone = ContractMilestone(
            title=data.title,
            description=data.description,
            due_date=data.due_date.replace(tzinfo=None) if data.due_date else None,
            status=MilestoneStatus.PENDING.value,
            created_at=utcnow(),
        )
        contract.milestones.append(milestone)
        _record_event(contract, ContractEventType.MILESTONE_ADDED, actor, user.id, {"title": data.title})
        contract.updated_at = utcnow()
        await persistence.flush(db, "contract", contract.id)
        return milestone

    async def complete_milestone(
        self, db: AsyncSession, contract_id: str, milestone_id: str, user: User
    ) -> ContractMilestone:
        contract = await self.get(db, contract_id, lock=True)
        actor = party_actor(contract, user, allow_admin=False)
        milestone = next((m for m in contract.milestones if m.id == milestone_id), None)
        if milestone is None:
            raise NotFoundError("milestone", milestone_id)
        if milestone.status == MilestoneStatus.COMPLETED.value:
            raise ConflictError(f"milestone {milestone_id} is already completed")

        milestone.status = MilestoneStatus.COMPLETED.value
        milestone.completed_at = utcnow()
        milestone.completed_by = user.id
        _record_event(
            contract, ContractEventType.MILESTONE_COMPLETED, actor, user.id, {"milestoneId": milestone_id}
        )
        contract.updated_at = utcnow()
        await persistence.flush(db, "contract", contract.id)
        return milestone

    # ------------------------------------------------------------------
    # Disputes
    # ------------------------------------------------------------------

    async def raise_dispute(
        self, db: AsyncSession, contract_id: str, user: User, data: DisputeCreate
    ) -> ContractDispute:
        """Open a dispute: contract goes to disputed and escrow release is blocked."""
        contract = await self.get(db, contract_id, lock=True)
        actor = party_actor(contract, user, allow_admin=False)
        previous = contract.status

        dispute = ContractDispute(
            raised_by=user.id,
            reason=data.reason,
            description=data.description,
            status=DisputeStatus.OPEN.value,
            raised_at=utcnow(),
        )
        contract.disputes.append(dispute)
        if previous != ContractStatus.DISPUTED.value:
            contract.pre_dispute_status = previous
            await transition_contract(
                db,
                contract,
                ContractStatus.DISPUTED,
                actor,
                user.id,
                event_type=ContractEventType.DISPUTE_RAISED,
                extra_data={"reason": data.reason},
            )
        else:
            _record_event(contract, ContractEventType.DISPUTE_RAISED, actor, user.id, {"reason": data.reason})
            await persistence.flush(db, "contract", contract.id)

        await self._flag_payment_dispute(db, contract, user.id, opened=True, note=data.reason)
        return dispute

    async def resolve_dispute(
        self,
        db: AsyncSession,
        contract_id: str,
        dispute_id: str,
        admin: User,
        resolution: str,
    ) -> ContractDispute:
        """Admin resolution. The contract returns to its pre-dispute status once no dispute is open."""
        if admin.role != UserRole.ADMIN.value:
            raise AuthorizationError("only admins can resolve disputes")
        contract = await self.get(db, contract_id, lock=True)
        dispute = next((d for d in contract.disputes if d.id == dispute_id), None)
        if dispute is None:
            raise NotFoundError("dispute", dispute_id)
        if dispute.status == DisputeStatus.RESOLVED.value:
            raise ConflictError(f"dispute {dispute_id} is already resolved")

        dispute.status = DisputeStatus.RESOLVED.value
        dispute.resolution = resolution
        dispute.resolved_at = utcnow()
        dispute.resolved_by = admin.id

        still_open = any(d.status != DisputeStatus.RESOLVED.value for d in contract.disputes)
        if not still_open and contract.status == ContractStatus.DISPUTED.value:
            restore = ContractStatus(contract.pre_dispute_status or ContractStatus.DRAFT.value)
            contract.pre_dispute_status = None
            await transition_contract(
                db,
                contract,
                restore,
                Actor.ADMIN,
                admin.id,
                event_type=ContractEventType.DISPUTE_RESOLVED,
                extra_data={"disputeId": dispute_id, "resolution": resolution},
            )
        else:
            _record_event(
                contract, ContractEventType.DISPUTE_RESOLVED, Actor.ADMIN, admin.id, {"disputeId": dispute_id}
            )
            await persistence.flush(db, "contract", contract.id)

        await self._flag_payment_dispute(db, contract, admin.id, opened=False, note=resolution)
        return dispute

    async def _flag_payment_dispute(
        self, db: AsyncSession, contract: Contract, actor_id: str, opened: bool, note: str
    ) -> None:
        """Mirror dispute state onto the contract's payment release conditions."""
        if not contract.payment_id:
            return
        payment = await persistence.load(db, Payment, contract.payment_id, "payment", lock=True)
        now = utcnow()
        if opened:
            payment.dispute_raised = True
            payment.dispute_raised_by = actor_id
            payment.dispute_reason = note
            description = f"Dispute raised: {note}"
        else:
            description = f"Dispute resolved: {note}"
        if refresh_dispute_resolved(payment, contract) and not opened:
            payment.dispute_resolution = note
            payment.dispute_resolved_at = now
        payment.timeline.append(
            PaymentTimelineEntry(
                status=payment.status,
                description=description,
                actor_id=actor_id,
                created_at=now,
            )
        )
        await persistence.flush(db, "payment", payment.id)
