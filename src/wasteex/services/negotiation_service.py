"""Negotiation engine: messages, offers, counteroffers and agreed terms.

A negotiation has exactly one buyer and one seller. Offers are proposed by
either side; only the other side may accept, reject or counter. Accepting
freezes the offer into ``agreed_terms``, the snapshot a contract is built from.

Methods flush but do not commit; the caller owns the transaction.
"""

import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from wasteex.domain.enums import (
    Actor,
    ListingStatus,
    MessageType,
    NegotiationStatus,
    NegotiationType,
    OfferDecision,
    OfferStatus,
    RequestStatus,
    UserRole,
)
from wasteex.domain.errors import (
    AuthorizationError,
    ConflictError,
    NegotiationClosed,
    NotParticipant,
    ValidationError,
)
from wasteex.domain.models import (
    Listing,
    MaterialRequest,
    Negotiation,
    NegotiationMessage,
    User,
    utcnow,
)
from wasteex.domain.schemas import NegotiationCreate, OfferTerms
from wasteex.services import persistence
from wasteex.services.state_machines import negotiation_machine, offer_machine

logger = logging.getLogger(__name__)

AGREED_TERM_FIELDS = ("price", "quantity", "deliveryDate", "paymentTerms", "qualitySpecs", "logistics")


def _json_number(value: Decimal) -> float | int:
    return int(value) if value == value.to_integral_value() else float(value)


def offer_document(offer: OfferTerms, offered_by: str) -> dict:
    """Build the JSON document stored as ``current_offer``."""
    return {
        "price": _json_number(offer.price),
        "quantity": _json_number(offer.quantity),
        "deliveryDate": offer.delivery_date.isoformat() if offer.delivery_date else None,
        "terms": offer.terms,
        "paymentTerms": offer.payment_terms.value if offer.payment_terms else None,
        "qualitySpecs": offer.quality_specs,
        "logistics": offer.logistics,
        "offeredBy": offered_by,
        "offeredAt": utcnow().isoformat(),
        "status": OfferStatus.PENDING.value,
    }


def deal_value(terms: dict) -> Decimal:
    return (Decimal(str(terms["price"])) * Decimal(str(terms["quantity"]))).quantize(Decimal("0.01"))


def unread_count(negotiation: Negotiation, user_id: str) -> int:
    """Messages from the other side that carry no read receipt from user_id."""
    return sum(
        1
        for message in negotiation.messages
        if message.sender_id != user_id
        and not any(receipt.get("user") == user_id for receipt in (message.read_by or []))
    )


def actor_for(negotiation: Negotiation, user: User) -> Actor:
    role = negotiation.participant_role(user.id)
    if role is not None:
        return Actor(role)
    if user.role == UserRole.ADMIN.value:
        return Actor.ADMIN
    raise NotParticipant(user.id, negotiation.id)


class NegotiationService:
    """Owns every state change of a negotiation thread."""

    # ------------------------------------------------------------------
    # Loading / access
    # ------------------------------------------------------------------

    async def get(self, db: AsyncSession, negotiation_id: str, lock: bool = False) -> Negotiation:
        return await persistence.load(db, Negotiation, negotiation_id, "negotiation", lock=lock)

    async def get_for_user(
        self, db: AsyncSession, negotiation_id: str, user: User, lock: bool = False
    ) -> Negotiation:
        negotiation = await self.get(db, negotiation_id, lock=lock)
        actor_for(negotiation, user)
        return negotiation

    async def _get_open_as_participant(
        self, db: AsyncSession, negotiation_id: str, user: User
    ) -> Negotiation:
        negotiation = await self.get(db, negotiation_id, lock=True)
        if negotiation.participant_role(user.id) is None:
            raise NotParticipant(user.id, negotiation.id)
        if negotiation_machine.is_terminal(negotiation.status):
            raise NegotiationClosed(negotiation.id, negotiation.status)
        return negotiation

    async def list_for_user(
        self,
        db: AsyncSession,
        user: User,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Negotiation], int]:
        """Negotiations the user takes part in, most recent activity first."""
        query = select(Negotiation)
        if user.role != UserRole.ADMIN.value:
            query = query.where(
                or_(Negotiation.buyer_id == user.id, Negotiation.seller_id == user.id)
            )
        if status:
            query = query.where(Negotiation.status == status)

        total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
        result = await db.execute(
            query.order_by(Negotiation.last_activity.desc())
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_negotiation(
        self, db: AsyncSession, user: User, data: NegotiationCreate
    ) -> Negotiation:
        """Open a thread against a listing (creator is buyer) or a request (creator is seller)."""
        listing = request = None
        if data.type == NegotiationType.LISTING:
            listing = await persistence.load(db, Listing, data.related_id, "listing")
            if listing.status != ListingStatus.ACTIVE.value:
                raise ConflictError(f"listing {listing.id} is not active (status={listing.status})")
            if user.role != UserRole.BUYER.value:
                raise AuthorizationError("only buyers can negotiate on a listing")
            buyer, seller_id = user, listing.seller_id
            counterparty_id = seller_id
        else:
            request = await persistence.load(db, MaterialRequest, data.related_id, "material request")
            if request.status != RequestStatus.ACTIVE.value:
                raise ConflictError(f"material request {request.id} is not active (status={request.status})")
            if user.role != UserRole.SELLER.value:
                raise AuthorizationError("only sellers can negotiate on a material request")
            buyer, seller_id = None, user.id
            counterparty_id = request.buyer_id

        if counterparty_id == user.id:
            raise ValidationError("cannot open a negotiation with yourself")
        if data.participant_id and data.participant_id != counterparty_id:
            raise ValidationError(
                f"participant {data.participant_id} does not own the related {data.type.value}"
            )

        counterparty = await persistence.load(db, User, counterparty_id, "user")
        if buyer is None:
            buyer, seller = counterparty, user
        else:
            seller = counterparty

        now = utcnow()
        negotiation = Negotiation(
            title=data.title,
            buyer_id=buyer.id,
            seller_id=seller.id,
            buyer=buyer,
            seller=seller,
            buyer_joined_at=now,
            seller_joined_at=now,
            related_listing_id=listing.id if listing else None,
            related_request_id=request.id if request else None,
            related_listing=listing,
            related_request=request,
            status=NegotiationStatus.ACTIVE.value,
            last_activity=now,
            messages=[],
        )
        db.add(negotiation)
        if data.initial_message and data.initial_message.strip():
            self._append(negotiation, user.id, data.initial_message, MessageType.TEXT)
        await db.flush()

        logger.info(
            "Negotiation %s opened by %s on %s %s",
            negotiation.id, user.id, data.type.value, data.related_id,
        )
        return negotiation

    # ------------------------------------------------------------------
    # Messages and offers
    # ------------------------------------------------------------------

    def _append(
        self,
        negotiation: Negotiation,
        sender_id: str,
        content: str,
        message_type: MessageType,
        attachments: Optional[list] = None,
        offer: Optional[dict] = None,
    ) -> NegotiationMessage:
        message = NegotiationMessage(
            sender_id=sender_id,
            content=content,
            message_type=message_type.value,
            attachments=attachments or [],
            offer=offer,
            read_by=[],
        )
        negotiation.messages.append(message)
        negotiation.last_activity = utcnow()
        return message

    async def post_message(
        self,
        db: AsyncSession,
        negotiation_id: str,
        sender: User,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        attachments: Optional[list] = None,
        offer: Optional[OfferTerms] = None,
    ) -> NegotiationMessage:
        """Append a message; a message carrying an offer is routed through propose_offer."""
        if not content or not content.strip():
            raise ValidationError("message content must not be empty")
        if offer is not None:
            negotiation = await self.propose_offer(db, negotiation_id, sender, offer, content)
            return negotiation.messages[-1]

        negotiation = await self._get_open_as_participant(db, negotiation_id, sender)
        message = self._append(negotiation, sender.id, content, message_type, attachments)
        await persistence.flush(db, "negotiation", negotiation.id)
        return message

    async def propose_offer(
        self,
        db: AsyncSession,
        negotiation_id: str,
        proposer: User,
        offer: OfferTerms,
        message: Optional[str] = None,
    ) -> Negotiation:
        negotiation = await self._get_open_as_participant(db, negotiation_id, proposer)
        current = negotiation.current_offer or {}
        if current.get("status") == OfferStatus.ACCEPTED.value or negotiation.agreed_terms:
            raise ConflictError(
                f"negotiation {negotiation.id} already has an accepted offer awaiting contract"
            )

        document = offer_document(offer, proposer.id)
        negotiation.current_offer = document
        self._append(
            negotiation,
            proposer.id,
            message or f"Offer: {document['price']} per unit for {document['quantity']} units",
            MessageType.OFFER,
            offer=document,
        )
        await persistence.flush(db, "negotiation", negotiation.id)

        logger.info(
            "Negotiation %s: offer proposed by %s (price=%s, quantity=%s)",
            negotiation.id, proposer.id, document["price"], document["quantity"],
        )
        return negotiation

    async def respond_to_offer(
        self,
        db: AsyncSession,
        negotiation_id: str,
        responder: User,
        decision: OfferDecision,
        counter_offer: Optional[OfferTerms] = None,
        message: Optional[str] = None,
    ) -> Negotiation:
        """Accept, reject or counter the pending offer."""
        negotiation = await self._get_open_as_participant(db, negotiation_id, responder)
        offer = negotiation.current_offer
        if not offer or offer.get("status") != OfferStatus.PENDING.value:
            raise ConflictError(f"negotiation {negotiation.id} has no pending offer")
        if offer.get("offeredBy") == responder.id:
            raise ValidationError("the proposer cannot respond to their own offer")
        if decision == OfferDecision.COUNTER and counter_offer is None:
            raise ValidationError("a counter decision requires a counter offer")

        actor = Actor(negotiation.participant_role(responder.id))
        target = {
            OfferDecision.ACCEPT: OfferStatus.ACCEPTED,
            OfferDecision.REJECT: OfferStatus.REJECTED,
            OfferDecision.COUNTER: OfferStatus.COUNTERED,
        }[decision]
        offer_machine.validate_transition(offer["status"], target, actor)

        resolved = {
            **offer,
            "status": target.value,
            "respondedBy": responder.id,
            "respondedAt": utcnow().isoformat(),
        }

        if decision == OfferDecision.ACCEPT:
            if negotiation.status != NegotiationStatus.PENDING.value:
                negotiation_machine.validate_transition(
                    negotiation.status, NegotiationStatus.PENDING, actor
                )
            negotiation.current_offer = resolved
            negotiation.agreed_terms = {field: offer.get(field) for field in AGREED_TERM_FIELDS}
            negotiation.deal_value = deal_value(offer)
            from_status = negotiation.status
            negotiation.status = NegotiationStatus.PENDING.value
            self._append(
                negotiation,
                responder.id,
                message or f"Offer accepted: {offer['price']} per unit for {offer['quantity']} units",
                MessageType.SYSTEM,
            )
            logger.info(
                "Negotiation %s: %s → %s (actor=%s, user=%s)",
                negotiation.id, from_status, negotiation.status, actor.value, responder.id,
            )
        elif decision == OfferDecision.REJECT:
            negotiation.current_offer = resolved
            self._append(negotiation, responder.id, message or "Offer rejected", MessageType.SYSTEM)
        else:
            self._append(
                negotiation,
                responder.id,
                "Offer countered",
                MessageType.SYSTEM,
                offer=resolved,
            )
            document = offer_document(counter_offer, responder.id)
            negotiation.current_offer = document
            self._append(
                negotiation,
                responder.id,
                message or f"Counter offer: {document['price']} per unit for {document['quantity']} units",
                MessageType.OFFER,
                offer=document,
            )

        await persistence.flush(db, "negotiation", negotiation.id)
        logger.info(
            "Negotiation %s: offer %s by %s", negotiation.id, target.value, responder.id
        )
        return negotiation

    # ------------------------------------------------------------------
    # Read receipts and status
    # ------------------------------------------------------------------

    def mark_read(self, negotiation: Negotiation, user_id: str) -> int:
        """Add read receipts from user_id to the counterpart's messages. Returns count marked."""
        now = utcnow().isoformat()
        marked = 0
        for message in negotiation.messages:
            receipts = message.read_by or []
            if message.sender_id == user_id or any(r.get("user") == user_id for r in receipts):
                continue
            message.read_by = [*receipts, {"user": user_id, "readAt": now}]
            marked += 1
        return marked

    async def update_status(
        self,
        db: AsyncSession,
        negotiation_id: str,
        user: User,
        target: NegotiationStatus,
    ) -> Negotiation:
        negotiation = await self.get(db, negotiation_id, lock=True)
        actor = actor_for(negotiation, user)
        from_status = negotiation.status
        negotiation_machine.validate_transition(from_status, target, actor)
        negotiation.status = target.value
        negotiation.last_activity = utcnow()
        await persistence.flush(db, "negotiation", negotiation.id)

        logger.info(
            "Negotiation %s: %s → %s (actor=%s, user=%s)",
            negotiation.id, from_status, target.value, actor.value, user.id,
        )
        return negotiation
