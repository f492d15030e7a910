"""Tests for the negotiation engine: threads, offers, counteroffers and read receipts."""

import asyncio
from decimal import Decimal

import pytest

from wasteex.domain.enums import (
    ListingStatus,
    MessageType,
    NegotiationStatus,
    NegotiationType,
    OfferDecision,
    OfferStatus,
)
from wasteex.domain.errors import (
    AuthorizationError,
    ConcurrentModificationError,
    ConflictError,
    InvalidTransitionError,
    NegotiationClosed,
    NotParticipant,
    ValidationError,
)
from wasteex.domain.schemas import NegotiationCreate, OfferTerms
from wasteex.services import persistence
from wasteex.services.catalog_service import CatalogService
from wasteex.services.negotiation_service import NegotiationService, unread_count


@pytest.fixture
def service():
    return NegotiationService()


def _offer(price: str, quantity: str) -> OfferTerms:
    return OfferTerms(price=Decimal(price), quantity=Decimal(quantity))


class TestCreateNegotiation:
    """Opening threads against listings and requests."""

    async def test_buyer_opens_on_listing(self, db_session, service, make_negotiation):
        negotiation, buyer, seller = await make_negotiation(initial_message="Interested in 10 tonnes")
        assert negotiation.buyer_id == buyer.id
        assert negotiation.seller_id == seller.id
        assert negotiation.status == NegotiationStatus.ACTIVE.value
        assert len(negotiation.messages) == 1
        assert negotiation.messages[0].sender_id == buyer.id

    async def test_seller_opens_on_request(self, db_session, service, make_user, make_request):
        buyer = await make_user("buyer")
        seller = await make_user("seller")
        request = await make_request(buyer)

        negotiation = await service.create_negotiation(
            db_session,
            seller,
            NegotiationCreate(title="Copper scrap offer", type=NegotiationType.REQUEST, related_id=request.id),
        )
        assert negotiation.buyer_id == buyer.id
        assert negotiation.seller_id == seller.id
        assert negotiation.related_request_id == request.id

    async def test_seller_cannot_open_on_listing(self, db_session, service, make_user, make_listing):
        listing = await make_listing()
        other_seller = await make_user("seller")
        with pytest.raises(AuthorizationError):
            await service.create_negotiation(
                db_session,
                other_seller,
                NegotiationCreate(title="Resale inquiry", type=NegotiationType.LISTING, related_id=listing.id),
            )

    async def test_inactive_listing_rejected(self, db_session, service, make_user, make_listing):
        seller = await make_user("seller")
        buyer = await make_user("buyer")
        listing = await make_listing(seller)
        await CatalogService().withdraw_listing(db_session, listing.id, seller)

        with pytest.raises(ConflictError):
            await service.create_negotiation(
                db_session,
                buyer,
                NegotiationCreate(title="HDPE regrind supply", type=NegotiationType.LISTING, related_id=listing.id),
            )
        assert listing.status == ListingStatus.INACTIVE.value

    async def test_participant_must_own_listing(self, db_session, service, make_user, make_listing):
        buyer = await make_user("buyer")
        listing = await make_listing()
        with pytest.raises(ValidationError):
            await service.create_negotiation(
                db_session,
                buyer,
                NegotiationCreate(
                    title="HDPE regrind supply",
                    type=NegotiationType.LISTING,
                    related_id=listing.id,
                    participant_id=buyer.id,
                ),
            )


class TestOffers:
    """Offer, counter and accept rules."""

    async def test_counter_then_accept_scenario(self, db_session, service, make_negotiation):
        negotiation, buyer, seller = await make_negotiation()

        await service.propose_offer(db_session, negotiation.id, seller, _offer("100", "10"))
        await service.respond_to_offer(
            db_session, negotiation.id, buyer, OfferDecision.COUNTER, counter_offer=_offer("90", "10")
        )
        negotiation = await service.respond_to_offer(db_session, negotiation.id, seller, OfferDecision.ACCEPT)

        assert negotiation.status == NegotiationStatus.PENDING.value
        assert negotiation.agreed_terms["price"] == 90
        assert negotiation.agreed_terms["quantity"] == 10
        assert negotiation.deal_value == Decimal("900.00")
        assert negotiation.current_offer["status"] == OfferStatus.ACCEPTED.value

        countered = [
            m for m in negotiation.messages
            if m.offer and m.offer.get("status") == OfferStatus.COUNTERED.value
        ]
        assert len(countered) == 1
        assert countered[0].offer["price"] == 100

    async def test_proposer_cannot_accept_own_offer(self, db_session, service, make_negotiation):
        negotiation, buyer, seller = await make_negotiation()
        await service.propose_offer(db_session, negotiation.id, seller, _offer("100", "10"))

        with pytest.raises(ValidationError):
            await service.respond_to_offer(db_session, negotiation.id, seller, OfferDecision.ACCEPT)
        assert negotiation.agreed_terms is None

    async def test_counter_requires_terms(self, db_session, service, make_negotiation):
        negotiation, buyer, seller = await make_negotiation()
        await service.propose_offer(db_session, negotiation.id, seller, _offer("100", "10"))
        with pytest.raises(ValidationError):
            await service.respond_to_offer(db_session, negotiation.id, buyer, OfferDecision.COUNTER)

    async def test_respond_without_pending_offer(self, db_session, service, make_negotiation):
        negotiation, buyer, _ = await make_negotiation()
        with pytest.raises(ConflictError):
            await service.respond_to_offer(db_session, negotiation.id, buyer, OfferDecision.ACCEPT)

    async def test_reject_keeps_negotiation_active(self, db_session, service, make_negotiation):
        negotiation, buyer, seller = await make_negotiation()
        await service.propose_offer(db_session, negotiation.id, seller, _offer("100", "10"))
        negotiation = await service.respond_to_offer(db_session, negotiation.id, buyer, OfferDecision.REJECT)
        assert negotiation.status == NegotiationStatus.ACTIVE.value
        assert negotiation.current_offer["status"] == OfferStatus.REJECTED.value
        assert negotiation.agreed_terms is None

    async def test_no_new_offer_after_acceptance(self, db_session, service, agreed_negotiation):
        negotiation, buyer, _ = await agreed_negotiation()
        with pytest.raises(ConflictError):
            await service.propose_offer(db_session, negotiation.id, buyer, _offer("80", "10"))

    async def test_outsider_cannot_offer(self, db_session, service, make_negotiation, make_user):
        negotiation, _, _ = await make_negotiation()
        outsider = await make_user("buyer")
        with pytest.raises(NotParticipant):
            await service.propose_offer(db_session, negotiation.id, outsider, _offer("100", "1"))


class TestMessages:
    """Posting, read receipts and closed threads."""

    async def test_blank_message_rejected(self, db_session, service, make_negotiation):
        negotiation, buyer, _ = await make_negotiation()
        with pytest.raises(ValidationError):
            await service.post_message(db_session, negotiation.id, buyer, "   ")

    async def test_message_with_offer_routes_through_propose(self, db_session, service, make_negotiation):
        negotiation, buyer, _ = await make_negotiation()
        message = await service.post_message(
            db_session, negotiation.id, buyer, "How about this?", offer=_offer("95", "5")
        )
        assert message.message_type == MessageType.OFFER.value
        assert negotiation.current_offer["offeredBy"] == buyer.id

    async def test_unread_count_and_mark_read(self, db_session, service, make_negotiation):
        negotiation, buyer, seller = await make_negotiation()
        await service.post_message(db_session, negotiation.id, seller, "Material is ready")
        await service.post_message(db_session, negotiation.id, seller, "Photos attached")
        await service.post_message(db_session, negotiation.id, buyer, "Thanks")

        assert unread_count(negotiation, buyer.id) == 2
        assert unread_count(negotiation, seller.id) == 1
        assert service.mark_read(negotiation, buyer.id) == 2
        assert unread_count(negotiation, buyer.id) == 0
        assert service.mark_read(negotiation, buyer.id) == 0

    async def test_cancelled_negotiation_is_closed(self, db_session, service, make_negotiation):
        negotiation, buyer, _ = await make_negotiation()
        await service.update_status(db_session, negotiation.id, buyer, NegotiationStatus.CANCELLED)
        with pytest.raises(NegotiationClosed):
            await service.post_message(db_session, negotiation.id, buyer, "Still there?")

    async def test_party_cannot_expire(self, db_session, service, make_negotiation):
        negotiation, buyer, _ = await make_negotiation()
        with pytest.raises(InvalidTransitionError):
            await service.update_status(db_session, negotiation.id, buyer, NegotiationStatus.EXPIRED)


class TestConcurrentResponses:
    async def test_one_response_per_offer(self, db_session, session_factory, service, make_negotiation):
        negotiation, buyer, seller = await make_negotiation()
        await service.propose_offer(db_session, negotiation.id, seller, _offer("100", "10"))
        await db_session.commit()

        async def _respond(decision):
            async with session_factory() as db:
                try:
                    await NegotiationService().respond_to_offer(db, negotiation.id, buyer, decision)
                    await persistence.commit(db, "negotiation", negotiation.id)
                except ConcurrentModificationError:
                    return "conflict"
                return decision.value

        outcomes = await asyncio.gather(_respond(OfferDecision.ACCEPT), _respond(OfferDecision.REJECT))

        assert outcomes.count("conflict") == 1
        winner = next(o for o in outcomes if o != "conflict")
        negotiation = await service.get(db_session, negotiation.id)
        expected = OfferStatus.ACCEPTED.value if winner == "accept" else OfferStatus.REJECTED.value
        assert negotiation.current_offer["status"] == expected
