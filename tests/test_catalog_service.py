"""Tests for listings, material requests and catalog expiry."""

from datetime import timedelta
from decimal import Decimal

import pytest

from wasteex.domain.enums import ListingStatus, RequestStatus, Urgency, WasteCategory
from wasteex.domain.errors import AuthorizationError, ConflictError, InvalidTransitionError
from wasteex.domain.models import utcnow
from wasteex.domain.schemas import (
    InquiryCreate,
    ListingUpdate,
    MaterialRequestUpdate,
    RequestRespond,
)
from wasteex.services.catalog_service import CatalogService

from conftest import listing_payload, request_payload


@pytest.fixture
def service():
    return CatalogService()


class TestListings:
    """Publishing, searching and updating waste listings."""

    async def test_create_listing(self, db_session, service, make_user):
        seller = await make_user("seller")
        listing = await service.create_listing(db_session, seller, listing_payload())

        assert listing.status == ListingStatus.ACTIVE.value
        assert listing.city == "Pune"
        assert listing.price_value == Decimal("100")
        assert listing.expiry_date > utcnow() + timedelta(days=29)

    async def test_buyer_cannot_list(self, db_session, service, make_user):
        buyer = await make_user("buyer")
        with pytest.raises(AuthorizationError):
            await service.create_listing(db_session, buyer, listing_payload())

    async def test_unverified_company_cannot_publish(self, db_session, service, make_user):
        seller = await make_user("seller", verified=False)
        with pytest.raises(AuthorizationError, match="verification"):
            await service.create_listing(db_session, seller, listing_payload())

    async def test_search_filters(self, db_session, service, make_listing):
        await make_listing()
        await make_listing(title="Aluminium turnings lot", waste_type="Aluminium", category=WasteCategory.METAL)
        await make_listing(title="Urgent PET flakes", waste_type="PET", urgency=Urgency.HIGH)

        _, total = await service.search_listings(db_session)
        assert total == 3

        metal, total = await service.search_listings(db_session, category=WasteCategory.METAL.value)
        assert total == 1
        assert metal[0].waste_type == "Aluminium"

        found, total = await service.search_listings(db_session, search="pet")
        assert total == 1
        assert found[0].urgency == Urgency.HIGH.value

        _, total = await service.search_listings(db_session, city="pune")
        assert total == 3

    async def test_search_hides_expired(self, db_session, service, make_listing):
        await make_listing(expiry_date=utcnow() - timedelta(days=1))
        _, total = await service.search_listings(db_session)
        assert total == 0

    async def test_update_merges_nested_values(self, db_session, service, make_user, make_listing):
        seller = await make_user("seller")
        listing = await make_listing(seller)

        listing = await service.update_listing(
            db_session,
            listing.id,
            seller,
            ListingUpdate(price={"value": "120"}, location={"city": "Nashik"}, urgency=Urgency.HIGH),
        )
        assert listing.price_value == Decimal("120")
        assert listing.currency == "INR"
        assert listing.city == "Nashik"
        assert listing.location["pincode"] == "411019"
        assert listing.urgency == Urgency.HIGH.value

    async def test_only_owner_updates(self, db_session, service, make_user, make_listing):
        listing = await make_listing()
        other = await make_user("seller")
        with pytest.raises(AuthorizationError):
            await service.update_listing(db_session, listing.id, other, ListingUpdate(title="Hijacked listing"))

    async def test_view_counter(self, db_session, service, make_listing):
        listing = await make_listing()
        await service.get_listing(db_session, listing.id, count_view=True)
        listing = await service.get_listing(db_session, listing.id, count_view=True)
        assert listing.views == 2

    async def test_withdraw_is_soft(self, db_session, service, make_user, make_listing):
        seller = await make_user("seller")
        listing = await make_listing(seller)
        await service.withdraw_listing(db_session, listing.id, seller)

        listing = await service.get_listing(db_session, listing.id)
        assert listing.status == ListingStatus.INACTIVE.value
        _, total = await service.search_listings(db_session)
        assert total == 0


class TestInquiries:
    async def test_buyer_inquires(self, db_session, service, make_user, make_listing):
        buyer = await make_user("buyer")
        listing = await make_listing()
        inquiry = await service.inquire(
            db_session, listing.id, buyer, InquiryCreate(message="Is this available monthly?")
        )
        assert inquiry.buyer_id == buyer.id
        assert len(listing.inquiries) == 1

    async def test_inactive_listing_rejects_inquiry(self, db_session, service, make_user, make_listing):
        seller = await make_user("seller")
        buyer = await make_user("buyer")
        listing = await make_listing(seller)
        await service.withdraw_listing(db_session, listing.id, seller)
        with pytest.raises(ConflictError):
            await service.inquire(db_session, listing.id, buyer, InquiryCreate(message="Is this still available?"))


class TestMaterialRequests:
    """Requests and seller responses."""

    async def test_seller_cannot_create_request(self, db_session, service, make_user):
        seller = await make_user("seller")
        with pytest.raises(AuthorizationError):
            await service.create_request(db_session, seller, request_payload())

    async def test_update_merges_budget(self, db_session, service, make_user, make_request):
        buyer = await make_user("buyer")
        request = await make_request(buyer)
        request = await service.update_request(
            db_session, request.id, buyer, MaterialRequestUpdate(budget={"max": "650000"})
        )
        assert request.budget_min == Decimal("400000")
        assert request.budget_max == Decimal("650000")

    async def test_respond_once_per_seller(self, db_session, service, make_user, make_request):
        seller = await make_user("seller")
        request = await make_request()
        response = await service.respond(
            db_session, request.id, seller, RequestRespond(message="We can supply 2 tonnes monthly", proposed_price="500000")
        )
        assert response.proposed_price == Decimal("500000")

        with pytest.raises(ConflictError, match="already responded"):
            await service.respond(
                db_session, request.id, seller, RequestRespond(message="Second attempt at a response")
            )

    async def test_response_listing_must_belong_to_seller(
        self, db_session, service, make_user, make_request, make_listing
    ):
        seller = await make_user("seller")
        someone_elses = await make_listing()
        request = await make_request()
        with pytest.raises(AuthorizationError):
            await service.respond(
                db_session,
                request.id,
                seller,
                RequestRespond(message="See attached listing for details", listing_id=someone_elses.id),
            )

    async def test_cancel_is_final(self, db_session, service, make_user, make_request):
        buyer = await make_user("buyer")
        request = await make_request(buyer)
        await service.cancel_request(db_session, request.id, buyer)
        assert request.status == RequestStatus.CANCELLED.value
        with pytest.raises(InvalidTransitionError):
            await service.change_request_status(db_session, request.id, buyer, RequestStatus.ACTIVE)


class TestExpiry:
    async def test_expire_stale_entries(self, db_session, service, make_listing, make_request):
        past = utcnow() - timedelta(hours=1)
        stale_listing = await make_listing(expiry_date=past)
        fresh_listing = await make_listing()
        stale_request = await make_request(expiry_date=past)

        counts = await service.expire_stale(db_session)

        assert counts == {"listings": 1, "requests": 1}
        assert stale_listing.status == ListingStatus.EXPIRED.value
        assert fresh_listing.status == ListingStatus.ACTIVE.value
        assert stale_request.status == RequestStatus.EXPIRED.value

    async def test_second_sweep_is_noop(self, db_session, service, make_listing):
        await make_listing(expiry_date=utcnow() - timedelta(hours=1))
        await service.expire_stale(db_session)
        assert await service.expire_stale(db_session) == {"listings": 0, "requests": 0}
