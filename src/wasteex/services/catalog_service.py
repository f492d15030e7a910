"""Catalog service: seller waste listings and buyer material requests.

Listings and requests expire ``catalog_ttl_days`` after creation unless an
explicit expiry date is supplied. Expiry is applied by the sweep job in
``background_jobs``; reads also hide entries whose expiry date has passed.
"""

import logging
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from wasteex.app.config import get_settings
from wasteex.domain.enums import Actor, ListingStatus, RequestStatus, UserRole
from wasteex.domain.errors import (
    AuthorizationError,
    ConflictError,
    ValidationError,
)
from wasteex.domain.models import (
    Listing,
    ListingInquiry,
    MaterialRequest,
    RequestResponse,
    User,
    utcnow,
)
from wasteex.domain.schemas import (
    Budget,
    InquiryCreate,
    ListingCreate,
    ListingLocation,
    ListingUpdate,
    MaterialRequestCreate,
    MaterialRequestUpdate,
    Price,
    Quantity,
    RequestRespond,
)
from wasteex.services import persistence
from wasteex.services.state_machines import listing_machine, request_machine

logger = logging.getLogger(__name__)


def _jsonable(model) -> dict:
    return model.model_dump(mode="json", by_alias=True)


def _owner_actor(owner_id: str, user: User, owner_role: Actor) -> Actor:
    if user.id == owner_id:
        return owner_role
    if user.role == UserRole.ADMIN.value:
        return Actor.ADMIN
    raise AuthorizationError(f"user {user.id} does not own this entry")


def _require_trading_company(user: User) -> None:
    settings = get_settings()
    if not settings.require_verified_company:
        return
    if user.company is None or not user.company.verified:
        raise AuthorizationError("company verification is required before publishing")


def _paginate(query, page: int, limit: int):
    return query.offset((page - 1) * limit).limit(limit)


async def _count(db: AsyncSession, query) -> int:
    return (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()


class CatalogService:
    """Create, search, update and expire listings and material requests."""

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def create_listing(self, db: AsyncSession, seller: User, data: ListingCreate) -> Listing:
        if seller.role != UserRole.SELLER.value:
            raise AuthorizationError("only sellers can create waste listings")
        _require_trading_company(seller)

        settings = get_settings()
        now = utcnow()
        location = _jsonable(data.location)
        listing = Listing(
            seller_id=seller.id,
            seller=seller,
            title=data.title,
            waste_type=data.waste_type,
            category=data.category.value,
            quantity_value=data.quantity.value,
            quantity_unit=data.quantity.unit.value,
            frequency=data.frequency.value,
            price_value=data.price.value,
            currency=data.price.currency,
            negotiable=data.price.negotiable,
            location=location,
            city=data.location.city,
            state=data.location.state,
            urgency=data.urgency.value,
            description=data.description,
            images=data.images,
            documents=data.documents,
            msds=data.msds,
            specifications=data.specifications,
            hazardous=data.hazardous,
            certifications=data.certifications,
            status=ListingStatus.ACTIVE.value,
            views=0,
            expiry_date=(
                data.expiry_date.replace(tzinfo=None) if data.expiry_date
                else now + timedelta(days=settings.catalog_ttl_days)
            ),
            tags=data.tags,
            created_at=now,
            updated_at=now,
            inquiries=[],
        )
        db.add(listing)
        await db.flush()
        logger.info("Listing %s created by seller %s", listing.id, seller.id)
        return listing

    async def search_listings(
        self,
        db: AsyncSession,
        category: Optional[str] = None,
        city: Optional[str] = None,
        state: Optional[str] = None,
        urgency: Optional[str] = None,
        status: str = ListingStatus.ACTIVE.value,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 12,
    ) -> tuple[list[Listing], int]:
        query = select(Listing).where(Listing.status == status)
        if status == ListingStatus.ACTIVE.value:
            query = query.where(Listing.expiry_date > utcnow())
        if category:
            query = query.where(Listing.category == category)
        if city:
            query = query.where(Listing.city.ilike(f"%{city}%"))
        if state:
            query = query.where(Listing.state.ilike(f"%{state}%"))
        if urgency:
            query = query.where(Listing.urgency == urgency)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    Listing.title.ilike(pattern),
                    Listing.description.ilike(pattern),
                    Listing.waste_type.ilike(pattern),
                )
            )

        total = await _count(db, query)
        result = await db.execute(
            _paginate(query.order_by(Listing.featured.desc(), Listing.created_at.desc()), page, limit)
        )
        return list(result.scalars().all()), total

    async def listings_for_seller(
        self, db: AsyncSession, seller: User, status: Optional[str] = None, page: int = 1, limit: int = 10
    ) -> tuple[list[Listing], int]:
        query = select(Listing).where(Listing.seller_id == seller.id)
        if status:
            query = query.where(Listing.status == status)
        total = await _count(db, query)
        result = await db.execute(_paginate(query.order_by(Listing.created_at.desc()), page, limit))
        return list(result.scalars().all()), total

    async def get_listing(self, db: AsyncSession, listing_id: str, count_view: bool = False) -> Listing:
        listing = await persistence.load(db, Listing, listing_id, "listing")
        if count_view:
            listing.views = (listing.views or 0) + 1
            await db.flush()
        return listing

    async def update_listing(
        self, db: AsyncSession, listing_id: str, user: User, data: ListingUpdate
    ) -> Listing:
        """Apply a partial update. quantity, price and location are merged into the stored values."""
        listing = await persistence.load(db, Listing, listing_id, "listing", lock=True)
        _owner_actor(listing.seller_id, user, Actor.SELLER)
        patch = data.model_dump(exclude_unset=True)

        if "quantity" in patch:
            quantity = Quantity.model_validate(
                {"value": listing.quantity_value, "unit": listing.quantity_unit, **patch.pop("quantity")}
            )
            listing.quantity_value = quantity.value
            listing.quantity_unit = quantity.unit.value
        if "price" in patch:
            price = Price.model_validate(
                {
                    "value": listing.price_value,
                    "currency": listing.currency,
                    "negotiable": listing.negotiable,
                    **patch.pop("price"),
                }
            )
            listing.price_value = price.value
            listing.currency = price.currency
            listing.negotiable = price.negotiable
        if "location" in patch:
            location = ListingLocation.model_validate({**(listing.location or {}), **patch.pop("location")})
            listing.location = _jsonable(location)
            listing.city = location.city
            listing.state = location.state

        for field, value in patch.items():
            setattr(listing, field, getattr(value, "value", value))
        listing.updated_at = utcnow()
        await db.flush()
        logger.info("Listing %s updated by %s", listing.id, user.id)
        return listing

    async def change_listing_status(
        self, db: AsyncSession, listing_id: str, user: User, target: ListingStatus
    ) -> Listing:
        listing = await persistence.load(db, Listing, listing_id, "listing", lock=True)
        actor = _owner_actor(listing.seller_id, user, Actor.SELLER)
        return await self._transition_listing(db, listing, target, actor, user.id)

    async def withdraw_listing(self, db: AsyncSession, listing_id: str, user: User) -> Listing:
        """Soft delete: the listing goes inactive and stays referenced by negotiations."""
        return await self.change_listing_status(db, listing_id, user, ListingStatus.INACTIVE)

    async def _transition_listing(
        self, db: AsyncSession, listing: Listing, target: ListingStatus, actor: Actor, actor_id: Optional[str]
    ) -> Listing:
        from_status = listing.status
        listing_machine.validate_transition(from_status, target, actor)
        listing.status = target.value
        listing.updated_at = utcnow()
        await db.flush()
        logger.info(
            "Listing %s: %s → %s (actor=%s, user=%s)",
            listing.id, from_status, target.value, actor.value, actor_id,
        )
        return listing

    async def inquire(
        self, db: AsyncSession, listing_id: str, buyer: User, data: InquiryCreate
    ) -> ListingInquiry:
        if buyer.role != UserRole.BUYER.value:
            raise AuthorizationError("only buyers can inquire about listings")
        listing = await persistence.load(db, Listing, listing_id, "listing")
        if listing.seller_id == buyer.id:
            raise ValidationError("cannot inquire about your own listing")
        if listing.status != ListingStatus.ACTIVE.value:
            raise ConflictError(f"listing {listing.id} is not active (status={listing.status})")

        inquiry = ListingInquiry(
            listing_id=listing.id,
            buyer_id=buyer.id,
            message=data.message,
            contact_info=data.contact_info,
            created_at=utcnow(),
        )
        listing.inquiries.append(inquiry)
        await db.flush()
        logger.info("Listing %s: inquiry %s from buyer %s", listing.id, inquiry.id, buyer.id)
        return inquiry

    # ------------------------------------------------------------------
    # Material requests
    # ------------------------------------------------------------------

    async def create_request(
        self, db: AsyncSession, buyer: User, data: MaterialRequestCreate
    ) -> MaterialRequest:
        if buyer.role != UserRole.BUYER.value:
            raise AuthorizationError("only buyers can create material requests")
        _require_trading_company(buyer)

        settings = get_settings()
        now = utcnow()
        request = MaterialRequest(
            buyer_id=buyer.id,
            buyer=buyer,
            title=data.title,
            material_type=data.material_type,
            category=data.category.value,
            quantity_value=data.quantity.value,
            quantity_unit=data.quantity.unit.value,
            frequency=data.frequency.value,
            budget_min=data.budget.min,
            budget_max=data.budget.max,
            currency=data.budget.currency,
            location=_jsonable(data.location),
            state=data.location.state,
            quality_grade=data.quality_grade.value if data.quality_grade else None,
            specifications=data.specifications,
            description=data.description,
            urgency=data.urgency.value,
            delivery_requirements=data.delivery_requirements,
            status=RequestStatus.ACTIVE.value,
            expiry_date=(
                data.expiry_date.replace(tzinfo=None) if data.expiry_date
                else now + timedelta(days=settings.catalog_ttl_days)
            ),
            tags=data.tags,
            created_at=now,
            updated_at=now,
            responses=[],
        )
        db.add(request)
        await db.flush()
        logger.info("Material request %s created by buyer %s", request.id, buyer.id)
        return request

    async def search_requests(
        self,
        db: AsyncSession,
        category: Optional[str] = None,
        state: Optional[str] = None,
        urgency: Optional[str] = None,
        quality_grade: Optional[str] = None,
        status: str = RequestStatus.ACTIVE.value,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 12,
    ) -> tuple[list[MaterialRequest], int]:
        query = select(MaterialRequest).where(MaterialRequest.status == status)
        if status == RequestStatus.ACTIVE.value:
            query = query.where(MaterialRequest.expiry_date > utcnow())
        if category:
            query = query.where(MaterialRequest.category == category)
        if state:
            query = query.where(MaterialRequest.state.ilike(f"%{state}%"))
        if urgency:
            query = query.where(MaterialRequest.urgency == urgency)
        if quality_grade:
            query = query.where(MaterialRequest.quality_grade == quality_grade)
        if search:
            pattern = f"%{search}%"
            query = query.where(
                or_(
                    MaterialRequest.title.ilike(pattern),
                    MaterialRequest.description.ilike(pattern),
                    MaterialRequest.material_type.ilike(pattern),
                )
            )

        total = await _count(db, query)
        result = await db.execute(_paginate(query.order_by(MaterialRequest.created_at.desc()), page, limit))
        return list(result.scalars().all()), total

    async def requests_for_buyer(
        self, db: AsyncSession, buyer: User, status: Optional[str] = None, page: int = 1, limit: int = 10
    ) -> tuple[list[MaterialRequest], int]:
        query = select(MaterialRequest).where(MaterialRequest.buyer_id == buyer.id)
        if status:
            query = query.where(MaterialRequest.status == status)
        total = await _count(db, query)
        result = await db.execute(_paginate(query.order_by(MaterialRequest.created_at.desc()), page, limit))
        return list(result.scalars().all()), total

    async def get_request(self, db: AsyncSession, request_id: str) -> MaterialRequest:
        return await persistence.load(db, MaterialRequest, request_id, "material request")

    async def update_request(
        self, db: AsyncSession, request_id: str, user: User, data: MaterialRequestUpdate
    ) -> MaterialRequest:
        request = await persistence.load(db, MaterialRequest, request_id, "material request", lock=True)
        _owner_actor(request.buyer_id, user, Actor.BUYER)
        patch = data.model_dump(exclude_unset=True)

        if "quantity" in patch:
            quantity = Quantity.model_validate(
                {"value": request.quantity_value, "unit": request.quantity_unit, **patch.pop("quantity")}
            )
            request.quantity_value = quantity.value
            request.quantity_unit = quantity.unit.value
        if "budget" in patch:
            budget = Budget.model_validate(
                {
                    "min": request.budget_min,
                    "max": request.budget_max,
                    "currency": request.currency,
                    **patch.pop("budget"),
                }
            )
            request.budget_min = budget.min
            request.budget_max = budget.max
            request.currency = budget.currency
        if "location" in patch:
            request.location = {**(request.location or {}), **patch.pop("location")}
            request.state = request.location.get("state")

        for field, value in patch.items():
            setattr(request, field, getattr(value, "value", value))
        request.updated_at = utcnow()
        await db.flush()
        logger.info("Material request %s updated by %s", request.id, user.id)
        return request

    async def change_request_status(
        self, db: AsyncSession, request_id: str, user: User, target: RequestStatus
    ) -> MaterialRequest:
        request = await persistence.load(db, MaterialRequest, request_id, "material request", lock=True)
        actor = _owner_actor(request.buyer_id, user, Actor.BUYER)
        return await self._transition_request(db, request, target, actor, user.id)

    async def cancel_request(self, db: AsyncSession, request_id: str, user: User) -> MaterialRequest:
        """Soft delete: the request is cancelled and stays referenced by negotiations."""
        return await self.change_request_status(db, request_id, user, RequestStatus.CANCELLED)

    async def _transition_request(
        self,
        db: AsyncSession,
        request: MaterialRequest,
        target: RequestStatus,
        actor: Actor,
        actor_id: Optional[str],
    ) -> MaterialRequest:
        from_status = request.status
        request_machine.validate_transition(from_status, target, actor)
        request.status = target.value
        request.updated_at = utcnow()
        await db.flush()
        logger.info(
            "Material request %s: %s → %s (actor=%s, user=%s)",
            request.id, from_status, target.value, actor.value, actor_id,
        )
        return request

    async def respond(
        self, db: AsyncSession, request_id: str, seller: User, data: RequestRespond
    ) -> RequestResponse:
        """Record a seller's response. One response per seller; an attached listing must be theirs and active."""
        if seller.role != UserRole.SELLER.value:
            raise AuthorizationError("only sellers can respond to material requests")
        request = await persistence.load(db, MaterialRequest, request_id, "material request", lock=True)
        if request.status != RequestStatus.ACTIVE.value:
            raise ConflictError(f"material request {request.id} is not active (status={request.status})")
        if any(r.seller_id == seller.id for r in request.responses):
            raise ConflictError(f"seller {seller.id} already responded to material request {request.id}")

        if data.listing_id:
            listing = await persistence.load(db, Listing, data.listing_id, "listing")
            if listing.seller_id != seller.id:
                raise AuthorizationError(f"listing {listing.id} does not belong to seller {seller.id}")
            if listing.status != ListingStatus.ACTIVE.value:
                raise ConflictError(f"listing {listing.id} is not active (status={listing.status})")

        response = RequestResponse(
            request_id=request.id,
            seller_id=seller.id,
            listing_id=data.listing_id,
            message=data.message,
            proposed_price=Decimal(data.proposed_price) if data.proposed_price is not None else None,
            created_at=utcnow(),
        )
        request.responses.append(response)
        await db.flush()
        logger.info("Material request %s: response %s from seller %s", request.id, response.id, seller.id)
        return response

    # ------------------------------------------------------------------
    # Expiry
    # ------------------------------------------------------------------

    async def expire_stale(self, db: AsyncSession) -> dict:
        """Move listings and requests past their expiry date to expired. Caller commits."""
        now = utcnow()
        listings = (
            await db.execute(
                select(Listing).where(
                    Listing.status.in_([ListingStatus.ACTIVE.value, ListingStatus.INACTIVE.value]),
                    Listing.expiry_date <= now,
                )
            )
        ).scalars().all()
        for listing in listings:
            await self._transition_listing(db, listing, ListingStatus.EXPIRED, Actor.SYSTEM, None)

        requests = (
            await db.execute(
                select(MaterialRequest).where(
                    MaterialRequest.status == RequestStatus.ACTIVE.value,
                    MaterialRequest.expiry_date <= now,
                )
            )
        ).scalars().all()
        for request in requests:
            await self._transition_request(db, request, RequestStatus.EXPIRED, Actor.SYSTEM, None)

        return {"listings": len(listings), "requests": len(requests)}
