"""Waste listing routes: browse, publish, update, withdraw and inquire."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wasteex.app.routes.auth import get_current_user_dep, require_role
from wasteex.app.routes.common import to_http
from wasteex.domain.enums import ListingStatus
from wasteex.domain.errors import MarketplaceError, ValidationError
from wasteex.domain.models import User
from wasteex.domain.schemas import InquiryCreate, ListingCreate, ListingUpdate, StatusChange
from wasteex.infra.database import get_db
from wasteex.services.catalog_service import CatalogService
from wasteex.services.serializers import pagination, serialize_listing

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/waste-listings", tags=["waste-listings"])

catalog = CatalogService()


@router.get("")
async def list_listings(
    db: AsyncSession = Depends(get_db),
    category: Optional[str] = Query(None),
    city: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    urgency: Optional[str] = Query(None),
    status: str = Query(ListingStatus.ACTIVE.value),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
):
    """Public listing search with filters and pagination."""
    listings, total = await catalog.search_listings(
        db,
        category=category,
        city=city,
        state=state,
        urgency=urgency,
        status=status,
        search=search,
        page=page,
        limit=limit,
    )
    return {
        "listings": [serialize_listing(listing) for listing in listings],
        "pagination": pagination(page, limit, total),
    }


@router.get("/my/listings")
async def my_listings(
    user: User = Depends(require_role("seller")),
    db: AsyncSession = Depends(get_db),
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    listings, total = await catalog.listings_for_seller(db, user, status=status, page=page, limit=limit)
    return {
        "listings": [serialize_listing(listing, include_inquiries=True) for listing in listings],
        "pagination": pagination(page, limit, total),
    }


@router.get("/{listing_id}")
async def get_listing(listing_id: str, db: AsyncSession = Depends(get_db)):
    """Listing detail. Each fetch counts as a view."""
    try:
        listing = await catalog.get_listing(db, listing_id, count_view=True)
    except MarketplaceError as e:
        raise to_http(e)
    await db.commit()
    return {"listing": serialize_listing(listing)}


@router.post("", status_code=201)
async def create_listing(
    data: ListingCreate,
    user: User = Depends(require_role("seller")),
    db: AsyncSession = Depends(get_db),
):
    try:
        listing = await catalog.create_listing(db, user, data)
    except MarketplaceError as e:
        raise to_http(e)
    await db.commit()
    return {"message": "Waste listing created successfully", "listing": serialize_listing(listing)}


@router.put("/{listing_id}")
async def update_listing(
    listing_id: str,
    data: ListingUpdate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        listing = await catalog.update_listing(db, listing_id, user, data)
    except MarketplaceError as e:
        raise to_http(e)
    await db.commit()
    return {"message": "Waste listing updated successfully", "listing": serialize_listing(listing)}


@router.delete("/{listing_id}")
async def withdraw_listing(
    listing_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    """Withdraw a listing. Listings are deactivated, never hard-deleted."""
    try:
        listing = await catalog.withdraw_listing(db, listing_id, user)
    except MarketplaceError as e:
        raise to_http(e)
    await db.commit()
    return {"message": "Waste listing withdrawn", "listing": serialize_listing(listing)}


@router.post("/{listing_id}/status")
async def change_listing_status(
    listing_id: str,
    data: StatusChange,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        try:
            target = ListingStatus(data.status)
        except ValueError:
            raise ValidationError(f"unknown listing status {data.status!r}") from None
        listing = await catalog.change_listing_status(db, listing_id, user, target)
    except MarketplaceError as e:
        raise to_http(e)
    await db.commit()
    return {"listing": serialize_listing(listing)}


@router.post("/{listing_id}/inquire", status_code=201)
async def inquire(
    listing_id: str,
    data: InquiryCreate,
    user: User = Depends(require_role("buyer")),
    db: AsyncSession = Depends(get_db),
):
    try:
        inquiry = await catalog.inquire(db, listing_id, user, data)
    except MarketplaceError as e:
        raise to_http(e)
    await db.commit()
    return {"message": "Inquiry sent successfully", "inquiryId": inquiry.id}
