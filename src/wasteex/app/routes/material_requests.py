"""Material request routes: browse, post, update, cancel and respond."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wasteex.app.routes.auth import get_current_user_dep, require_role
from wasteex.app.routes.common import to_http
from wasteex.domain.enums import RequestStatus
from wasteex.domain.errors import MarketplaceError, ValidationError
from wasteex.domain.models import User
from wasteex.domain.schemas import (
    MaterialRequestCreate,
    MaterialRequestUpdate,
    RequestRespond,
    StatusChange,
)
from wasteex.infra.database import get_db
from wasteex.services.catalog_service import CatalogService
from wasteex.services.serializers import pagination, serialize_request

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/material-requests", tags=["material-requests"])

catalog = CatalogService()


@router.get("")
async def list_requests(
    db: AsyncSession = Depends(get_db),
    category: Optional[str] = Query(None),
    state: Optional[str] = Query(None),
    urgency: Optional[str] = Query(None),
    quality_grade: Optional[str] = Query(None, alias="qualityGrade"),
    status: str = Query(RequestStatus.ACTIVE.value),
    search: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=100),
):
    requests, total = await catalog.search_requests(
        db,
        category=category,
        state=state,
        urgency=urgency,
        quality_grade=quality_grade,
        status=status,
        search=search,
        page=page,
        limit=limit,
    )
    return {
        "requests": [serialize_request(r) for r in requests],
        "pagination": pagination(page, limit, total),
    }


@router.get("/my/requests")
async def my_requests(
    user: User = Depends(require_role("buyer")),
    db: AsyncSession = Depends(get_db),
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    requests, total = await catalog.requests_for_buyer(db, user, status=status, page=page, limit=limit)
    return {
        "requests": [serialize_request(r, include_responses=True) for r in requests],
        "pagination": pagination(page, limit, total),
    }


@router.get("/{request_id}")
async def get_request(request_id: str, db: AsyncSession = Depends(get_db)):
    try:
        request = await catalog.get_request(db, request_id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"request": serialize_request(request)}


@router.post("", status_code=201)
async def create_request(
    data: MaterialRequestCreate,
    user: User = Depends(require_role("buyer")),
    db: AsyncSession = Depends(get_db),
):
    try:
        request = await catalog.create_request(db, user, data)
    except MarketplaceError as e:
        raise to_http(e)
    await db.commit()
    return {"message": "Material request created successfully", "request": serialize_request(request)}


@router.put("/{request_id}")
async def update_request(
    request_id: str,
    data: MaterialRequestUpdate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        request = await catalog.update_request(db, request_id, user, data)
    except MarketplaceError as e:
        raise to_http(e)
    await db.commit()
    return {"message": "Material request updated successfully", "request": serialize_request(request)}


@router.delete("/{request_id}")
async def cancel_request(
    request_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a request. Requests are never hard-deleted."""
    try:
        request = await catalog.cancel_request(db, request_id, user)
    except MarketplaceError as e:
        raise to_http(e)
    await db.commit()
    return {"message": "Material request cancelled", "request": serialize_request(request)}


@router.post("/{request_id}/status")
async def change_request_status(
    request_id: str,
    data: StatusChange,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        try:
            target = RequestStatus(data.status)
        except ValueError:
            raise ValidationError(f"unknown request status {data.status!r}") from None
        request = await catalog.change_request_status(db, request_id, user, target)
    except MarketplaceError as e:
        raise to_http(e)
    await db.commit()
    return {"request": serialize_request(request)}


@router.post("/{request_id}/respond", status_code=201)
async def respond(
    request_id: str,
    data: RequestRespond,
    user: User = Depends(require_role("seller")),
    db: AsyncSession = Depends(get_db),
):
    try:
        response = await catalog.respond(db, request_id, user, data)
    except MarketplaceError as e:
        raise to_http(e)
    await db.commit()
    return {"message": "Response submitted successfully", "responseId": response.id}
