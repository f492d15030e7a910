"""Negotiation routes: threads, messages, offers and status."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from wasteex.app.routes.auth import get_current_user_dep
from wasteex.app.routes.common import to_http
from wasteex.domain.errors import MarketplaceError
from wasteex.domain.models import User
from wasteex.domain.schemas import (
    MessageCreate,
    NegotiationCreate,
    NegotiationStatusUpdate,
    OfferProposal,
    OfferRespond,
)
from wasteex.infra.database import get_db
from wasteex.services import persistence
from wasteex.services.negotiation_service import NegotiationService, unread_count
from wasteex.services.serializers import pagination, serialize_message, serialize_negotiation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/negotiations", tags=["negotiations"])

negotiations = NegotiationService()


@router.get("")
async def list_negotiations(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    items, total = await negotiations.list_for_user(db, user, status=status, page=page, limit=limit)
    return {
        "negotiations": [
            serialize_negotiation(n, viewer_id=user.id, include_messages=False) for n in items
        ],
        "pagination": pagination(page, limit, total),
    }


@router.get("/{negotiation_id}")
async def get_negotiation(
    negotiation_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    """Negotiation detail. Viewing marks the counterpart's messages as read."""
    try:
        negotiation = await negotiations.get_for_user(db, negotiation_id, user)
        if negotiations.mark_read(negotiation, user.id):
            await persistence.commit(db, "negotiation", negotiation.id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"negotiation": serialize_negotiation(negotiation, viewer_id=user.id)}


@router.get("/{negotiation_id}/unread-count")
async def get_unread_count(
    negotiation_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        negotiation = await negotiations.get_for_user(db, negotiation_id, user)
    except MarketplaceError as e:
        raise to_http(e)
    return {"unreadCount": unread_count(negotiation, user.id)}


@router.post("", status_code=201)
async def create_negotiation(
    data: NegotiationCreate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        negotiation = await negotiations.create_negotiation(db, user, data)
        await persistence.commit(db, "negotiation", negotiation.id)
    except MarketplaceError as e:
        raise to_http(e)
    return {
        "message": "Negotiation started successfully",
        "negotiation": serialize_negotiation(negotiation, viewer_id=user.id),
    }


@router.post("/{negotiation_id}/messages", status_code=201)
async def post_message(
    negotiation_id: str,
    data: MessageCreate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        message = await negotiations.post_message(
            db,
            negotiation_id,
            user,
            data.content,
            message_type=data.type,
            attachments=data.attachments,
            offer=data.offer,
        )
        await persistence.commit(db, "negotiation", negotiation_id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"message": serialize_message(message)}


@router.post("/{negotiation_id}/offers", status_code=201)
async def propose_offer(
    negotiation_id: str,
    data: OfferProposal,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        negotiation = await negotiations.propose_offer(db, negotiation_id, user, data.offer, data.message)
        await persistence.commit(db, "negotiation", negotiation_id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"negotiation": serialize_negotiation(negotiation, viewer_id=user.id)}


@router.post("/{negotiation_id}/offers/respond")
async def respond_to_offer(
    negotiation_id: str,
    data: OfferRespond,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        negotiation = await negotiations.respond_to_offer(
            db, negotiation_id, user, data.decision, data.counter_offer, data.message
        )
        await persistence.commit(db, "negotiation", negotiation_id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"negotiation": serialize_negotiation(negotiation, viewer_id=user.id)}


@router.put("/{negotiation_id}/status")
async def update_status(
    negotiation_id: str,
    data: NegotiationStatusUpdate,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        negotiation = await negotiations.update_status(db, negotiation_id, user, data.status)
        await persistence.commit(db, "negotiation", negotiation_id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"negotiation": serialize_negotiation(negotiation, viewer_id=user.id, include_messages=False)}
