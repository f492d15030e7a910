"""Escrow payment routes: order creation, verification, delivery, release and refunds."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from wasteex.app.routes.auth import get_current_user_dep, require_role
from wasteex.app.routes.common import client_ip, to_http
from wasteex.domain.errors import MarketplaceError
from wasteex.domain.models import User
from wasteex.domain.schemas import (
    ConfirmDeliveryRequest,
    CreateOrderRequest,
    RefundDecision,
    RefundRequestBody,
    VerifyPaymentRequest,
)
from wasteex.infra.database import get_db
from wasteex.services import persistence
from wasteex.services.escrow_service import EscrowService
from wasteex.services.payment_gateway import PaymentGateway, get_payment_gateway
from wasteex.services.serializers import pagination, serialize_payment

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])

escrow = EscrowService()


@router.get("")
async def list_payments(
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
):
    items, total = await escrow.list_for_user(db, user, status=status, page=page, limit=limit)
    return {
        "payments": [serialize_payment(p) for p in items],
        "pagination": pagination(page, limit, total),
    }


@router.get("/{payment_id}")
async def get_payment(
    payment_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        payment = await escrow.get_for_user(db, payment_id, user)
    except MarketplaceError as e:
        raise to_http(e)
    return {"payment": serialize_payment(payment)}


@router.post("/create-order", status_code=201)
async def create_order(
    data: CreateOrderRequest,
    request: Request,
    user: User = Depends(require_role("buyer")),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    try:
        payment = await escrow.create_order(
            db,
            user,
            data.contract_id,
            gateway,
            payment_method=data.payment_method,
            client_ip=client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
        await persistence.commit(db, "payment", payment.id)
    except MarketplaceError as e:
        raise to_http(e)
    return {
        "message": "Payment order created",
        "orderId": payment.gateway_order_id,
        "payment": serialize_payment(payment),
    }


@router.post("/verify")
async def verify_payment(
    data: VerifyPaymentRequest,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
):
    """Gateway callback relay. A bad signature leaves the payment failed and returns 400."""
    try:
        payment = await escrow.verify_payment(
            db, data.payment_id, user, data.gateway_payment_id, data.gateway_signature, gateway
        )
        await persistence.commit(db, "payment", payment.id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"message": "Payment verified, funds held in escrow", "payment": serialize_payment(payment)}


@router.post("/{payment_id}/confirm-delivery")
async def confirm_delivery(
    payment_id: str,
    data: ConfirmDeliveryRequest,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        payment = await escrow.confirm_delivery(db, payment_id, user, data.quality_approved, data.notes)
        await persistence.commit(db, "payment", payment.id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"payment": serialize_payment(payment)}


@router.post("/{payment_id}/release")
async def release_payment(
    payment_id: str,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        payment = await escrow.release(db, payment_id, user)
        await persistence.commit(db, "payment", payment.id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"message": "Funds released to seller", "payment": serialize_payment(payment)}


@router.post("/{payment_id}/refund-request")
async def request_refund(
    payment_id: str,
    data: RefundRequestBody,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        payment = await escrow.request_refund(db, payment_id, user, data.reason)
        await persistence.commit(db, "payment", payment.id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"message": "Refund requested", "payment": serialize_payment(payment)}


@router.post("/{payment_id}/refund-decision")
async def decide_refund(
    payment_id: str,
    data: RefundDecision,
    user: User = Depends(get_current_user_dep),
    db: AsyncSession = Depends(get_db),
):
    try:
        payment = await escrow.decide_refund(db, payment_id, user, data.approved, data.notes)
        await persistence.commit(db, "payment", payment.id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"payment": serialize_payment(payment)}
