"""Admin API routes: marketplace overview, user management and transactions.

Every endpoint requires an admin token.
"""

import logging
from collections import Counter
from datetime import timedelta
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from wasteex.app.routes.auth import require_role
from wasteex.app.routes.common import to_http
from wasteex.domain.enums import (
    ContractStatus,
    ListingStatus,
    NegotiationStatus,
    PaymentStatus,
    RequestStatus,
)
from wasteex.domain.errors import MarketplaceError, NotFoundError, ValidationError
from wasteex.domain.models import (
    Company,
    Contract,
    Listing,
    MaterialRequest,
    Negotiation,
    Payment,
    User,
    utcnow,
)
from wasteex.domain.schemas import CompanyVerify, UserActiveUpdate
from wasteex.infra.database import get_db
from wasteex.services import persistence
from wasteex.services.escrow_service import EscrowService
from wasteex.services.serializers import _num, pagination, serialize_payment, serialize_user

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/admin", tags=["admin"])

escrow = EscrowService()

DEAL_STATUSES = [
    ContractStatus.SIGNED.value,
    ContractStatus.EXECUTED.value,
    ContractStatus.COMPLETED.value,
]


# ---------------------------------------------------------------------------
# Inline request models
# ---------------------------------------------------------------------------


class PaymentFailRequest(BaseModel):
    """Request body for failing a stuck payment."""

    reason: str = Field(min_length=3, max_length=500)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _count(db: AsyncSession, model, *criteria) -> int:
    result = await db.execute(select(func.count()).select_from(model).where(*criteria))
    return result.scalar() or 0


async def _sum(db: AsyncSession, column, *criteria):
    result = await db.execute(select(func.coalesce(func.sum(column), 0)).where(*criteria))
    return result.scalar() or 0


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/dashboard")
async def dashboard(
    _admin: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    """Marketplace overview: users, catalog, deals and escrow volume."""
    users_by_role = {
        role: count
        for role, count in (
            await db.execute(select(User.role, func.count()).group_by(User.role))
        ).all()
    }
    contracts_by_status = {
        status: count
        for status, count in (
            await db.execute(select(Contract.status, func.count()).group_by(Contract.status))
        ).all()
    }

    held = await _sum(db, Payment.total_amount, Payment.status == PaymentStatus.HELD_IN_ESCROW.value)
    released = await _sum(
        db, Payment.total_amount, Payment.status == PaymentStatus.RELEASED_TO_SELLER.value
    )
    fees = await _sum(
        db, Payment.platform_fee, Payment.status == PaymentStatus.RELEASED_TO_SELLER.value
    )

    return {
        "users": {
            "total": sum(users_by_role.values()),
            "byRole": users_by_role,
            "inactive": await _count(db, User, User.is_active.is_(False)),
        },
        "listings": {
            "total": await _count(db, Listing),
            "active": await _count(db, Listing, Listing.status == ListingStatus.ACTIVE.value),
        },
        "requests": {
            "total": await _count(db, MaterialRequest),
            "active": await _count(
                db, MaterialRequest, MaterialRequest.status == RequestStatus.ACTIVE.value
            ),
        },
        "negotiations": {
            "total": await _count(db, Negotiation),
            "open": await _count(
                db,
                Negotiation,
                Negotiation.status.in_(
                    [NegotiationStatus.ACTIVE.value, NegotiationStatus.PENDING.value]
                ),
            ),
        },
        "contracts": {
            "total": sum(contracts_by_status.values()),
            "byStatus": contracts_by_status,
            "disputed": contracts_by_status.get(ContractStatus.DISPUTED.value, 0),
        },
        "escrow": {
            "heldAmount": _num(held),
            "releasedAmount": _num(released),
            "platformFeesCollected": _num(fees),
        },
    }


@router.get("/analytics")
async def analytics(
    _admin: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
    days: int = Query(30, ge=1, le=365),
):
    """Daily user growth and deal volume over the window, plus catalog and geographic mix."""
    since = utcnow() - timedelta(days=days)

    day = func.date(User.created_at)
    user_growth = [
        {"date": str(date), "count": count}
        for date, count in (
            await db.execute(
                select(day, func.count()).where(User.created_at >= since).group_by(day).order_by(day)
            )
        ).all()
    ]

    # totalValue lives inside the terms document, so volume is summed here.
    volume: dict[str, dict] = {}
    contract_rows = await db.execute(
        select(Contract.created_at, Contract.terms)
        .where(Contract.created_at >= since, Contract.status.in_(DEAL_STATUSES))
        .order_by(Contract.created_at)
    )
    for created_at, terms in contract_rows.all():
        bucket = volume.setdefault(created_at.date().isoformat(), {"volume": Decimal("0"), "count": 0})
        bucket["volume"] += Decimal(str((terms or {}).get("totalValue") or 0))
        bucket["count"] += 1
    transaction_volume = [
        {"date": date, "volume": _num(bucket["volume"]), "count": bucket["count"]}
        for date, bucket in volume.items()
    ]

    category_count = func.count().label("count")
    category_distribution = [
        {"category": category, "count": count}
        for category, count in (
            await db.execute(
                select(Listing.category, category_count)
                .group_by(Listing.category)
                .order_by(category_count.desc())
            )
        ).all()
    ]

    states = Counter()
    for (address,) in (
        await db.execute(select(Company.address).join(User, User.company_id == Company.id))
    ).all():
        state = (address or {}).get("state")
        if state:
            states[state] += 1
    geographic_distribution = [
        {"state": state, "count": count} for state, count in states.most_common(10)
    ]

    return {
        "userGrowth": user_growth,
        "transactionVolume": transaction_volume,
        "categoryDistribution": category_distribution,
        "geographicDistribution": geographic_distribution,
    }


@router.get("/users")
async def list_users(
    _admin: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
    role: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    query = select(User)
    if role:
        query = query.where(User.role == role)
    if is_active is not None:
        query = query.where(User.is_active.is_(is_active))
    if search:
        pattern = f"%{search.lower()}%"
        query = query.where(or_(func.lower(User.name).like(pattern), User.email.like(pattern)))

    total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
    result = await db.execute(
        query.order_by(User.created_at.desc()).offset((page - 1) * limit).limit(limit)
    )
    return {
        "users": [serialize_user(u, private=True) for u in result.scalars().all()],
        "pagination": pagination(page, limit, total),
    }


@router.post("/users/{user_id}/verify-company")
async def verify_company(
    user_id: str,
    data: CompanyVerify,
    admin: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    """Mark the user's company as verified (or revoke it)."""
    try:
        user = await persistence.load(db, User, user_id, "user")
        if user.company is None:
            raise NotFoundError("company", f"of user {user_id}")
    except MarketplaceError as e:
        raise to_http(e)

    user.company.verified = data.verified
    user.company.verification_date = utcnow() if data.verified else None
    await db.commit()
    logger.info(
        "Company %s verified=%s by admin %s", user.company.id, data.verified, admin.id
    )
    return {"user": serialize_user(user, private=True)}


@router.post("/users/{user_id}/active")
async def set_user_active(
    user_id: str,
    data: UserActiveUpdate,
    admin: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    """Activate or deactivate a user. Users are never hard-deleted."""
    try:
        if user_id == admin.id and not data.is_active:
            raise ValidationError("admins cannot deactivate themselves")
        user = await persistence.load(db, User, user_id, "user")
    except MarketplaceError as e:
        raise to_http(e)

    user.is_active = data.is_active
    await db.commit()
    logger.info("User %s isActive=%s by admin %s", user.id, data.is_active, admin.id)
    return {"user": serialize_user(user, private=True)}


@router.get("/transactions")
async def list_transactions(
    admin: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
    status: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
):
    payments, total = await escrow.list_for_user(db, admin, status=status, page=page, limit=limit)
    return {
        "transactions": [serialize_payment(p) for p in payments],
        "pagination": pagination(page, limit, total),
    }


@router.post("/payments/{payment_id}/fail")
async def fail_payment(
    payment_id: str,
    data: PaymentFailRequest,
    admin: User = Depends(require_role("admin")),
    db: AsyncSession = Depends(get_db),
):
    try:
        payment = await escrow.fail_payment(db, payment_id, admin, data.reason)
        await persistence.commit(db, "payment", payment.id)
    except MarketplaceError as e:
        raise to_http(e)
    return {"payment": serialize_payment(payment)}
