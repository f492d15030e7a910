"""Escrow payment state machine.

Happy path: pending → paid_to_platform → held_in_escrow → released_to_seller.
From held_in_escrow a refund may be approved instead; any non-terminal payment
can fail. Release requires every release condition to hold:

    status == held_in_escrow
    AND deliveryConfirmed AND qualityApproved AND disputeResolved

``autoReleaseDate`` is informational only; nothing releases funds on a timer.
Methods flush but do not commit, except ``verify_payment`` which commits the
failed state before surfacing a bad gateway signature.
"""

import logging
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from wasteex.app.config import get_settings
from wasteex.domain.enums import (
    Actor,
    ContractPaymentStatus,
    ContractStatus,
    PaymentMethod,
    PaymentStatus,
    UserRole,
)
from wasteex.domain.errors import (
    AuthorizationError,
    ConflictError,
    ContractNotSigned,
    DuplicatePayment,
    NotEligibleForRefund,
    NotParty,
    ReleaseConditionsNotMet,
    SignatureInvalid,
)
from wasteex.domain.models import Contract, Payment, PaymentTimelineEntry, User, utcnow
from wasteex.services import persistence
from wasteex.services.contract_service import refresh_dispute_resolved, transition_contract
from wasteex.services.numbering import next_number
from wasteex.services.payment_gateway import PaymentGateway
from wasteex.services.state_machines import payment_machine

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")
PAYABLE_CONTRACT_STATUSES = {ContractStatus.SIGNED.value, ContractStatus.EXECUTED.value}


def split_amount(total: Decimal, fee_rate) -> tuple[Decimal, Decimal]:
    """Return (platform_fee, seller_amount). The two always sum to total."""
    total = Decimal(total).quantize(CENT, rounding=ROUND_HALF_UP)
    platform_fee = (total * Decimal(str(fee_rate))).quantize(CENT, rounding=ROUND_HALF_UP)
    return platform_fee, total - platform_fee


def _party_actor(payment: Payment, user: User) -> Actor:
    if user.id == payment.buyer_id:
        return Actor.BUYER
    if user.id == payment.seller_id:
        return Actor.SELLER
    if user.role == UserRole.ADMIN.value:
        return Actor.ADMIN
    raise NotParty(user.id, "payment", payment.id)


class EscrowService:
    """Drives a contract's payment through escrow."""

    # ------------------------------------------------------------------
    # Loading / access
    # ------------------------------------------------------------------

    async def get(self, db: AsyncSession, payment_id: str, lock: bool = False) -> Payment:
        return await persistence.load(db, Payment, payment_id, "payment", lock=lock)

    async def get_for_user(self, db: AsyncSession, payment_id: str, user: User) -> Payment:
        payment = await self.get(db, payment_id)
        _party_actor(payment, user)
        return payment

    async def list_for_user(
        self,
        db: AsyncSession,
        user: User,
        status: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Payment], int]:
        query = select(Payment)
        if user.role != UserRole.ADMIN.value:
            query = query.where(or_(Payment.buyer_id == user.id, Payment.seller_id == user.id))
        if status:
            query = query.where(Payment.status == status)
        total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar_one()
        result = await db.execute(
            query.order_by(Payment.created_at.desc()).offset((page - 1) * limit).limit(limit)
        )
        return list(result.scalars().all()), total

    async def _transition(
        self,
        db: AsyncSession,
        payment: Payment,
        target: PaymentStatus,
        actor: Actor,
        actor_id: Optional[str],
        description: str,
        data: Optional[dict] = None,
    ) -> Payment:
        """Validate and execute a payment transition, appending a timeline entry."""
        from_status = payment.status
        payment_machine.validate_transition(from_status, target, actor)
        payment.status = target.value
        payment.updated_at = utcnow()
        payment.timeline.append(
            PaymentTimelineEntry(
                status=target.value,
                description=description,
                actor_id=actor_id,
                data=data,
                created_at=utcnow(),
            )
        )
        await persistence.flush(db, "payment", payment.id)

        logger.info(
            "Payment %s: %s → %s (actor=%s, user=%s)",
            payment.payment_number, from_status, target.value, actor.value, actor_id,
        )
        return payment

    # ------------------------------------------------------------------
    # Order creation and verification
    # ------------------------------------------------------------------

    async def _check_payable(self, db: AsyncSession, contract: Contract, buyer: User) -> None:
        if contract.party_role(buyer.id) is None:
            raise NotParty(buyer.id, "contract", contract.id)
        if contract.buyer_id != buyer.id:
            raise AuthorizationError("only the buyer can create a payment order")
        if contract.status not in PAYABLE_CONTRACT_STATUSES:
            raise ContractNotSigned(contract.id, contract.status)

        existing = (
            await db.execute(select(Payment.id).where(Payment.contract_id == contract.id))
        ).scalar_one_or_none()
        if existing:
            raise DuplicatePayment(contract.id, existing)

    async def create_order(
        self,
        db: AsyncSession,
        buyer: User,
        contract_id: str,
        gateway: PaymentGateway,
        payment_method: PaymentMethod = PaymentMethod.RAZORPAY,
        client_ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Payment:
        """Open an escrow payment for a signed contract and create the gateway order.

        The gateway order is created before the contract row is locked; the
        checks are repeated under the lock.
        """
        contract = await persistence.load(db, Contract, contract_id, "contract")
        await self._check_payable(db, contract, buyer)

        settings = get_settings()
        total = Decimal(str(contract.terms["totalValue"]))
        platform_fee, seller_amount = split_amount(total, settings.platform_fee_rate)
        currency = (contract.terms.get("price") or {}).get("currency") or settings.default_currency

        payment_number = await next_number(db, "payment")
        order_id = await gateway.create_order(total, currency, receipt=payment_number)

        contract = await persistence.load(db, Contract, contract_id, "contract", lock=True)
        await self._check_payable(db, contract, buyer)

        now = utcnow()
        payment = Payment(
            payment_number=payment_number,
            contract_id=contract.id,
            buyer_id=contract.buyer_id,
            seller_id=contract.seller_id,
            total_amount=total.quantize(CENT),
            seller_amount=seller_amount,
            platform_fee=platform_fee,
            currency=currency,
            status=PaymentStatus.PENDING.value,
            payment_method=payment_method.value,
            gateway_provider="razorpay",
            gateway_order_id=order_id,
            delivery_confirmed=False,
            quality_approved=False,
            dispute_resolved=True,
            client_ip=client_ip,
            user_agent=user_agent,
            created_at=now,
            updated_at=now,
            timeline=[
                PaymentTimelineEntry(
                    status=PaymentStatus.PENDING.value,
                    description="Payment order created",
                    actor_id=buyer.id,
                    data={"gatewayOrderId": order_id},
                    created_at=now,
                )
            ],
        )
        db.add(payment)
        try:
            await db.flush()
        except IntegrityError:
            await db.rollback()
            raise DuplicatePayment(contract.id, "concurrent") from None

        contract.payment_id = payment.id
        contract.payment_status = ContractPaymentStatus.PENDING.value
        contract.platform_fee_amount = platform_fee
        contract.updated_at = now
        await persistence.flush(db, "contract", contract.id)

        logger.info(
            "Payment %s created for contract %s (total=%s, fee=%s, order=%s)",
            payment_number, contract.contract_number, total, platform_fee, order_id,
        )
        return payment

    async def verify_payment(
        self,
        db: AsyncSession,
        payment_id: str,
        user: User,
        gateway_payment_id: str,
        gateway_signature: str,
        gateway: PaymentGateway,
    ) -> Payment:
        """Check the gateway signature and move the funds into escrow.

        A bad signature fails the payment; that state is committed before
        SignatureInvalid is raised.
        """
        payment = await self.get(db, payment_id, lock=True)
        if _party_actor(payment, user) != Actor.BUYER:
            raise AuthorizationError("only the buyer can verify a payment")
        if payment.status != PaymentStatus.PENDING.value:
            raise ConflictError(f"payment {payment.payment_number} is not awaiting verification (status={payment.status})")

        contract = await persistence.load(db, Contract, payment.contract_id, "contract", lock=True)

        if not gateway.verify_signature(payment.gateway_order_id, gateway_payment_id, gateway_signature):
            await self._transition(
                db,
                payment,
                PaymentStatus.FAILED,
                Actor.SYSTEM,
                user.id,
                "Payment verification failed",
                {"gatewayPaymentId": gateway_payment_id},
            )
            contract.payment_status = ContractPaymentStatus.FAILED.value
            await persistence.commit(db, "payment", payment.id)
            logger.warning("Payment %s: gateway signature mismatch", payment.payment_number)
            raise SignatureInvalid(payment.payment_number)

        payment.gateway_payment_id = gateway_payment_id
        payment.gateway_signature = gateway_signature
        payment.transaction_id = gateway_payment_id
        await self._transition(
            db, payment, PaymentStatus.PAID_TO_PLATFORM, Actor.SYSTEM, user.id, "Payment received by platform"
        )

        now = utcnow()
        payment.held_at = now
        payment.auto_release_date = now + timedelta(days=get_settings().auto_release_days)
        await self._transition(
            db, payment, PaymentStatus.HELD_IN_ESCROW, Actor.SYSTEM, user.id, "Funds held in escrow"
        )

        contract.payment_status = ContractPaymentStatus.HELD_IN_ESCROW.value
        if contract.status == ContractStatus.SIGNED.value:
            await transition_contract(
                db, contract, ContractStatus.EXECUTED, Actor.SYSTEM, user.id,
                extra_data={"paymentId": payment.payment_number},
            )
        else:
            await persistence.flush(db, "contract", contract.id)
        return payment

    # ------------------------------------------------------------------
    # Delivery and release
    # ------------------------------------------------------------------

    async def confirm_delivery(
        self,
        db: AsyncSession,
        payment_id: str,
        user: User,
        quality_approved: bool,
        notes: Optional[str] = None,
    ) -> Payment:
        payment = await self.get(db, payment_id, lock=True)
        if _party_actor(payment, user) != Actor.BUYER:
            raise AuthorizationError("only the buyer can confirm delivery")
        if payment.status != PaymentStatus.HELD_IN_ESCROW.value:
            raise ConflictError(
                f"payment {payment.payment_number} is not held in escrow (status={payment.status})"
            )

        payment.delivery_confirmed = True
        payment.quality_approved = quality_approved
        payment.updated_at = utcnow()
        payment.timeline.append(
            PaymentTimelineEntry(
                status=payment.status,
                description=(
                    "Delivery confirmed and quality approved by buyer" if quality_approved
                    else "Delivery confirmed, quality not approved"
                ),
                actor_id=user.id,
                data={"notes": notes} if notes else None,
                created_at=utcnow(),
            )
        )
        await persistence.flush(db, "payment", payment.id)
        logger.info(
            "Payment %s: delivery confirmed (qualityApproved=%s)", payment.payment_number, quality_approved
        )
        return payment

    async def release(self, db: AsyncSession, payment_id: str, user: User) -> Payment:
        """Release escrowed funds to the seller once every release condition holds."""
        payment = await self.get(db, payment_id, lock=True)
        actor = _party_actor(payment, user)
        if actor == Actor.SELLER:
            raise AuthorizationError("only the buyer or an admin can release funds")
        if not payment.can_release:
            raise ReleaseConditionsNotMet(payment.unmet_release_conditions())

        now = utcnow()
        payment.released_at = now
        await self._transition(
            db, payment, PaymentStatus.RELEASED_TO_SELLER, actor, user.id, "Funds released to seller",
            {"sellerAmount": float(payment.seller_amount)},
        )

        contract = await persistence.load(db, Contract, payment.contract_id, "contract", lock=True)
        contract.payment_status = ContractPaymentStatus.RELEASED_TO_SELLER.value
        contract.platform_fee_paid = True
        contract.platform_fee_paid_at = now
        if contract.status == ContractStatus.EXECUTED.value:
            await transition_contract(
                db, contract, ContractStatus.COMPLETED, Actor.SYSTEM, user.id,
                extra_data={"paymentId": payment.payment_number},
            )
        else:
            await persistence.flush(db, "contract", contract.id)

        for party_id in (payment.buyer_id, payment.seller_id):
            party = await persistence.load(db, User, party_id, "user")
            party.total_deals = (party.total_deals or 0) + 1
            party.total_value = Decimal(party.total_value or 0) + payment.total_amount
        await db.flush()
        return payment

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    async def request_refund(
        self, db: AsyncSession, payment_id: str, user: User, reason: str
    ) -> Payment:
        """Buyer asks for a refund. Only escrowed funds are refundable; this opens a dispute."""
        payment = await self.get(db, payment_id, lock=True)
        if _party_actor(payment, user) != Actor.BUYER:
            raise AuthorizationError("only the buyer can request a refund")
        if payment.status != PaymentStatus.HELD_IN_ESCROW.value:
            raise NotEligibleForRefund(payment.payment_number, payment.status)
        if payment.refund_requested and payment.refund_approved is None:
            raise ConflictError(f"payment {payment.payment_number} already has a pending refund request")

        now = utcnow()
        payment.refund_requested = True
        payment.refund_requested_at = now
        payment.refund_requested_by = user.id
        payment.refund_reason = reason
        payment.refund_approved = None
        payment.dispute_raised = True
        payment.dispute_raised_by = user.id
        payment.dispute_reason = reason
        contract = await persistence.load(db, Contract, payment.contract_id, "contract")
        refresh_dispute_resolved(payment, contract)
        payment.updated_at = now
        payment.timeline.append(
            PaymentTimelineEntry(
                status=payment.status,
                description=f"Refund requested: {reason}",
                actor_id=user.id,
                created_at=now,
            )
        )
        await persistence.flush(db, "payment", payment.id)
        logger.info("Payment %s: refund requested by %s", payment.payment_number, user.id)
        return payment

    async def decide_refund(
        self,
        db: AsyncSession,
        payment_id: str,
        user: User,
        approved: bool,
        notes: Optional[str] = None,
    ) -> Payment:
        """Seller or admin approves (refunded) or declines (funds stay in escrow) a refund request."""
        payment = await self.get(db, payment_id, lock=True)
        actor = _party_actor(payment, user)
        if actor == Actor.BUYER:
            raise AuthorizationError("only the seller or an admin can decide a refund")
        if not payment.refund_requested or payment.refund_approved is not None:
            raise ConflictError(f"payment {payment.payment_number} has no pending refund request")

        contract = await persistence.load(db, Contract, payment.contract_id, "contract", lock=True)
        now = utcnow()
        payment.refund_approved = approved
        payment.refund_approved_at = now
        payment.refund_approved_by = user.id
        if refresh_dispute_resolved(payment, contract):
            payment.dispute_resolution = notes or ("refund approved" if approved else "refund declined")
            payment.dispute_resolved_at = now

        if not approved:
            payment.updated_at = now
            payment.timeline.append(
                PaymentTimelineEntry(
                    status=payment.status,
                    description="Refund declined",
                    actor_id=user.id,
                    data={"notes": notes} if notes else None,
                    created_at=now,
                )
            )
            await persistence.flush(db, "payment", payment.id)
            logger.info("Payment %s: refund declined by %s", payment.payment_number, user.id)
            return payment

        payment.refund_amount = payment.total_amount
        await self._transition(
            db, payment, PaymentStatus.REFUNDED, actor, user.id, "Refund approved",
            {"refundAmount": float(payment.total_amount)},
        )

        contract.payment_status = ContractPaymentStatus.REFUNDED.value
        if contract.status not in (ContractStatus.COMPLETED.value, ContractStatus.CANCELLED.value):
            await transition_contract(
                db, contract, ContractStatus.CANCELLED, Actor.SYSTEM, user.id,
                extra_data={"reason": "payment refunded", "paymentId": payment.payment_number},
            )
        else:
            await persistence.flush(db, "contract", contract.id)
        return payment

    async def fail_payment(
        self, db: AsyncSession, payment_id: str, user: User, reason: str
    ) -> Payment:
        if user.role != UserRole.ADMIN.value:
            raise AuthorizationError("only admins can fail a payment")
        payment = await self.get(db, payment_id, lock=True)
        await self._transition(
            db, payment, PaymentStatus.FAILED, Actor.ADMIN, user.id, f"Payment failed: {reason}"
        )
        contract = await persistence.load(db, Contract, payment.contract_id, "contract", lock=True)
        contract.payment_status = ContractPaymentStatus.FAILED.value
        await persistence.flush(db, "contract", contract.id)
        return payment
