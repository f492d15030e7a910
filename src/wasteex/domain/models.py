"""SQLAlchemy ORM models for the WasteEx marketplace.

All models use SQLite-compatible types:
- String(36) for UUID primary keys
- JSON for nested documents (addresses, terms, offers)
- Integer autoincrement keys for append-only logs so insertion order is stable
- Numeric(12, 2) for money

Aggregates that are mutated concurrently (negotiations, contracts, payments,
shipments) carry a ``version`` column used as SQLAlchemy's version_id_col.
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from wasteex.infra.database import Base


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what SQLite hands back on reads."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Identity & Organization
# ---------------------------------------------------------------------------


class Company(Base):
    """Business entity a marketplace user trades on behalf of."""

    __tablename__ = "companies"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    gstin = Column(String(15), unique=True, nullable=False, index=True)
    pan = Column(String(10), nullable=True)
    address = Column(JSON, nullable=True)  # {street, city, state, pincode, country}
    verified = Column(Boolean, default=False, nullable=False)
    verification_date = Column(DateTime, nullable=True)
    industry = Column(String(100), nullable=True)
    established_year = Column(Integer, nullable=True)
    employee_count = Column(String(10), nullable=True)  # EmployeeCount
    created_at = Column(DateTime, default=utcnow)

    users = relationship("User", back_populates="company")


class User(Base):
    """Marketplace account. Never hard-deleted; admins toggle is_active."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(100), nullable=False)
    role = Column(String(20), nullable=False, default="buyer")  # UserRole
    phone = Column(String(20), nullable=True)
    avatar = Column(String(500), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    email_verified = Column(Boolean, default=False, nullable=False)
    preferences = Column(JSON, nullable=True)
    total_deals = Column(Integer, default=0, nullable=False)
    total_value = Column(Numeric(14, 2), default=0, nullable=False)
    company_id = Column(String(36), ForeignKey("companies.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow)
    last_login_at = Column(DateTime, nullable=True)

    company = relationship("Company", back_populates="users", lazy="selectin")


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class Listing(Base):
    """A seller's waste listing."""

    __tablename__ = "waste_listings"

    id = Column(String(36), primary_key=True, default=_uuid)
    seller_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(100), nullable=False)
    waste_type = Column(String(100), nullable=False)
    category = Column(String(30), nullable=False, index=True)  # WasteCategory
    quantity_value = Column(Numeric(12, 2), nullable=False)
    quantity_unit = Column(String(10), nullable=False)  # QuantityUnit
    frequency = Column(String(10), nullable=False)  # Frequency
    price_value = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    negotiable = Column(Boolean, default=True, nullable=False)
    location = Column(JSON, nullable=False)  # {address, city, state, pincode, coordinates}
    city = Column(String(100), nullable=True, index=True)
    state = Column(String(100), nullable=True, index=True)
    urgency = Column(String(10), nullable=False, default="medium")
    description = Column(Text, nullable=True)
    images = Column(JSON, nullable=True)
    documents = Column(JSON, nullable=True)
    msds = Column(JSON, nullable=True)
    specifications = Column(JSON, nullable=True)
    hazardous = Column(Boolean, default=False, nullable=False)
    certifications = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default="active", index=True)  # ListingStatus
    views = Column(Integer, default=0, nullable=False)
    expiry_date = Column(DateTime, nullable=False)
    featured = Column(Boolean, default=False, nullable=False)
    tags = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    seller = relationship("User", lazy="selectin")
    inquiries = relationship(
        "ListingInquiry",
        back_populates="listing",
        order_by="ListingInquiry.created_at",
        lazy="selectin",
    )


class ListingInquiry(Base):
    """A buyer's inquiry against a listing."""

    __tablename__ = "listing_inquiries"

    id = Column(String(36), primary_key=True, default=_uuid)
    listing_id = Column(String(36), ForeignKey("waste_listings.id"), nullable=False, index=True)
    buyer_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    message = Column(Text, nullable=False)
    contact_info = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default="pending")  # InquiryStatus
    created_at = Column(DateTime, default=utcnow)

    listing = relationship("Listing", back_populates="inquiries")


class MaterialRequest(Base):
    """A buyer's request for material."""

    __tablename__ = "material_requests"

    id = Column(String(36), primary_key=True, default=_uuid)
    buyer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String(100), nullable=False)
    material_type = Column(String(100), nullable=False)
    category = Column(String(30), nullable=False, index=True)  # MaterialCategory
    quantity_value = Column(Numeric(12, 2), nullable=False)
    quantity_unit = Column(String(10), nullable=False)
    frequency = Column(String(10), nullable=False)
    budget_min = Column(Numeric(12, 2), nullable=False)
    budget_max = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")
    location = Column(JSON, nullable=True)  # {preferredCities, state, maxDistance, coordinates}
    state = Column(String(100), nullable=True, index=True)
    quality_grade = Column(String(20), nullable=True)  # QualityGrade
    specifications = Column(JSON, nullable=True)
    description = Column(Text, nullable=True)
    urgency = Column(String(10), nullable=False, default="medium")
    delivery_requirements = Column(JSON, nullable=True)
    status = Column(String(20), nullable=False, default="active", index=True)  # RequestStatus
    expiry_date = Column(DateTime, nullable=False)
    tags = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    buyer = relationship("User", lazy="selectin")
    responses = relationship(
        "RequestResponse",
        back_populates="request",
        order_by="RequestResponse.created_at",
        lazy="selectin",
    )


class RequestResponse(Base):
    """A seller's response to a material request, optionally pointing at a listing."""

    __tablename__ = "request_responses"
    __table_args__ = (UniqueConstraint("request_id", "seller_id", name="uq_request_response_seller"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    request_id = Column(String(36), ForeignKey("material_requests.id"), nullable=False, index=True)
    seller_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    listing_id = Column(String(36), ForeignKey("waste_listings.id"), nullable=True)
    message = Column(Text, nullable=False)
    proposed_price = Column(Numeric(12, 2), nullable=True)
    status = Column(String(20), nullable=False, default="pending")  # ResponseStatus
    created_at = Column(DateTime, default=utcnow)

    request = relationship("MaterialRequest", back_populates="responses")


# ---------------------------------------------------------------------------
# Negotiation
# ---------------------------------------------------------------------------


class Negotiation(Base):
    """Bilateral offer/counteroffer thread between one buyer and one seller."""

    __tablename__ = "negotiations"

    id = Column(String(36), primary_key=True, default=_uuid)
    title = Column(String(200), nullable=False)
    buyer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    seller_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    buyer_joined_at = Column(DateTime, default=utcnow)
    seller_joined_at = Column(DateTime, default=utcnow)
    related_listing_id = Column(String(36), ForeignKey("waste_listings.id"), nullable=True)
    related_request_id = Column(String(36), ForeignKey("material_requests.id"), nullable=True)
    status = Column(String(20), nullable=False, default="active", index=True)  # NegotiationStatus
    current_offer = Column(JSON, nullable=True)
    agreed_terms = Column(JSON, nullable=True)
    deal_value = Column(Numeric(14, 2), nullable=True)
    contract_id = Column(String(36), nullable=True)
    last_activity = Column(DateTime, default=utcnow, index=True)
    priority = Column(String(10), nullable=False, default="medium")
    tags = Column(JSON, nullable=True)
    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    buyer = relationship("User", foreign_keys=[buyer_id], lazy="selectin")
    seller = relationship("User", foreign_keys=[seller_id], lazy="selectin")
    related_listing = relationship("Listing", lazy="selectin")
    related_request = relationship("MaterialRequest", lazy="selectin")
    messages = relationship(
        "NegotiationMessage",
        back_populates="negotiation",
        order_by="NegotiationMessage.id",
        lazy="selectin",
    )

    def participant_role(self, user_id: str) -> str | None:
        if user_id == self.buyer_id:
            return "buyer"
        if user_id == self.seller_id:
            return "seller"
        return None

    def counterpart_of(self, user_id: str) -> str:
        return self.seller_id if user_id == self.buyer_id else self.buyer_id


class NegotiationMessage(Base):
    """Append-only message in a negotiation thread."""

    __tablename__ = "negotiation_messages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    negotiation_id = Column(String(36), ForeignKey("negotiations.id"), nullable=False, index=True)
    sender_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    content = Column(Text, nullable=False)
    message_type = Column(String(20), nullable=False, default="text")  # MessageType
    attachments = Column(JSON, nullable=True)
    offer = Column(JSON, nullable=True)
    read_by = Column(JSON, nullable=False, default=list)  # [{user, readAt}]
    created_at = Column(DateTime, default=utcnow)

    negotiation = relationship("Negotiation", back_populates="messages")


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class Contract(Base):
    """Binding agreement generated from a negotiation's agreed terms."""

    __tablename__ = "contracts"

    id = Column(String(36), primary_key=True, default=_uuid)
    contract_number = Column(String(20), unique=True, nullable=False, index=True)
    title = Column(String(200), nullable=False)

    # Parties
    seller_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    seller_company_id = Column(String(36), ForeignKey("companies.id"), nullable=True)
    seller_signed_at = Column(DateTime, nullable=True)
    seller_signature = Column(Text, nullable=True)
    seller_ip = Column(String(45), nullable=True)
    buyer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    buyer_company_id = Column(String(36), ForeignKey("companies.id"), nullable=True)
    buyer_signed_at = Column(DateTime, nullable=True)
    buyer_signature = Column(Text, nullable=True)
    buyer_ip = Column(String(45), nullable=True)

    negotiation_id = Column(String(36), ForeignKey("negotiations.id"), unique=True, nullable=False)
    listing_id = Column(String(36), ForeignKey("waste_listings.id"), nullable=True)
    request_id = Column(String(36), ForeignKey("material_requests.id"), nullable=True)

    terms = Column(JSON, nullable=False)
    status = Column(String(20), nullable=False, default="draft", index=True)  # ContractStatus
    pre_dispute_status = Column(String(20), nullable=True)

    # Payment mirror
    payment_id = Column(String(36), nullable=True)
    payment_status = Column(String(30), nullable=False, default="not_initiated")
    platform_fee_percentage = Column(Numeric(5, 2), nullable=False, default=5)
    platform_fee_amount = Column(Numeric(12, 2), nullable=True)
    platform_fee_paid = Column(Boolean, default=False, nullable=False)
    platform_fee_paid_at = Column(DateTime, nullable=True)

    # Signature ledger mirror
    ledger_sync_status = Column(String(20), nullable=False, default="not_requested")  # LedgerSyncStatus
    ledger_attempts = Column(Integer, default=0, nullable=False)
    ledger_last_error = Column(Text, nullable=True)
    ledger_synced_at = Column(DateTime, nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    seller = relationship("User", foreign_keys=[seller_id], lazy="selectin")
    buyer = relationship("User", foreign_keys=[buyer_id], lazy="selectin")
    milestones = relationship(
        "ContractMilestone", back_populates="contract", order_by="ContractMilestone.created_at", lazy="selectin"
    )
    disputes = relationship(
        "ContractDispute", back_populates="contract", order_by="ContractDispute.raised_at", lazy="selectin"
    )
    events = relationship(
        "ContractEvent", back_populates="contract", order_by="ContractEvent.id", lazy="selectin"
    )
    ledger_receipts = relationship(
        "LedgerReceipt", back_populates="contract", order_by="LedgerReceipt.recorded_at", lazy="selectin"
    )

    @property
    def is_fully_signed(self) -> bool:
        return self.seller_signed_at is not None and self.buyer_signed_at is not None

    def party_role(self, user_id: str) -> str | None:
        if user_id == self.seller_id:
            return "seller"
        if user_id == self.buyer_id:
            return "buyer"
        return None


class ContractMilestone(Base):
    __tablename__ = "contract_milestones"

    id = Column(String(36), primary_key=True, default=_uuid)
    contract_id = Column(String(36), ForeignKey("contracts.id"), nullable=False, index=True)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    due_date = Column(DateTime, nullable=True)
    status = Column(String(20), nullable=False, default="pending")  # MilestoneStatus
    completed_at = Column(DateTime, nullable=True)
    completed_by = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=utcnow)

    contract = relationship("Contract", back_populates="milestones")


class ContractDispute(Base):
    __tablename__ = "contract_disputes"

    id = Column(String(36), primary_key=True, default=_uuid)
    contract_id = Column(String(36), ForeignKey("contracts.id"), nullable=False, index=True)
    raised_by = Column(String(36), ForeignKey("users.id"), nullable=False)
    reason = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), nullable=False, default="open")  # DisputeStatus
    resolution = Column(Text, nullable=True)
    raised_at = Column(DateTime, default=utcnow)
    resolved_at = Column(DateTime, nullable=True)
    resolved_by = Column(String(36), nullable=True)

    contract = relationship("Contract", back_populates="disputes")


class ContractEvent(Base):
    """Immutable audit trail entry for a contract."""

    __tablename__ = "contract_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    contract_id = Column(String(36), ForeignKey("contracts.id"), nullable=False, index=True)
    event_type = Column(String(50), nullable=False)  # ContractEventType
    actor = Column(String(20), nullable=False)  # Actor
    actor_id = Column(String(36), nullable=True)
    from_status = Column(String(20), nullable=True)
    to_status = Column(String(20), nullable=True)
    ip_address = Column(String(45), nullable=True)
    data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    contract = relationship("Contract", back_populates="events")


class LedgerReceipt(Base):
    """Write-once receipt for a signature mirrored to the external ledger."""

    __tablename__ = "ledger_receipts"
    __table_args__ = (UniqueConstraint("contract_id", "party_role", name="uq_ledger_receipt_party"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    contract_id = Column(String(36), ForeignKey("contracts.id"), nullable=False, index=True)
    party_role = Column(String(10), nullable=False)  # seller | buyer
    transaction_hash = Column(String(100), nullable=False)
    block_number = Column(Integer, nullable=True)
    contract_address = Column(String(100), nullable=True)
    gas_used = Column(Integer, nullable=True)
    recorded_at = Column(DateTime, default=utcnow)

    contract = relationship("Contract", back_populates="ledger_receipts")


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------


class Payment(Base):
    """Escrow payment for a contract. sellerAmount + platformFee == total."""

    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=_uuid)
    payment_number = Column(String(20), unique=True, nullable=False, index=True)
    contract_id = Column(String(36), ForeignKey("contracts.id"), unique=True, nullable=False)
    buyer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    seller_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    # Amounts
    total_amount = Column(Numeric(12, 2), nullable=False)
    seller_amount = Column(Numeric(12, 2), nullable=False)
    platform_fee = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="INR")

    status = Column(String(20), nullable=False, default="pending", index=True)  # PaymentStatus
    payment_method = Column(String(20), nullable=False, default="razorpay")

    # Gateway
    gateway_provider = Column(String(20), nullable=False, default="razorpay")
    gateway_order_id = Column(String(100), nullable=True)
    gateway_payment_id = Column(String(100), nullable=True)
    gateway_signature = Column(String(255), nullable=True)
    transaction_id = Column(String(100), nullable=True)

    # Escrow
    held_at = Column(DateTime, nullable=True)
    released_at = Column(DateTime, nullable=True)
    auto_release_date = Column(DateTime, nullable=True)
    delivery_confirmed = Column(Boolean, default=False, nullable=False)
    quality_approved = Column(Boolean, default=False, nullable=False)
    dispute_resolved = Column(Boolean, default=True, nullable=False)

    # Refund
    refund_requested = Column(Boolean, default=False, nullable=False)
    refund_requested_at = Column(DateTime, nullable=True)
    refund_requested_by = Column(String(36), nullable=True)
    refund_reason = Column(Text, nullable=True)
    refund_approved = Column(Boolean, nullable=True)
    refund_approved_at = Column(DateTime, nullable=True)
    refund_approved_by = Column(String(36), nullable=True)
    refund_amount = Column(Numeric(12, 2), nullable=True)

    # Dispute
    dispute_raised = Column(Boolean, default=False, nullable=False)
    dispute_raised_by = Column(String(36), nullable=True)
    dispute_reason = Column(Text, nullable=True)
    dispute_status = Column(String(20), nullable=True)  # DisputeStatus
    dispute_resolution = Column(Text, nullable=True)
    dispute_resolved_at = Column(DateTime, nullable=True)

    # Client metadata
    client_ip = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    timeline = relationship(
        "PaymentTimelineEntry", back_populates="payment", order_by="PaymentTimelineEntry.id", lazy="selectin"
    )

    @property
    def can_release(self) -> bool:
        return (
            self.status == "held_in_escrow"
            and bool(self.delivery_confirmed)
            and bool(self.quality_approved)
            and bool(self.dispute_resolved)
        )

    def unmet_release_conditions(self) -> list[str]:
        unmet = []
        if self.status != "held_in_escrow":
            unmet.append(f"payment not held in escrow (status={self.status})")
        if not self.delivery_confirmed:
            unmet.append("delivery not confirmed")
        if not self.quality_approved:
            unmet.append("quality not approved")
        if not self.dispute_resolved:
            unmet.append("dispute not resolved")
        return unmet


class PaymentTimelineEntry(Base):
    """Append-only payment status history."""

    __tablename__ = "payment_timeline"

    id = Column(Integer, primary_key=True, autoincrement=True)
    payment_id = Column(String(36), ForeignKey("payments.id"), nullable=False, index=True)
    status = Column(String(30), nullable=False)
    description = Column(Text, nullable=False)
    actor_id = Column(String(36), nullable=True)
    data = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    payment = relationship("Payment", back_populates="timeline")


# ---------------------------------------------------------------------------
# Logistics
# ---------------------------------------------------------------------------


class Shipment(Base):
    """Physical movement of contracted material."""

    __tablename__ = "shipments"

    id = Column(String(36), primary_key=True, default=_uuid)
    shipment_number = Column(String(20), unique=True, nullable=False, index=True)
    contract_id = Column(String(36), ForeignKey("contracts.id"), nullable=False, index=True)
    seller_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    buyer_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)

    provider = Column(String(20), nullable=False, default="custom")  # LogisticsProvider
    tracking_number = Column(String(100), nullable=True)
    partner_order_id = Column(String(100), nullable=True)
    logistics_contact = Column(JSON, nullable=True)

    pickup = Column(JSON, nullable=False)  # {address, scheduledDate, contactPerson, instructions}
    pickup_actual_date = Column(DateTime, nullable=True)
    delivery = Column(JSON, nullable=False)  # {address, scheduledDate, estimatedDate, contactPerson, instructions}
    delivery_actual_date = Column(DateTime, nullable=True)
    cargo = Column(JSON, nullable=False)  # {description, weight, dimensions, packaging, ...}

    status = Column(String(20), nullable=False, default="created", index=True)  # ShipmentStatus
    cost = Column(JSON, nullable=True)
    insurance = Column(JSON, nullable=True)

    version = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    __mapper_args__ = {"version_id_col": version}

    tracking = relationship(
        "ShipmentTrackingEvent", back_populates="shipment", order_by="ShipmentTrackingEvent.id", lazy="selectin"
    )


class ShipmentTrackingEvent(Base):
    """Append-only tracking log entry."""

    __tablename__ = "shipment_tracking"

    id = Column(Integer, primary_key=True, autoincrement=True)
    shipment_id = Column(String(36), ForeignKey("shipments.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False)
    location = Column(JSON, nullable=True)
    description = Column(Text, nullable=False)
    source = Column(String(10), nullable=False, default="system")  # TrackingSource
    recorded_by = Column(String(36), nullable=True)
    timestamp = Column(DateTime, default=utcnow)

    shipment = relationship("Shipment", back_populates="tracking")


# ---------------------------------------------------------------------------
# Numbering
# ---------------------------------------------------------------------------


class SequenceCounter(Base):
    """Per-(scope, year) counter backing human-readable document numbers."""

    __tablename__ = "sequence_counters"

    scope = Column(String(20), primary_key=True)
    year = Column(Integer, primary_key=True)
    value = Column(Integer, nullable=False, default=0)
