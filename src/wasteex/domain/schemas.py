"""Pydantic v2 schemas for API request validation.

Bodies use camelCase on the wire (``agreedTerms``, ``qualityApproved``);
``populate_by_name`` also accepts the snake_case field names.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from wasteex.domain.enums import (
    EmployeeCount,
    Frequency,
    LogisticsProvider,
    MaterialCategory,
    MessageType,
    NegotiationStatus,
    NegotiationType,
    OfferDecision,
    PaymentMethod,
    PaymentTerms,
    QualityGrade,
    QuantityUnit,
    ShipmentStatus,
    TrackingSource,
    Urgency,
    WasteCategory,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class Address(CamelModel):
    street: Optional[str] = None
    city: str
    state: str
    pincode: str = Field(pattern=r"^\d{6}$")
    country: str = "India"


class CompanyCreate(CamelModel):
    """Company details captured at registration."""

    name: str = Field(min_length=1, max_length=200)
    gstin: str = Field(pattern=r"^[0-9A-Za-z]{15}$")
    pan: Optional[str] = Field(default=None, pattern=r"^[0-9A-Za-z]{10}$")
    address: Optional[Address] = None
    industry: Optional[str] = None
    established_year: Optional[int] = Field(default=None, ge=1800)
    employee_count: Optional[EmployeeCount] = None


class RegisterRequest(CamelModel):
    """Schema for creating a new marketplace account."""

    name: str = Field(min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(min_length=8)
    role: str = Field(pattern="^(seller|buyer)$")
    phone: Optional[str] = Field(default=None, pattern=r"^[6-9]\d{9}$")
    company: CompanyCreate


class LoginRequest(CamelModel):
    email: EmailStr
    password: str


class ProfileUpdate(CamelModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    phone: Optional[str] = Field(default=None, pattern=r"^[6-9]\d{9}$")
    avatar: Optional[str] = None
    preferences: Optional[dict[str, Any]] = None


class TokenResponse(BaseModel):
    """Schema for JWT token responses."""

    access_token: str
    token_type: str = "bearer"
    user: dict


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class Quantity(CamelModel):
    value: Decimal = Field(ge=0)
    unit: QuantityUnit


class Price(CamelModel):
    value: Decimal = Field(ge=0)
    currency: str = "INR"
    negotiable: bool = True


class ListingLocation(CamelModel):
    address: str
    city: str
    state: str
    pincode: str = Field(pattern=r"^\d{6}$")
    coordinates: Optional[dict[str, float]] = None


class ListingCreate(CamelModel):
    """Schema for a new waste listing."""

    title: str = Field(min_length=5, max_length=100)
    waste_type: str = Field(min_length=1, max_length=100)
    category: WasteCategory
    quantity: Quantity
    frequency: Frequency
    price: Price
    location: ListingLocation
    urgency: Urgency = Urgency.MEDIUM
    description: Optional[str] = Field(default=None, max_length=1000)
    images: list[dict[str, Any]] = Field(default_factory=list)
    documents: list[dict[str, Any]] = Field(default_factory=list)
    msds: Optional[dict[str, Any]] = None
    specifications: Optional[dict[str, Any]] = None
    hazardous: bool = False
    certifications: list[str] = Field(default_factory=list)
    expiry_date: Optional[datetime] = None
    tags: list[str] = Field(default_factory=list)


class ListingUpdate(CamelModel):
    """Partial listing update. Nested objects are merged, not replaced."""

    title: Optional[str] = Field(default=None, min_length=5, max_length=100)
    waste_type: Optional[str] = None
    category: Optional[WasteCategory] = None
    quantity: Optional[dict[str, Any]] = None
    frequency: Optional[Frequency] = None
    price: Optional[dict[str, Any]] = None
    location: Optional[dict[str, Any]] = None
    urgency: Optional[Urgency] = None
    description: Optional[str] = Field(default=None, max_length=1000)
    images: Optional[list[dict[str, Any]]] = None
    documents: Optional[list[dict[str, Any]]] = None
    msds: Optional[dict[str, Any]] = None
    specifications: Optional[dict[str, Any]] = None
    hazardous: Optional[bool] = None
    certifications: Optional[list[str]] = None
    tags: Optional[list[str]] = None


class InquiryCreate(CamelModel):
    message: str = Field(min_length=10, max_length=500)
    contact_info: Optional[dict[str, Any]] = None


class StatusChange(CamelModel):
    status: str
    reason: Optional[str] = None


class Budget(CamelModel):
    min: Decimal = Field(ge=0)
    max: Decimal = Field(ge=0)
    currency: str = "INR"

    @model_validator(mode="after")
    def _check_range(self):
        if self.max < self.min:
            raise ValueError("budget max must be greater than or equal to min")
        return self


class RequestLocation(CamelModel):
    preferred_cities: list[str] = Field(default_factory=list)
    state: Optional[str] = None
    max_distance: Optional[int] = Field(default=None, ge=0)
    coordinates: Optional[dict[str, float]] = None


class MaterialRequestCreate(CamelModel):
    """Schema for a new material request."""

    title: str = Field(min_length=5, max_length=100)
    material_type: str = Field(min_length=1, max_length=100)
    category: MaterialCategory
    quantity: Quantity
    frequency: Frequency
    budget: Budget
    location: RequestLocation = Field(default_factory=RequestLocation)
    quality_grade: Optional[QualityGrade] = None
    specifications: Optional[dict[str, Any]] = None
    description: Optional[str] = Field(default=None, max_length=1000)
    urgency: Urgency = Urgency.MEDIUM
    delivery_requirements: Optional[dict[str, Any]] = None
    expiry_date: Optional[datetime] = None
    tags: list[str] = Field(default_factory=list)


class MaterialRequestUpdate(CamelModel):
    title: Optional[str] = Field(default=None, min_length=5, max_length=100)
    material_type: Optional[str] = None
    category: Optional[MaterialCategory] = None
    quantity: Optional[dict[str, Any]] = None
    frequency: Optional[Frequency] = None
    budget: Optional[dict[str, Any]] = None
    location: Optional[dict[str, Any]] = None
    quality_grade: Optional[QualityGrade] = None
    specifications: Optional[dict[str, Any]] = None
    description: Optional[str] = Field(default=None, max_length=1000)
    urgency: Optional[Urgency] = None
    delivery_requirements: Optional[dict[str, Any]] = None
    tags: Optional[list[str]] = None


class RequestRespond(CamelModel):
    message: str = Field(min_length=10, max_length=1000)
    listing_id: Optional[str] = None
    proposed_price: Optional[Decimal] = Field(default=None, ge=0)


# ---------------------------------------------------------------------------
# Negotiation
# ---------------------------------------------------------------------------


class OfferTerms(CamelModel):
    """Terms of a single offer. price and quantity are required."""

    price: Decimal = Field(gt=0)
    quantity: Decimal = Field(gt=0)
    delivery_date: Optional[datetime] = None
    terms: Optional[str] = None
    payment_terms: Optional[PaymentTerms] = None
    quality_specs: Optional[str] = None
    logistics: Optional[dict[str, Any]] = None


class NegotiationCreate(CamelModel):
    title: str = Field(min_length=5, max_length=200)
    type: NegotiationType
    related_id: str
    participant_id: Optional[str] = None
    initial_message: Optional[str] = None


class MessageCreate(CamelModel):
    content: str = Field(max_length=2000)
    type: MessageType = MessageType.TEXT
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    offer: Optional[OfferTerms] = None

    @field_validator("content")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("message content must not be empty")
        return value


class OfferProposal(CamelModel):
    offer: OfferTerms
    message: Optional[str] = None


class OfferRespond(CamelModel):
    decision: OfferDecision
    counter_offer: Optional[OfferTerms] = None
    message: Optional[str] = None


class NegotiationStatusUpdate(CamelModel):
    status: NegotiationStatus


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class ContractCreate(CamelModel):
    negotiation_id: str
    title: Optional[str] = Field(default=None, max_length=200)
    delivery_location: Optional[dict[str, Any]] = None
    quality_specs: Optional[str] = None
    packaging_requirements: Optional[str] = None
    inspection_rights: Optional[str] = None
    penalties: Optional[str] = None
    payment_terms: Optional[PaymentTerms] = None


class SignRequest(CamelModel):
    signature: str = Field(min_length=1)


class MilestoneCreate(CamelModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    due_date: Optional[datetime] = None


class DisputeCreate(CamelModel):
    reason: str = Field(min_length=3, max_length=200)
    description: Optional[str] = None


class DisputeResolve(CamelModel):
    resolution: str = Field(min_length=3)


class ContractCancel(CamelModel):
    reason: Optional[str] = None


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------


class CreateOrderRequest(CamelModel):
    contract_id: str
    payment_method: PaymentMethod = PaymentMethod.RAZORPAY


class VerifyPaymentRequest(CamelModel):
    payment_id: str
    gateway_payment_id: str
    gateway_signature: str


class ConfirmDeliveryRequest(CamelModel):
    quality_approved: bool = True
    notes: Optional[str] = None


class RefundRequestBody(CamelModel):
    reason: str = Field(min_length=5, max_length=1000)


class RefundDecision(CamelModel):
    approved: bool
    notes: Optional[str] = None


# ---------------------------------------------------------------------------
# Logistics
# ---------------------------------------------------------------------------


class LogisticsInfo(CamelModel):
    provider: LogisticsProvider = LogisticsProvider.CUSTOM
    tracking_number: Optional[str] = None
    partner_order_id: Optional[str] = None
    contact_person: Optional[dict[str, Any]] = None


class ShipmentEndpoint(CamelModel):
    address: dict[str, Any]
    scheduled_date: Optional[datetime] = None
    estimated_date: Optional[datetime] = None
    contact_person: Optional[dict[str, Any]] = None
    instructions: Optional[str] = None


class Cargo(CamelModel):
    description: str = Field(min_length=1)
    weight: Optional[dict[str, Any]] = None
    dimensions: Optional[dict[str, Any]] = None
    packaging: Optional[str] = None
    special_handling: list[str] = Field(default_factory=list)
    hazardous: bool = False
    value: Optional[Decimal] = Field(default=None, ge=0)


class ShipmentCreate(CamelModel):
    contract_id: str
    logistics: LogisticsInfo = Field(default_factory=LogisticsInfo)
    pickup: ShipmentEndpoint
    delivery: ShipmentEndpoint
    cargo: Cargo
    cost: Optional[dict[str, Any]] = None
    insurance: Optional[dict[str, Any]] = None


class ShipmentStatusUpdate(CamelModel):
    status: ShipmentStatus
    description: Optional[str] = None
    location: Optional[dict[str, Any]] = None
    source: TrackingSource = TrackingSource.SYSTEM


class TrackingEventCreate(CamelModel):
    status: ShipmentStatus
    description: str = Field(min_length=1)
    location: Optional[dict[str, Any]] = None
    source: TrackingSource = TrackingSource.PARTNER


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class CompanyVerify(CamelModel):
    verified: bool = True


class UserActiveUpdate(CamelModel):
    is_active: bool
