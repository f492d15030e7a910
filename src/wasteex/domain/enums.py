"""Domain enumerations for the WasteEx marketplace.

All enums use the (str, Enum) pattern to ensure JSON serialization compatibility.
"""

from enum import Enum


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


class UserRole(str, Enum):
    """Account role on the marketplace."""

    SELLER = "seller"
    BUYER = "buyer"
    ADMIN = "admin"


class Actor(str, Enum):
    """Who performs a lifecycle transition."""

    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"
    SYSTEM = "system"


class EmployeeCount(str, Enum):
    SIZE_1_10 = "1-10"
    SIZE_11_50 = "11-50"
    SIZE_51_200 = "51-200"
    SIZE_201_500 = "201-500"
    SIZE_500_PLUS = "500+"


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


class WasteCategory(str, Enum):
    """Category of a seller's waste listing."""

    PLASTIC = "Plastic Waste"
    METAL = "Metal Scrap"
    PAPER = "Paper Waste"
    TEXTILE = "Textile Waste"
    CHEMICAL = "Chemical Waste"
    ELECTRONIC = "Electronic Waste"
    RUBBER = "Rubber Waste"
    GLASS = "Glass Waste"
    WOOD = "Wood Waste"
    ORGANIC = "Organic Waste"


class MaterialCategory(str, Enum):
    """Category of a buyer's material request."""

    PLASTIC = "Plastic Materials"
    METAL = "Metal Materials"
    PAPER = "Paper Materials"
    TEXTILE = "Textile Materials"
    CHEMICAL = "Chemical Materials"
    ELECTRONIC = "Electronic Materials"
    RUBBER = "Rubber Materials"
    GLASS = "Glass Materials"
    WOOD = "Wood Materials"
    ORGANIC = "Organic Materials"


class QuantityUnit(str, Enum):
    KG = "kg"
    TONNES = "tonnes"
    LITERS = "liters"
    PIECES = "pieces"
    CUBIC_METERS = "m3"


class Frequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    ONE_TIME = "one-time"


class Urgency(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class QualityGrade(str, Enum):
    GRADE_A = "Grade A"
    GRADE_B = "Grade B"
    GRADE_C = "Grade C"
    INDUSTRIAL = "Industrial Grade"
    FOOD = "Food Grade"
    MEDICAL = "Medical Grade"


class ListingStatus(str, Enum):
    """Lifecycle of a waste listing."""

    ACTIVE = "active"
    INACTIVE = "inactive"
    SOLD = "sold"
    EXPIRED = "expired"
    SUSPENDED = "suspended"


class RequestStatus(str, Enum):
    """Lifecycle of a material request."""

    ACTIVE = "active"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class InquiryStatus(str, Enum):
    PENDING = "pending"
    RESPONDED = "responded"
    CLOSED = "closed"


class ResponseStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"


# ---------------------------------------------------------------------------
# Negotiation
# ---------------------------------------------------------------------------


class NegotiationStatus(str, Enum):
    """Lifecycle of a negotiation thread."""

    ACTIVE = "active"
    PENDING = "pending"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class NegotiationType(str, Enum):
    """Which catalog entry a negotiation was opened against."""

    LISTING = "listing"
    REQUEST = "request"


class ParticipantRole(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"


class MessageType(str, Enum):
    TEXT = "text"
    FILE = "file"
    OFFER = "offer"
    SYSTEM = "system"
    PRICE_DISCUSSION = "price-discussion"
    TERMS_DISCUSSION = "terms-discussion"


class OfferStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    COUNTERED = "countered"


class OfferDecision(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    COUNTER = "counter"


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


class ContractStatus(str, Enum):
    """Lifecycle of a contract record."""

    DRAFT = "draft"
    PENDING = "pending"
    SIGNED = "signed"
    EXECUTED = "executed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


class PaymentTerms(str, Enum):
    ADVANCE = "advance"
    COD = "cod"
    NET_15 = "net-15"
    NET_30 = "net-30"
    NET_45 = "net-45"


class ContractPaymentStatus(str, Enum):
    """Payment status as mirrored on the contract."""

    NOT_INITIATED = "not_initiated"
    PENDING = "pending"
    HELD_IN_ESCROW = "held_in_escrow"
    RELEASED_TO_SELLER = "released_to_seller"
    REFUNDED = "refunded"
    FAILED = "failed"


class MilestoneStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class DisputeStatus(str, Enum):
    OPEN = "open"
    INVESTIGATING = "investigating"
    RESOLVED = "resolved"


class LedgerSyncStatus(str, Enum):
    """State of mirroring contract signatures to the external ledger."""

    NOT_REQUESTED = "not_requested"
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"
    SKIPPED = "skipped"


class ContractEventType(str, Enum):
    """Audit trail entries recorded against a contract."""

    CREATED = "created"
    SIGNED = "signed"
    STATUS_CHANGED = "status_changed"
    MILESTONE_ADDED = "milestone_added"
    MILESTONE_COMPLETED = "milestone_completed"
    DISPUTE_RAISED = "dispute_raised"
    DISPUTE_RESOLVED = "dispute_resolved"
    LEDGER_SYNCED = "ledger_synced"
    LEDGER_FAILED = "ledger_failed"


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------


class PaymentStatus(str, Enum):
    """Escrow payment lifecycle."""

    PENDING = "pending"
    PAID_TO_PLATFORM = "paid_to_platform"
    HELD_IN_ESCROW = "held_in_escrow"
    RELEASED_TO_SELLER = "released_to_seller"
    REFUNDED = "refunded"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    RAZORPAY = "razorpay"
    BANK_TRANSFER = "bank_transfer"
    UPI = "upi"


# ---------------------------------------------------------------------------
# Logistics
# ---------------------------------------------------------------------------


class ShipmentStatus(str, Enum):
    """Shipment lifecycle."""

    CREATED = "created"
    PICKUP_SCHEDULED = "pickup-scheduled"
    PICKED_UP = "picked-up"
    IN_TRANSIT = "in-transit"
    OUT_FOR_DELIVERY = "out-for-delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    RETURNED = "returned"
    LOST = "lost"
    DAMAGED = "damaged"


class LogisticsProvider(str, Enum):
    DELHIVERY = "delhivery"
    PORTER = "porter"
    BLUEDART = "bluedart"
    DTDC = "dtdc"
    FEDEX = "fedex"
    CUSTOM = "custom"


class TrackingSource(str, Enum):
    SYSTEM = "system"
    PARTNER = "partner"
    MANUAL = "manual"
