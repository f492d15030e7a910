"""Serialize ORM rows into camelCase JSON documents for API responses."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from wasteex.domain.models import (
    Company,
    Contract,
    Listing,
    MaterialRequest,
    Negotiation,
    NegotiationMessage,
    Payment,
    Shipment,
    User,
)
from wasteex.services.negotiation_service import unread_count


def _dt(val) -> Optional[str]:
    if val is None:
        return None
    if isinstance(val, datetime):
        return val.isoformat()
    return str(val)


def _num(val) -> Optional[float]:
    if val is None:
        return None
    if isinstance(val, Decimal):
        return float(val)
    return val


def pagination(page: int, limit: int, total: int) -> dict:
    pages = (total + limit - 1) // limit if limit else 0
    return {
        "current": page,
        "pages": pages,
        "total": total,
        "hasNext": page < pages,
        "hasPrev": page > 1,
    }


# ---------------------------------------------------------------------------
# Identity
# ---------------------------------------------------------------------------


def serialize_company(company: Optional[Company]) -> Optional[dict]:
    if company is None:
        return None
    return {
        "id": company.id,
        "name": company.name,
        "gstin": company.gstin,
        "pan": company.pan,
        "address": company.address,
        "verified": company.verified,
        "verificationDate": _dt(company.verification_date),
        "industry": company.industry,
        "establishedYear": company.established_year,
        "employeeCount": company.employee_count,
    }


def serialize_user(user: User, private: bool = False) -> dict:
    """Public profile; ``private`` adds fields only the owner and admins see."""
    data = {
        "id": user.id,
        "name": user.name,
        "role": user.role,
        "avatar": user.avatar,
        "company": serialize_company(user.company),
    }
    if private:
        data.update({
            "email": user.email,
            "phone": user.phone,
            "isActive": user.is_active,
            "emailVerified": user.email_verified,
            "lastLogin": _dt(user.last_login_at),
            "preferences": user.preferences or {},
            "stats": {
                "totalDeals": user.total_deals or 0,
                "totalValue": _num(user.total_value) or 0,
            },
            "createdAt": _dt(user.created_at),
        })
    return data


def _user_brief(user: Optional[User]) -> Optional[dict]:
    if user is None:
        return None
    return {
        "id": user.id,
        "name": user.name,
        "company": user.company.name if user.company else None,
        "verified": bool(user.company and user.company.verified),
    }


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------


def serialize_listing(listing: Listing, include_inquiries: bool = False) -> dict:
    data = {
        "id": listing.id,
        "seller": _user_brief(listing.seller),
        "title": listing.title,
        "wasteType": listing.waste_type,
        "category": listing.category,
        "quantity": {"value": _num(listing.quantity_value), "unit": listing.quantity_unit},
        "frequency": listing.frequency,
        "price": {
            "value": _num(listing.price_value),
            "currency": listing.currency,
            "negotiable": listing.negotiable,
        },
        "location": listing.location,
        "urgency": listing.urgency,
        "description": listing.description,
        "images": listing.images or [],
        "documents": listing.documents or [],
        "msds": listing.msds,
        "specifications": listing.specifications or {},
        "hazardous": listing.hazardous,
        "certifications": listing.certifications or [],
        "status": listing.status,
        "views": listing.views,
        "inquiryCount": len(listing.inquiries),
        "expiryDate": _dt(listing.expiry_date),
        "featured": listing.featured,
        "tags": listing.tags or [],
        "createdAt": _dt(listing.created_at),
        "updatedAt": _dt(listing.updated_at),
    }
    if include_inquiries:
        data["inquiries"] = [
            {
                "id": inquiry.id,
                "buyer": inquiry.buyer_id,
                "message": inquiry.message,
                "contactInfo": inquiry.contact_info,
                "status": inquiry.status,
                "createdAt": _dt(inquiry.created_at),
            }
            for inquiry in listing.inquiries
        ]
    return data


def serialize_request(request: MaterialRequest, include_responses: bool = False) -> dict:
    data = {
        "id": request.id,
        "buyer": _user_brief(request.buyer),
        "title": request.title,
        "materialType": request.material_type,
        "category": request.category,
        "quantity": {"value": _num(request.quantity_value), "unit": request.quantity_unit},
        "frequency": request.frequency,
        "budget": {
            "min": _num(request.budget_min),
            "max": _num(request.budget_max),
            "currency": request.currency,
        },
        "location": request.location or {},
        "qualityGrade": request.quality_grade,
        "specifications": request.specifications or {},
        "description": request.description,
        "urgency": request.urgency,
        "deliveryRequirements": request.delivery_requirements or {},
        "status": request.status,
        "responseCount": len(request.responses),
        "expiryDate": _dt(request.expiry_date),
        "tags": request.tags or [],
        "createdAt": _dt(request.created_at),
        "updatedAt": _dt(request.updated_at),
    }
    if include_responses:
        data["responses"] = [
            {
                "id": response.id,
                "seller": response.seller_id,
                "listing": response.listing_id,
                "message": response.message,
                "proposedPrice": _num(response.proposed_price),
                "status": response.status,
                "createdAt": _dt(response.created_at),
            }
            for response in request.responses
        ]
    return data


# ---------------------------------------------------------------------------
# Negotiation
# ---------------------------------------------------------------------------


def serialize_message(message: NegotiationMessage) -> dict:
    return {
        "id": message.id,
        "sender": message.sender_id,
        "content": message.content,
        "type": message.message_type,
        "attachments": message.attachments or [],
        "offer": message.offer,
        "readBy": message.read_by or [],
        "timestamp": _dt(message.created_at),
    }


def serialize_negotiation(
    negotiation: Negotiation,
    viewer_id: Optional[str] = None,
    include_messages: bool = True,
) -> dict:
    data = {
        "id": negotiation.id,
        "title": negotiation.title,
        "participants": [
            {
                "user": _user_brief(negotiation.buyer),
                "role": "buyer",
                "joinedAt": _dt(negotiation.buyer_joined_at),
            },
            {
                "user": _user_brief(negotiation.seller),
                "role": "seller",
                "joinedAt": _dt(negotiation.seller_joined_at),
            },
        ],
        "relatedListing": negotiation.related_listing_id,
        "relatedRequest": negotiation.related_request_id,
        "status": negotiation.status,
        "currentOffer": negotiation.current_offer,
        "agreedTerms": negotiation.agreed_terms,
        "dealValue": _num(negotiation.deal_value),
        "contract": negotiation.contract_id,
        "lastActivity": _dt(negotiation.last_activity),
        "priority": negotiation.priority,
        "tags": negotiation.tags or [],
        "messageCount": len(negotiation.messages),
        "createdAt": _dt(negotiation.created_at),
    }
    if viewer_id is not None:
        data["unreadCount"] = unread_count(negotiation, viewer_id)
    if include_messages:
        data["messages"] = [serialize_message(m) for m in negotiation.messages]
    return data


# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------


def serialize_contract(contract: Contract) -> dict:
    receipts = {r.party_role: r for r in contract.ledger_receipts}
    first_receipt = next(iter(contract.ledger_receipts), None)
    return {
        "id": contract.id,
        "contractNumber": contract.contract_number,
        "title": contract.title,
        "parties": {
            "seller": {
                "user": _user_brief(contract.seller),
                "company": contract.seller_company_id,
                "signedAt": _dt(contract.seller_signed_at),
                "ipAddress": contract.seller_ip,
            },
            "buyer": {
                "user": _user_brief(contract.buyer),
                "company": contract.buyer_company_id,
                "signedAt": _dt(contract.buyer_signed_at),
                "ipAddress": contract.buyer_ip,
            },
        },
        "relatedNegotiation": contract.negotiation_id,
        "relatedListing": contract.listing_id,
        "relatedRequest": contract.request_id,
        "terms": contract.terms,
        "status": contract.status,
        "isFullySigned": contract.is_fully_signed,
        "blockchain": {
            "deployed": bool(receipts),
            "contractAddress": first_receipt.contract_address if first_receipt else None,
            "transactionHash": first_receipt.transaction_hash if first_receipt else None,
            "blockNumber": first_receipt.block_number if first_receipt else None,
            "gasUsed": first_receipt.gas_used if first_receipt else None,
            "deployedAt": _dt(first_receipt.recorded_at) if first_receipt else None,
            "sellerSignatureTx": receipts["seller"].transaction_hash if "seller" in receipts else None,
            "buyerSignatureTx": receipts["buyer"].transaction_hash if "buyer" in receipts else None,
            "syncStatus": contract.ledger_sync_status,
            "attempts": contract.ledger_attempts,
            "lastError": contract.ledger_last_error,
        },
        "payment": contract.payment_id,
        "paymentStatus": contract.payment_status,
        "platformFee": {
            "percentage": _num(contract.platform_fee_percentage),
            "amount": _num(contract.platform_fee_amount),
            "paid": contract.platform_fee_paid,
            "paidAt": _dt(contract.platform_fee_paid_at),
        },
        "milestones": [
            {
                "id": m.id,
                "title": m.title,
                "description": m.description,
                "dueDate": _dt(m.due_date),
                "status": m.status,
                "completedAt": _dt(m.completed_at),
                "completedBy": m.completed_by,
            }
            for m in contract.milestones
        ],
        "disputes": [
            {
                "id": d.id,
                "raisedBy": d.raised_by,
                "reason": d.reason,
                "description": d.description,
                "status": d.status,
                "resolution": d.resolution,
                "raisedAt": _dt(d.raised_at),
                "resolvedAt": _dt(d.resolved_at),
            }
            for d in contract.disputes
        ],
        "auditTrail": [
            {
                "action": e.event_type,
                "actor": e.actor,
                "user": e.actor_id,
                "fromStatus": e.from_status,
                "toStatus": e.to_status,
                "ipAddress": e.ip_address,
                "details": e.data,
                "timestamp": _dt(e.created_at),
            }
            for e in contract.events
        ],
        "createdAt": _dt(contract.created_at),
        "updatedAt": _dt(contract.updated_at),
    }


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------


def serialize_payment(payment: Payment) -> dict:
    return {
        "id": payment.id,
        "paymentId": payment.payment_number,
        "contract": payment.contract_id,
        "buyer": payment.buyer_id,
        "seller": payment.seller_id,
        "amount": {
            "total": _num(payment.total_amount),
            "sellerAmount": _num(payment.seller_amount),
            "platformFee": _num(payment.platform_fee),
            "currency": payment.currency,
        },
        "status": payment.status,
        "paymentMethod": payment.payment_method,
        "gatewayDetails": {
            "provider": payment.gateway_provider,
            "transactionId": payment.transaction_id,
            "gatewayOrderId": payment.gateway_order_id,
            "gatewayPaymentId": payment.gateway_payment_id,
        },
        "escrow": {
            "heldAt": _dt(payment.held_at),
            "releaseConditions": {
                "deliveryConfirmed": payment.delivery_confirmed,
                "qualityApproved": payment.quality_approved,
                "disputeResolved": payment.dispute_resolved,
            },
            "releasedAt": _dt(payment.released_at),
            "autoReleaseDate": _dt(payment.auto_release_date),
        },
        "canRelease": payment.can_release,
        "timeline": [
            {
                "status": t.status,
                "description": t.description,
                "user": t.actor_id,
                "data": t.data,
                "timestamp": _dt(t.created_at),
            }
            for t in payment.timeline
        ],
        "refund": {
            "requested": payment.refund_requested,
            "requestedAt": _dt(payment.refund_requested_at),
            "requestedBy": payment.refund_requested_by,
            "reason": payment.refund_reason,
            "approved": payment.refund_approved,
            "approvedAt": _dt(payment.refund_approved_at),
            "approvedBy": payment.refund_approved_by,
            "refundAmount": _num(payment.refund_amount),
        },
        "dispute": {
            "raised": payment.dispute_raised,
            "raisedBy": payment.dispute_raised_by,
            "reason": payment.dispute_reason,
            "status": payment.dispute_status,
            "resolution": payment.dispute_resolution,
            "resolvedAt": _dt(payment.dispute_resolved_at),
        },
        "createdAt": _dt(payment.created_at),
        "updatedAt": _dt(payment.updated_at),
    }


# ---------------------------------------------------------------------------
# Logistics
# ---------------------------------------------------------------------------


def serialize_shipment(shipment: Shipment) -> dict:
    pickup = dict(shipment.pickup or {})
    pickup["actualDate"] = _dt(shipment.pickup_actual_date)
    delivery = dict(shipment.delivery or {})
    delivery["actualDate"] = _dt(shipment.delivery_actual_date)
    return {
        "id": shipment.id,
        "shipmentNumber": shipment.shipment_number,
        "contract": shipment.contract_id,
        "seller": shipment.seller_id,
        "buyer": shipment.buyer_id,
        "logistics": {
            "provider": shipment.provider,
            "trackingNumber": shipment.tracking_number,
            "partnerOrderId": shipment.partner_order_id,
            "contactPerson": shipment.logistics_contact,
        },
        "pickup": pickup,
        "delivery": delivery,
        "cargo": shipment.cargo,
        "status": shipment.status,
        "tracking": [
            {
                "status": t.status,
                "location": t.location,
                "description": t.description,
                "source": t.source,
                "timestamp": _dt(t.timestamp),
            }
            for t in shipment.tracking
        ],
        "cost": shipment.cost,
        "insurance": shipment.insurance,
        "createdAt": _dt(shipment.created_at),
        "updatedAt": _dt(shipment.updated_at),
    }
