"""Domain error taxonomy.

Services raise these; routes translate them into HTTP responses via
``wasteex.app.routes.common.to_http``. Every error carries a stable
``code`` and a message naming the condition that was violated.
"""


class MarketplaceError(Exception):
    """Base class for all marketplace rule violations."""

    code = "marketplace_error"
    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message}


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


class ValidationError(MarketplaceError):
    code = "validation_error"
    status_code = 400


class AuthorizationError(MarketplaceError):
    code = "forbidden"
    status_code = 403


class NotFoundError(MarketplaceError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} {entity_id} not found")


class ConflictError(MarketplaceError):
    code = "conflict"
    status_code = 409


class ExternalServiceError(MarketplaceError):
    code = "external_service_error"
    status_code = 502


# ---------------------------------------------------------------------------
# Authorization
# ---------------------------------------------------------------------------


class NotParticipant(AuthorizationError):
    code = "not_participant"

    def __init__(self, user_id: str, negotiation_id: str):
        super().__init__(
            f"user {user_id} is not a participant of negotiation {negotiation_id}"
        )


class NotParty(AuthorizationError):
    code = "not_party"

    def __init__(self, user_id: str, entity: str, entity_id: str):
        super().__init__(f"user {user_id} is not a party to {entity} {entity_id}")


# ---------------------------------------------------------------------------
# Conflicts
# ---------------------------------------------------------------------------


class NegotiationClosed(ConflictError):
    code = "negotiation_closed"

    def __init__(self, negotiation_id: str, status: str):
        super().__init__(f"negotiation {negotiation_id} is closed (status={status})")


class NegotiationNotAgreed(ConflictError):
    code = "negotiation_not_agreed"

    def __init__(self, negotiation_id: str):
        super().__init__(f"negotiation {negotiation_id} has no agreed terms")


class DuplicateContract(ConflictError):
    code = "duplicate_contract"

    def __init__(self, negotiation_id: str, contract_id: str):
        super().__init__(
            f"contract {contract_id} already exists for negotiation {negotiation_id}"
        )


class AlreadySigned(ConflictError):
    code = "already_signed"

    def __init__(self, contract_id: str, party: str):
        super().__init__(f"{party} has already signed contract {contract_id}")


class ContractNotSigned(ConflictError):
    code = "contract_not_signed"

    def __init__(self, contract_id: str, status: str):
        super().__init__(
            f"contract {contract_id} must be signed or executed (status={status})"
        )


class DuplicatePayment(ConflictError):
    code = "duplicate_payment"

    def __init__(self, contract_id: str, payment_id: str):
        super().__init__(f"payment {payment_id} already exists for contract {contract_id}")


class ReleaseConditionsNotMet(ConflictError):
    code = "release_conditions_not_met"

    def __init__(self, unmet: list[str]):
        self.unmet = unmet
        super().__init__(f"release conditions not met: {', '.join(unmet)}")


class NotEligibleForRefund(ConflictError):
    code = "not_eligible_for_refund"

    def __init__(self, payment_id: str, status: str):
        super().__init__(
            f"payment {payment_id} is not eligible for refund (status={status})"
        )


class InvalidTransitionError(ConflictError):
    """Raised when a lifecycle state transition is not allowed."""

    code = "invalid_transition"

    def __init__(self, current_status: str, target_status: str, reason: str):
        self.current_status = current_status
        self.target_status = target_status
        self.reason = reason
        super().__init__(
            f"Invalid transition from {current_status} to {target_status}: {reason}"
        )


class ConcurrentModificationError(ConflictError):
    code = "concurrent_modification"

    def __init__(self, entity: str, entity_id: str):
        super().__init__(f"{entity} {entity_id} was modified concurrently, retry the request")


# ---------------------------------------------------------------------------
# Validation / external
# ---------------------------------------------------------------------------


class SignatureInvalid(ValidationError):
    code = "signature_invalid"

    def __init__(self, payment_id: str):
        super().__init__(f"gateway signature verification failed for payment {payment_id}")


class GatewayError(ExternalServiceError):
    code = "gateway_error"


class LedgerError(ExternalServiceError):
    code = "ledger_error"
