"""Lifecycle state machines: validate status transitions for every aggregate.

Each status field (negotiation, offer, contract, payment, shipment, listing,
request) has a transition map ``from_status -> {to_status: allowed_actors}``
plus a terminal set. "Escape" transitions apply from any non-terminal status
(cancellation, failure, dispute) so they are not repeated in every row.
"""

from enum import Enum
from typing import Iterable, Optional

from wasteex.domain.enums import (
    Actor,
    ContractStatus,
    ListingStatus,
    NegotiationStatus,
    OfferStatus,
    PaymentStatus,
    RequestStatus,
    ShipmentStatus,
)
from wasteex.domain.errors import InvalidTransitionError

A = Actor
PARTIES = {A.BUYER, A.SELLER}


def _value(status) -> str:
    return status.value if isinstance(status, Enum) else str(status)


class LifecycleStateMachine:
    """Validates transitions for one status enum.

    Args:
        name: Entity name used in log and error messages.
        status_enum: The (str, Enum) class of the status field.
        transition_map: from_status -> {to_status: set_of_allowed_actors}.
        terminal_states: States with no outgoing transitions.
        escape_transitions: to_status -> allowed actors, legal from any
            non-terminal state (unless listed in ``escape_exclusions``).
        escape_exclusions: to_status -> states from which the escape is not allowed.
    """

    def __init__(
        self,
        name: str,
        status_enum: type[Enum],
        transition_map: dict,
        terminal_states: Iterable,
        escape_transitions: Optional[dict] = None,
        escape_exclusions: Optional[dict] = None,
    ):
        self.name = name
        self.status_enum = status_enum
        self.transition_map = transition_map
        self.terminal_states = set(terminal_states)
        self.escape_transitions = escape_transitions or {}
        self.escape_exclusions = escape_exclusions or {}

    def coerce(self, status):
        """Return the enum member for a raw status string."""
        try:
            return self.status_enum(_value(status))
        except ValueError:
            raise InvalidTransitionError(
                _value(status), "?", f"Unknown {self.name} status {_value(status)!r}"
            ) from None

    def is_terminal(self, status) -> bool:
        return self.coerce(status) in self.terminal_states

    def _allowed_actors(self, current, target) -> Optional[set]:
        targets = self.transition_map.get(current, {})
        if target in targets:
            return set(targets[target])
        if (
            target in self.escape_transitions
            and current not in self.terminal_states
            and current != target
            and current not in self.escape_exclusions.get(target, ())
        ):
            return set(self.escape_transitions[target])
        return None

    def validate_transition(self, current_status, target_status, actor: Actor) -> bool:
        """Return True if the transition is valid. Raise InvalidTransitionError if not."""
        current = self.coerce(current_status)
        target = self.coerce(target_status)

        if current in self.terminal_states:
            raise InvalidTransitionError(
                current.value,
                target.value,
                f"{self.name} is in terminal state {current.value}",
            )

        allowed_actors = self._allowed_actors(current, target)
        if allowed_actors is None:
            raise InvalidTransitionError(
                current.value,
                target.value,
                f"Transition from {current.value} to {target.value} is not allowed",
            )

        if actor not in allowed_actors:
            raise InvalidTransitionError(
                current.value,
                target.value,
                f"Actor {actor.value} is not permitted for this transition "
                f"(allowed: {', '.join(sorted(a.value for a in allowed_actors))})",
            )
        return True

    def allowed_transitions(self, current_status, actor: Actor) -> list:
        """Return the list of states reachable from current_status by actor."""
        current = self.coerce(current_status)
        if current in self.terminal_states:
            return []
        return [
            target
            for target in self.status_enum
            if actor in (self._allowed_actors(current, target) or set())
        ]


# ---------------------------------------------------------------------------
# Negotiation
# ---------------------------------------------------------------------------

N = NegotiationStatus

NEGOTIATION_TRANSITIONS = {
    N.ACTIVE: {
        N.PENDING: PARTIES | {A.SYSTEM},
        N.COMPLETED: PARTIES | {A.SYSTEM},
    },
    N.PENDING: {
        N.ACTIVE: PARTIES,
        N.COMPLETED: PARTIES | {A.SYSTEM},
    },
}
NEGOTIATION_TERMINAL = {N.COMPLETED, N.CANCELLED, N.EXPIRED}

negotiation_machine = LifecycleStateMachine(
    "negotiation",
    NegotiationStatus,
    NEGOTIATION_TRANSITIONS,
    NEGOTIATION_TERMINAL,
    escape_transitions={
        N.CANCELLED: PARTIES | {A.ADMIN},
        N.EXPIRED: {A.SYSTEM, A.ADMIN},
    },
)

# ---------------------------------------------------------------------------
# Offer
# ---------------------------------------------------------------------------

OS = OfferStatus

OFFER_TRANSITIONS = {
    OS.PENDING: {
        OS.ACCEPTED: PARTIES,
        OS.REJECTED: PARTIES,
        OS.COUNTERED: PARTIES,
    },
}

offer_machine = LifecycleStateMachine(
    "offer",
    OfferStatus,
    OFFER_TRANSITIONS,
    {OS.ACCEPTED, OS.REJECTED, OS.COUNTERED},
)

# ---------------------------------------------------------------------------
# Contract
# ---------------------------------------------------------------------------

C = ContractStatus

CONTRACT_TRANSITIONS = {
    C.DRAFT: {
        C.PENDING: {A.SYSTEM},  # first signature
        C.SIGNED: {A.SYSTEM},
    },
    C.PENDING: {
        C.SIGNED: {A.SYSTEM},  # second distinct signature
    },
    C.SIGNED: {
        C.EXECUTED: {A.SYSTEM},  # escrow funded
    },
    C.EXECUTED: {
        C.COMPLETED: {A.SYSTEM},  # funds released
    },
    # Dispute resolution restores the status recorded before the dispute.
    C.DISPUTED: {
        C.DRAFT: {A.ADMIN},
        C.PENDING: {A.ADMIN},
        C.SIGNED: {A.ADMIN},
        C.EXECUTED: {A.ADMIN},
        C.CANCELLED: {A.ADMIN, A.SYSTEM},
    },
}
CONTRACT_TERMINAL = {C.COMPLETED, C.CANCELLED}

contract_machine = LifecycleStateMachine(
    "contract",
    ContractStatus,
    CONTRACT_TRANSITIONS,
    CONTRACT_TERMINAL,
    escape_transitions={
        C.CANCELLED: PARTIES | {A.ADMIN, A.SYSTEM},
        C.DISPUTED: PARTIES,
    },
)

# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------

P = PaymentStatus

PAYMENT_TRANSITIONS = {
    P.PENDING: {
        P.PAID_TO_PLATFORM: {A.SYSTEM},
    },
    P.PAID_TO_PLATFORM: {
        P.HELD_IN_ESCROW: {A.SYSTEM},
    },
    P.HELD_IN_ESCROW: {
        P.RELEASED_TO_SELLER: {A.BUYER, A.ADMIN},
        P.REFUNDED: {A.SELLER, A.ADMIN},
    },
}
PAYMENT_TERMINAL = {P.RELEASED_TO_SELLER, P.REFUNDED, P.FAILED}

payment_machine = LifecycleStateMachine(
    "payment",
    PaymentStatus,
    PAYMENT_TRANSITIONS,
    PAYMENT_TERMINAL,
    escape_transitions={P.FAILED: {A.SYSTEM, A.ADMIN}},
)

# ---------------------------------------------------------------------------
# Shipment
# ---------------------------------------------------------------------------

SH = ShipmentStatus

# Forward order; a status may only be followed by one further along.
SHIPMENT_PROGRESSION = [
    SH.CREATED,
    SH.PICKUP_SCHEDULED,
    SH.PICKED_UP,
    SH.IN_TRANSIT,
    SH.OUT_FOR_DELIVERY,
    SH.DELIVERED,
]
_SHIPMENT_ACTORS = PARTIES | {A.ADMIN, A.SYSTEM}

SHIPMENT_TRANSITIONS = {
    status: {later: _SHIPMENT_ACTORS for later in SHIPMENT_PROGRESSION[index + 1:]}
    for index, status in enumerate(SHIPMENT_PROGRESSION)
}
SHIPMENT_TRANSITIONS[SH.DELIVERED] = {
    SH.RETURNED: _SHIPMENT_ACTORS,
    SH.DAMAGED: _SHIPMENT_ACTORS,
}
for _status in (SH.IN_TRANSIT, SH.OUT_FOR_DELIVERY):
    SHIPMENT_TRANSITIONS[_status][SH.RETURNED] = _SHIPMENT_ACTORS

SHIPMENT_TERMINAL = {SH.CANCELLED, SH.RETURNED, SH.LOST}

shipment_machine = LifecycleStateMachine(
    "shipment",
    ShipmentStatus,
    SHIPMENT_TRANSITIONS,
    SHIPMENT_TERMINAL,
    escape_transitions={
        SH.CANCELLED: _SHIPMENT_ACTORS,
        SH.LOST: _SHIPMENT_ACTORS,
        SH.DAMAGED: _SHIPMENT_ACTORS,
    },
    escape_exclusions={
        SH.CANCELLED: {SH.DELIVERED, SH.DAMAGED},
        SH.LOST: {SH.DELIVERED, SH.DAMAGED},
    },
)

# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

L = ListingStatus

LISTING_TRANSITIONS = {
    L.ACTIVE: {
        L.INACTIVE: {A.SELLER, A.ADMIN},
        L.SOLD: {A.SELLER, A.SYSTEM},
        L.EXPIRED: {A.SYSTEM},
    },
    L.INACTIVE: {
        L.ACTIVE: {A.SELLER, A.ADMIN},
        L.EXPIRED: {A.SYSTEM},
    },
    L.SUSPENDED: {
        L.ACTIVE: {A.ADMIN},
        L.INACTIVE: {A.ADMIN},
    },
}

listing_machine = LifecycleStateMachine(
    "listing",
    ListingStatus,
    LISTING_TRANSITIONS,
    {L.SOLD, L.EXPIRED},
    escape_transitions={L.SUSPENDED: {A.ADMIN}},
)

R = RequestStatus

REQUEST_TRANSITIONS = {
    R.ACTIVE: {
        R.FULFILLED: {A.BUYER, A.SYSTEM},
        R.CANCELLED: {A.BUYER, A.ADMIN},
        R.EXPIRED: {A.SYSTEM},
    },
}

request_machine = LifecycleStateMachine(
    "request",
    RequestStatus,
    REQUEST_TRANSITIONS,
    {R.FULFILLED, R.CANCELLED, R.EXPIRED},
)


def shipment_is_regression(current_status, target_status) -> bool:
    """True if target is earlier than current in the forward shipment order."""
    current = SH(_value(current_status))
    target = SH(_value(target_status))
    if current not in SHIPMENT_PROGRESSION or target not in SHIPMENT_PROGRESSION:
        return False
    return SHIPMENT_PROGRESSION.index(target) < SHIPMENT_PROGRESSION.index(current)
