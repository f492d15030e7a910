"""Tests for contract generation, dual signing, milestones and disputes."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from wasteex.domain.enums import (
    ContractEventType,
    ContractStatus,
    LedgerSyncStatus,
    NegotiationStatus,
)
from wasteex.domain.errors import (
    AlreadySigned,
    AuthorizationError,
    ConflictError,
    DuplicateContract,
    InvalidTransitionError,
    NegotiationNotAgreed,
    NotParty,
)
from wasteex.domain.schemas import ContractCreate, DisputeCreate, MilestoneCreate
from wasteex.services.contract_service import ContractService
from wasteex.services.escrow_service import EscrowService
from wasteex.services.signature_ledger import NullSignatureLedger, SignatureStatus


@pytest.fixture
def service():
    return ContractService()


class TestCreateContract:
    """Generating a contract from agreed terms."""

    async def test_contract_from_agreed_terms(self, db_session, service, agreed_negotiation):
        negotiation, buyer, seller = await agreed_negotiation(price="100", quantity="10")
        contract = await service.create_contract(
            db_session, buyer, ContractCreate(negotiation_id=negotiation.id)
        )

        assert contract.status == ContractStatus.DRAFT.value
        assert contract.contract_number.startswith("WE-")
        assert contract.seller_id == seller.id
        assert contract.buyer_id == buyer.id
        assert contract.terms["totalValue"] == 1000.0
        assert contract.terms["materialType"] == "HDPE"
        assert contract.events[0].event_type == ContractEventType.CREATED.value
        assert negotiation.contract_id == contract.id
        assert negotiation.status == NegotiationStatus.COMPLETED.value

    async def test_requires_agreed_terms(self, db_session, service, make_negotiation):
        negotiation, buyer, _ = await make_negotiation()
        with pytest.raises(NegotiationNotAgreed):
            await service.create_contract(db_session, buyer, ContractCreate(negotiation_id=negotiation.id))

    async def test_one_contract_per_negotiation(self, db_session, service, agreed_negotiation):
        negotiation, buyer, seller = await agreed_negotiation()
        first = await service.create_contract(db_session, buyer, ContractCreate(negotiation_id=negotiation.id))

        with pytest.raises(DuplicateContract) as exc_info:
            await service.create_contract(db_session, seller, ContractCreate(negotiation_id=negotiation.id))
        assert first.id in str(exc_info.value)

    async def test_outsider_cannot_create(self, db_session, service, agreed_negotiation, make_user):
        negotiation, _, _ = await agreed_negotiation()
        outsider = await make_user("buyer")
        with pytest.raises(AuthorizationError):
            await service.create_contract(db_session, outsider, ContractCreate(negotiation_id=negotiation.id))

    async def test_contract_numbers_are_sequential(self, db_session, service, make_contract):
        first, _, _ = await make_contract()
        second, _, _ = await make_contract()
        first_ordinal = int(first.contract_number.rsplit("-", 1)[1])
        second_ordinal = int(second.contract_number.rsplit("-", 1)[1])
        assert second_ordinal == first_ordinal + 1


class TestSigning:
    """Dual signature rules."""

    async def test_first_signature_moves_to_pending(self, db_session, service, make_contract):
        contract, buyer, seller = await make_contract()
        contract = await service.sign(db_session, contract.id, seller, "sig-s", "10.0.0.1")

        assert contract.status == ContractStatus.PENDING.value
        assert contract.seller_signed_at is not None
        assert contract.seller_ip == "10.0.0.1"
        assert contract.is_fully_signed is False
        assert contract.ledger_sync_status == LedgerSyncStatus.NOT_REQUESTED.value

    async def test_second_signature_moves_to_signed(self, db_session, service, make_contract):
        contract, _, _ = await make_contract(signed=True)
        assert contract.status == ContractStatus.SIGNED.value
        assert contract.is_fully_signed is True
        assert contract.ledger_sync_status == LedgerSyncStatus.PENDING.value
        signed_events = [e for e in contract.events if e.event_type == ContractEventType.SIGNED.value]
        assert [e.data["party"] for e in signed_events] == ["seller", "buyer"]

    async def test_same_party_cannot_sign_twice(self, db_session, service, make_contract):
        contract, buyer, _ = await make_contract()
        await service.sign(db_session, contract.id, buyer, "sig-b")

        with pytest.raises(AlreadySigned):
            await service.sign(db_session, contract.id, buyer, "sig-b-again")
        assert contract.status == ContractStatus.PENDING.value
        assert contract.is_fully_signed is False

    async def test_outsider_cannot_sign(self, db_session, service, make_contract, make_user):
        contract, _, _ = await make_contract()
        outsider = await make_user("seller")
        with pytest.raises(NotParty):
            await service.sign(db_session, contract.id, outsider, "sig-x")

    async def test_cancelled_contract_cannot_be_signed(self, db_session, service, make_contract):
        contract, buyer, seller = await make_contract()
        await service.cancel(db_session, contract.id, buyer, "changed plans")
        with pytest.raises(ConflictError):
            await service.sign(db_session, contract.id, seller, "sig-s")


class TestSignatureStatus:
    """Ledger-backed and local signature status."""

    async def test_local_status_without_ledger(self, db_session, service, make_contract):
        contract, buyer, _ = await make_contract(signed=True)
        status = await service.get_signature_status(db_session, contract.id, buyer, NullSignatureLedger())
        assert status == {
            "sellerSigned": True,
            "buyerSigned": True,
            "source": "local",
            "syncStatus": LedgerSyncStatus.PENDING.value,
        }

    async def test_status_from_ledger(self, db_session, service, make_contract):
        contract, buyer, _ = await make_contract()
        ledger = MagicMock()
        ledger.enabled = True
        ledger.get_signature_status = AsyncMock(
            return_value=SignatureStatus(seller_signed=True, buyer_signed=False)
        )
        status = await service.get_signature_status(db_session, contract.id, buyer, ledger)
        assert status["source"] == "ledger"
        assert status["sellerSigned"] is True
        ledger.get_signature_status.assert_awaited_once_with(contract.id)


class TestCancellation:
    async def test_cancel_blocked_while_payment_in_escrow(
        self, db_session, service, make_escrowed_payment
    ):
        _, contract, buyer, _ = await make_escrowed_payment()
        with pytest.raises(ConflictError):
            await service.cancel(db_session, contract.id, buyer)
        assert contract.status == ContractStatus.EXECUTED.value

    async def test_cancelled_is_terminal(self, db_session, service, make_contract):
        contract, buyer, seller = await make_contract()
        await service.cancel(db_session, contract.id, seller)
        with pytest.raises(InvalidTransitionError):
            await service.cancel(db_session, contract.id, buyer)


class TestMilestones:
    async def test_add_and_complete(self, db_session, service, make_contract):
        contract, buyer, seller = await make_contract(signed=True)
        milestone = await service.add_milestone(
            db_session, contract.id, seller, MilestoneCreate(title="First dispatch")
        )
        completed = await service.complete_milestone(db_session, contract.id, milestone.id, buyer)

        assert completed.status == "completed"
        assert completed.completed_by == buyer.id
        with pytest.raises(ConflictError):
            await service.complete_milestone(db_session, contract.id, milestone.id, buyer)


class TestDisputes:
    """Raising and resolving disputes."""

    async def test_dispute_round_trip_restores_status(self, db_session, service, make_contract, make_user):
        contract, buyer, _ = await make_contract(signed=True)
        admin = await make_user("admin")

        dispute = await service.raise_dispute(
            db_session, contract.id, buyer, DisputeCreate(reason="Quantity short")
        )
        assert contract.status == ContractStatus.DISPUTED.value
        assert contract.pre_dispute_status == ContractStatus.SIGNED.value

        await service.resolve_dispute(db_session, contract.id, dispute.id, admin, "Seller to top up")
        assert contract.status == ContractStatus.SIGNED.value
        assert contract.pre_dispute_status is None
        assert contract.disputes[0].status == "resolved"

    async def test_non_admin_cannot_resolve(self, db_session, service, make_contract):
        contract, buyer, seller = await make_contract(signed=True)
        dispute = await service.raise_dispute(
            db_session, contract.id, buyer, DisputeCreate(reason="Quality issue")
        )
        with pytest.raises(AuthorizationError):
            await service.resolve_dispute(db_session, contract.id, dispute.id, seller, "Settled")

    async def test_dispute_blocks_escrow_release(
        self, db_session, service, make_escrowed_payment, make_user
    ):
        payment, contract, buyer, _ = await make_escrowed_payment()
        admin = await make_user("admin")

        dispute = await service.raise_dispute(
            db_session, contract.id, buyer, DisputeCreate(reason="Contamination found")
        )
        assert payment.dispute_resolved is False

        await service.resolve_dispute(db_session, contract.id, dispute.id, admin, "Partial credit agreed")
        payment = await EscrowService().get(db_session, payment.id)
        assert payment.dispute_resolved is True
        assert contract.status == ContractStatus.EXECUTED.value
