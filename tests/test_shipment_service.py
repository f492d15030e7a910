"""Tests for shipments and their tracking log."""

import pytest

from wasteex.domain.enums import ShipmentStatus, TrackingSource
from wasteex.domain.errors import ContractNotSigned, InvalidTransitionError, NotParty
from wasteex.domain.schemas import Cargo, ShipmentCreate, ShipmentEndpoint
from wasteex.services.shipment_service import ShipmentService

SH = ShipmentStatus


def shipment_payload(contract_id: str) -> ShipmentCreate:
    return ShipmentCreate(
        contract_id=contract_id,
        pickup=ShipmentEndpoint(address={"city": "Pune", "pincode": "411019"}),
        delivery=ShipmentEndpoint(address={"city": "Chennai", "pincode": "600032"}),
        cargo=Cargo(description="HDPE regrind in jumbo bags", weight={"value": 1000, "unit": "kg"}),
    )


@pytest.fixture
def service():
    return ShipmentService()


@pytest.fixture
def make_shipment(db_session, service, make_contract):
    """Factory: shipment for a freshly signed contract. Returns (shipment, buyer, seller)."""
    async def _factory():
        contract, buyer, seller = await make_contract(signed=True)
        shipment = await service.create_shipment(db_session, seller, shipment_payload(contract.id))
        return shipment, buyer, seller

    return _factory


class TestCreateShipment:
    async def test_signed_contract_gets_shipment(self, db_session, service, make_contract):
        contract, _, seller = await make_contract(signed=True)
        shipment = await service.create_shipment(db_session, seller, shipment_payload(contract.id))

        assert shipment.shipment_number.startswith("SH-")
        assert shipment.status == SH.CREATED.value
        assert shipment.buyer_id == contract.buyer_id
        assert shipment.cargo["description"] == "HDPE regrind in jumbo bags"
        assert len(shipment.tracking) == 1

    async def test_unsigned_contract_rejected(self, db_session, service, make_contract):
        contract, _, seller = await make_contract()
        with pytest.raises(ContractNotSigned):
            await service.create_shipment(db_session, seller, shipment_payload(contract.id))

    async def test_outsider_rejected(self, db_session, service, make_contract, make_user):
        contract, _, _ = await make_contract(signed=True)
        outsider = await make_user("seller")
        with pytest.raises(NotParty):
            await service.create_shipment(db_session, outsider, shipment_payload(contract.id))


class TestTracking:
    """Status progression through tracking events."""

    async def test_forward_progress_sets_actual_dates(self, db_session, service, make_shipment):
        shipment, buyer, seller = await make_shipment()

        await service.add_tracking_event(db_session, shipment.id, seller, SH.PICKED_UP, "Collected at MIDC")
        assert shipment.pickup_actual_date is not None
        assert shipment.delivery_actual_date is None

        await service.add_tracking_event(
            db_session, shipment.id, seller, SH.IN_TRANSIT, "Left Pune hub", location={"city": "Pune"}
        )
        shipment = await service.add_tracking_event(
            db_session, shipment.id, buyer, SH.DELIVERED, "Received at gate"
        )

        assert shipment.status == SH.DELIVERED.value
        assert shipment.delivery_actual_date is not None
        assert [e.status for e in shipment.tracking] == [
            SH.CREATED.value, SH.PICKED_UP.value, SH.IN_TRANSIT.value, SH.DELIVERED.value
        ]

    async def test_same_status_only_logs(self, db_session, service, make_shipment):
        shipment, _, seller = await make_shipment()
        await service.add_tracking_event(db_session, shipment.id, seller, SH.IN_TRANSIT, "Left Pune hub")
        shipment = await service.add_tracking_event(
            db_session, shipment.id, seller, SH.IN_TRANSIT, "Crossed Kolhapur"
        )
        assert shipment.status == SH.IN_TRANSIT.value
        assert len(shipment.tracking) == 3

    async def test_regression_rejected(self, db_session, service, make_shipment):
        shipment, _, seller = await make_shipment()
        await service.add_tracking_event(db_session, shipment.id, seller, SH.IN_TRANSIT, "Left Pune hub")

        with pytest.raises(InvalidTransitionError):
            await service.add_tracking_event(db_session, shipment.id, seller, SH.PICKED_UP, "Scanned again")
        assert shipment.status == SH.IN_TRANSIT.value

    async def test_manual_correction_may_regress(self, db_session, service, make_shipment, make_user):
        shipment, _, seller = await make_shipment()
        admin = await make_user("admin")
        await service.add_tracking_event(db_session, shipment.id, seller, SH.IN_TRANSIT, "Wrong scan")

        shipment = await service.update_status(
            db_session, shipment.id, admin, SH.PICKED_UP, "Operator correction", source=TrackingSource.MANUAL
        )
        assert shipment.status == SH.PICKED_UP.value
        assert shipment.tracking[-1].source == TrackingSource.MANUAL.value

    async def test_terminal_shipment_is_closed(self, db_session, service, make_shipment):
        shipment, _, seller = await make_shipment()
        await service.update_status(db_session, shipment.id, seller, SH.CANCELLED)

        with pytest.raises(InvalidTransitionError):
            await service.add_tracking_event(db_session, shipment.id, seller, SH.IN_TRANSIT, "Resumed")

    async def test_delivered_shipment_cannot_be_lost(self, db_session, service, make_shipment):
        shipment, buyer, _ = await make_shipment()
        await service.update_status(db_session, shipment.id, buyer, SH.DELIVERED)
        with pytest.raises(InvalidTransitionError):
            await service.update_status(db_session, shipment.id, buyer, SH.LOST)


class TestListing:
    async def test_parties_see_only_their_shipments(self, db_session, service, make_shipment, make_user):
        first, _, seller = await make_shipment()
        await make_shipment()
        admin = await make_user("admin")

        mine, total = await service.list_for_user(db_session, seller)
        assert total == 1
        assert mine[0].id == first.id

        _, admin_total = await service.list_for_user(db_session, admin)
        assert admin_total == 2
