"""Integration tests: the full trade lifecycle through the HTTP API.

listing → negotiation → offer/accept → contract → dual signature →
escrow order → verification → delivery → release.
"""

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from wasteex.app.routes.admin import router as admin_router
from wasteex.app.routes.contracts import router as contracts_router
from wasteex.app.routes.listings import router as listings_router
from wasteex.app.routes.logistics import router as logistics_router
from wasteex.app.routes.negotiations import router as negotiations_router
from wasteex.app.routes.payments import router as payments_router
from wasteex.infra.database import get_db
from wasteex.services.auth_service import create_access_token
from wasteex.services.payment_gateway import PaymentGateway, compute_signature, get_payment_gateway
from wasteex.services.signature_ledger import NullSignatureLedger, get_signature_ledger

from conftest import GATEWAY_SECRET, listing_payload


def _build_app_client(db_session: AsyncSession, gateway: PaymentGateway) -> AsyncClient:
    """Build an HTTPX AsyncClient wired to a test FastAPI app.

    The ledger is disabled so signing never schedules a background mirror
    against the real database.
    """
    test_app = FastAPI()
    for router in (
        listings_router,
        negotiations_router,
        contracts_router,
        payments_router,
        logistics_router,
        admin_router,
    ):
        test_app.include_router(router)

    async def _override_get_db():
        yield db_session

    test_app.dependency_overrides[get_db] = _override_get_db
    test_app.dependency_overrides[get_payment_gateway] = lambda: gateway
    test_app.dependency_overrides[get_signature_ledger] = NullSignatureLedger

    return AsyncClient(
        transport=ASGITransport(app=test_app),
        base_url="http://testserver",
    )


def _auth(user) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


@pytest.fixture
def api(db_session, gateway):
    return _build_app_client(db_session, gateway)


@pytest.fixture
def parties(make_user):
    async def _factory():
        return await make_user("seller"), await make_user("buyer")

    return _factory


async def _agree_deal(client: AsyncClient, seller, buyer) -> dict:
    """Publish a listing, negotiate 1000 x 10 and return the created contract."""
    resp = await client.post(
        "/api/waste-listings",
        json=listing_payload().model_dump(mode="json", by_alias=True),
        headers=_auth(seller),
    )
    assert resp.status_code == 201
    listing_id = resp.json()["listing"]["id"]

    resp = await client.post(
        "/api/negotiations",
        json={"title": "HDPE regrind supply", "type": "listing", "relatedId": listing_id},
        headers=_auth(buyer),
    )
    assert resp.status_code == 201
    negotiation_id = resp.json()["negotiation"]["id"]

    resp = await client.post(
        f"/api/negotiations/{negotiation_id}/offers",
        json={"offer": {"price": 1000, "quantity": 10}, "message": "Best price for 10 tonnes"},
        headers=_auth(seller),
    )
    assert resp.status_code == 201

    resp = await client.post(
        f"/api/negotiations/{negotiation_id}/offers/respond",
        json={"decision": "accept"},
        headers=_auth(buyer),
    )
    assert resp.status_code == 200
    assert resp.json()["negotiation"]["status"] == "pending"

    resp = await client.post("/api/contracts", json={"negotiationId": negotiation_id}, headers=_auth(buyer))
    assert resp.status_code == 201
    return resp.json()["contract"]


async def _sign_both(client: AsyncClient, contract_id: str, seller, buyer) -> dict:
    resp = await client.post(
        f"/api/contracts/{contract_id}/sign", json={"signature": "seller-sig"}, headers=_auth(seller)
    )
    assert resp.status_code == 200
    resp = await client.post(
        f"/api/contracts/{contract_id}/sign", json={"signature": "buyer-sig"}, headers=_auth(buyer)
    )
    assert resp.status_code == 200
    return resp.json()["contract"]


class TestTradeLifecycle:
    """Happy path end to end."""

    async def test_full_lifecycle(self, api, parties):
        seller, buyer = await parties()

        async with api as client:
            contract = await _agree_deal(client, seller, buyer)
            assert contract["status"] == "draft"
            assert contract["terms"]["totalValue"] == 10000.0

            contract = await _sign_both(client, contract["id"], seller, buyer)
            assert contract["status"] == "signed"
            assert contract["isFullySigned"] is True
            assert contract["blockchain"]["syncStatus"] == "skipped"

            resp = await client.post(
                "/api/payments/create-order",
                json={"contractId": contract["id"]},
                headers={**_auth(buyer), "User-Agent": "wasteex-tests"},
            )
            assert resp.status_code == 201
            body = resp.json()
            payment = body["payment"]
            assert payment["amount"]["platformFee"] == 500.0
            assert payment["amount"]["sellerAmount"] == 9500.0

            resp = await client.post(
                "/api/payments/verify",
                json={
                    "paymentId": payment["id"],
                    "gatewayPaymentId": "pay_api_001",
                    "gatewaySignature": compute_signature(body["orderId"], "pay_api_001", GATEWAY_SECRET),
                },
                headers=_auth(buyer),
            )
            assert resp.status_code == 200
            assert resp.json()["payment"]["status"] == "held_in_escrow"

            resp = await client.post(
                f"/api/payments/{payment['id']}/confirm-delivery",
                json={"qualityApproved": True, "notes": "Material as described"},
                headers=_auth(buyer),
            )
            assert resp.status_code == 200
            assert resp.json()["payment"]["canRelease"] is True

            resp = await client.post(f"/api/payments/{payment['id']}/release", headers=_auth(buyer))
            assert resp.status_code == 200
            assert resp.json()["payment"]["status"] == "released_to_seller"

            resp = await client.get(f"/api/contracts/{contract['id']}", headers=_auth(seller))
            assert resp.status_code == 200
            final = resp.json()["contract"]
            assert final["status"] == "completed"
            assert final["paymentStatus"] == "released_to_seller"
            assert final["platformFee"]["paid"] is True

    async def test_shipment_for_signed_contract(self, api, parties):
        seller, buyer = await parties()

        async with api as client:
            contract = await _agree_deal(client, seller, buyer)
            await _sign_both(client, contract["id"], seller, buyer)

            resp = await client.post(
                "/api/logistics/shipments",
                json={
                    "contractId": contract["id"],
                    "pickup": {"address": {"city": "Pune"}},
                    "delivery": {"address": {"city": "Chennai"}},
                    "cargo": {"description": "HDPE regrind in jumbo bags"},
                },
                headers=_auth(seller),
            )
            assert resp.status_code == 201
            shipment_id = resp.json()["shipment"]["id"]

            resp = await client.put(
                f"/api/logistics/shipments/{shipment_id}/status",
                json={"status": "in-transit"},
                headers=_auth(seller),
            )
            assert resp.status_code == 200

            resp = await client.post(
                f"/api/logistics/shipments/{shipment_id}/tracking",
                json={"status": "picked-up", "description": "Late scan"},
                headers=_auth(seller),
            )
            assert resp.status_code == 409
            assert resp.json()["detail"]["code"] == "invalid_transition"


class TestApiErrors:
    """Domain errors surface as {code, message} with the right status."""

    async def test_unauthenticated(self, api):
        async with api as client:
            resp = await client.get("/api/contracts")
        assert resp.status_code == 401

    async def test_seller_cannot_create_order(self, api, parties):
        seller, buyer = await parties()
        async with api as client:
            contract = await _agree_deal(client, seller, buyer)
            await _sign_both(client, contract["id"], seller, buyer)
            resp = await client.post(
                "/api/payments/create-order", json={"contractId": contract["id"]}, headers=_auth(seller)
            )
        assert resp.status_code == 403

    async def test_order_before_signing(self, api, parties):
        seller, buyer = await parties()
        async with api as client:
            contract = await _agree_deal(client, seller, buyer)
            resp = await client.post(
                "/api/payments/create-order", json={"contractId": contract["id"]}, headers=_auth(buyer)
            )
        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "contract_not_signed"

    async def test_bad_signature_fails_payment(self, api, parties):
        seller, buyer = await parties()
        async with api as client:
            contract = await _agree_deal(client, seller, buyer)
            await _sign_both(client, contract["id"], seller, buyer)
            resp = await client.post(
                "/api/payments/create-order", json={"contractId": contract["id"]}, headers=_auth(buyer)
            )
            payment_id = resp.json()["payment"]["id"]

            resp = await client.post(
                "/api/payments/verify",
                json={"paymentId": payment_id, "gatewayPaymentId": "pay_x", "gatewaySignature": "forged"},
                headers=_auth(buyer),
            )
            assert resp.status_code == 400
            assert resp.json()["detail"]["code"] == "signature_invalid"

            resp = await client.get(f"/api/payments/{payment_id}", headers=_auth(buyer))
            assert resp.json()["payment"]["status"] == "failed"

    async def test_release_before_delivery(self, api, parties):
        seller, buyer = await parties()
        async with api as client:
            contract = await _agree_deal(client, seller, buyer)
            await _sign_both(client, contract["id"], seller, buyer)
            resp = await client.post(
                "/api/payments/create-order", json={"contractId": contract["id"]}, headers=_auth(buyer)
            )
            body = resp.json()
            await client.post(
                "/api/payments/verify",
                json={
                    "paymentId": body["payment"]["id"],
                    "gatewayPaymentId": "pay_api_002",
                    "gatewaySignature": compute_signature(body["orderId"], "pay_api_002", GATEWAY_SECRET),
                },
                headers=_auth(buyer),
            )

            resp = await client.post(f"/api/payments/{body['payment']['id']}/release", headers=_auth(buyer))
        assert resp.status_code == 409
        detail = resp.json()["detail"]
        assert detail["code"] == "release_conditions_not_met"
        assert "delivery not confirmed" in detail["message"]

    async def test_double_sign(self, api, parties):
        seller, buyer = await parties()
        async with api as client:
            contract = await _agree_deal(client, seller, buyer)
            path = f"/api/contracts/{contract['id']}/sign"
            await client.post(path, json={"signature": "s1"}, headers=_auth(seller))
            resp = await client.post(path, json={"signature": "s2"}, headers=_auth(seller))
        assert resp.status_code == 409
        assert resp.json()["detail"]["code"] == "already_signed"

    async def test_admin_dashboard_requires_admin(self, api, parties, make_user):
        seller, _ = await parties()
        admin = await make_user("admin")
        async with api as client:
            denied = await client.get("/api/admin/dashboard", headers=_auth(seller))
            allowed = await client.get("/api/admin/dashboard", headers=_auth(admin))
        assert denied.status_code == 403
        assert allowed.status_code == 200
        assert allowed.json()["users"]["total"] == 3


class TestAdminAnalytics:
    async def test_analytics_summarises_marketplace(self, api, db_session, parties, make_user):
        seller, buyer = await parties()
        admin = await make_user("admin")
        seller.company.address = {"city": "Pune", "state": "Maharashtra"}
        buyer.company.address = {"city": "Chennai", "state": "Tamil Nadu"}
        await db_session.flush()

        async with api as client:
            contract = await _agree_deal(client, seller, buyer)
            await _sign_both(client, contract["id"], seller, buyer)

            denied = await client.get("/api/admin/analytics", headers=_auth(buyer))
            resp = await client.get("/api/admin/analytics", headers=_auth(admin))

        assert denied.status_code == 403
        assert resp.status_code == 200
        body = resp.json()
        assert sum(day["count"] for day in body["userGrowth"]) == 3
        assert len(body["transactionVolume"]) == 1
        assert body["transactionVolume"][0]["volume"] == 10000.0
        assert body["transactionVolume"][0]["count"] == 1
        assert body["categoryDistribution"] == [{"category": "Plastic Waste", "count": 1}]
        assert {g["state"]: g["count"] for g in body["geographicDistribution"]} == {
            "Maharashtra": 1,
            "Tamil Nadu": 1,
        }
