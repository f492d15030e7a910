"""Shared test infrastructure for the WasteEx test suite.

Provides:
- session_factory: async_sessionmaker bound to a fresh SQLite file with all tables
- db_session: session from that factory (the ledger mirror opens its own sessions)
- gateway: offline PaymentGateway with a known secret
- make_user: factory for User + Company rows
- make_listing / make_request: catalog factories going through CatalogService
- make_negotiation / agreed_negotiation: negotiation factories
- make_contract: contract from an agreed negotiation, optionally signed by both parties
- make_escrowed_payment: payment verified into held_in_escrow
"""

import uuid
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

# Import Base first, then models to register all tables
from wasteex.infra.database import Base

import wasteex.domain.models  # noqa: F401

from wasteex.domain.enums import (
    Frequency,
    MaterialCategory,
    NegotiationType,
    OfferDecision,
    QuantityUnit,
    WasteCategory,
)
from wasteex.domain.models import Company, User
from wasteex.domain.schemas import (
    Budget,
    ContractCreate,
    ListingCreate,
    ListingLocation,
    MaterialRequestCreate,
    NegotiationCreate,
    OfferTerms,
    Price,
    Quantity,
    RequestLocation,
)
from wasteex.services.catalog_service import CatalogService
from wasteex.services.contract_service import ContractService
from wasteex.services.escrow_service import EscrowService
from wasteex.services.negotiation_service import NegotiationService
from wasteex.services.payment_gateway import PaymentGateway, compute_signature

GATEWAY_SECRET = "test_gateway_secret"


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
async def session_factory(tmp_path):
    """Session factory over a per-test SQLite file with all tables created.

    A file (rather than :memory:) lets independent sessions see each
    other's committed writes.
    """
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'wasteex_test.db'}",
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
async def db_session(session_factory):
    """Async session with all tables created; rolled back at teardown."""
    async with session_factory() as session:
        yield session
        await session.rollback()


# ---------------------------------------------------------------------------
# Payment gateway
# ---------------------------------------------------------------------------

@pytest.fixture
def gateway():
    """Gateway without a key id: orders are issued offline, signatures use GATEWAY_SECRET."""
    return PaymentGateway("", GATEWAY_SECRET, "https://gateway.test/v1")


# ---------------------------------------------------------------------------
# User factory
# ---------------------------------------------------------------------------

@pytest.fixture
def make_user(db_session):
    """Factory that creates a User with its Company.

    Usage:
        seller = await make_user("seller")
        buyer = await make_user("buyer", verified=False)
    """
    async def _factory(
        role: str = "buyer",
        name: str = None,
        email: str = None,
        verified: bool = True,
        password_hash: str = "not-a-real-hash",
    ) -> User:
        suffix = uuid.uuid4().hex[:8]
        company = Company(
            id=str(uuid.uuid4()),
            name=f"{role.title()} Industries {suffix}",
            gstin=f"27ABCDE{suffix.upper()}"[:15].ljust(15, "Z"),
            verified=verified,
        )
        db_session.add(company)

        user = User(
            id=str(uuid.uuid4()),
            email=email or f"{role}-{suffix}@example.com",
            password_hash=password_hash,
            name=name or f"Test {role.title()}",
            role=role,
            is_active=True,
            company_id=company.id,
        )
        user.company = company
        db_session.add(user)
        await db_session.flush()
        return user

    return _factory


# ---------------------------------------------------------------------------
# Catalog factories
# ---------------------------------------------------------------------------

def listing_payload(**overrides) -> ListingCreate:
    data = dict(
        title="HDPE regrind, natural",
        waste_type="HDPE",
        category=WasteCategory.PLASTIC,
        quantity=Quantity(value=Decimal("500"), unit=QuantityUnit.KG),
        frequency=Frequency.MONTHLY,
        price=Price(value=Decimal("100")),
        location=ListingLocation(
            address="Plot 12, MIDC", city="Pune", state="Maharashtra", pincode="411019"
        ),
        description="Clean post-industrial HDPE regrind",
    )
    data.update(overrides)
    return ListingCreate(**data)


def request_payload(**overrides) -> MaterialRequestCreate:
    data = dict(
        title="Need copper scrap monthly",
        material_type="Copper",
        category=MaterialCategory.METAL,
        quantity=Quantity(value=Decimal("2"), unit=QuantityUnit.TONNES),
        frequency=Frequency.MONTHLY,
        budget=Budget(min=Decimal("400000"), max=Decimal("600000")),
        location=RequestLocation(preferred_cities=["Chennai"], state="Tamil Nadu"),
    )
    data.update(overrides)
    return MaterialRequestCreate(**data)


@pytest.fixture
def make_listing(db_session, make_user):
    """Factory that publishes a listing for a (new or given) seller."""
    async def _factory(seller: User = None, **overrides):
        seller = seller or await make_user("seller")
        return await CatalogService().create_listing(db_session, seller, listing_payload(**overrides))

    return _factory


@pytest.fixture
def make_request(db_session, make_user):
    """Factory that publishes a material request for a (new or given) buyer."""
    async def _factory(buyer: User = None, **overrides):
        buyer = buyer or await make_user("buyer")
        return await CatalogService().create_request(db_session, buyer, request_payload(**overrides))

    return _factory


# ---------------------------------------------------------------------------
# Negotiation factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_negotiation(db_session, make_user, make_listing):
    """Factory that opens a listing negotiation. Returns (negotiation, buyer, seller)."""
    async def _factory(buyer: User = None, seller: User = None, initial_message: str = None):
        seller = seller or await make_user("seller")
        buyer = buyer or await make_user("buyer")
        listing = await make_listing(seller)
        negotiation = await NegotiationService().create_negotiation(
            db_session,
            buyer,
            NegotiationCreate(
                title="HDPE regrind supply",
                type=NegotiationType.LISTING,
                related_id=listing.id,
                participant_id=seller.id,
                initial_message=initial_message,
            ),
        )
        return negotiation, buyer, seller

    return _factory


@pytest.fixture
def agreed_negotiation(db_session, make_negotiation):
    """Factory: seller offers price x quantity, buyer accepts. Returns (negotiation, buyer, seller)."""
    async def _factory(price: str = "100", quantity: str = "10"):
        negotiation, buyer, seller = await make_negotiation()
        service = NegotiationService()
        await service.propose_offer(
            db_session,
            negotiation.id,
            seller,
            OfferTerms(price=Decimal(price), quantity=Decimal(quantity)),
        )
        negotiation = await service.respond_to_offer(
            db_session, negotiation.id, buyer, OfferDecision.ACCEPT
        )
        return negotiation, buyer, seller

    return _factory


# ---------------------------------------------------------------------------
# Contract and payment factories
# ---------------------------------------------------------------------------

@pytest.fixture
def make_contract(db_session, agreed_negotiation):
    """Factory: contract from an agreed negotiation. Returns (contract, buyer, seller)."""
    async def _factory(signed: bool = False, price: str = "100", quantity: str = "10"):
        negotiation, buyer, seller = await agreed_negotiation(price=price, quantity=quantity)
        service = ContractService()
        contract = await service.create_contract(
            db_session, buyer, ContractCreate(negotiation_id=negotiation.id)
        )
        if signed:
            await service.sign(db_session, contract.id, seller, "seller-signature", "10.0.0.1")
            contract = await service.sign(db_session, contract.id, buyer, "buyer-signature", "10.0.0.2")
        return contract, buyer, seller

    return _factory


@pytest.fixture
def make_escrowed_payment(db_session, make_contract, gateway):
    """Factory: signed contract whose payment is verified into held_in_escrow.

    Returns (payment, contract, buyer, seller).
    """
    async def _factory(price: str = "1000", quantity: str = "10"):
        contract, buyer, seller = await make_contract(signed=True, price=price, quantity=quantity)
        escrow = EscrowService()
        payment = await escrow.create_order(db_session, buyer, contract.id, gateway)
        signature = compute_signature(payment.gateway_order_id, "pay_test_001", GATEWAY_SECRET)
        payment = await escrow.verify_payment(
            db_session, payment.id, buyer, "pay_test_001", signature, gateway
        )
        return payment, contract, buyer, seller

    return _factory
