import sys
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine


def _configure_path() -> None:
    src_path = Path(__file__).resolve().parents[1] / "src"
    if src_path.exists():
        sys.path.insert(0, str(src_path))


_configure_path()

from clubpass_api.app import create_app  # noqa: E402
from clubpass_api.db.base import Base  # noqa: E402
from clubpass_api.db.session import enable_sqlite_savepoints, get_session  # noqa: E402
from clubpass_api.models import (  # noqa: E402
    CountryRule,
    Member,
    MembershipType,
    NfcCard,
    Offer,
    OfferType,
    Vendor,
)
from clubpass_api.observability.nfc import get_nfc_store  # noqa: E402


# A Wednesday, mid-day UTC: outside every blackout used in the suite.
TAP_TIME = datetime(2026, 3, 4, 12, 0, tzinfo=timezone.utc)


@dataclass
class NfcWorld:
    member: Member
    card: NfcCard
    vendor: Vendor
    country_rule: CountryRule
    offer: Offer


@pytest.fixture(autouse=True)
def reset_nfc_store():
    store = get_nfc_store()
    store.reset()
    yield store
    store.reset()


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", future=True)
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)

    try:
        yield factory
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def app_with_db(session_factory):
    app = create_app()

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session

    try:
        yield app, session_factory
    finally:
        app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def nfc_world(session_factory) -> NfcWorld:
    """Active member and card, an AE vendor (cap 20), AE rules (cap 25) and WELCOME10."""

    async with session_factory() as session:
        member = Member(
            email="member@example.com",
            full_name="Test Member",
            membership_type=MembershipType.ANNUAL,
            country="AE",
        )
        session.add(member)
        await session.flush()

        card = NfcCard(member_id=member.id, card_uid="CARD123456789")
        vendor = Vendor(
            name="VENDOR001",
            country="AE",
            city="Dubai",
            category="dining",
            currency="AED",
            max_discount_percentage=Decimal("20"),
        )
        country_rule = CountryRule(
            country_code="AE",
            country_name="United Arab Emirates",
            allowed_membership_types=["annual", "lifetime"],
            max_discount_percentage=Decimal("25"),
            currency="AED",
        )
        offer = Offer(
            offer_code="WELCOME10",
            title="Welcome offer",
            offer_type=OfferType.PERCENTAGE,
            discount_percentage=Decimal("10"),
            min_purchase_amount=Decimal("50"),
        )
        session.add_all([card, vendor, country_rule, offer])
        await session.commit()

    return NfcWorld(member=member, card=card, vendor=vendor, country_rule=country_rule, offer=offer)
