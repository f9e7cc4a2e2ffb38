"""Pytest configuration and fixtures for Dividend Ledger tests"""
import os
import tempfile
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from dotenv import load_dotenv
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

# Load environment variables
load_dotenv()
os.environ.setdefault("SCHEDULER_ENABLED", "false")

from dividend_ledger.main import app
from dividend_ledger.models import (
    Base,
    Company,
    ConvertibleInstrument,
    ConvertibleSecurity,
    Recipient,
    RecipientKind,
    ShareClass,
    ShareHolding,
    TaxIdStatus,
    get_db,
)

# Test database URL - a throwaway SQLite file unless TEST_DATABASE_URL points elsewhere
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


def _sqlite_url() -> str:
    handle, path = tempfile.mkstemp(prefix="dividend_ledger_", suffix=".db")
    os.close(handle)
    return f"sqlite+aiosqlite:///{path}"


def _enable_sqlite_savepoints(engine) -> None:
    """
    pysqlite manages transactions itself and breaks SAVEPOINT; take over
    transaction control so begin_nested() works. BEGIN IMMEDIATE also makes
    concurrent writers queue up instead of failing.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


@pytest_asyncio.fixture(scope="function")
async def engine():
    """Database engine with a fresh schema for each test"""
    url = TEST_DATABASE_URL or _sqlite_url()
    test_engine = create_async_engine(url, echo=False, poolclass=NullPool)
    if url.startswith("sqlite"):
        _enable_sqlite_savepoints(test_engine)

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()
    if url.startswith("sqlite") and not TEST_DATABASE_URL:
        os.remove(url.split(":///", 1)[1])


@pytest.fixture
def session_factory(engine):
    """Session factory bound to the test engine"""
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test"""
    session = session_factory()
    try:
        yield session
    finally:
        await session.close()


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client"""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


class LedgerFactory:
    """Creates cap table rows for tests"""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def company(self, name: str = "Acme Inc", dividends_allowed: bool = True) -> Company:
        company = Company(name=name, dividends_allowed=dividends_allowed, currency="USD")
        self.db.add(company)
        await self.db.flush()
        return company

    async def recipient(
        self,
        company: Company,
        name: str,
        country_code: str = "US",
        onboarded: bool = True,
        tax_id_status: str = TaxIdStatus.VERIFIED.value,
        tax_confirmed: bool = True,
        kind: str = RecipientKind.INDIVIDUAL.value,
    ) -> Recipient:
        recipient = Recipient(
            company_id=company.id,
            kind=kind,
            legal_name=name if kind == RecipientKind.INDIVIDUAL.value else None,
            entity_name=name if kind == RecipientKind.ENTITY.value else None,
            email=f"{name.lower().replace(' ', '.')}@example.com",
            country_code=country_code,
            onboarded_at=datetime.utcnow() if onboarded else None,
            tax_id_status=tax_id_status,
            tax_information_confirmed_at=datetime.utcnow() if tax_confirmed else None,
        )
        self.db.add(recipient)
        await self.db.flush()
        return recipient

    async def share_class(
        self,
        company: Company,
        name: str,
        hurdle_rate: Optional[str] = None,
        original_issue_price: Optional[str] = None,
    ) -> ShareClass:
        preferred = hurdle_rate is not None
        share_class = ShareClass(company_id=company.id, name=name, preferred=preferred)
        if preferred:
            share_class.hurdle_rate = Decimal(hurdle_rate)
            share_class.original_issue_price = Decimal(original_issue_price)
        self.db.add(share_class)
        await self.db.flush()
        return share_class

    async def holding(
        self,
        recipient: Recipient,
        share_class: ShareClass,
        shares: int,
        cost_cents: int = 0,
        acquired_days_ago: int = 365,
        as_of: Optional[date] = None,
    ) -> ShareHolding:
        as_of = as_of or date.today()
        holding = ShareHolding(
            company_id=recipient.company_id,
            recipient_id=recipient.id,
            share_class_id=share_class.id,
            number_of_shares=shares,
            total_amount_in_cents=cost_cents,
            originally_acquired_at=datetime.combine(as_of - timedelta(days=acquired_days_ago), datetime.min.time()),
        )
        self.db.add(holding)
        await self.db.flush()
        return holding

    async def convertible(
        self,
        company: Company,
        entity_name: str,
        identifier: str,
        implied_shares: int,
        amount_cents: int,
    ) -> ConvertibleInstrument:
        instrument = ConvertibleInstrument(
            company_id=company.id,
            entity_name=entity_name,
            identifier=identifier,
            implied_shares=Decimal(implied_shares),
            amount_in_cents=amount_cents,
        )
        self.db.add(instrument)
        await self.db.flush()
        return instrument

    async def convertible_slice(
        self,
        instrument: ConvertibleInstrument,
        recipient: Recipient,
        principal_cents: int,
    ) -> ConvertibleSecurity:
        implied = (Decimal(instrument.implied_shares) * principal_cents / instrument.amount_in_cents).quantize(
            Decimal("0.000001")
        )
        security = ConvertibleSecurity(
            convertible_instrument_id=instrument.id,
            recipient_id=recipient.id,
            implied_shares=implied,
            principal_value_in_cents=principal_cents,
        )
        self.db.add(security)
        await self.db.flush()
        return security


@pytest.fixture
def factory(db_session: AsyncSession) -> LedgerFactory:
    return LedgerFactory(db_session)


@pytest_asyncio.fixture
async def small_cap_table(factory: LedgerFactory, db_session: AsyncSession):
    """
    A company with one preferred class, one common class and a SAFE:
    - Alice: 1,000 Series A preferred (10% hurdle at $1.00)
    - Bob: 3,000 common
    - Carol: the whole SAFE, 1,000 implied shares
    """
    company = await factory.company()
    series_a = await factory.share_class(company, "Series A", hurdle_rate="10", original_issue_price="1.00")
    common = await factory.share_class(company, "Common")
    alice = await factory.recipient(company, "Alice")
    bob = await factory.recipient(company, "Bob")
    carol = await factory.recipient(company, "Carol Ventures", kind=RecipientKind.ENTITY.value)
    await factory.holding(alice, series_a, 1_000, cost_cents=1_000_00)
    await factory.holding(bob, common, 3_000, cost_cents=300_00)
    safe = await factory.convertible(company, "Carol Ventures", "SAFE-1", 1_000, 50_000_00)
    await factory.convertible_slice(safe, carol, 50_000_00)
    await db_session.commit()
    return {
        "company": company,
        "series_a": series_a,
        "common": common,
        "alice": alice,
        "bob": bob,
        "carol": carol,
        "safe": safe,
    }
