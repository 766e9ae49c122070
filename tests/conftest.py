"""Test fixtures."""

from decimal import Decimal
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.api.returns import get_inventory_gateway, get_refund_gateway
from app.config import get_settings
from app.database import Base, get_db
from app.main import app
from app.models import Sale, SaleItem
from app.services.errors import CollaboratorFailure
from app.services.gateways import IssuedRefund, RestockRequest
from app.services.notification import notification_service
from app.services.returns import ReturnsManager


class FakeInventory:
    """Idempotent stock service. ``calls`` holds every attempt, ``applied`` each key once."""

    def __init__(self):
        self.calls: list[RestockRequest] = []
        self.applied: dict[str, RestockRequest] = {}
        self.fail = False
        self.fail_on_call: Optional[int] = None

    async def restock(self, request: RestockRequest) -> None:
        self.calls.append(request)
        if self.fail or len(self.calls) == self.fail_on_call:
            raise CollaboratorFailure("inventory", "stock service unavailable")
        self.applied.setdefault(request.idempotency_key, request)


class FakeRefunds:
    """Idempotent payment service. Repeats of a reference return the original payout."""

    def __init__(self):
        self.calls: list[tuple] = []
        self.issued: dict[str, IssuedRefund] = {}
        self.fail = False
        self.fail_on_call: Optional[int] = None

    async def issue_refund(self, amount: Decimal, method: str, reference: str) -> IssuedRefund:
        self.calls.append((amount, method, reference))
        if self.fail or len(self.calls) == self.fail_on_call:
            raise CollaboratorFailure("refunds", "payment service unavailable")
        if reference not in self.issued:
            self.issued[reference] = IssuedRefund(
                amount=amount, method=method, transaction_id=f"TXN-{len(self.issued) + 1}",
            )
        return self.issued[reference]

    @property
    def paid(self) -> Decimal:
        return sum((r.amount for r in self.issued.values()), Decimal("0"))


@pytest_asyncio.fixture
async def engine(tmp_path):
    # SQLite for tests (no external DB needed)
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", poolclass=NullPool)
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest_asyncio.fixture
async def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def inventory():
    return FakeInventory()


@pytest.fixture
def refunds():
    return FakeRefunds()


@pytest.fixture(autouse=True)
def reset_notifications():
    notification_service.clear_history()
    yield


@pytest.fixture
def mgr(db, inventory, refunds):
    return ReturnsManager(db, inventory, refunds, get_settings())


async def make_sale(
    db: AsyncSession,
    lines=((5, "10.00"),),
    tax_rate="0.10",
    status="completed",
    sale_number="S-0001",
    store_id="store-1",
    customer_name="Jane Shopper",
) -> Sale:
    """Insert a sale with (quantity, unit_price) lines."""
    subtotal = sum(Decimal(price) * qty for qty, price in lines)
    sale = Sale(
        sale_number=sale_number,
        store_id=store_id,
        user_id="cashier-1",
        customer_name=customer_name,
        status=status,
        subtotal=subtotal,
        tax_rate=Decimal(tax_rate) if tax_rate is not None else None,
        total_amount=subtotal,
    )
    db.add(sale)
    await db.flush()
    for pos, (qty, price) in enumerate(lines):
        db.add(SaleItem(
            sale_id=sale.id,
            position=pos,
            product_id=f"prod-{pos + 1}",
            sku=f"SKU-{pos + 1}",
            product_name=f"Product {pos + 1}",
            quantity=qty,
            unit_price=Decimal(price),
            total_price=Decimal(price) * qty,
        ))
    await db.commit()
    result = await db.execute(
        select(Sale).where(Sale.id == sale.id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


@pytest_asyncio.fixture
async def sale(db):
    return await make_sale(db)


@pytest.fixture
def sale_factory(db):
    async def factory(**kwargs) -> Sale:
        return await make_sale(db, **kwargs)
    return factory


@pytest_asyncio.fixture
async def client(session_factory, inventory, refunds) -> AsyncGenerator[AsyncClient, None]:
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_inventory_gateway] = lambda: inventory
    app.dependency_overrides[get_refund_gateway] = lambda: refunds

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
