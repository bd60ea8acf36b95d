"""
Shared pytest fixtures for the shopcore tests.

This module provides:
- Principals (buyer, other_buyer, seller, admin)
- A product catalog with two categories and variant-tracked products
- Fully wired in-memory services (services)
- SQLite fixtures (sqlite_connection, sqlite_services)
- Factories for coupons, stock rows, orders and paid orders
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from dataclasses import dataclass
from datetime import timedelta
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

import aiosqlite
import pytest
import pytest_asyncio

from shopcore.auth import Principal, Role
from shopcore.catalog import InMemoryProductCatalog
from shopcore.config import ShopConfig
from shopcore.discounts import Coupon, CouponTarget, CouponTerms, DiscountType
from shopcore.documents import utcnow
from shopcore.inventory import Inventory
from shopcore.orders import Order, OrderItemInput, OrderStatus
from shopcore.payments import PaymentMethod
from shopcore.services import ShopServices, build_in_memory_services, build_sqlite_services

WEBHOOK_SECRET = "whsec_test_secret"


# ============================================================================
# Principals
# ============================================================================


@pytest.fixture
def buyer() -> Principal:
    return Principal(uuid4(), Role.BUYER)


@pytest.fixture
def other_buyer() -> Principal:
    return Principal(uuid4(), Role.BUYER)


@pytest.fixture
def seller() -> Principal:
    return Principal(uuid4(), Role.SELLER)


@pytest.fixture
def admin() -> Principal:
    return Principal(uuid4(), Role.ADMIN)


# ============================================================================
# Catalog
# ============================================================================


@dataclass
class Products:
    """IDs of the products registered in the test catalog."""

    electronics: UUID
    books: UUID
    phone: UUID
    phone_variant: UUID
    case: UUID
    case_variant: UUID
    novel: UUID


@pytest.fixture
def products() -> Products:
    return Products(
        electronics=uuid4(),
        books=uuid4(),
        phone=uuid4(),
        phone_variant=uuid4(),
        case=uuid4(),
        case_variant=uuid4(),
        novel=uuid4(),
    )


@pytest.fixture
def catalog(products: Products) -> InMemoryProductCatalog:
    """Phone 500.00 and case 20.00 (electronics), novel 15.50 (books)."""
    catalog = InMemoryProductCatalog()
    catalog.add(products.phone, Decimal("500.00"), category_id=products.electronics)
    catalog.add(products.case, Decimal("20.00"), category_id=products.electronics)
    catalog.add(products.novel, Decimal("15.50"), category_id=products.books)
    return catalog


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def config() -> ShopConfig:
    return ShopConfig(webhook_secret=WEBHOOK_SECRET, enable_tracing=False)


@pytest.fixture
def services(config: ShopConfig, catalog: InMemoryProductCatalog) -> ShopServices:
    """Fresh in-memory services for each test."""
    return build_in_memory_services(config, catalog)


@pytest_asyncio.fixture
async def sqlite_connection() -> AsyncGenerator[aiosqlite.Connection, None]:
    """In-memory SQLite connection, closed after the test."""
    conn = await aiosqlite.connect(":memory:")
    conn.row_factory = aiosqlite.Row
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def sqlite_services(
    sqlite_connection: aiosqlite.Connection,
    config: ShopConfig,
    catalog: InMemoryProductCatalog,
) -> ShopServices:
    """Services backed by SQLite with the schema created."""
    return await build_sqlite_services(sqlite_connection, config, catalog)


# ============================================================================
# Factories
# ============================================================================


CouponFactory = Callable[..., Awaitable[Coupon]]
StockFactory = Callable[..., Awaitable[Inventory]]
OrderFactory = Callable[..., Awaitable[Order]]


def make_terms(
    code: str = "SAVE10",
    discount_type: DiscountType = DiscountType.PERCENTAGE,
    discount_value: str = "10",
    target: CouponTarget | None = None,
    valid_from_offset: timedelta = timedelta(days=-1),
    valid_till_offset: timedelta = timedelta(days=30),
    is_active: bool = True,
) -> CouponTerms:
    """Coupon terms valid from yesterday for 30 days unless told otherwise."""
    now = utcnow()
    return CouponTerms(
        code=code,
        discount_type=discount_type,
        discount_value=Decimal(discount_value),
        target=target or CouponTarget.everything(),
        valid_from=now + valid_from_offset,
        valid_till=now + valid_till_offset,
        is_active=is_active,
    )


@pytest.fixture
def terms_factory() -> Callable[..., CouponTerms]:
    return make_terms


@pytest.fixture
def coupon_factory(services: ShopServices, admin: Principal) -> CouponFactory:
    """Create coupons through the discount engine as admin."""

    async def create(**kwargs: Any) -> Coupon:
        return await services.discounts.create_coupon(admin, make_terms(**kwargs))

    return create


@pytest.fixture
def stock_factory(services: ShopServices, seller: Principal) -> StockFactory:
    """Create inventory rows owned by the seller fixture."""

    async def create(variant_id: UUID, quantity: int) -> Inventory:
        return await services.inventory.create(seller, variant_id, seller.id, quantity)

    return create


@pytest.fixture
def order_factory(
    services: ShopServices, buyer: Principal, seller: Principal, products: Products
) -> OrderFactory:
    """Place an order of one phone (variant-tracked) unless items are given."""

    async def create(
        items: list[OrderItemInput] | None = None,
        coupon_code: str | None = None,
        principal: Principal | None = None,
    ) -> Order:
        items = items or [
            OrderItemInput(product_id=products.phone, variant_id=products.phone_variant, quantity=1)
        ]
        return await services.orders.create(
            principal or buyer, seller.id, items, coupon_code=coupon_code
        )

    return create


@pytest.fixture
def paid_order_factory(
    services: ShopServices, buyer: Principal, order_factory: OrderFactory
) -> OrderFactory:
    """Place an order, pay it and deliver the provider's success event."""

    async def create(**kwargs: Any) -> Order:
        order = await order_factory(**kwargs)
        transaction_id = f"pi_{uuid4().hex}"
        await services.payments.create(
            buyer, order.id, PaymentMethod.CARD, transaction_id=transaction_id
        )
        await services.payments.apply_provider_event("payment_intent.succeeded", transaction_id)
        paid = await services.orders.get(order.id)
        assert paid.status == OrderStatus.CONFIRMED
        return paid

    return create
