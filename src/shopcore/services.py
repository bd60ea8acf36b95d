"""
Service wiring.

Builds the full set of shopcore services over one storage backend so
the HTTP layer, tests and scripts share a single composition.

Example:
    >>> services = build_in_memory_services(ShopConfig(webhook_secret="whsec_test"))
    >>> order = await services.orders.create(buyer, seller_id, items)

    >>> async with aiosqlite.connect("shop.db") as conn:
    ...     services = await build_sqlite_services(conn, config)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import aiosqlite

from shopcore.bus import InMemoryEventBus
from shopcore.catalog import InMemoryProductCatalog, ProductCatalog
from shopcore.config import ShopConfig
from shopcore.discounts import Coupon, DiscountEngine
from shopcore.documents import (
    Document,
    DocumentRepository,
    InMemoryDocumentRepository,
    SQLiteDocumentRepository,
)
from shopcore.inventory import Inventory, InventoryLedger
from shopcore.observability import Tracer
from shopcore.orders import Order, OrderService
from shopcore.payments import Payment, PaymentService, PaymentWebhookHandler
from shopcore.returns import ReturnRequest, ReturnService
from shopcore.shipping import Shipping, ShippingService

logger = logging.getLogger(__name__)

DOCUMENT_TYPES: tuple[type[Document], ...] = (
    Coupon,
    Order,
    Payment,
    Inventory,
    Shipping,
    ReturnRequest,
)


@dataclass
class ShopServices:
    """All services of one shopcore deployment."""

    config: ShopConfig
    bus: InMemoryEventBus
    catalog: ProductCatalog
    discounts: DiscountEngine
    orders: OrderService
    payments: PaymentService
    webhooks: PaymentWebhookHandler
    inventory: InventoryLedger
    shipping: ShippingService
    returns: ReturnService


def _build(
    repositories: dict[type[Document], DocumentRepository[Any]],
    config: ShopConfig,
    catalog: ProductCatalog,
    tracer: Tracer | None,
) -> ShopServices:
    tracing = {"tracer": tracer, "enable_tracing": config.enable_tracing}
    bus = InMemoryEventBus(**tracing)

    inventory = InventoryLedger(
        repositories[Inventory], low_stock_threshold=config.low_stock_threshold, **tracing
    )
    discounts = DiscountEngine(repositories[Coupon], bus=bus, **tracing)
    orders = OrderService(
        repositories[Order],
        catalog,
        discounts,
        inventory,
        bus=bus,
        price_tolerance=config.price_tolerance,
        delete_policy=config.order_delete_policy,
        dependents=[repositories[Payment], repositories[Shipping], repositories[ReturnRequest]],
        **tracing,
    )
    payments = PaymentService(
        repositories[Payment],
        orders,
        bus=bus,
        max_retries=config.max_payment_retries,
        **tracing,
    )
    webhooks = PaymentWebhookHandler(
        payments,
        secret=config.webhook_secret,
        tolerance_seconds=config.webhook_tolerance_seconds,
        **tracing,
    )
    shipping = ShippingService(repositories[Shipping], orders, **tracing)
    returns = ReturnService(repositories[ReturnRequest], orders, inventory, payments, **tracing)

    return ShopServices(
        config=config,
        bus=bus,
        catalog=catalog,
        discounts=discounts,
        orders=orders,
        payments=payments,
        webhooks=webhooks,
        inventory=inventory,
        shipping=shipping,
        returns=returns,
    )


def build_in_memory_services(
    config: ShopConfig | None = None,
    catalog: ProductCatalog | None = None,
    tracer: Tracer | None = None,
) -> ShopServices:
    """Services over in-memory storage, for development and tests."""
    config = config or ShopConfig()
    repositories: dict[type[Document], DocumentRepository[Any]] = {
        document_type: InMemoryDocumentRepository(
            document_type, tracer=tracer, enable_tracing=config.enable_tracing
        )
        for document_type in DOCUMENT_TYPES
    }
    logger.debug("Built in-memory services", extra={"document_types": len(DOCUMENT_TYPES)})
    return _build(repositories, config, catalog or InMemoryProductCatalog(), tracer)


async def build_sqlite_services(
    connection: aiosqlite.Connection,
    config: ShopConfig | None = None,
    catalog: ProductCatalog | None = None,
    tracer: Tracer | None = None,
) -> ShopServices:
    """
    Services over a SQLite connection.

    Tables and indexes are created if missing. The caller owns the
    connection and closes it.
    """
    config = config or ShopConfig()
    repositories: dict[type[Document], DocumentRepository[Any]] = {}
    for document_type in DOCUMENT_TYPES:
        repository = SQLiteDocumentRepository(
            connection, document_type, tracer=tracer, enable_tracing=config.enable_tracing
        )
        await repository.create_schema()
        repositories[document_type] = repository

    logger.info(
        "Built SQLite services with %d tables",
        len(DOCUMENT_TYPES),
        extra={"database_path": config.database_path},
    )
    return _build(repositories, config, catalog or InMemoryProductCatalog(), tracer)


__all__ = [
    "DOCUMENT_TYPES",
    "ShopServices",
    "build_in_memory_services",
    "build_sqlite_services",
]
