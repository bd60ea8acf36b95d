"""
shopcore - order, payment, discount, inventory and shipping core for a marketplace.

This library provides:
- Discount engine with single-use, atomically consumed coupons
- Order aggregate with a forward-only status machine
- Payment reconciliation with signed, idempotent provider webhooks
- Inventory ledger with never-negative stock adjustments
- Shipping records and a return workflow
- In-memory and SQLite storage behind one repository protocol
"""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("shopcore")
except PackageNotFoundError:
    # Package not installed (running from source without install)
    __version__ = "0.0.0.dev0"

from shopcore.auth import (
    Authenticator,
    Principal,
    Role,
    StaticTokenAuthenticator,
)
from shopcore.bulk import BulkResult, ItemOutcome
from shopcore.bus import EventPublisher, InMemoryEventBus
from shopcore.catalog import CatalogProduct, InMemoryProductCatalog, ProductCatalog
from shopcore.config import OrderDeletePolicy, ShopConfig
from shopcore.discounts import (
    AppliedDiscount,
    Coupon,
    CouponTarget,
    CouponTerms,
    DiscountEngine,
    DiscountType,
    OrderContext,
    TargetKind,
)
from shopcore.events import (
    CouponApplied,
    OrderPlaced,
    OrderStatusChanged,
    PaymentCompleted,
    PaymentFailed,
    PaymentRefunded,
    ShopEvent,
    StockShortage,
)
from shopcore.exceptions import (
    AmountMismatchError,
    AuthenticationError,
    ConflictError,
    CouponAlreadyUsedError,
    CouponInactiveError,
    CouponNotFoundError,
    CouponOutOfWindowError,
    CouponScopeMismatchError,
    DuplicateError,
    EmptyItemsError,
    ExternalIntegrityError,
    ForbiddenError,
    InvalidTransitionError,
    NegativeStockError,
    NotFoundError,
    PriceMismatchError,
    RetryLimitExceededError,
    ShopError,
    ValidationError,
    WebhookSignatureError,
)
from shopcore.inventory import Inventory, InventoryLedger, StockAdjustment
from shopcore.orders import Order, OrderItemInput, OrderService, OrderStatus
from shopcore.pagination import Page
from shopcore.payments import (
    Payment,
    PaymentMethod,
    PaymentService,
    PaymentStatus,
    PaymentWebhookHandler,
    ReconciliationOutcome,
)
from shopcore.returns import ReturnRequest, ReturnService, ReturnStatus
from shopcore.services import ShopServices, build_in_memory_services, build_sqlite_services
from shopcore.shipping import Shipping, ShippingService, ShippingStatus

__all__ = [
    "__version__",
    # Auth
    "Authenticator",
    "Principal",
    "Role",
    "StaticTokenAuthenticator",
    # Configuration and wiring
    "OrderDeletePolicy",
    "ShopConfig",
    "ShopServices",
    "build_in_memory_services",
    "build_sqlite_services",
    # Shared types
    "BulkResult",
    "ItemOutcome",
    "Page",
    "CatalogProduct",
    "InMemoryProductCatalog",
    "ProductCatalog",
    # Events
    "EventPublisher",
    "InMemoryEventBus",
    "ShopEvent",
    "CouponApplied",
    "OrderPlaced",
    "OrderStatusChanged",
    "PaymentCompleted",
    "PaymentFailed",
    "PaymentRefunded",
    "StockShortage",
    # Discounts
    "AppliedDiscount",
    "Coupon",
    "CouponTarget",
    "CouponTerms",
    "DiscountEngine",
    "DiscountType",
    "OrderContext",
    "TargetKind",
    # Orders
    "Order",
    "OrderItemInput",
    "OrderService",
    "OrderStatus",
    # Payments
    "Payment",
    "PaymentMethod",
    "PaymentService",
    "PaymentStatus",
    "PaymentWebhookHandler",
    "ReconciliationOutcome",
    # Inventory
    "Inventory",
    "InventoryLedger",
    "StockAdjustment",
    # Shipping and returns
    "Shipping",
    "ShippingService",
    "ShippingStatus",
    "ReturnRequest",
    "ReturnService",
    "ReturnStatus",
    # Exceptions
    "ShopError",
    "ValidationError",
    "AuthenticationError",
    "ForbiddenError",
    "NotFoundError",
    "ConflictError",
    "ExternalIntegrityError",
    "AmountMismatchError",
    "CouponAlreadyUsedError",
    "CouponInactiveError",
    "CouponNotFoundError",
    "CouponOutOfWindowError",
    "CouponScopeMismatchError",
    "DuplicateError",
    "EmptyItemsError",
    "InvalidTransitionError",
    "NegativeStockError",
    "PriceMismatchError",
    "RetryLimitExceededError",
    "WebhookSignatureError",
]
