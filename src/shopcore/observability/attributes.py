"""
Standard span attributes for shopcore.

Attribute constants used across repositories and services for consistent
span naming. Database attributes follow OpenTelemetry semantic conventions.

Example:
    >>> from shopcore.observability.attributes import ATTR_ORDER_ID, ATTR_ORDER_STATUS
    >>>
    >>> with tracer.span(
    ...     "shopcore.order.transition",
    ...     {ATTR_ORDER_ID: str(order_id), ATTR_ORDER_STATUS: "confirmed"},
    ... ):
    ...     pass
"""

# =============================================================================
# Document Storage Attributes
# =============================================================================

ATTR_DOCUMENT_TYPE = "shopcore.document.type"
"""Class name of the stored document (e.g., 'Order', 'Coupon')."""

ATTR_DOCUMENT_ID = "shopcore.document.id"
"""Unique identifier of the stored document (UUID string)."""

ATTR_QUERY_FILTER_COUNT = "shopcore.query.filter_count"
"""Number of filters in a query or conditional update (integer)."""

ATTR_QUERY_LIMIT = "shopcore.query.limit"
"""Query result limit, -1 when unbounded (integer)."""

ATTR_BATCH_SIZE = "shopcore.batch.size"
"""Number of items in a batch operation (integer)."""

# =============================================================================
# Database Attributes (OTEL semantic conventions)
# =============================================================================

ATTR_DB_SYSTEM = "db.system"
"""Database system identifier (e.g., 'sqlite', 'memory')."""

ATTR_DB_OPERATION = "db.operation"
"""Database operation name (e.g., 'SELECT', 'UPDATE')."""

# =============================================================================
# Principal Attributes
# =============================================================================

ATTR_ACTOR_ID = "shopcore.actor.id"
"""Principal who initiated the operation (UUID string)."""

ATTR_ACTOR_ROLE = "shopcore.actor.role"
"""Role of the principal (buyer, seller, admin)."""

# =============================================================================
# Domain Attributes
# =============================================================================

ATTR_ORDER_ID = "shopcore.order.id"
"""Order identifier (UUID string)."""

ATTR_ORDER_STATUS = "shopcore.order.status"
"""Requested or resulting order status."""

ATTR_PAYMENT_ID = "shopcore.payment.id"
"""Payment identifier (UUID string)."""

ATTR_PAYMENT_STATUS = "shopcore.payment.status"
"""Requested or resulting payment status."""

ATTR_TRANSACTION_ID = "shopcore.payment.transaction_id"
"""External provider correlation key."""

ATTR_PROVIDER_EVENT_TYPE = "shopcore.payment.event_type"
"""Type of the inbound provider event (e.g., 'payment_intent.succeeded')."""

ATTR_COUPON_CODE = "shopcore.coupon.code"
"""Coupon code being applied."""

ATTR_COUPON_ID = "shopcore.coupon.id"
"""Coupon identifier (UUID string)."""

ATTR_INVENTORY_ID = "shopcore.inventory.id"
"""Inventory row identifier (UUID string)."""

ATTR_VARIANT_ID = "shopcore.inventory.variant_id"
"""Product variant identifier (UUID string)."""

ATTR_SELLER_ID = "shopcore.seller.id"
"""Seller identifier (UUID string)."""

ATTR_QUANTITY_DELTA = "shopcore.inventory.delta"
"""Signed quantity change (integer)."""

ATTR_SHIPPING_ID = "shopcore.shipping.id"
"""Shipping record identifier (UUID string)."""

ATTR_RETURN_ID = "shopcore.return.id"
"""Return request identifier (UUID string)."""

ATTR_ERROR_TYPE = "error.type"
"""Machine-readable error kind when an operation fails."""

# =============================================================================
# Event Bus Attributes
# =============================================================================

ATTR_EVENT_TYPE = "shopcore.event.type"
"""Class name of the published domain notification."""

ATTR_EVENT_ID = "shopcore.event.id"
"""Unique identifier of the notification (UUID string)."""

ATTR_HANDLER_COUNT = "shopcore.handler.count"
"""Number of handlers an event is dispatched to (integer)."""

ATTR_HANDLER_NAME = "shopcore.handler.name"
"""Name of the handler processing an event."""

ATTR_HANDLER_SUCCESS = "shopcore.handler.success"
"""Whether the handler completed without raising (boolean)."""
