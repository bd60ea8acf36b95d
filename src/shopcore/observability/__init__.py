"""
Observability utilities for shopcore.

Provides the composition-based tracer abstraction and the standard span
attribute names used by every repository and service.

Example:
    >>> from shopcore.observability import create_tracer
    >>>
    >>> class PaymentService:
    ...     def __init__(self, enable_tracing: bool = True):
    ...         self._tracer = create_tracer(__name__, enable_tracing)
"""

from shopcore.observability.attributes import (
    ATTR_ACTOR_ID,
    ATTR_ACTOR_ROLE,
    ATTR_BATCH_SIZE,
    ATTR_COUPON_CODE,
    ATTR_COUPON_ID,
    ATTR_DB_OPERATION,
    ATTR_DB_SYSTEM,
    ATTR_DOCUMENT_ID,
    ATTR_DOCUMENT_TYPE,
    ATTR_ERROR_TYPE,
    ATTR_EVENT_ID,
    ATTR_EVENT_TYPE,
    ATTR_HANDLER_COUNT,
    ATTR_HANDLER_NAME,
    ATTR_HANDLER_SUCCESS,
    ATTR_INVENTORY_ID,
    ATTR_ORDER_ID,
    ATTR_ORDER_STATUS,
    ATTR_PAYMENT_ID,
    ATTR_PAYMENT_STATUS,
    ATTR_PROVIDER_EVENT_TYPE,
    ATTR_QUANTITY_DELTA,
    ATTR_QUERY_FILTER_COUNT,
    ATTR_QUERY_LIMIT,
    ATTR_RETURN_ID,
    ATTR_SELLER_ID,
    ATTR_SHIPPING_ID,
    ATTR_TRANSACTION_ID,
    ATTR_VARIANT_ID,
)
from shopcore.observability.tracer import (
    MockTracer,
    NullTracer,
    OpenTelemetryTracer,
    SpanKindEnum,
    Tracer,
    create_tracer,
)

__all__ = [
    # Tracer (composition-based API)
    "Tracer",
    "NullTracer",
    "OpenTelemetryTracer",
    "MockTracer",
    "SpanKindEnum",
    "create_tracer",
    # Attributes - Storage
    "ATTR_DOCUMENT_TYPE",
    "ATTR_DOCUMENT_ID",
    "ATTR_QUERY_FILTER_COUNT",
    "ATTR_QUERY_LIMIT",
    "ATTR_BATCH_SIZE",
    "ATTR_DB_SYSTEM",
    "ATTR_DB_OPERATION",
    # Attributes - Principal
    "ATTR_ACTOR_ID",
    "ATTR_ACTOR_ROLE",
    # Attributes - Domain
    "ATTR_ORDER_ID",
    "ATTR_ORDER_STATUS",
    "ATTR_PAYMENT_ID",
    "ATTR_PAYMENT_STATUS",
    "ATTR_TRANSACTION_ID",
    "ATTR_PROVIDER_EVENT_TYPE",
    "ATTR_COUPON_CODE",
    "ATTR_COUPON_ID",
    "ATTR_INVENTORY_ID",
    "ATTR_VARIANT_ID",
    "ATTR_SELLER_ID",
    "ATTR_QUANTITY_DELTA",
    "ATTR_SHIPPING_ID",
    "ATTR_RETURN_ID",
    "ATTR_ERROR_TYPE",
    # Attributes - Event bus
    "ATTR_EVENT_TYPE",
    "ATTR_EVENT_ID",
    "ATTR_HANDLER_COUNT",
    "ATTR_HANDLER_NAME",
    "ATTR_HANDLER_SUCCESS",
]
