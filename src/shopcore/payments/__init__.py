"""
Payment reconciliation.

Payments are created for orders, reconciled against signed provider
webhooks, retried a bounded number of times and refunded.
"""

from shopcore.payments.models import (
    DEFAULT_REFUND_REASON,
    PAYMENT_TRANSITIONS,
    Payment,
    PaymentMethod,
    PaymentStats,
    PaymentStatus,
    ReconciliationOutcome,
    ReconciliationResult,
)
from shopcore.payments.service import EVENT_FAILED, EVENT_SUCCEEDED, PaymentService
from shopcore.payments.webhooks import (
    SIGNATURE_HEADER,
    PaymentWebhookHandler,
    ProviderEvent,
    parse_event,
    sign_payload,
    verify_signature,
)

__all__ = [
    "DEFAULT_REFUND_REASON",
    "EVENT_FAILED",
    "EVENT_SUCCEEDED",
    "PAYMENT_TRANSITIONS",
    "Payment",
    "PaymentMethod",
    "PaymentService",
    "PaymentStats",
    "PaymentStatus",
    "PaymentWebhookHandler",
    "ProviderEvent",
    "ReconciliationOutcome",
    "ReconciliationResult",
    "SIGNATURE_HEADER",
    "parse_event",
    "sign_payload",
    "verify_signature",
]
