"""
Error taxonomy for the shopcore package.

Every failure a core operation can report is a ``ShopError`` subclass
with a stable machine-readable ``kind`` and the HTTP ``status_code`` the
API layer answers with. The five families are:

- ValidationError (400): malformed or unacceptable input
- AuthenticationError (401): no usable credentials
- ForbiddenError (403): role or ownership check failed
- NotFoundError (404): referenced entity absent
- ConflictError (409): the current state forbids the operation
- ExternalIntegrityError (400): inbound data failed an integrity check;
  nothing was mutated
"""

from decimal import Decimal
from typing import Any
from uuid import UUID


class ShopError(Exception):
    """Base exception for shopcore."""

    kind: str = "error"
    status_code: int = 500

    def __init__(self, message: str, **details: Any) -> None:
        self.message = message
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serializable body for API responses."""
        return {"error": self.kind, "message": self.message}


# =============================================================================
# Families
# =============================================================================


class ValidationError(ShopError):
    """Raised when input is malformed, missing, or not acceptable."""

    kind = "validation_error"
    status_code = 400


class AuthenticationError(ShopError):
    """Raised when a request carries no valid credentials."""

    kind = "authentication_error"
    status_code = 401


class ForbiddenError(ShopError):
    """Raised when the principal may not perform the operation."""

    kind = "forbidden"
    status_code = 403


class NotFoundError(ShopError):
    """Raised when a referenced entity does not exist."""

    kind = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id: Any) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class ConflictError(ShopError):
    """Raised when the current state of an entity forbids the operation."""

    kind = "conflict"
    status_code = 409


class ExternalIntegrityError(ShopError):
    """Raised when inbound external data fails verification. No state is mutated."""

    kind = "external_integrity_error"
    status_code = 400


# =============================================================================
# Discounts
# =============================================================================


class CouponNotFoundError(NotFoundError):
    """Raised when a coupon code does not resolve."""

    kind = "coupon_not_found"

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__("Coupon", code)


class CouponInactiveError(ValidationError):
    """Raised when the coupon has been deactivated."""

    kind = "coupon_inactive"

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(f"Coupon {code} is inactive")


class CouponOutOfWindowError(ValidationError):
    """Raised when the coupon is used outside its validity window."""

    kind = "coupon_out_of_window"

    def __init__(self, code: str) -> None:
        self.code = code
        super().__init__(f"Coupon {code} is not valid at this time")


class CouponScopeMismatchError(ValidationError):
    """Raised when a scoped coupon does not match the order's product or category."""

    kind = "coupon_scope_mismatch"

    def __init__(self, code: str, reason: str) -> None:
        self.code = code
        super().__init__(f"Coupon {code} cannot be applied: {reason}")


class CouponAlreadyUsedError(ConflictError):
    """Raised when the user has already consumed the coupon."""

    kind = "coupon_already_used"

    def __init__(self, code: str, user_id: UUID) -> None:
        self.code = code
        self.user_id = user_id
        super().__init__(f"Coupon {code} already used by user {user_id}")


# =============================================================================
# Orders
# =============================================================================


class EmptyItemsError(ValidationError):
    """Raised when an order is submitted without line items."""

    kind = "empty_items"

    def __init__(self) -> None:
        super().__init__("Order must contain at least one item")


class PriceMismatchError(ConflictError):
    """Raised when a submitted unit price differs from the catalog price."""

    kind = "price_mismatch"

    def __init__(self, product_id: UUID, submitted: Decimal, current: Decimal) -> None:
        self.product_id = product_id
        self.submitted = submitted
        self.current = current
        super().__init__(
            f"Submitted price {submitted} for product {product_id} "
            f"does not match current price {current}"
        )


class InvalidTransitionError(ConflictError):
    """Raised when a status change is not allowed from the current status."""

    kind = "invalid_transition"

    def __init__(self, entity: str, entity_id: UUID, current: str, target: str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        self.current = current
        self.target = target
        super().__init__(
            f"{entity} {entity_id} cannot move from '{current}' to '{target}'"
        )


# =============================================================================
# Payments
# =============================================================================


class AmountMismatchError(ConflictError):
    """Raised when a supplied amount disagrees with the stored amount."""

    kind = "amount_mismatch"

    def __init__(self, expected: Decimal, supplied: Decimal) -> None:
        self.expected = expected
        self.supplied = supplied
        super().__init__(f"Amount {supplied} does not match expected amount {expected}")


class RetryLimitExceededError(ConflictError):
    """Raised when a failed payment has exhausted its retries."""

    kind = "retry_limit_exceeded"

    def __init__(self, payment_id: UUID, retry_count: int, max_retries: int) -> None:
        self.payment_id = payment_id
        self.retry_count = retry_count
        self.max_retries = max_retries
        super().__init__(
            f"Payment {payment_id} reached the retry limit ({retry_count}/{max_retries})"
        )


class WebhookSignatureError(ExternalIntegrityError):
    """Raised when a webhook signature is missing, stale, or does not verify."""

    kind = "invalid_signature"


# =============================================================================
# Inventory
# =============================================================================


class NegativeStockError(ConflictError):
    """Raised when an adjustment would drive stock below zero."""

    kind = "negative_stock"

    def __init__(self, variant_id: UUID, seller_id: UUID, delta: int, quantity: int) -> None:
        self.variant_id = variant_id
        self.seller_id = seller_id
        self.delta = delta
        self.quantity = quantity
        super().__init__(
            f"Adjusting stock of variant {variant_id} (seller {seller_id}) by {delta} "
            f"would leave {quantity + delta} units"
        )


# =============================================================================
# Generic conflicts
# =============================================================================


class DuplicateError(ConflictError):
    """Raised when a unique value is already taken."""

    kind = "duplicate"

    def __init__(self, entity: str, fields: tuple[str, ...]) -> None:
        self.entity = entity
        self.fields = fields
        super().__init__(f"{entity} with the same {', '.join(fields)} already exists")
