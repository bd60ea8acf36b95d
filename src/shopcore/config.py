"""
Configuration for shopcore services.

This module provides:
- ShopConfig: Frozen settings shared by the services and the HTTP layer
- OrderDeletePolicy: Enum for what order deletion does to dependents
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum

ENV_PREFIX = "SHOPCORE_"


class OrderDeletePolicy(Enum):
    """
    What deleting an order does to the payments and shipments that reference it.

    Attributes:
        DETACH: Delete the order only; dependents keep their dangling reference
        RESTRICT: Refuse while any payment or shipment references the order
    """

    DETACH = "detach"
    RESTRICT = "restrict"


@dataclass(frozen=True)
class ShopConfig:
    """
    Configuration for the shopcore services.

    Attributes:
        database_path: SQLite database path; None selects the in-memory backend
        webhook_secret: Shared secret for payment webhook signatures
        webhook_tolerance_seconds: Maximum age of a signed webhook timestamp
        max_payment_retries: Retries allowed for a failed payment
        price_tolerance: Accepted difference between submitted and catalog price
        low_stock_threshold: Default threshold for low stock listings
        order_delete_policy: Effect of order deletion on dependents
        development_mode: Include tracebacks in API error bodies
        enable_tracing: Create OpenTelemetry spans

    Example:
        >>> config = ShopConfig(webhook_secret="whsec_test", max_payment_retries=5)
        >>> config = ShopConfig.from_env()
    """

    database_path: str | None = None

    # Payment provider
    webhook_secret: str = ""
    webhook_tolerance_seconds: int = 300
    max_payment_retries: int = 3

    # Orders
    price_tolerance: Decimal = Decimal("0.01")
    order_delete_policy: OrderDeletePolicy = OrderDeletePolicy.DETACH

    # Inventory
    low_stock_threshold: int = 5

    # Runtime
    development_mode: bool = False
    enable_tracing: bool = True

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.webhook_tolerance_seconds <= 0:
            raise ValueError(
                f"webhook_tolerance_seconds must be positive, got {self.webhook_tolerance_seconds}. "
                "Use a value like 300 (default) seconds."
            )

        if self.max_payment_retries < 0:
            raise ValueError(f"max_payment_retries must be >= 0, got {self.max_payment_retries}.")

        if self.price_tolerance < 0:
            raise ValueError(f"price_tolerance must be >= 0, got {self.price_tolerance}.")

        if self.low_stock_threshold < 0:
            raise ValueError(f"low_stock_threshold must be >= 0, got {self.low_stock_threshold}.")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> ShopConfig:
        """
        Build a configuration from ``SHOPCORE_*`` environment variables.

        Unset variables keep their defaults. Recognized variables:
        SHOPCORE_DATABASE_PATH, SHOPCORE_WEBHOOK_SECRET,
        SHOPCORE_WEBHOOK_TOLERANCE_SECONDS, SHOPCORE_MAX_PAYMENT_RETRIES,
        SHOPCORE_PRICE_TOLERANCE, SHOPCORE_ORDER_DELETE_POLICY,
        SHOPCORE_LOW_STOCK_THRESHOLD, SHOPCORE_DEVELOPMENT_MODE,
        SHOPCORE_ENABLE_TRACING.

        Raises:
            ValueError: If a variable cannot be parsed
        """
        env = os.environ if environ is None else environ

        def get(name: str) -> str | None:
            return env.get(ENV_PREFIX + name)

        kwargs: dict[str, object] = {}

        if (value := get("DATABASE_PATH")) is not None:
            kwargs["database_path"] = value or None
        if (value := get("WEBHOOK_SECRET")) is not None:
            kwargs["webhook_secret"] = value
        if (value := get("WEBHOOK_TOLERANCE_SECONDS")) is not None:
            kwargs["webhook_tolerance_seconds"] = int(value)
        if (value := get("MAX_PAYMENT_RETRIES")) is not None:
            kwargs["max_payment_retries"] = int(value)
        if (value := get("PRICE_TOLERANCE")) is not None:
            try:
                kwargs["price_tolerance"] = Decimal(value)
            except InvalidOperation as e:
                raise ValueError(f"Invalid SHOPCORE_PRICE_TOLERANCE: {value!r}") from e
        if (value := get("ORDER_DELETE_POLICY")) is not None:
            kwargs["order_delete_policy"] = OrderDeletePolicy(value.lower())
        if (value := get("LOW_STOCK_THRESHOLD")) is not None:
            kwargs["low_stock_threshold"] = int(value)
        if (value := get("DEVELOPMENT_MODE")) is not None:
            kwargs["development_mode"] = _parse_bool(value)
        if (value := get("ENABLE_TRACING")) is not None:
            kwargs["enable_tracing"] = _parse_bool(value)

        return cls(**kwargs)  # type: ignore[arg-type]


def _parse_bool(value: str) -> bool:
    normalized = value.strip().lower()
    if normalized in ("1", "true", "yes", "on"):
        return True
    if normalized in ("0", "false", "no", "off", ""):
        return False
    raise ValueError(f"Invalid boolean value: {value!r}")


__all__ = ["ShopConfig", "OrderDeletePolicy", "ENV_PREFIX"]
