"""
Product catalog interface.

The catalog is owned by another service. Orders read the server-trusted
unit price and category of each product from it and never trust the
price a client submits.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Protocol, runtime_checkable
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class CatalogProduct(BaseModel):
    """Catalog view of a product."""

    model_config = ConfigDict(frozen=True)

    product_id: UUID
    price: Decimal = Field(ge=0, decimal_places=2)
    category_id: UUID | None = None


@runtime_checkable
class ProductCatalog(Protocol):
    """Read access to current product prices and categories."""

    async def get_product(self, product_id: UUID) -> CatalogProduct | None:
        """Current catalog entry, or None if the product does not exist."""
        ...


class InMemoryProductCatalog:
    """
    Dictionary-backed catalog for development and tests.

    Example:
        >>> catalog = InMemoryProductCatalog()
        >>> catalog.add(product_id, Decimal("500.00"), category_id=electronics)
    """

    def __init__(self) -> None:
        self._products: dict[UUID, CatalogProduct] = {}

    def add(
        self,
        product_id: UUID,
        price: Decimal,
        category_id: UUID | None = None,
    ) -> CatalogProduct:
        product = CatalogProduct(product_id=product_id, price=price, category_id=category_id)
        self._products[product_id] = product
        return product

    async def get_product(self, product_id: UUID) -> CatalogProduct | None:
        return self._products.get(product_id)


__all__ = ["CatalogProduct", "ProductCatalog", "InMemoryProductCatalog"]
