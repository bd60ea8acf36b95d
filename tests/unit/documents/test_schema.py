"""Tests for table naming and SQLite schema generation."""

from decimal import Decimal

from pydantic import BaseModel, Field

from shopcore.discounts import Coupon
from shopcore.documents import Document, generate_full_schema, generate_indexes, generate_schema
from shopcore.documents.schema import decimal_fields, json_fields
from shopcore.inventory import Inventory
from shopcore.orders import Order
from shopcore.returns import ReturnRequest
from shopcore.shipping import Shipping


class Dimensions(BaseModel):
    width: int
    height: int


class Parcel(Document):
    __unique__ = (("label",),)
    __indexes__ = [{"fields": ["carrier", "weight"]}, {"fields": []}]

    label: str
    carrier: str = "DHL"
    weight: Decimal
    fragile: bool = False
    note: str | None = None
    dimensions: Dimensions | None = None
    tags: list[str] = Field(default_factory=list)


class TestTableName:
    def test_derived_names(self) -> None:
        assert Order.table_name() == "orders"
        assert Coupon.table_name() == "coupons"
        assert Inventory.table_name() == "inventories"
        assert ReturnRequest.table_name() == "return_requests"

    def test_explicit_name(self) -> None:
        assert Shipping.table_name() == "shipments"


class TestGenerateSchema:
    def test_columns(self) -> None:
        sql = generate_schema(Parcel)

        assert sql.startswith("CREATE TABLE IF NOT EXISTS parcels (")
        assert "id TEXT PRIMARY KEY" in sql
        assert "version INTEGER NOT NULL DEFAULT 1" in sql
        assert "deleted_at TEXT," in sql
        assert "label TEXT NOT NULL," in sql
        assert "carrier TEXT NOT NULL DEFAULT 'DHL'" in sql
        assert "weight TEXT NOT NULL," in sql
        assert "fragile INTEGER NOT NULL DEFAULT 0" in sql
        assert "note TEXT," in sql
        assert "dimensions TEXT," in sql
        assert "tags TEXT NOT NULL" in sql

    def test_without_if_not_exists(self) -> None:
        assert generate_schema(Parcel, if_not_exists=False).startswith("CREATE TABLE parcels (")

    def test_enum_default(self) -> None:
        assert "status TEXT NOT NULL DEFAULT 'pending'" in generate_schema(Order)

    def test_indexes(self) -> None:
        assert generate_indexes(Parcel) == [
            "CREATE INDEX IF NOT EXISTS idx_parcels_deleted ON parcels(deleted_at);",
            "CREATE UNIQUE INDEX IF NOT EXISTS uq_parcels_label ON parcels(label);",
            "CREATE INDEX IF NOT EXISTS idx_parcels_carrier_weight ON parcels(carrier, weight);",
        ]

    def test_composite_unique_index(self) -> None:
        assert (
            "CREATE UNIQUE INDEX IF NOT EXISTS uq_inventories_variant_id_seller_id "
            "ON inventories(variant_id, seller_id);"
        ) in generate_indexes(Inventory)

    def test_full_schema_starts_with_table(self) -> None:
        statements = generate_full_schema(Parcel)

        assert statements[0] == generate_schema(Parcel)
        assert statements[1:] == generate_indexes(Parcel)


class TestFieldClassification:
    def test_json_fields(self) -> None:
        assert json_fields(Parcel) == {"dimensions", "tags"}
        assert json_fields(Order) == {"items"}
        assert json_fields(Coupon) == {"target", "used_by"}

    def test_decimal_fields(self) -> None:
        assert decimal_fields(Parcel) == {"weight"}
        assert decimal_fields(Order) == {"discount_amount", "subtotal", "total_amount"}
