"""
Storefront — テーブル定義 (SQLAlchemy Core)

バックエンドが公開する 4 つの論理テーブル。
識別子と作成日時はバックエンド側（カラムのデフォルト）で採番する。
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
)

metadata = MetaData()


def _new_id() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


orders = Table(
    "orders",
    metadata,
    Column("order_id", String(36), primary_key=True, default=_new_id),
    Column("user_id", String(64), nullable=False, index=True),
    Column("total_amount", Integer, nullable=False),
    Column("address", Text, nullable=False),
    Column("recipient_name", String(100), nullable=False),
    Column("recipient_phone", String(20), nullable=False),
    Column("note", Text, nullable=False, default=""),
    Column("status", String(20), nullable=False, default="pending"),
    Column("created_at", DateTime(timezone=True), nullable=False, default=_now),
    Column("shipped_date", DateTime(timezone=True), nullable=True),
)

order_items = Table(
    "order_items",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("order_id", String(36), nullable=False, index=True),
    Column("product_id", String(64), nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("unit_price", Integer, nullable=False),
)

products = Table(
    "products",
    metadata,
    Column("product_id", String(64), primary_key=True, default=_new_id),
    Column("name", String(200), nullable=False),
    Column("price", Integer, nullable=False, default=0),
    Column("quantity", Integer, nullable=False, default=0),
    Column("seller_id", String(64), nullable=True, index=True),
    Column("size_ml", Integer, nullable=True),
    Column("image_url", Text, nullable=True),
    Column("updated_at", DateTime(timezone=True), nullable=True, onupdate=_now),
)

seller_notifications = Table(
    "seller_notifications",
    metadata,
    Column("id", String(36), primary_key=True, default=_new_id),
    Column("seller_id", String(64), nullable=False, index=True),
    Column("title", String(200), nullable=False),
    Column("content", Text, nullable=False),
    Column("type", String(50), nullable=False, default="new_order"),
    Column("is_read", Boolean, nullable=False, default=False),
    Column("metadata", JSON, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False, default=_now),
)

TABLES = {t.name: t for t in (orders, order_items, products, seller_notifications)}
