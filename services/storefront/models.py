"""
Storefront — ドメインモデル

カート行・今すぐ購入スロット・注文・注文明細・出品者通知を定義する。
金額は int（VND は補助通貨単位を持たない）。
"""

from datetime import datetime

from pydantic import BaseModel, Field, model_validator

DEFAULT_IMAGE = "assets/images/default-product.jpg"


# ── カート ───────────────────────────────────────


class CartLine(BaseModel):
    """
    カートの 1 行。

    同一性キーは (product_id, size_ml)。
    同じ商品でもサイズが違えば別の行になる。
    """

    product_id: str
    name: str
    unit_price: int = Field(ge=0)
    quantity: int = Field(default=1, ge=1)
    image_ref: str = DEFAULT_IMAGE
    options_label: str = ""
    size_ml: int | None = None

    @property
    def key(self) -> tuple[str, int | None]:
        return (self.product_id, self.size_ml)

    @property
    def line_total(self) -> int:
        return self.unit_price * self.quantity


class BuyNowSlot(BaseModel):
    """今すぐ購入スロット: active なら必ず 1 行を保持する"""

    line: CartLine | None = None
    active: bool = False

    @model_validator(mode="after")
    def _active_requires_line(self) -> "BuyNowSlot":
        if self.active and self.line is None:
            raise ValueError("active buy-now slot must hold a line")
        return self


class CartSnapshot(BaseModel):
    """購読者に渡す不変のスナップショット"""

    lines: tuple[CartLine, ...] = ()
    buy_now: BuyNowSlot = Field(default_factory=BuyNowSlot)


# ── 注文 ─────────────────────────────────────────


class OrderStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    CONFIRMED = "confirmed"
    SHIPPED = "shipped"
    IN_TRANSIT = "in_transit"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


ORDER_STATUSES = (
    OrderStatus.PENDING,
    OrderStatus.PROCESSING,
    OrderStatus.CONFIRMED,
    OrderStatus.SHIPPED,
    OrderStatus.IN_TRANSIT,
    OrderStatus.OUT_FOR_DELIVERY,
    OrderStatus.DELIVERED,
    OrderStatus.CANCELLED,
    OrderStatus.REFUNDED,
)

# ここから先へは遷移できない
TERMINAL_STATUSES = (OrderStatus.CANCELLED, OrderStatus.REFUNDED)


class Order(BaseModel):
    order_id: str | None = None
    user_id: str
    total_amount: int
    address: str
    recipient_name: str
    recipient_phone: str
    note: str = ""
    status: str = OrderStatus.PENDING
    created_at: datetime | None = None
    shipped_date: datetime | None = None


class OrderItem(BaseModel):
    order_id: str
    product_id: str
    quantity: int
    unit_price: int


# ── 出品者通知 ───────────────────────────────────


class NotificationMetadata(BaseModel):
    order_id: str
    product_id: str
    customer_id: str


class SellerNotification(BaseModel):
    id: str | None = None
    seller_id: str
    title: str
    content: str
    type: str = "new_order"
    is_read: bool = False
    metadata: NotificationMetadata
    created_at: datetime | None = None


# ── その他 ───────────────────────────────────────


class Identity(BaseModel):
    """サインイン中のユーザー"""

    id: str
    email: str | None = None


class StockCheck(BaseModel):
    valid: bool
    errors: list[str] = Field(default_factory=list)


class StockStatus(BaseModel):
    status: str
    message: str


class CheckoutResult(BaseModel):
    order_id: str
    items: list[CartLine]
    total: int
    source: str
    checkout_log: list[dict] = Field(default_factory=list)
