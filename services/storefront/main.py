"""
Storefront Service — FastAPI エントリーポイント

カート・今すぐ購入・チェックアウト・注文・出品者通知の API を公開する。

  - カートはセッション (X-Cart-Session ヘッダ) ごとに 1 つ
  - ユーザーは Authorization: Bearer のトークンで認証サービスに問い合わせる
    （AUTH_SERVICE_URL 未設定時は X-User-Id ヘッダをそのまま信用する: 開発用）
  - REDIS_URL 設定時はカートを Redis に保存し、イベントを Pub/Sub で発行する
"""

import logging
from contextlib import asynccontextmanager

import redis
import redis.asyncio as aioredis
from fastapi import FastAPI, Header, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import config
from .auth import AuthProvider, HttpAuthProvider, StaticAuthProvider
from .backend import RecordBackend, create_schema, make_engine
from .cart_store import (
    CartRegistry,
    CartStore,
    KeyValueStorage,
    MemoryStorage,
    WriteBehindStorage,
)
from .checkout import CheckoutPipeline
from .errors import (
    CheckoutError,
    CheckoutInProgressError,
    CheckoutValidationError,
    InvalidStatusError,
    NotAuthenticatedError,
    OrderNotFoundError,
    OrderSubmissionError,
)
from .inventory import InventoryGateway
from .models import CartLine, Identity
from .notifications import SellerNotifier
from .orders import OrderRepository

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
)
logger = logging.getLogger(__name__)

engine = make_engine(config.DATABASE_URL)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
backend = RecordBackend(async_session)
inventory = InventoryGateway(backend, compare_and_swap=config.INVENTORY_COMPARE_AND_SWAP)
orders = OrderRepository(backend)

redis_pool: aioredis.Redis | None = None
redis_client: redis.Redis | None = None
cart_storage: KeyValueStorage = MemoryStorage()
notifier = SellerNotifier(backend)
carts = CartRegistry(cart_storage, config.CART_KEY_PREFIX, config.CART_CACHE_SIZE)


@asynccontextmanager
async def lifespan(app: FastAPI):
    global redis_pool, redis_client, cart_storage, notifier, carts
    await create_schema(engine)
    if config.REDIS_URL:
        redis_pool = aioredis.from_url(config.REDIS_URL, decode_responses=True)
        redis_client = redis.Redis.from_url(config.REDIS_URL, decode_responses=True)
        # カート操作は同期なので、Redis への書き込みはワーカースレッドで行う
        cart_storage = WriteBehindStorage(redis_client)
        carts = CartRegistry(cart_storage, config.CART_KEY_PREFIX, config.CART_CACHE_SIZE)
    notifier = SellerNotifier(backend, publisher=redis_pool)
    yield
    if isinstance(cart_storage, WriteBehindStorage):
        cart_storage.close()
    if redis_client is not None:
        redis_client.close()
    if redis_pool is not None:
        await redis_pool.aclose()
    await engine.dispose()


app = FastAPI(title="Storefront Service", lifespan=lifespan)

# CORS 設定（ストアフロントのフロントエンドからのアクセスを許可）
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)


_STATUS_BY_ERROR = (
    (CheckoutValidationError, 422),
    (NotAuthenticatedError, 401),
    (CheckoutInProgressError, 409),
    (OrderNotFoundError, 404),
    (InvalidStatusError, 400),
    (OrderSubmissionError, 502),
)


@app.exception_handler(CheckoutError)
async def checkout_error_handler(_request, exc: CheckoutError):
    status_code = next(
        (code for cls, code in _STATUS_BY_ERROR if isinstance(exc, cls)), 400
    )
    return JSONResponse(
        status_code=status_code,
        content={"code": exc.code, "detail": exc.message},
    )


# ── Request Models ───────────────────────────────


class SetQuantityRequest(BaseModel):
    quantity: int
    size_ml: int | None = None


class CheckoutRequest(BaseModel):
    address: str
    recipient_name: str
    recipient_phone: str
    note: str = ""


class UpdateStatusRequest(BaseModel):
    status: str


# ── 依存オブジェクト ─────────────────────────────


def get_cart(session_id: str) -> CartStore:
    return carts.get(session_id)


def get_auth(authorization: str | None, user_id: str | None) -> AuthProvider:
    if config.AUTH_SERVICE_URL:
        token = None
        if authorization and authorization.lower().startswith("bearer "):
            token = authorization[7:].strip()
        return HttpAuthProvider(config.AUTH_SERVICE_URL, token, config.AUTH_TIMEOUT)
    return StaticAuthProvider(Identity(id=user_id) if user_id else None)


def cart_view(cart: CartStore) -> dict:
    snapshot = cart.snapshot()
    return {
        "lines": [line.model_dump() for line in snapshot.lines],
        "buy_now": snapshot.buy_now.model_dump(),
        "cart_total": cart.cart_total,
        "item_count": cart.item_count,
        "buy_now_total": cart.buy_now_total,
    }


# ── カート ───────────────────────────────────────


@app.get("/api/cart")
async def read_cart(x_cart_session: str = Header()):
    return cart_view(get_cart(x_cart_session))


@app.post("/api/cart/lines")
async def add_line(line: CartLine, x_cart_session: str = Header()):
    cart = get_cart(x_cart_session)
    cart.add_line(line)
    return cart_view(cart)


@app.post("/api/cart/lines/{product_id}/increase")
async def increase_line(
    product_id: str, size_ml: int | None = None, x_cart_session: str = Header()
):
    cart = get_cart(x_cart_session)
    cart.increase(product_id, size_ml)
    return cart_view(cart)


@app.post("/api/cart/lines/{product_id}/decrease")
async def decrease_line(
    product_id: str, size_ml: int | None = None, x_cart_session: str = Header()
):
    cart = get_cart(x_cart_session)
    cart.decrease(product_id, size_ml)
    return cart_view(cart)


@app.put("/api/cart/lines/{product_id}")
async def set_line_quantity(
    product_id: str, req: SetQuantityRequest, x_cart_session: str = Header()
):
    cart = get_cart(x_cart_session)
    cart.set_quantity(product_id, req.quantity, req.size_ml)
    return cart_view(cart)


@app.delete("/api/cart/lines/{product_id}")
async def remove_line(
    product_id: str, size_ml: int | None = None, x_cart_session: str = Header()
):
    cart = get_cart(x_cart_session)
    cart.remove_line(product_id, size_ml)
    return cart_view(cart)


@app.delete("/api/cart")
async def clear_cart(x_cart_session: str = Header()):
    cart = get_cart(x_cart_session)
    cart.clear()
    return cart_view(cart)


# ── 今すぐ購入 ───────────────────────────────────


@app.put("/api/buy-now")
async def set_buy_now(line: CartLine, x_cart_session: str = Header()):
    cart = get_cart(x_cart_session)
    cart.set_buy_now(line)
    return cart_view(cart)


@app.delete("/api/buy-now")
async def clear_buy_now(x_cart_session: str = Header()):
    cart = get_cart(x_cart_session)
    cart.clear_buy_now()
    return cart_view(cart)


# ── チェックアウト ───────────────────────────────


@app.post("/api/checkout")
async def checkout(
    req: CheckoutRequest,
    x_cart_session: str = Header(),
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    """
    チェックアウトを実行する。

    在庫・通知の失敗は結果に影響しない（checkout_log にのみ残る）。
    """
    pipeline = CheckoutPipeline(
        get_cart(x_cart_session),
        inventory,
        orders,
        notifier,
        get_auth(authorization, x_user_id),
        publisher=redis_pool,
    )
    result = await pipeline.checkout(
        req.address, req.recipient_name, req.recipient_phone, req.note
    )
    return result.model_dump(mode="json")


# ── 注文 ─────────────────────────────────────────


@app.get("/api/orders")
async def list_orders(
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
):
    """ログイン中ユーザーの注文一覧（新しい順）"""
    identity = await get_auth(authorization, x_user_id).current_user()
    if identity is None:
        raise NotAuthenticatedError()
    return [o.model_dump(mode="json") for o in await orders.list_user_orders(identity.id)]


@app.get("/api/orders/{order_id}")
async def get_order(order_id: str):
    order = await orders.get_order(order_id)
    if order is None:
        raise HTTPException(404, "Order not found")
    items = await orders.list_items(order_id)
    return {
        **order.model_dump(mode="json"),
        "items": [item.model_dump() for item in items],
    }


@app.post("/api/orders/{order_id}/status")
async def update_order_status(order_id: str, req: UpdateStatusRequest):
    order = await orders.update_status(order_id, req.status)
    return order.model_dump(mode="json")


@app.post("/api/orders/{order_id}/cancel")
async def cancel_order(order_id: str):
    """注文キャンセル（在庫を戻す補償つき）"""
    order = await orders.cancel_order(order_id, inventory)
    return order.model_dump(mode="json")


# ── 在庫 ─────────────────────────────────────────


@app.get("/api/products/{product_id}/stock")
async def product_stock(product_id: str):
    quantity = await inventory.get_quantity(product_id)
    return {
        "product_id": product_id,
        "quantity": quantity,
        **inventory.stock_status(quantity).model_dump(),
    }


# ── 出品者通知 ───────────────────────────────────


@app.get("/api/sellers/{seller_id}/notifications")
async def seller_notifications(seller_id: str, unread_only: bool = False):
    items = await notifier.list_for_seller(seller_id, unread_only=unread_only)
    return {
        "unread": await notifier.unread_count(seller_id),
        "notifications": [n.model_dump(mode="json") for n in items],
    }


@app.post("/api/notifications/{notification_id}/read")
async def mark_notification_read(notification_id: str):
    if not await notifier.mark_read(notification_id):
        raise HTTPException(404, "Notification not found")
    return {"id": notification_id, "is_read": True}


@app.post("/api/notifications/{notification_id}/unread")
async def mark_notification_unread(notification_id: str):
    if not await notifier.mark_unread(notification_id):
        raise HTTPException(404, "Notification not found")
    return {"id": notification_id, "is_read": False}


@app.delete("/api/notifications/{notification_id}")
async def delete_notification(notification_id: str):
    if not await notifier.delete(notification_id):
        raise HTTPException(404, "Notification not found")
    return {"id": notification_id, "deleted": True}


@app.get("/health")
async def health():
    return {"status": "ok", "service": "storefront-service"}
