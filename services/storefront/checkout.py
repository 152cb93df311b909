"""
Checkout Pipeline — 注文送信オーケストレーター

バックエンドはテーブルをまたぐトランザクションを持たないため、
チェックアウトを明示的なステップ列として実行し、ステップごとに
失敗時の方針（中断 / 補償 / ログのみ）を決めておく。

  フロー:
  ┌──────────────────────────────────────────────────────────────┐
  │  1. ガード: 実行中チェック・入力チェック・ログイン確認         │
  │  2. 対象の決定: 今すぐ購入が active ならその 1 行、なければカート│
  │  3. 在庫の事前確認            → 警告のみ、続行                 │
  │  4. 注文ヘッダ登録            → 失敗で中断（補償不要）          │
  │  5. 注文明細登録              → 失敗で中断                      │
  │     └─ ヘッダをキャンセル状態に (補償, compensate_orphans)     │
  │  6. 在庫の減算                → ベストエフォート、続行           │
  │  7. 出品者通知                → ベストエフォート、続行           │
  │  8. 消費した行（カート or 今すぐ購入）だけを取り除いて結果を返す│
  └──────────────────────────────────────────────────────────────┘

呼び出し元に失敗を返すのは 1 (ガード) と 4・5 だけ。
"""

import logging
from datetime import datetime, timezone

from .auth import AuthProvider
from .cart_store import CartStore
from .config import CHECKOUT_CHANNEL
from .errors import (
    CheckoutValidationError,
    NotAuthenticatedError,
    OrderSubmissionError,
)
from .events import CheckoutCompleted, CheckoutFailed, Publisher, publish_event
from .inventory import InventoryGateway
from .models import CartLine, CheckoutResult, Order, OrderStatus
from .notifications import SellerNotifier
from .orders import OrderRepository

logger = logging.getLogger(__name__)

SOURCE_CART = "cart"
SOURCE_BUY_NOW = "buy_now"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class CheckoutPipeline:
    """1 つのカートストアに対するチェックアウトのオーケストレーター"""

    def __init__(
        self,
        cart: CartStore,
        inventory: InventoryGateway,
        orders: OrderRepository,
        notifier: SellerNotifier,
        auth: AuthProvider,
        publisher: Publisher | None = None,
        compensate_orphans: bool = True,
    ) -> None:
        self.cart = cart
        self.inventory = inventory
        self.orders = orders
        self.notifier = notifier
        self.auth = auth
        self.publisher = publisher
        self.compensate_orphans = compensate_orphans

    async def checkout(
        self,
        address: str,
        recipient_name: str,
        recipient_phone: str,
        note: str = "",
    ) -> CheckoutResult:
        """
        チェックアウトを実行する。

        実行中にもう 1 回呼ばれた場合は待たずに CheckoutInProgressError。
        トークンは成功・失敗を問わず解放される。
        """
        with self.cart.checkout_token():
            return await self._execute(
                address.strip(),
                recipient_name.strip(),
                recipient_phone.strip(),
                note.strip(),
            )

    def _select_source(self) -> tuple[str, list[CartLine]]:
        slot = self.cart.buy_now
        if slot.active and slot.line is not None:
            return SOURCE_BUY_NOW, [slot.line]
        return SOURCE_CART, list(self.cart.lines)

    async def _execute(
        self,
        address: str,
        recipient_name: str,
        recipient_phone: str,
        note: str,
    ) -> CheckoutResult:
        checkout_log: list[dict] = []

        # ── Step 1: ガード ──────────────────────────
        # 入力チェックはネットワーク呼び出しより前に行う
        if not address:
            raise CheckoutValidationError("Shipping address is required", "address")
        if not recipient_name:
            raise CheckoutValidationError("Recipient name is required", "recipient_name")
        if not recipient_phone:
            raise CheckoutValidationError("Recipient phone is required", "recipient_phone")

        # ── Step 2: 対象の決定（途中で見直さない） ──
        source, lines = self._select_source()
        if not lines:
            raise CheckoutValidationError("Cart is empty!")

        identity = await self.auth.current_user()
        if identity is None:
            raise NotAuthenticatedError()

        total = sum(line.line_total for line in lines)

        # ── Step 3: 在庫の事前確認（警告のみ） ──────
        checkout_log.append(
            {"step": 3, "action": "ValidateStock", "status": "EXECUTING", "timestamp": _now()}
        )
        stock = await self.inventory.validate_availability(lines)
        checkout_log[-1]["status"] = "COMPLETED"
        if not stock.valid:
            logger.warning("Proceeding despite stock warnings: %s", stock.errors)
            checkout_log[-1]["warnings"] = stock.errors

        # ── Step 4: 注文ヘッダ登録 ──────────────────
        checkout_log.append(
            {"step": 4, "action": "CreateOrder", "status": "EXECUTING", "timestamp": _now()}
        )
        try:
            order = await self.orders.create_order(
                Order(
                    user_id=identity.id,
                    total_amount=total,
                    address=address,
                    recipient_name=recipient_name,
                    recipient_phone=recipient_phone,
                    note=note,
                    status=OrderStatus.PENDING,
                )
            )
            checkout_log[-1]["status"] = "COMPLETED"
        except Exception as e:
            checkout_log[-1]["status"] = "FAILED"
            checkout_log[-1]["error"] = str(e)
            await self._publish_failed(identity.id, "ORDER_INSERT_FAILED", str(e), None)
            raise OrderSubmissionError(
                "ORDER_INSERT_FAILED", f"Order could not be created: {e}"
            ) from e

        order_id = order.order_id

        # ── Step 5: 注文明細登録 ────────────────────
        checkout_log.append(
            {"step": 5, "action": "CreateOrderItems", "status": "EXECUTING", "timestamp": _now()}
        )
        try:
            await self.orders.add_items(order_id, lines)
            checkout_log[-1]["status"] = "COMPLETED"
        except Exception as e:
            checkout_log[-1]["status"] = "FAILED"
            checkout_log[-1]["error"] = str(e)

            if self.compensate_orphans:
                checkout_log.append(
                    {
                        "step": 5,
                        "action": "CancelOrder (COMPENSATING)",
                        "status": "EXECUTING",
                        "timestamp": _now(),
                    }
                )
                if await self.orders.mark_abandoned(order_id):
                    checkout_log[-1]["status"] = "COMPLETED"
                else:
                    checkout_log[-1]["status"] = "FAILED"
            else:
                logger.error("Order %s left without items", order_id)

            await self._publish_failed(identity.id, "ORDER_ITEMS_FAILED", str(e), order_id)
            raise OrderSubmissionError(
                "ORDER_ITEMS_FAILED",
                f"Order items could not be saved: {e}",
                order_id=order_id,
            ) from e

        # ── Step 6: 在庫の減算（ベストエフォート） ──
        checkout_log.append(
            {"step": 6, "action": "DecrementInventory", "status": "EXECUTING", "timestamp": _now()}
        )
        try:
            updated = await self.inventory.decrement_many(lines)
            if len(updated) == len(lines):
                checkout_log[-1]["status"] = "COMPLETED"
            else:
                checkout_log[-1]["status"] = "FAILED"
                checkout_log[-1]["error"] = f"updated {len(updated)} of {len(lines)} products"
        except Exception as e:
            logger.exception("Inventory update failed for order %s", order_id)
            checkout_log[-1]["status"] = "FAILED"
            checkout_log[-1]["error"] = str(e)

        # ── Step 7: 出品者通知（ベストエフォート） ──
        checkout_log.append(
            {"step": 7, "action": "NotifySellers", "status": "EXECUTING", "timestamp": _now()}
        )
        try:
            notified = await self.notifier.notify_order(order_id, identity.id, lines)
            checkout_log[-1]["status"] = "COMPLETED"
            checkout_log[-1]["sellers"] = len(notified)
        except Exception as e:
            logger.exception("Seller notification failed for order %s", order_id)
            checkout_log[-1]["status"] = "FAILED"
            checkout_log[-1]["error"] = str(e)

        # ── Step 8: 消費した行だけを取り除く ────────
        # 実行中に UI から追加・変更された分は残す
        if source == SOURCE_BUY_NOW:
            self.cart.consume_buy_now(lines[0])
        else:
            self.cart.consume(lines)

        logger.info("Order %s placed (%s, total=%s)", order_id, source, total)
        await publish_event(
            self.publisher,
            CHECKOUT_CHANNEL,
            CheckoutCompleted(
                order_id=order_id,
                user_id=identity.id,
                total=total,
                source=source,
                timestamp=datetime.now(timezone.utc),
            ),
        )
        return CheckoutResult(
            order_id=order_id,
            items=lines,
            total=total,
            source=source,
            checkout_log=checkout_log,
        )

    async def _publish_failed(
        self, user_id: str, code: str, reason: str, order_id: str | None
    ) -> None:
        await publish_event(
            self.publisher,
            CHECKOUT_CHANNEL,
            CheckoutFailed(
                user_id=user_id,
                code=code,
                reason=reason,
                order_id=order_id,
                timestamp=datetime.now(timezone.utc),
            ),
        )
