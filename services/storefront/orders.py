"""
Storefront — 注文リポジトリ

注文ヘッダ (orders) と注文明細 (order_items) の読み書き。
ヘッダと明細は別テーブルで、まとめて 1 トランザクションにはできない。

状態遷移:
    pending → processing → confirmed → shipped → ... → delivered
    (任意) → cancelled  (在庫を戻す = 補償)
    cancelled / refunded からは遷移できない
"""

import logging
from datetime import datetime, timezone

from .backend import RecordBackend
from .errors import InvalidStatusError, OrderNotFoundError
from .inventory import InventoryGateway
from .models import (
    ORDER_STATUSES,
    TERMINAL_STATUSES,
    CartLine,
    Order,
    OrderItem,
    OrderStatus,
)

logger = logging.getLogger(__name__)


class OrderRepository:
    def __init__(self, backend: RecordBackend) -> None:
        self.backend = backend

    # ── 書き込み ─────────────────────────────────

    async def create_order(self, order: Order) -> Order:
        """ヘッダを 1 行登録する。order_id と created_at はバックエンドが採番する。"""
        row = order.model_dump(exclude={"order_id", "created_at", "shipped_date"})
        [created] = await self.backend.insert("orders", [row])
        return Order.model_validate(created)

    async def add_items(self, order_id: str, lines: list[CartLine]) -> list[OrderItem]:
        """明細を 1 回の呼び出しで一括登録する（更新はしない）"""
        rows = [
            {
                "order_id": order_id,
                "product_id": line.product_id,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
            }
            for line in lines
        ]
        created = await self.backend.insert("order_items", rows)
        return [OrderItem.model_validate(row) for row in created]

    async def update_status(self, order_id: str, status: str) -> Order:
        """
        状態を遷移させる。

        cancelled への遷移は在庫の戻しを伴うため cancel_order でのみ行う。
        """
        if status not in ORDER_STATUSES:
            raise InvalidStatusError(f"Unknown order status: {status}")
        if status == OrderStatus.CANCELLED:
            raise InvalidStatusError("Use cancel_order to cancel an order")
        return await self._transition(order_id, status)

    async def _transition(self, order_id: str, status: str) -> Order:
        order = await self.get_order(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        if order.status == status:
            return order
        if order.status in TERMINAL_STATUSES:
            raise InvalidStatusError(
                f"Order {order_id} is {order.status} and cannot become {status}"
            )

        values: dict = {"status": status}
        if status == OrderStatus.SHIPPED:
            values["shipped_date"] = datetime.now(timezone.utc)
        await self.backend.update("orders", values, where={"order_id": order_id})
        logger.info("Order %s status: %s -> %s", order_id, order.status, status)
        return order.model_copy(update=values)

    async def cancel_order(self, order_id: str, inventory: InventoryGateway) -> Order:
        """
        注文をキャンセルし、明細ぶんの在庫を戻す（補償）。

        注文は削除しない。在庫の戻しはベストエフォート。
        既にキャンセル済みなら何もしない（二重に戻さない）。
        """
        current = await self.get_order(order_id)
        if current is None:
            raise OrderNotFoundError(order_id)
        if current.status == OrderStatus.CANCELLED:
            return current

        # 明細が読めなければ状態は変えない（再試行で戻せるように）
        items = await self.list_items(order_id)
        order = await self._transition(order_id, OrderStatus.CANCELLED)
        for item in items:
            await inventory.restore(item.product_id, item.quantity)
        return order

    async def mark_abandoned(self, order_id: str) -> bool:
        """
        明細の登録に失敗したヘッダ（孤児）をキャンセル状態にする。

        ここでの失敗はログのみ。
        """
        try:
            updated = await self.backend.update(
                "orders",
                {"status": OrderStatus.CANCELLED},
                where={"order_id": order_id},
            )
        except Exception:
            logger.exception("Failed to cancel orphaned order %s", order_id)
            return False
        logger.warning("Orphaned order %s marked as cancelled", order_id)
        return bool(updated)

    # ── 読み取り ─────────────────────────────────

    async def get_order(self, order_id: str) -> Order | None:
        rows = await self.backend.select("orders", where={"order_id": order_id})
        return Order.model_validate(rows[0]) if rows else None

    async def list_items(self, order_id: str) -> list[OrderItem]:
        rows = await self.backend.select("order_items", where={"order_id": order_id})
        return [OrderItem.model_validate(row) for row in rows]

    async def list_user_orders(self, user_id: str) -> list[Order]:
        rows = await self.backend.select(
            "orders",
            where={"user_id": user_id},
            order_by="created_at",
            descending=True,
        )
        return [Order.model_validate(row) for row in rows]
