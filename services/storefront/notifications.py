"""
Storefront — 出品者通知 (Notification Fan-out)

注文に含まれる商品の出品者ごとに、通知を 1 件だけ作る（行ごとではない）。
出品者の特定に失敗した行は警告を出して飛ばす。
冪等性はない: 同じ注文で 2 回呼べば通知も 2 件になる。
"""

import logging
from datetime import datetime, timezone

from .backend import RecordBackend
from .config import SELLER_NOTIFICATION_CHANNEL
from .events import Publisher, SellerNotified, publish_event
from .models import CartLine, NotificationMetadata, SellerNotification

logger = logging.getLogger(__name__)


class SellerNotifier:
    def __init__(self, backend: RecordBackend, publisher: Publisher | None = None) -> None:
        self.backend = backend
        self.publisher = publisher

    async def _seller_of(self, product_id: str) -> str | None:
        rows = await self.backend.select(
            "products",
            where={"product_id": product_id},
            columns=["seller_id"],
        )
        return rows[0]["seller_id"] if rows else None

    async def notify_order(
        self,
        order_id: str,
        customer_id: str,
        lines: list[CartLine],
    ) -> list[SellerNotification]:
        """
        出品者ごとに通知を作る。

        1. 各行の商品から出品者を引く（失敗した行は飛ばす）
        2. 出品者ごとにまとめる（代表商品 = 最初の行）
        3. 出品者ごとに 1 件 INSERT し、Redis にも発行する
        """
        by_seller: dict[str, list[CartLine]] = {}
        for line in lines:
            try:
                seller_id = await self._seller_of(line.product_id)
            except Exception:
                logger.warning(
                    "Seller lookup failed for product %s", line.product_id, exc_info=True
                )
                continue
            if not seller_id:
                logger.warning("No seller found for product %s", line.product_id)
                continue
            by_seller.setdefault(seller_id, []).append(line)

        created: list[SellerNotification] = []
        for seller_id, seller_lines in by_seller.items():
            units = sum(line.quantity for line in seller_lines)
            notification = SellerNotification(
                seller_id=seller_id,
                title="New order",
                content=(
                    f"Order {order_id} includes {units} unit(s) of "
                    f"{len(seller_lines)} product(s) from your shop"
                ),
                type="new_order",
                metadata=NotificationMetadata(
                    order_id=order_id,
                    product_id=seller_lines[0].product_id,
                    customer_id=customer_id,
                ),
            )
            try:
                [row] = await self.backend.insert(
                    "seller_notifications",
                    [notification.model_dump(exclude={"id", "created_at"})],
                )
            except Exception:
                logger.exception("Failed to notify seller %s of order %s", seller_id, order_id)
                continue

            saved = SellerNotification.model_validate(row)
            created.append(saved)
            await publish_event(
                self.publisher,
                SELLER_NOTIFICATION_CHANNEL,
                SellerNotified(
                    notification_id=saved.id,
                    seller_id=seller_id,
                    order_id=order_id,
                    timestamp=datetime.now(timezone.utc),
                ),
            )
        return created

    # ── 受信箱（出品者側） ───────────────────────

    async def list_for_seller(
        self, seller_id: str, unread_only: bool = False
    ) -> list[SellerNotification]:
        where: dict = {"seller_id": seller_id}
        if unread_only:
            where["is_read"] = False
        rows = await self.backend.select(
            "seller_notifications",
            where=where,
            order_by="created_at",
            descending=True,
        )
        return [SellerNotification.model_validate(row) for row in rows]

    async def unread_count(self, seller_id: str) -> int:
        return len(await self.list_for_seller(seller_id, unread_only=True))

    async def mark_read(self, notification_id: str) -> bool:
        return await self._set_read(notification_id, True)

    async def mark_unread(self, notification_id: str) -> bool:
        return await self._set_read(notification_id, False)

    async def _set_read(self, notification_id: str, is_read: bool) -> bool:
        updated = await self.backend.update(
            "seller_notifications",
            {"is_read": is_read},
            where={"id": notification_id},
        )
        return bool(updated)

    async def delete(self, notification_id: str) -> bool:
        deleted = await self.backend.delete(
            "seller_notifications", where={"id": notification_id}
        )
        return bool(deleted)
