"""
Storefront — 在庫ゲートウェイ (Inventory Gateway)

カート行と商品ごとの在庫数 (products.quantity) をつなぐ。

在庫数は「読む → 計算する → 書き戻す」だけで、予約もロックもない。
同じ商品への同時チェックアウトは競合し、更新が失われうる（lost update）。
compare_and_swap=True にすると、読んだ値と一致する場合のみ書き込む
楽観的ロックになり、競合時は読み直して再試行する。

ここでの失敗はすべて助言的(advisory)で、ログに残すだけで例外は出さない。
"""

import asyncio
import logging

from .backend import RecordBackend
from .models import CartLine, StockCheck, StockStatus

logger = logging.getLogger(__name__)


class InventoryGateway:
    def __init__(
        self,
        backend: RecordBackend,
        compare_and_swap: bool = False,
        max_attempts: int = 3,
    ) -> None:
        self.backend = backend
        self.compare_and_swap = compare_and_swap
        self.max_attempts = max_attempts

    async def _read_product(self, product_id: str) -> dict | None:
        rows = await self.backend.select(
            "products",
            where={"product_id": product_id},
            columns=["product_id", "name", "quantity"],
        )
        return rows[0] if rows else None

    # ── 事前チェック（警告のみ） ─────────────────

    async def validate_availability(self, lines: list[CartLine]) -> StockCheck:
        """
        各行の在庫を確認し、不足していればメッセージを積む。

        商品が読めない場合は「不明」として飛ばす。ゲートではなく警告。
        """
        errors: list[str] = []
        for line in lines:
            try:
                product = await self._read_product(line.product_id)
            except Exception:
                logger.warning(
                    "Product %s could not be read for stock validation",
                    line.product_id,
                    exc_info=True,
                )
                continue
            if product is None:
                logger.warning("Product %s not found for stock validation", line.product_id)
                continue

            available = product["quantity"] or 0
            if available < line.quantity:
                name = product["name"] or line.name
                errors.append(
                    f"{name}: insufficient stock "
                    f"(available: {available}, requested: {line.quantity})"
                )
                logger.warning(
                    "Insufficient stock for %s: available %s, requested %s",
                    name,
                    available,
                    line.quantity,
                )
        return StockCheck(valid=not errors, errors=errors)

    # ── 在庫減算 ─────────────────────────────────

    async def decrement(self, product_id: str, quantity: int) -> bool:
        """1 商品の在庫を max(0, 現在値 - quantity) に書き戻す。失敗時は False。"""
        attempts = self.max_attempts if self.compare_and_swap else 1
        try:
            for attempt in range(1, attempts + 1):
                product = await self._read_product(product_id)
                if product is None:
                    logger.warning("Product %s not found", product_id)
                    return False

                current = product["quantity"] or 0
                new_quantity = max(0, current - quantity)
                expected = {"quantity": current} if self.compare_and_swap else None
                updated = await self.backend.update(
                    "products",
                    {"quantity": new_quantity},
                    where={"product_id": product_id},
                    expected=expected,
                )
                if updated:
                    logger.info(
                        "Product %s quantity updated: %s -> %s",
                        product_id,
                        current,
                        new_quantity,
                    )
                    return True
                logger.info(
                    "Concurrent update on product %s, retrying (%s/%s)",
                    product_id,
                    attempt,
                    attempts,
                )
        except Exception:
            logger.exception("Error updating product %s quantity", product_id)
            return False

        logger.warning("Giving up on product %s after %s attempts", product_id, attempts)
        return False

    async def decrement_many(self, lines: list[CartLine]) -> list[str]:
        """
        行ごとに独立して減算する。順序の保証はない。

        1 行の失敗で残りを止めない。更新できた product_id を返す。
        """
        results = await asyncio.gather(
            *(self.decrement(line.product_id, line.quantity) for line in lines)
        )
        return [line.product_id for line, ok in zip(lines, results) if ok]

    # ── 補償（キャンセル時の戻し） ───────────────

    async def restore(self, product_id: str, quantity: int) -> bool:
        try:
            product = await self._read_product(product_id)
            if product is None:
                logger.warning("Product %s not found for restoration", product_id)
                return False
            current = product["quantity"] or 0
            new_quantity = current + quantity
            updated = await self.backend.update(
                "products",
                {"quantity": new_quantity},
                where={"product_id": product_id},
            )
        except Exception:
            logger.exception("Error restoring product %s quantity", product_id)
            return False

        if not updated:
            logger.warning("Product %s disappeared before restoration", product_id)
            return False
        logger.info(
            "Product %s quantity restored: %s -> %s", product_id, current, new_quantity
        )
        return True

    # ── 参照（在庫バッジ用） ─────────────────────

    async def get_quantity(self, product_id: str) -> int:
        try:
            product = await self._read_product(product_id)
        except Exception:
            logger.exception("Error fetching product quantity for %s", product_id)
            return 0
        return (product["quantity"] or 0) if product else 0

    async def can_satisfy(self, product_id: str, quantity: int) -> bool:
        return await self.get_quantity(product_id) >= quantity

    @staticmethod
    def stock_status(quantity: int) -> StockStatus:
        if quantity <= 0:
            return StockStatus(status="out-of-stock", message="Out of stock")
        if quantity <= 5:
            return StockStatus(status="low-stock", message=f"Only {quantity} left")
        if quantity <= 10:
            return StockStatus(status="limited-stock", message="Limited stock")
        return StockStatus(status="in-stock", message="In stock")
