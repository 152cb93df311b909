"""テスト用のインメモリ実装（バックエンド・KV ストア・Publisher）"""

import asyncio
import copy
from datetime import datetime, timedelta, timezone
from itertools import count
from uuid import uuid4

from storefront.errors import BackendError
from storefront.models import CartLine

_BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


class InMemoryBackend:
    """
    RecordBackend と同じインターフェースのインメモリ実装。

    各操作の先頭で 1 回イベントループに制御を返すので、
    並行タスクの読み書きが交互に進む（lost update を再現できる）。
    """

    def __init__(self) -> None:
        self.tables: dict[str, list[dict]] = {
            "orders": [],
            "order_items": [],
            "products": [],
            "seller_notifications": [],
        }
        self.calls: list[tuple[str, str]] = []
        self._failures: list[dict] = []
        self._ids = count(1)
        self._clock = count(1)

    # ── 失敗の注入 ───────────────────────────────

    def fail(self, op: str, table: str, match: dict | None = None, times: int | None = None) -> None:
        self._failures.append({"op": op, "table": table, "match": match or {}, "times": times})

    def _maybe_fail(self, op: str, table: str, values: dict) -> None:
        for rule in self._failures:
            if rule["op"] != op or rule["table"] != table:
                continue
            if any(values.get(k) != v for k, v in rule["match"].items()):
                continue
            if rule["times"] is not None:
                if rule["times"] <= 0:
                    continue
                rule["times"] -= 1
            raise BackendError(op, table, "simulated failure")

    # ── 初期データ ───────────────────────────────

    def seed_product(self, product_id: str, quantity: int, seller_id: str | None = "S1",
                     name: str | None = None, price: int = 0) -> None:
        self.tables["products"].append(
            {
                "product_id": product_id,
                "name": name or f"Product {product_id}",
                "price": price,
                "quantity": quantity,
                "seller_id": seller_id,
                "size_ml": None,
                "image_url": None,
            }
        )

    def product(self, product_id: str) -> dict:
        return next(p for p in self.tables["products"] if p["product_id"] == product_id)

    # ── RecordBackend と同じ操作 ─────────────────

    def _defaults(self, table: str, row: dict) -> dict:
        row = dict(row)
        now = _BASE_TIME + timedelta(seconds=next(self._clock))
        if table == "orders":
            row.setdefault("order_id", str(uuid4()))
            row.setdefault("status", "pending")
            row.setdefault("note", "")
            row.setdefault("created_at", now)
            row.setdefault("shipped_date", None)
        elif table == "order_items":
            row.setdefault("id", next(self._ids))
        elif table == "seller_notifications":
            row.setdefault("id", str(uuid4()))
            row.setdefault("is_read", False)
            row.setdefault("type", "new_order")
            row.setdefault("created_at", now)
        return row

    async def insert(self, table: str, rows: list[dict]) -> list[dict]:
        await asyncio.sleep(0)
        self.calls.append(("insert", table))
        for row in rows:
            self._maybe_fail("insert", table, row)
        created = [self._defaults(table, row) for row in rows]
        self.tables[table].extend(created)
        return copy.deepcopy(created)

    def _matching(self, table: str, where: dict, greater_than: dict | None = None) -> list[dict]:
        return [
            row
            for row in self.tables[table]
            if all(row.get(k) == v for k, v in where.items())
            and all(row.get(k) is not None and row[k] > v for k, v in (greater_than or {}).items())
        ]

    async def select(self, table, *, where=None, greater_than=None, columns=None,
                     order_by=None, descending=False, limit=None) -> list[dict]:
        await asyncio.sleep(0)
        self.calls.append(("select", table))
        self._maybe_fail("select", table, where or {})
        rows = self._matching(table, where or {}, greater_than)
        if order_by:
            rows = sorted(rows, key=lambda r: r[order_by], reverse=descending)
        if limit is not None:
            rows = rows[:limit]
        if columns:
            rows = [{c: r.get(c) for c in columns} for r in rows]
        return copy.deepcopy(rows)

    async def update(self, table, values, *, where, expected=None) -> int:
        await asyncio.sleep(0)
        self.calls.append(("update", table))
        self._maybe_fail("update", table, where)
        rows = self._matching(table, {**where, **(expected or {})})
        for row in rows:
            row.update(values)
        return len(rows)

    async def delete(self, table, *, where) -> int:
        await asyncio.sleep(0)
        self.calls.append(("delete", table))
        self._maybe_fail("delete", table, where)
        rows = self._matching(table, where)
        self.tables[table] = [r for r in self.tables[table] if r not in rows]
        return len(rows)


class FailingStorage:
    """書き込み（・読み込み）が必ず失敗する KV ストア"""

    def __init__(self, fail_reads: bool = False) -> None:
        self.fail_reads = fail_reads

    def get(self, key: str) -> str | None:
        if self.fail_reads:
            raise OSError("storage unavailable")
        return None

    def set(self, key: str, value: str) -> bool:
        raise OSError("storage unavailable")


class RecordingPublisher:
    def __init__(self, fail: bool = False) -> None:
        self.messages: list[tuple[str, str]] = []
        self.fail = fail

    async def publish(self, channel: str, message: str) -> int:
        if self.fail:
            raise ConnectionError("redis down")
        self.messages.append((channel, message))
        return 1


def make_line(product_id: str = "P1", unit_price: int = 100000, quantity: int = 1, **kwargs) -> CartLine:
    return CartLine(
        product_id=product_id,
        name=kwargs.pop("name", f"Perfume {product_id}"),
        unit_price=unit_price,
        quantity=quantity,
        **kwargs,
    )
