"""
Storefront — カートストア (Cart Store)

購入意図（カート + 今すぐ購入スロット）の唯一の保持者。

  - 変更操作はすべて同期的で、途中で中断しない（await を含まない）
  - 変更のたびにキーバリューストアへ保存し、購読者へスナップショットを配信する
  - 保存に失敗してもメモリ上の状態が正（例外は外に出さない）

  ┌──────────┐  add / increase / ...  ┌────────────┐  set   ┌──────────┐
  │   UI     │ ─────────────────────▶ │ CartStore  │ ─────▶ │ KV Store │
  │          │ ◀───────────────────── │            │        │ (Redis)  │
  └──────────┘   snapshot (subscribe) └────────────┘        └──────────┘
"""

import logging
import threading
from collections import OrderedDict
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from typing import Protocol

from pydantic import TypeAdapter, ValidationError

from .errors import CheckoutInProgressError
from .models import BuyNowSlot, CartLine, CartSnapshot

logger = logging.getLogger(__name__)

_LINES = TypeAdapter(list[CartLine])

Listener = Callable[[CartSnapshot], None]


class KeyValueStorage(Protocol):
    """redis.Redis(decode_responses=True) がそのまま満たすインターフェース"""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> object: ...


class MemoryStorage:
    """プロセス内のキーバリューストア（Redis 未設定時・テスト用）"""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> bool:
        self._data[key] = value
        return True


class WriteBehindStorage:
    """
    書き込みを 1 本のワーカースレッドに回す KV ストア。

    set は待たずに戻るので、同期的なカート操作がイベントループを塞がない。
    書き込み順はワーカーが 1 本なので保たれ、未反映の値は get で先に見える。
    """

    def __init__(self, storage: KeyValueStorage) -> None:
        self._storage = storage
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cart-writer")
        self._pending: dict[str, str] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            if key in self._pending:
                return self._pending[key]
        return self._storage.get(key)

    def set(self, key: str, value: str) -> bool:
        with self._lock:
            self._pending[key] = value
        self._executor.submit(self._write, key, value)
        return True

    def _write(self, key: str, value: str) -> None:
        try:
            self._storage.set(key, value)
        except Exception:
            logger.exception("Failed to persist %s", key)
        finally:
            with self._lock:
                if self._pending.get(key) == value:
                    del self._pending[key]

    def close(self) -> None:
        """未反映の書き込みをすべて流してから止める"""
        self._executor.shutdown(wait=True)


class CartStore:
    def __init__(self, storage: KeyValueStorage, key: str = "cart") -> None:
        self._storage = storage
        self._key = key
        self._buy_now_key = f"{key}:buy_now"
        self._lines: list[CartLine] = []
        self._buy_now = BuyNowSlot()
        self._listeners: list[Listener] = []
        self._checkout_in_flight = False
        self._load()

    # ── 読み取り ─────────────────────────────────

    @property
    def lines(self) -> tuple[CartLine, ...]:
        return tuple(line.model_copy() for line in self._lines)

    @property
    def buy_now(self) -> BuyNowSlot:
        return self._buy_now.model_copy(deep=True)

    def snapshot(self) -> CartSnapshot:
        return CartSnapshot(lines=self.lines, buy_now=self.buy_now)

    @staticmethod
    def line_total(line: CartLine) -> int:
        return line.unit_price * line.quantity

    @property
    def cart_total(self) -> int:
        return sum(self.line_total(line) for line in self._lines)

    @property
    def item_count(self) -> int:
        return sum(line.quantity for line in self._lines)

    @property
    def is_empty(self) -> bool:
        return not self._lines

    @property
    def buy_now_total(self) -> int:
        if self._buy_now.active and self._buy_now.line:
            return self.line_total(self._buy_now.line)
        return 0

    def find_line(self, product_id: str, size_ml: int | None = None) -> CartLine | None:
        index = self._index_of(product_id, size_ml)
        return None if index is None else self._lines[index].model_copy()

    def contains(self, product_id: str, size_ml: int | None = None) -> bool:
        return self._index_of(product_id, size_ml) is not None

    def quantity_of(self, product_id: str, size_ml: int | None = None) -> int:
        line = self.find_line(product_id, size_ml)
        return line.quantity if line else 0

    # ── カート操作 ───────────────────────────────

    def add_line(self, item: CartLine, quantity: int | None = None) -> None:
        """
        同じ (product_id, size_ml) の行があれば数量を加算、なければ末尾に追加。

        quantity を省略すると item 自身の数量を使う。上限はここでは設けない。
        """
        qty = item.quantity if quantity is None else quantity
        if qty < 1:
            raise ValueError("quantity must be at least 1")

        index = self._index_of(item.product_id, item.size_ml)
        if index is None:
            self._lines.append(item.model_copy(update={"quantity": qty}))
        else:
            current = self._lines[index]
            self._lines[index] = current.model_copy(
                update={"quantity": current.quantity + qty}
            )
        self._commit()

    def increase(self, product_id: str, size_ml: int | None = None) -> None:
        index = self._index_of(product_id, size_ml)
        if index is None:
            return
        line = self._lines[index]
        self._lines[index] = line.model_copy(update={"quantity": line.quantity + 1})
        self._commit()

    def decrease(self, product_id: str, size_ml: int | None = None) -> None:
        """数量 1 では何もしない（削除は remove_line で明示的に行う）"""
        index = self._index_of(product_id, size_ml)
        if index is None or self._lines[index].quantity <= 1:
            return
        line = self._lines[index]
        self._lines[index] = line.model_copy(update={"quantity": line.quantity - 1})
        self._commit()

    def set_quantity(
        self, product_id: str, quantity: int, size_ml: int | None = None
    ) -> None:
        index = self._index_of(product_id, size_ml)
        if index is None or quantity < 1:
            return
        self._lines[index] = self._lines[index].model_copy(update={"quantity": quantity})
        self._commit()

    def remove_line(self, product_id: str, size_ml: int | None = None) -> None:
        self._lines = [
            line for line in self._lines if line.key != (product_id, size_ml)
        ]
        self._commit()

    def clear(self) -> None:
        self._lines = []
        self._commit()

    def consume(self, lines: list[CartLine]) -> None:
        """
        注文した行の数量だけカートから差し引き、0 になった行は削除する。

        チェックアウト中に追加・増量された分はカートに残る。
        """
        for consumed in lines:
            index = self._index_of(consumed.product_id, consumed.size_ml)
            if index is None:
                continue
            line = self._lines[index]
            remaining = line.quantity - consumed.quantity
            if remaining < 1:
                del self._lines[index]
            else:
                self._lines[index] = line.model_copy(update={"quantity": remaining})
        self._commit()

    # ── 今すぐ購入 ───────────────────────────────

    def set_buy_now(self, item: CartLine) -> None:
        """スロットを 1 行で置き換えて active にする（カートには触れない）"""
        line = item.model_copy(update={"quantity": max(item.quantity, 1)})
        self._buy_now = BuyNowSlot(line=line, active=True)
        self._commit()

    def update_buy_now_quantity(self, quantity: int) -> None:
        if not self._buy_now.active or self._buy_now.line is None or quantity < 1:
            return
        line = self._buy_now.line.model_copy(update={"quantity": quantity})
        self._buy_now = BuyNowSlot(line=line, active=True)
        self._commit()

    def clear_buy_now(self) -> None:
        self._buy_now = BuyNowSlot()
        self._commit()

    def consume_buy_now(self, line: CartLine) -> None:
        """スロットが注文した行のままなら空にする（途中で差し替えられていれば残す）"""
        if self._buy_now.active and self._buy_now.line == line:
            self.clear_buy_now()

    def move_buy_now_to_cart(self) -> None:
        """今すぐ購入の行をカートへ移し、スロットを空にする"""
        line = self._buy_now.line if self._buy_now.active else None
        self._buy_now = BuyNowSlot()
        if line is not None:
            # add_line が保存と配信を行う
            self.add_line(line)
        else:
            self._commit()

    # ── 購読 ─────────────────────────────────────

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """
        購読を登録し、解除用の関数を返す。

        登録直後に現在のスナップショットが 1 回配信される。
        """
        self._listeners.append(listener)
        self._deliver(listener, self.snapshot())

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @contextmanager
    def subscription(self, listener: Listener) -> Iterator[None]:
        unsubscribe = self.subscribe(listener)
        try:
            yield
        finally:
            unsubscribe()

    # ── チェックアウトの単一実行ガード ───────────

    @property
    def checkout_in_flight(self) -> bool:
        return self._checkout_in_flight

    @contextmanager
    def checkout_token(self) -> Iterator[None]:
        """
        チェックアウト中はトークンを保持する。

        既に保持されていれば待たずに CheckoutInProgressError。
        成功・失敗を問わず必ず解放する。
        """
        if self._checkout_in_flight:
            raise CheckoutInProgressError()
        self._checkout_in_flight = True
        try:
            yield
        finally:
            self._checkout_in_flight = False

    # ── 内部 ─────────────────────────────────────

    def _index_of(self, product_id: str, size_ml: int | None) -> int | None:
        for i, line in enumerate(self._lines):
            if line.key == (product_id, size_ml):
                return i
        return None

    def _commit(self) -> None:
        self._save()
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            self._deliver(listener, snapshot)

    @staticmethod
    def _deliver(listener: Listener, snapshot: CartSnapshot) -> None:
        try:
            listener(snapshot)
        except Exception:
            logger.exception("Cart listener failed")

    def _save(self) -> None:
        try:
            self._storage.set(self._key, _LINES.dump_json(self._lines).decode())
            self._storage.set(self._buy_now_key, self._buy_now.model_dump_json())
        except Exception:
            logger.exception("Failed to persist cart %s", self._key)

    def _load(self) -> None:
        try:
            raw_lines = self._storage.get(self._key)
            raw_buy_now = self._storage.get(self._buy_now_key)
        except Exception:
            logger.exception("Failed to read cart %s from storage", self._key)
            return

        if raw_lines:
            try:
                for line in _LINES.validate_json(raw_lines):
                    index = self._index_of(line.product_id, line.size_ml)
                    if index is None:
                        self._lines.append(line)
                    else:
                        merged = self._lines[index].quantity + line.quantity
                        self._lines[index] = self._lines[index].model_copy(
                            update={"quantity": merged}
                        )
            except ValidationError:
                logger.warning("Discarding corrupt cart %s", self._key)
                self._lines = []

        if raw_buy_now:
            try:
                self._buy_now = BuyNowSlot.model_validate_json(raw_buy_now)
            except ValidationError:
                logger.warning("Discarding corrupt buy-now slot %s", self._key)
                self._buy_now = BuyNowSlot()


class CartRegistry:
    """
    セッションごとの CartStore を LRU で保持する（上限 max_size）。

    追い出したカートは次のアクセスでストレージから読み直す。
    チェックアウト中のカートは追い出さない。
    """

    def __init__(
        self, storage: KeyValueStorage, prefix: str = "cart", max_size: int = 1000
    ) -> None:
        self.storage = storage
        self.prefix = prefix
        self.max_size = max_size
        self._carts: OrderedDict[str, CartStore] = OrderedDict()

    def __len__(self) -> int:
        return len(self._carts)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._carts

    def get(self, session_id: str) -> CartStore:
        cart = self._carts.get(session_id)
        if cart is None:
            cart = CartStore(self.storage, key=f"{self.prefix}:{session_id}")
            self._carts[session_id] = cart
        else:
            self._carts.move_to_end(session_id)
        self._evict()
        return cart

    def _evict(self) -> None:
        # 直前にアクセスしたカート（末尾）は残す
        for session_id in list(self._carts)[:-1]:
            if len(self._carts) <= self.max_size:
                break
            if not self._carts[session_id].checkout_in_flight:
                del self._carts[session_id]
