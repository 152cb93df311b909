"""
Storefront — 例外定義

チェックアウトが呼び出し元に返すエラーはすべて CheckoutError の派生。
在庫・通知などの助言的(advisory)な失敗は例外として外に出さない。
"""


class CheckoutError(Exception):
    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


class CheckoutValidationError(CheckoutError):
    """入力エラー（宛先の未入力、空のカートなど）"""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__("VALIDATION", message)
        self.field = field


class CheckoutPreconditionError(CheckoutError):
    """前提条件エラー（部分的な状態は一切作られていない）"""


class NotAuthenticatedError(CheckoutPreconditionError):
    def __init__(self, message: str = "User not authenticated") -> None:
        super().__init__("NOT_AUTHENTICATED", message)


class CheckoutInProgressError(CheckoutPreconditionError):
    def __init__(
        self, message: str = "Order is already being processed. Please wait."
    ) -> None:
        super().__init__("IN_PROGRESS", message)


class OrderSubmissionError(CheckoutError):
    """注文ヘッダ・明細の登録失敗（パイプラインを中断する唯一の失敗）"""

    def __init__(self, code: str, message: str, order_id: str | None = None) -> None:
        super().__init__(code, message)
        self.order_id = order_id


class OrderNotFoundError(CheckoutError):
    def __init__(self, order_id: str) -> None:
        super().__init__("ORDER_NOT_FOUND", f"Order {order_id} not found")
        self.order_id = order_id


class InvalidStatusError(CheckoutError):
    def __init__(self, message: str) -> None:
        super().__init__("INVALID_STATUS", message)


class BackendError(Exception):
    """レコードストレージ（DB）の失敗をまとめる"""

    def __init__(self, operation: str, table: str, detail: str) -> None:
        super().__init__(f"{operation} on {table} failed: {detail}")
        self.operation = operation
        self.table = table
