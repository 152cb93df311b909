"""
Storefront — 設定

各サービスと同じく環境変数から読み込む。
REDIS_URL / AUTH_SERVICE_URL は任意（未設定ならローカル動作）。
"""

import os

DATABASE_URL = os.environ.get("DATABASE_URL", "sqlite+aiosqlite:///./storefront.db")
REDIS_URL = os.environ.get("REDIS_URL") or None
AUTH_SERVICE_URL = os.environ.get("AUTH_SERVICE_URL") or None
AUTH_TIMEOUT = float(os.environ.get("AUTH_TIMEOUT", "10"))
CART_KEY_PREFIX = os.environ.get("CART_KEY_PREFIX", "cart")
CART_CACHE_SIZE = int(os.environ.get("CART_CACHE_SIZE", "1000"))
INVENTORY_COMPARE_AND_SWAP = os.environ.get(
    "INVENTORY_COMPARE_AND_SWAP", ""
).lower() in ("1", "true", "yes")
LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

# Redis Pub/Sub チャネル
CHECKOUT_CHANNEL = "checkout_events"
SELLER_NOTIFICATION_CHANNEL = "seller_notifications"
