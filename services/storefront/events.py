"""
Storefront — イベント定義と発行

チェックアウトの結果と出品者通知を Redis Pub/Sub で発行する。
発行はベストエフォート: 失敗してもログに残すだけ。
"""

import json
import logging
from datetime import datetime
from typing import Protocol

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class Publisher(Protocol):
    """redis.asyncio.Redis の publish と同じ形"""

    async def publish(self, channel: str, message: str) -> int: ...


class CheckoutCompleted(BaseModel):
    """チェックアウトが完了した（在庫・通知の一部失敗を含みうる）"""
    order_id: str
    user_id: str
    total: int
    source: str
    timestamp: datetime


class CheckoutFailed(BaseModel):
    """チェックアウトが失敗した（注文ヘッダ・明細の登録失敗）"""
    user_id: str
    code: str
    reason: str
    order_id: str | None = None
    timestamp: datetime


class SellerNotified(BaseModel):
    notification_id: str
    seller_id: str
    order_id: str
    timestamp: datetime


async def publish_event(
    publisher: Publisher | None,
    channel: str,
    event: BaseModel,
) -> bool:
    if publisher is None:
        return False
    try:
        await publisher.publish(
            channel,
            json.dumps(
                {
                    "event_type": type(event).__name__,
                    "data": event.model_dump(mode="json"),
                },
                default=str,
            ),
        )
    except Exception:
        logger.exception("Failed to publish %s", type(event).__name__)
        return False
    return True
