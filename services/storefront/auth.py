"""
Storefront — 認証プロバイダ

「現在サインインしているユーザー」を返すだけの外部コラボレータ。
認証サービス (GoTrue 互換の /auth/v1/user) に httpx で問い合わせる。
"""

import logging
from typing import Protocol

import httpx

from .models import Identity

logger = logging.getLogger(__name__)


class AuthProvider(Protocol):
    async def current_user(self) -> Identity | None: ...


class HttpAuthProvider:
    def __init__(
        self,
        base_url: str,
        access_token: str | None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout
        self._transport = transport

    async def current_user(self) -> Identity | None:
        """トークンが無い・無効・通信失敗のいずれも「未ログイン」(None) として扱う。"""
        if not self.access_token:
            return None
        async with httpx.AsyncClient(
            timeout=self.timeout, transport=self._transport
        ) as client:
            try:
                resp = await client.get(
                    f"{self.base_url}/auth/v1/user",
                    headers={"Authorization": f"Bearer {self.access_token}"},
                )
                resp.raise_for_status()
            except httpx.HTTPStatusError as e:
                logger.info("Auth rejected token: %s", e.response.status_code)
                return None
            except httpx.HTTPError:
                logger.exception("Auth service unreachable")
                return None

        try:
            data = resp.json()
        except ValueError:
            logger.warning("Auth service returned a non-JSON body")
            return None
        if not isinstance(data, dict) or not data.get("id"):
            return None
        return Identity(id=str(data["id"]), email=data.get("email"))


class StaticAuthProvider:
    """固定のユーザー（認証サービス未設定のローカル開発・テスト用）"""

    def __init__(self, identity: Identity | None) -> None:
        self.identity = identity

    async def current_user(self) -> Identity | None:
        return self.identity
