"""
Storefront — カート・チェックアウト中核

カート(Cart Store)、在庫ゲートウェイ(Inventory Gateway)、
注文送信パイプライン(Checkout Pipeline)、出品者通知(Notification Fan-out)
の 4 コンポーネントで構成される。
"""

__version__ = "0.1.0"
