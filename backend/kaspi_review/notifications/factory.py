# backend/kaspi_review/notifications/factory.py

"""
通知まわりのサービスの簡易ファクトリ。

- MESSAGING_GATEWAY=whatsapp_cloud（デフォルト）: WhatsAppCloudClient
- MESSAGING_GATEWAY=logging: LoggingMessagingGateway（送信せずログ出力のみ）
"""

from __future__ import annotations

import logging
from typing import Optional

from kaspi_review.orders.allowed_phones import AllowedPhoneRepository
from kaspi_review.orders.db import get_session_factory
from kaspi_review.orders.repository import OrderRepository
from kaspi_review.utils.config import get_env, get_env_float
from kaspi_review.whatsapp.client import WhatsAppCloudClient

from .dispatcher import (
    DEFAULT_CLAIM_TIMEOUT_SECONDS,
    DEFAULT_SEND_DELAY_SECONDS,
    DEFAULT_TEMPLATE_NAME,
    NotificationDispatcher,
)
from .gateway import LoggingMessagingGateway, MessagingGateway
from .stats import NotificationStatsService
from .templates import MessageTemplates

logger = logging.getLogger(__name__)

GATEWAY_WHATSAPP_CLOUD = "whatsapp_cloud"
GATEWAY_LOGGING = "logging"

_gateway: Optional[MessagingGateway] = None


def get_messaging_gateway() -> MessagingGateway:
    """
    アプリ全体で共有する送信ゲートウェイを返す。

    初回呼び出し時にのみ生成し、それ以降は同じインスタンスを返す。

    :raises EnvVarMissingError: WhatsApp の必須設定が無い場合
    :raises ValueError: MESSAGING_GATEWAY が未知の値の場合
    """
    global _gateway
    if _gateway is None:
        kind = get_env("MESSAGING_GATEWAY", default=GATEWAY_WHATSAPP_CLOUD, required=False)
        kind = kind.strip().lower()
        if kind == GATEWAY_LOGGING:
            _gateway = LoggingMessagingGateway()
        elif kind == GATEWAY_WHATSAPP_CLOUD:
            _gateway = WhatsAppCloudClient()
        else:
            raise ValueError(f"Unknown MESSAGING_GATEWAY: {kind}")
        logger.info("Messaging gateway initialized: %s", kind)
    return _gateway


def build_notification_dispatcher(gateway: Optional[MessagingGateway] = None) -> NotificationDispatcher:
    """
    環境変数の設定から NotificationDispatcher を組み立てる。
    """
    session_factory = get_session_factory()
    gateway = gateway or get_messaging_gateway()

    template_name = None
    template_language = None
    settings = getattr(gateway, "settings", None)
    if settings is not None:
        template_name = getattr(settings, "template_name", None)
        template_language = getattr(settings, "template_language", None)

    return NotificationDispatcher(
        OrderRepository(session_factory),
        AllowedPhoneRepository(session_factory),
        gateway,
        MessageTemplates(),
        template_name=template_name or DEFAULT_TEMPLATE_NAME,
        template_language=template_language,
        send_delay_seconds=get_env_float("DISPATCH_SEND_DELAY_SECONDS", DEFAULT_SEND_DELAY_SECONDS),
        claim_timeout_seconds=get_env_float(
            "DISPATCH_CLAIM_TIMEOUT_SECONDS", DEFAULT_CLAIM_TIMEOUT_SECONDS
        ),
    )


def build_notification_stats_service() -> NotificationStatsService:
    return NotificationStatsService(OrderRepository(get_session_factory()))


def reset_gateway() -> None:
    """
    テスト用に共有ゲートウェイをリセットする。
    """
    global _gateway
    _gateway = None
