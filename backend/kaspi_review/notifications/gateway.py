# backend/kaspi_review/notifications/gateway.py

"""
メッセージ送信ゲートウェイのインターフェースと最小実装。

- MessagingGateway: テキスト送信 / テンプレート送信 / 状態確認
- LoggingMessagingGateway: ログ出力のみ（開発・検証用）

実際の WhatsApp Cloud API 実装は kaspi_review.whatsapp.client にある。
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class MessagingGatewayError(RuntimeError):
    """ゲートウェイが送信を拒否した場合などの基底例外。"""


class GatewayUnavailableError(MessagingGatewayError):
    """
    ゲートウェイに到達できなかった（接続エラー・タイムアウト）。

    送信は行われていないとみなし、注文は再送対象のまま残す。
    """


class SendResult(BaseModel):
    message_id: Optional[str] = None
    recipient: str
    template: Optional[str] = None
    sent_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class GatewayStatus(BaseModel):
    connected: bool
    provider: str
    detail: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    checked_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class MessagingGateway(Protocol):
    """
    送信ゲートウェイの最小インターフェース。

    supports_templates が False の場合、send_template は呼ばれない。
    """

    supports_templates: bool

    def send_text(self, phone: str, body: str) -> SendResult:  # pragma: no cover - Protocol
        ...

    def send_template(
        self,
        phone: str,
        template_name: str,
        parameters: List[str],
        language: Optional[str] = None,
    ) -> SendResult:  # pragma: no cover - Protocol
        ...

    def check_status(self) -> GatewayStatus:  # pragma: no cover - Protocol
        ...


class LoggingMessagingGateway:
    """
    送信内容を logger に記録するだけのゲートウェイ。

    - 外部サービスへの送信は行わない
    - テンプレート送信は非対応（テキストのみ）
    """

    supports_templates = False

    def __init__(self, logger_: Optional[logging.Logger] = None) -> None:
        self._logger = logger_ or logger

    def send_text(self, phone: str, body: str) -> SendResult:
        self._logger.info("[logging-gateway] to=%s body=%s", phone, body)
        return SendResult(message_id=f"log-{uuid.uuid4().hex}", recipient=phone)

    def send_template(
        self,
        phone: str,
        template_name: str,
        parameters: List[str],
        language: Optional[str] = None,
    ) -> SendResult:
        raise MessagingGatewayError("Logging gateway does not support templates")

    def check_status(self) -> GatewayStatus:
        return GatewayStatus(connected=True, provider="logging")
