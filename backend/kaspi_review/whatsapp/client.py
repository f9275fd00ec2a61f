# backend/kaspi_review/whatsapp/client.py

"""
WhatsApp Cloud API（Graph API /messages）クライアント。

MessagingGateway の実装として NotificationDispatcher から使われる。
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from kaspi_review.notifications.gateway import (
    GatewayStatus,
    GatewayUnavailableError,
    MessagingGatewayError,
    SendResult,
)
from kaspi_review.utils.phone import to_international

from .config import WhatsAppSettings, get_whatsapp_settings

logger = logging.getLogger(__name__)


class WhatsAppAPIError(MessagingGatewayError):
    """Graph API がエラーを返した、またはレスポンスに message id が無い。"""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class WhatsAppConnectionError(GatewayUnavailableError):
    """接続エラー・タイムアウト。"""


class WhatsAppCloudClient:
    """
    WhatsApp Cloud API の薄いラッパー。

    - テキスト送信（preview_url 有効）
    - 承認済みテンプレートでの送信
    - 電話番号 ID の状態確認
    """

    supports_templates = True

    def __init__(self, settings: Optional[WhatsAppSettings] = None) -> None:
        self._settings = settings or get_whatsapp_settings()

    @property
    def settings(self) -> WhatsAppSettings:
        return self._settings

    def _build_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._settings.access_token}",
            "Content-Type": "application/json",
        }

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        url = f"{self._settings.base_url}/{path.lstrip('/')}"
        try:
            response = httpx.request(
                method,
                url,
                headers=self._build_headers(),
                params=params,
                json=json,
                timeout=self._settings.timeout_seconds,
            )
        except httpx.RequestError as exc:
            raise WhatsAppConnectionError(f"Failed to call WhatsApp API {path}: {exc}") from exc

        if response.status_code >= 400:
            raise WhatsAppAPIError(
                f"WhatsApp API error: {response.status_code} {response.text}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise WhatsAppAPIError(f"WhatsApp API returned non-JSON body for {path}") from exc

        if not isinstance(body, dict):
            raise WhatsAppAPIError(f"Unexpected WhatsApp API response format for {path}")
        return body

    def _send(self, payload: Dict[str, Any], recipient: str, template: Optional[str]) -> SendResult:
        body = self._request(
            "POST",
            f"{self._settings.phone_number_id}/messages",
            json=payload,
        )

        messages = body.get("messages")
        message_id = None
        if isinstance(messages, list) and messages and isinstance(messages[0], dict):
            message_id = messages[0].get("id")
        if not message_id:
            raise WhatsAppAPIError("WhatsApp API response has no message id")

        logger.info("WhatsApp message %s sent to %s", message_id, recipient)
        return SendResult(message_id=str(message_id), recipient=recipient, template=template)

    def send_text(self, phone: str, body: str) -> SendResult:
        recipient = to_international(phone)
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient,
            "type": "text",
            "text": {"preview_url": True, "body": body},
        }
        return self._send(payload, recipient, template=None)

    def send_template(
        self,
        phone: str,
        template_name: str,
        parameters: List[str],
        language: Optional[str] = None,
    ) -> SendResult:
        """
        承認済みテンプレートで送信する。parameters は本文の {{1}}, {{2}}... に順に入る。
        """
        recipient = to_international(phone)
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": recipient,
            "type": "template",
            "template": {
                "name": template_name,
                "language": {"code": language or self._settings.template_language},
                "components": [
                    {
                        "type": "body",
                        "parameters": [{"type": "text", "text": str(value)} for value in parameters],
                    }
                ],
            },
        }
        return self._send(payload, recipient, template=template_name)

    def check_status(self) -> GatewayStatus:
        """
        電話番号 ID の状態を取得する。失敗しても例外は投げず connected=False を返す。
        """
        try:
            body = self._request(
                "GET",
                self._settings.phone_number_id,
                params={"fields": "verified_name,quality_rating,status"},
            )
        except MessagingGatewayError as exc:
            logger.warning("WhatsApp status check failed: %s", exc)
            return GatewayStatus(connected=False, provider="whatsapp_cloud", error=str(exc))

        return GatewayStatus(
            connected=True,
            provider="whatsapp_cloud",
            detail={
                key: body.get(key)
                for key in ("verified_name", "quality_rating", "status")
                if key in body
            },
        )
