# backend/kaspi_review/whatsapp/config.py

"""
WhatsApp Cloud API 連携に必要な設定値をまとめるモジュール。
"""

from dataclasses import dataclass
from functools import lru_cache

from kaspi_review.utils.config import get_env, get_env_float


@dataclass(frozen=True)
class WhatsAppSettings:
    """WhatsApp Cloud API 用の設定値コンテナ。"""

    phone_number_id: str
    access_token: str
    api_version: str = "v17.0"
    api_base_url: str = "https://graph.facebook.com"
    timeout_seconds: float = 15.0
    template_name: str = "review_request"
    template_language: str = "ru"

    @property
    def base_url(self) -> str:
        return f"{self.api_base_url}/{self.api_version}"


@lru_cache()
def get_whatsapp_settings() -> WhatsAppSettings:
    """
    環境変数から WhatsApp 設定を読み込む。

    必須:
      - WHATSAPP_PHONE_NUMBER_ID
      - WHATSAPP_ACCESS_TOKEN

    任意:
      - WHATSAPP_API_VERSION       (デフォルト: v17.0)
      - WHATSAPP_API_BASE_URL      (デフォルト: https://graph.facebook.com)
      - WHATSAPP_TIMEOUT_SECONDS   (デフォルト: 15)
      - WHATSAPP_TEMPLATE_NAME     (デフォルト: review_request)
      - WHATSAPP_TEMPLATE_LANGUAGE (デフォルト: ru)
    """
    phone_number_id = get_env("WHATSAPP_PHONE_NUMBER_ID")
    access_token = get_env("WHATSAPP_ACCESS_TOKEN")

    api_base_url = get_env(
        "WHATSAPP_API_BASE_URL",
        default="https://graph.facebook.com",
        required=False,
    )

    return WhatsAppSettings(
        phone_number_id=phone_number_id,
        access_token=access_token,
        api_version=get_env("WHATSAPP_API_VERSION", default="v17.0", required=False),
        api_base_url=api_base_url.rstrip("/"),
        timeout_seconds=get_env_float("WHATSAPP_TIMEOUT_SECONDS", 15.0),
        template_name=get_env("WHATSAPP_TEMPLATE_NAME", default="review_request", required=False),
        template_language=get_env("WHATSAPP_TEMPLATE_LANGUAGE", default="ru", required=False),
    )
