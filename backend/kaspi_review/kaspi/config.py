# backend/kaspi_review/kaspi/config.py

"""
Kaspi ショップ API 連携に必要な設定値をまとめるモジュール。
"""

from dataclasses import dataclass
from functools import lru_cache

from kaspi_review.utils.config import get_env, get_env_float, get_env_int


@dataclass(frozen=True)
class KaspiSettings:
    """Kaspi API 用の設定値コンテナ。"""

    api_key: str
    api_base_url: str = "https://kaspi.kz/shop/api/v2"
    timeout_seconds: float = 15.0
    page_size: int = 100
    max_pages_per_window: int = 100
    max_days_per_request: int = 14
    request_delay_seconds: float = 1.0
    order_status: str = "COMPLETED"
    max_fetch_range_days: int = 100


@lru_cache()
def get_kaspi_settings() -> KaspiSettings:
    """
    環境変数から Kaspi 設定を読み込む。

    必須:
      - KASPI_API_KEY

    任意:
      - KASPI_API_URL               (デフォルト: https://kaspi.kz/shop/api/v2)
      - KASPI_TIMEOUT_SECONDS       (デフォルト: 15)
      - KASPI_PAGE_SIZE             (デフォルト: 100)
      - KASPI_MAX_DAYS_PER_REQUEST  (デフォルト: 14, API 側の制限)
      - KASPI_REQUEST_DELAY_SECONDS (デフォルト: 1)
      - KASPI_ORDER_STATUS          (デフォルト: COMPLETED)
      - KASPI_MAX_FETCH_RANGE_DAYS  (デフォルト: 100)
    """
    api_key = get_env("KASPI_API_KEY")

    api_base_url = get_env(
        "KASPI_API_URL",
        default="https://kaspi.kz/shop/api/v2",
        required=False,
    )

    return KaspiSettings(
        api_key=api_key,
        api_base_url=api_base_url.rstrip("/"),
        timeout_seconds=get_env_float("KASPI_TIMEOUT_SECONDS", 15.0),
        page_size=get_env_int("KASPI_PAGE_SIZE", 100),
        max_days_per_request=get_env_int("KASPI_MAX_DAYS_PER_REQUEST", 14),
        request_delay_seconds=get_env_float("KASPI_REQUEST_DELAY_SECONDS", 1.0),
        order_status=get_env("KASPI_ORDER_STATUS", default="COMPLETED", required=False),
        max_fetch_range_days=get_env_int("KASPI_MAX_FETCH_RANGE_DAYS", 100),
    )
