# backend/kaspi_review/automation/config.py

"""
スケジューラの設定値。
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from kaspi_review.utils.config import get_env, get_env_bool, get_env_int


@dataclass(frozen=True)
class SchedulerSettings:
    enabled: bool = False
    timezone: Optional[str] = None
    ingestion_interval_seconds: int = 3600
    dispatch_interval_seconds: int = 900
    dispatch_start_hour: int = 9
    dispatch_end_hour: int = 21
    dispatch_batch_limit: int = 20
    ingestion_lookback_hours: int = 24


@lru_cache()
def get_scheduler_settings() -> SchedulerSettings:
    """
    環境変数からスケジューラ設定を読み込む。すべて任意。

      - SCHEDULER_ENABLED           (デフォルト: false)
      - SCHEDULER_TIMEZONE          (例: Asia/Almaty, 未設定ならローカル時刻)
      - INGESTION_INTERVAL_SECONDS  (デフォルト: 3600)
      - DISPATCH_INTERVAL_SECONDS   (デフォルト: 900)
      - DISPATCH_START_HOUR         (デフォルト: 9)
      - DISPATCH_END_HOUR           (デフォルト: 21)
      - DISPATCH_BATCH_LIMIT        (デフォルト: 20)
      - INGESTION_LOOKBACK_HOURS    (デフォルト: 24)
    """
    return SchedulerSettings(
        enabled=get_env_bool("SCHEDULER_ENABLED", False),
        timezone=get_env("SCHEDULER_TIMEZONE", default=None, required=False),
        ingestion_interval_seconds=get_env_int("INGESTION_INTERVAL_SECONDS", 3600),
        dispatch_interval_seconds=get_env_int("DISPATCH_INTERVAL_SECONDS", 900),
        dispatch_start_hour=get_env_int("DISPATCH_START_HOUR", 9),
        dispatch_end_hour=get_env_int("DISPATCH_END_HOUR", 21),
        dispatch_batch_limit=get_env_int("DISPATCH_BATCH_LIMIT", 20),
        ingestion_lookback_hours=get_env_int("INGESTION_LOOKBACK_HOURS", 24),
    )
