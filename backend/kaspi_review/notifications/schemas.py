# backend/kaspi_review/notifications/schemas.py

"""
レビュー依頼通知まわりのスキーマ定義。

- DispatchResult: 注文 1 件分の送信結果
- NotificationStats / DailyNotificationStat: 集計
- TimeWindowRequest / SchedulerStatus: スケジューラの送信時間帯
"""

from __future__ import annotations

from datetime import date as date_type
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class DispatchOutcome(str, Enum):
    """
    1 件分の送信結果。

    - SENT: 送信成功
    - FAILED: 送信失敗（ゲートウェイの拒否・許可リスト外・明細なし）
    - PENDING_RETRY: ゲートウェイに到達できず未送信のまま戻した
    - SKIPPED: 他の実行がすでに確保していたため何もしなかった
    """

    SENT = "sent"
    FAILED = "failed"
    PENDING_RETRY = "pending_retry"
    SKIPPED = "skipped"


class DispatchResult(BaseModel):
    order_id: str = Field(..., description="Kaspi の注文 ID")
    outcome: DispatchOutcome
    error: Optional[str] = None
    recipient: Optional[str] = None


class DispatchBatchResponse(BaseModel):
    count: int
    results: List[DispatchResult] = Field(default_factory=list)


class FailedNotification(BaseModel):
    order_id: str
    customer_phone: str
    error: Optional[str] = None
    updated_at: Optional[datetime] = None


class NotificationStats(BaseModel):
    total: int = 0
    pending: int = 0
    sending: int = 0
    sent: int = 0
    delivered: int = 0
    read: int = 0
    failed: int = 0
    last_7_days: int = 0
    last_failed: List[FailedNotification] = Field(default_factory=list)


class DailyNotificationStat(BaseModel):
    date: date_type
    total: int = 0
    sent: int = 0
    delivered: int = 0
    read: int = 0
    failed: int = 0


class ManualDispatchRequest(BaseModel):
    limit: int = Field(10, ge=1, le=50, description="1 回で送信する最大件数")


class TimeWindowRequest(BaseModel):
    start_hour: int = Field(..., description="送信開始時刻（0-23）")
    end_hour: int = Field(..., description="送信終了時刻（0-23, start_hour より後）")


class TestMessageRequest(BaseModel):
    phone: str = Field(..., min_length=1, description="送信先の電話番号（許可リスト登録済み）")


class SchedulerStatus(BaseModel):
    running: bool
    start_hour: int
    end_hour: int
    timezone: Optional[str] = None
    ingestion_interval_seconds: int
    dispatch_interval_seconds: int
    ingestion_running: bool = False
    dispatch_running: bool = False
    last_ingestion_at: Optional[datetime] = None
    last_dispatch_at: Optional[datetime] = None
    last_error: Optional[str] = None
