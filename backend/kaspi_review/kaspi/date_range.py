# backend/kaspi_review/kaspi/date_range.py

"""
Kaspi API の「1リクエストあたり最大日数」制限に合わせて期間を分割する。

外部 I/O は一切行わない純粋関数のみを置く。
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List

# Kaspi API の creationDate フィルタはエポックミリ秒なので、1ms を最小単位とする。
WINDOW_STEP = timedelta(milliseconds=1)
DEFAULT_MAX_DAYS = 14


def ensure_utc(value: datetime) -> datetime:
    """
    naive な datetime が渡された場合でも UTC として扱うヘルパー。
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def to_epoch_millis(value: datetime) -> int:
    return int(ensure_utc(value).timestamp() * 1000)


@dataclass(frozen=True)
class DateWindow:
    """1回の API リクエストで扱う期間 [start, end]。"""

    start: datetime
    end: datetime

    def __post_init__(self) -> None:
        if self.start > self.end:
            raise ValueError(
                f"DateWindow start must not be after end: {self.start} > {self.end}"
            )

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


def split_date_range(
    start: datetime,
    end: datetime,
    max_days: int = DEFAULT_MAX_DAYS,
    *,
    step: timedelta = WINDOW_STEP,
) -> List[DateWindow]:
    """
    [start, end] を max_days 日以下の連続したウィンドウに分割する。

    - 各ウィンドウの開始は直前ウィンドウの終了 + step（重複・隙間なし）
    - start >= end の場合は空リスト（呼び出し側で事前に弾くこと）

    例: 30日間 / max_days=14 → 14日, 14日, 2日 の 3 ウィンドウ
    """
    if max_days <= 0:
        raise ValueError("max_days must be positive")

    start = ensure_utc(start)
    end = ensure_utc(end)
    if start >= end:
        return []

    windows: List[DateWindow] = []
    span = timedelta(days=max_days)
    current = start

    while current <= end:
        window_end = min(current + span, end)
        windows.append(DateWindow(start=current, end=window_end))
        current = window_end + step

    return windows
