# backend/kaspi_review/notifications/stats.py

"""
通知の集計（全体の件数と日別の件数）。

ストレージの読み取りに失敗した場合は 0 件として扱う。
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

from kaspi_review.orders.repository import OrderRepository
from kaspi_review.orders.schemas import NotificationStatus

from .schemas import DailyNotificationStat, FailedNotification, NotificationStats

DEFAULT_DAILY_DAYS = 30
RECENT_DAYS = 7
LAST_FAILED_LIMIT = 10


def _normalize_now(now: Optional[datetime]) -> datetime:
    """
    naive な datetime が渡された場合でも UTC として扱うヘルパー。
    """
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now.astimezone(timezone.utc)


class NotificationStatsService:
    def __init__(self, repository: OrderRepository) -> None:
        self._repository = repository

    def get_notification_stats(self, now: Optional[datetime] = None) -> NotificationStats:
        """
        ステータス別の件数、直近 7 日の送信数、直近の失敗 10 件を返す。
        """
        now_utc = _normalize_now(now)
        counts = {
            status: self._repository.count_by_notification_status(status)
            for status in (
                NotificationStatus.PENDING,
                NotificationStatus.SENDING,
                NotificationStatus.SENT,
                NotificationStatus.DELIVERED,
                NotificationStatus.READ,
                NotificationStatus.FAILED,
            )
        }

        last_failed = [
            FailedNotification(
                order_id=order.kaspi_order_id,
                customer_phone=order.customer_phone,
                error=order.notification_error,
                updated_at=order.updated_at,
            )
            for order in self._repository.find_recent_failed(LAST_FAILED_LIMIT)
        ]

        return NotificationStats(
            total=self._repository.count_all(),
            pending=counts[NotificationStatus.PENDING],
            sending=counts[NotificationStatus.SENDING],
            sent=counts[NotificationStatus.SENT],
            delivered=counts[NotificationStatus.DELIVERED],
            read=counts[NotificationStatus.READ],
            failed=counts[NotificationStatus.FAILED],
            last_7_days=self._repository.count_sent_since(now_utc - timedelta(days=RECENT_DAYS)),
            last_failed=last_failed,
        )

    def get_daily_stats(
        self,
        days: int = DEFAULT_DAILY_DAYS,
        now: Optional[datetime] = None,
    ) -> List[DailyNotificationStat]:
        """
        直近 days 日分（今日を含む）の日別送信件数を日付の昇順で返す。

        送信日時（UTC）の日付で集計し、送信の無い日も 0 件で含める。
        """
        if days <= 0:
            return []

        today = _normalize_now(now).date()
        first_day = today - timedelta(days=days - 1)
        buckets: Dict[date, DailyNotificationStat] = {
            first_day + timedelta(days=offset): DailyNotificationStat(date=first_day + timedelta(days=offset))
            for offset in range(days)
        }

        since = datetime.combine(first_day, datetime.min.time(), tzinfo=timezone.utc)
        for sent_at, status in self._repository.find_sent_since(since):
            bucket = buckets.get(_normalize_now(sent_at).date())
            if bucket is None:
                continue

            bucket.total += 1
            if status == NotificationStatus.SENT.value:
                bucket.sent += 1
            elif status == NotificationStatus.DELIVERED.value:
                bucket.delivered += 1
            elif status == NotificationStatus.READ.value:
                bucket.read += 1
            elif status == NotificationStatus.FAILED.value:
                bucket.failed += 1

        return [buckets[day] for day in sorted(buckets)]
