# backend/kaspi_review/automation/jobs.py
from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from kaspi_review.kaspi.schemas import IngestionSummary
from kaspi_review.kaspi.service import OrderIngestionService, build_order_ingestion_service
from kaspi_review.notifications.dispatcher import NotificationDispatcher
from kaspi_review.notifications.factory import build_notification_dispatcher
from kaspi_review.notifications.schemas import DispatchResult
from kaspi_review.orders.db import init_db

from .config import get_scheduler_settings
from .scheduler import NotificationScheduler

logger = logging.getLogger(__name__)


def _normalize_now(now: Optional[datetime]) -> datetime:
    """
    naive な datetime が渡された場合でも UTC として扱うヘルパー。
    """
    if now is None:
        return datetime.now(timezone.utc)
    if now.tzinfo is None:
        return now.replace(tzinfo=timezone.utc)
    return now


def run_ingestion_job(
    *,
    service: Optional[OrderIngestionService] = None,
    lookback_hours: Optional[int] = None,
    now: Optional[datetime] = None,
) -> IngestionSummary:
    """
    直近 lookback_hours 時間（デフォルトは INGESTION_LOOKBACK_HOURS）の注文を取り込む。
    """
    service = service or build_order_ingestion_service()
    hours = lookback_hours or get_scheduler_settings().ingestion_lookback_hours
    end = _normalize_now(now)
    return service.fetch_and_ingest(end - timedelta(hours=hours), end)


def run_dispatch_job(
    *,
    dispatcher: Optional[NotificationDispatcher] = None,
    limit: Optional[int] = None,
) -> List[DispatchResult]:
    """
    未送信の注文にレビュー依頼を送る（送信時間帯は考慮しない）。
    """
    dispatcher = dispatcher or build_notification_dispatcher()
    return dispatcher.dispatch_batch(limit or get_scheduler_settings().dispatch_batch_limit)


def run_retry_job(
    *,
    dispatcher: Optional[NotificationDispatcher] = None,
    limit: Optional[int] = None,
) -> List[DispatchResult]:
    dispatcher = dispatcher or build_notification_dispatcher()
    return dispatcher.retry_failed(limit or get_scheduler_settings().dispatch_batch_limit)


def run_scheduler_forever(scheduler: Optional[NotificationScheduler] = None) -> None:
    """
    スケジューラを起動し、Ctrl+C まで待機する。
    """
    scheduler = scheduler or NotificationScheduler()
    scheduler.start()
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        logger.info("Interrupted; stopping scheduler")
    finally:
        scheduler.stop()


def main() -> None:
    """
    簡易 CLI エントリーポイント。

    例:
        python -m kaspi_review.automation.jobs ingest --hours 48
        python -m kaspi_review.automation.jobs dispatch --limit 10
        python -m kaspi_review.automation.jobs retry-failed
        python -m kaspi_review.automation.jobs run-scheduler

    cron から単発ジョブとして呼ぶか、run-scheduler で常駐させる想定。
    """
    import argparse

    parser = argparse.ArgumentParser(description="Kaspi review request jobs runner")
    parser.add_argument(
        "job",
        choices=["ingest", "dispatch", "retry-failed", "run-scheduler"],
        help="実行するジョブ種別",
    )
    parser.add_argument("--hours", type=int, default=None, help="取り込む期間（時間）")
    parser.add_argument("--limit", type=int, default=None, help="送信する最大件数")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    init_db()

    if args.job == "ingest":
        summary = run_ingestion_job(lookback_hours=args.hours)
        print(summary.model_dump_json(indent=2))
    elif args.job == "dispatch":
        results = run_dispatch_job(limit=args.limit)
        for result in results:
            print(result.model_dump_json())
    elif args.job == "retry-failed":
        results = run_retry_job(limit=args.limit)
        for result in results:
            print(result.model_dump_json())
    elif args.job == "run-scheduler":
        run_scheduler_forever()


if __name__ == "__main__":
    main()
