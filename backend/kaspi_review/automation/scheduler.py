# backend/kaspi_review/automation/scheduler.py

"""
注文の取り込みとレビュー依頼の送信を定期実行するスケジューラ。

- 取り込み: 一定間隔で直近 N 時間の注文を Kaspi から取得
- 送信: 一定間隔で、送信時間帯 [start_hour, end_hour) の間だけバッチ送信
- 各トリガーは専用のデーモンスレッドで動き、処理が終わってから次の待機に入る
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from kaspi_review.kaspi.schemas import IngestionSummary
from kaspi_review.kaspi.service import OrderIngestionService, build_order_ingestion_service
from kaspi_review.notifications.dispatcher import NotificationDispatcher
from kaspi_review.notifications.factory import build_notification_dispatcher
from kaspi_review.notifications.schemas import DispatchResult, SchedulerStatus

from .config import SchedulerSettings, get_scheduler_settings
from .state import (
    DEFAULT_END_HOUR,
    DEFAULT_START_HOUR,
    DISPATCH,
    INGESTION,
    SchedulerState,
    is_valid_window,
)

logger = logging.getLogger(__name__)

MAX_MANUAL_DISPATCH_LIMIT = 50


class PeriodicTrigger:
    """
    interval_seconds ごとに handler を呼ぶデーモンスレッド。

    handler の例外はログに残して次の周期へ進む（再試行はしない）。
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        handler: Callable[[], object],
        *,
        run_immediately: bool = False,
    ) -> None:
        self.name = name
        self.interval_seconds = interval_seconds
        self._handler = handler
        self._run_immediately = run_immediately
        self._stop_event = threading.Event()
        self._thread = threading.Thread(target=self._run, name=f"trigger-{name}", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def stop(self, join: bool = True, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if join and self._thread.is_alive():
            self._thread.join(timeout)

    def is_alive(self) -> bool:
        return self._thread.is_alive()

    def _run(self) -> None:
        if self._run_immediately:
            self._tick()
        while not self._stop_event.wait(self.interval_seconds):
            self._tick()

    def _tick(self) -> None:
        try:
            self._handler()
        except Exception:  # noqa: BLE001 - 失敗しても次の周期は実行する
            logger.exception("Scheduled job %s failed", self.name)


class NotificationScheduler:
    """
    取り込みと送信の 2 つのトリガーを管理する。

    サービスは未指定なら初回利用時に環境変数から組み立てる。
    """

    def __init__(
        self,
        *,
        ingestion_service: Optional[OrderIngestionService] = None,
        dispatcher: Optional[NotificationDispatcher] = None,
        settings: Optional[SchedulerSettings] = None,
        state: Optional[SchedulerState] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings or get_scheduler_settings()
        self._ingestion_service = ingestion_service
        self._dispatcher = dispatcher
        self.state = state or self._initial_state(self._settings)
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._tz = self._load_timezone(self._settings.timezone)
        self._triggers: List[PeriodicTrigger] = []
        self._lifecycle_lock = threading.Lock()

    @staticmethod
    def _initial_state(settings: SchedulerSettings) -> SchedulerState:
        start_hour, end_hour = settings.dispatch_start_hour, settings.dispatch_end_hour
        if not is_valid_window(start_hour, end_hour):
            logger.warning(
                "Invalid DISPATCH_START_HOUR/DISPATCH_END_HOUR %r-%r; using %d-%d",
                start_hour,
                end_hour,
                DEFAULT_START_HOUR,
                DEFAULT_END_HOUR,
            )
            start_hour, end_hour = DEFAULT_START_HOUR, DEFAULT_END_HOUR
        return SchedulerState(start_hour, end_hour)

    @staticmethod
    def _load_timezone(name: Optional[str]) -> Optional[ZoneInfo]:
        if not name:
            return None
        try:
            return ZoneInfo(name)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown SCHEDULER_TIMEZONE %r; using local time", name)
            return None

    @property
    def ingestion_service(self) -> OrderIngestionService:
        if self._ingestion_service is None:
            self._ingestion_service = build_order_ingestion_service()
        return self._ingestion_service

    @property
    def dispatcher(self) -> NotificationDispatcher:
        if self._dispatcher is None:
            self._dispatcher = build_notification_dispatcher()
        return self._dispatcher

    @property
    def is_running(self) -> bool:
        return self.state.running

    # ------------------------------------------------------------------
    # ライフサイクル
    # ------------------------------------------------------------------
    def start(self) -> None:
        with self._lifecycle_lock:
            if self.state.running:
                logger.warning("Scheduler is already running")
                return

            self._triggers = [
                PeriodicTrigger(
                    INGESTION,
                    self._settings.ingestion_interval_seconds,
                    self.check_new_orders,
                ),
                PeriodicTrigger(
                    DISPATCH,
                    self._settings.dispatch_interval_seconds,
                    self.send_review_requests,
                ),
            ]
            for trigger in self._triggers:
                trigger.start()
            self.state.running = True

        start_hour, end_hour = self.state.window
        logger.info(
            "Scheduler started: ingestion every %ss, dispatch every %ss within %02d:00-%02d:00",
            self._settings.ingestion_interval_seconds,
            self._settings.dispatch_interval_seconds,
            start_hour,
            end_hour,
        )

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        with self._lifecycle_lock:
            if not self.state.running:
                return
            for trigger in self._triggers:
                trigger.stop(join=True, timeout=timeout)
            self._triggers = []
            self.state.running = False
        logger.info("Scheduler stopped")

    # ------------------------------------------------------------------
    # ジョブ
    # ------------------------------------------------------------------
    def check_new_orders(self, now: Optional[datetime] = None) -> IngestionSummary:
        """
        直近 ingestion_lookback_hours 時間の注文を取り込む。
        """
        end = now or self._clock()
        start = end - timedelta(hours=self._settings.ingestion_lookback_hours)
        logger.info("Checking new Kaspi orders from %s to %s", start.isoformat(), end.isoformat())

        with self.state.track(INGESTION):
            return self.ingestion_service.fetch_and_ingest(start, end)

    def local_hour(self, now: Optional[datetime] = None) -> int:
        moment = now or self._clock()
        if moment.tzinfo is None:
            moment = moment.replace(tzinfo=timezone.utc)
        return moment.astimezone(self._tz).hour

    def send_review_requests(self, now: Optional[datetime] = None) -> List[DispatchResult]:
        """
        送信時間帯内であればバッチ送信する。時間帯外では何もしない。
        """
        hour = self.local_hour(now)
        if not self.state.in_window(hour):
            start_hour, end_hour = self.state.window
            logger.info(
                "Outside dispatch window (%02d:00-%02d:00, now %02d h); skipping",
                start_hour,
                end_hour,
                hour,
            )
            return []

        return self._dispatch(self._settings.dispatch_batch_limit)

    def trigger_manual_dispatch(self, limit: int) -> List[DispatchResult]:
        """
        送信時間帯を無視して即時にバッチ送信する。
        """
        if limit < 1 or limit > MAX_MANUAL_DISPATCH_LIMIT:
            raise ValueError(f"limit must be between 1 and {MAX_MANUAL_DISPATCH_LIMIT}")
        logger.info("Manual dispatch requested (limit=%d)", limit)
        return self._dispatch(limit)

    def retry_failed(self, limit: int) -> List[DispatchResult]:
        with self.state.track(DISPATCH):
            return self.dispatcher.retry_failed(limit)

    def _dispatch(self, limit: int) -> List[DispatchResult]:
        with self.state.track(DISPATCH):
            return self.dispatcher.dispatch_batch(limit)

    # ------------------------------------------------------------------
    # 設定・状態
    # ------------------------------------------------------------------
    def set_dispatch_window(self, start_hour: int, end_hour: int) -> bool:
        return self.state.set_window(start_hour, end_hour)

    def status(self) -> SchedulerStatus:
        start_hour, end_hour = self.state.window
        return SchedulerStatus(
            running=self.state.running,
            start_hour=start_hour,
            end_hour=end_hour,
            timezone=self._settings.timezone if self._tz is not None else None,
            ingestion_interval_seconds=self._settings.ingestion_interval_seconds,
            dispatch_interval_seconds=self._settings.dispatch_interval_seconds,
            ingestion_running=self.state.is_active(INGESTION),
            dispatch_running=self.state.is_active(DISPATCH),
            last_ingestion_at=self.state.last_run(INGESTION),
            last_dispatch_at=self.state.last_run(DISPATCH),
            last_error=self.state.last_error,
        )
