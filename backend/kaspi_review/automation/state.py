# backend/kaspi_review/automation/state.py

"""
スケジューラの状態管理モジュール。

- SchedulerState: 送信時間帯・実行中フラグ・最終実行時刻（ロックで保護）
- アプリ全体で共有する NotificationScheduler インスタンスを提供
- テスト時にリセットできるようにする
"""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, Optional, Tuple

logger = logging.getLogger(__name__)

INGESTION = "ingestion"
DISPATCH = "dispatch"

DEFAULT_START_HOUR = 9
DEFAULT_END_HOUR = 21


def is_valid_window(start_hour: object, end_hour: object) -> bool:
    """0 <= start < end <= 23 の整数かどうか。"""
    for value in (start_hour, end_hour):
        if isinstance(value, bool) or not isinstance(value, int):
            return False
    return 0 <= start_hour < end_hour <= 23


class SchedulerState:
    """
    スケジューラが持つ可変状態。複数スレッドから参照されるためロックで保護する。
    """

    def __init__(self, start_hour: int = DEFAULT_START_HOUR, end_hour: int = DEFAULT_END_HOUR) -> None:
        if not is_valid_window(start_hour, end_hour):
            raise ValueError(f"Invalid dispatch window: {start_hour}-{end_hour}")
        self._lock = threading.Lock()
        self._start_hour = start_hour
        self._end_hour = end_hour
        self._active: Dict[str, int] = {INGESTION: 0, DISPATCH: 0}
        self._last_run: Dict[str, Optional[datetime]] = {INGESTION: None, DISPATCH: None}
        self._last_error: Optional[str] = None
        self.running = False

    @property
    def window(self) -> Tuple[int, int]:
        with self._lock:
            return self._start_hour, self._end_hour

    def set_window(self, start_hour: int, end_hour: int) -> bool:
        """
        送信時間帯を更新する。不正な値なら何も変えずに False。
        """
        if not is_valid_window(start_hour, end_hour):
            logger.warning("Rejected dispatch window %r-%r", start_hour, end_hour)
            return False
        with self._lock:
            self._start_hour = start_hour
            self._end_hour = end_hour
        logger.info("Dispatch window set to %02d:00-%02d:00", start_hour, end_hour)
        return True

    def in_window(self, hour: int) -> bool:
        with self._lock:
            return self._start_hour <= hour < self._end_hour

    @contextmanager
    def track(self, job: str) -> Iterator[None]:
        """
        ジョブの実行中フラグと最終実行時刻・最終エラーを記録する。
        """
        with self._lock:
            self._active[job] += 1
        try:
            yield
        except Exception as exc:
            with self._lock:
                self._last_error = f"{job}: {exc}"
            raise
        finally:
            with self._lock:
                self._active[job] -= 1
                self._last_run[job] = datetime.now(timezone.utc)

    def is_active(self, job: str) -> bool:
        with self._lock:
            return self._active[job] > 0

    def last_run(self, job: str) -> Optional[datetime]:
        with self._lock:
            return self._last_run[job]

    @property
    def last_error(self) -> Optional[str]:
        with self._lock:
            return self._last_error


_scheduler = None


def get_scheduler():
    """
    共有の NotificationScheduler インスタンスを返す。

    初回呼び出し時にのみ生成し、それ以降は同じインスタンスを返す。
    """
    global _scheduler
    if _scheduler is None:
        from .scheduler import NotificationScheduler

        _scheduler = NotificationScheduler()
    return _scheduler


def reset_state() -> None:
    """
    テスト用にスケジューラのシングルトン状態をリセットする（動作中なら停止する）。
    """
    global _scheduler
    if _scheduler is not None and _scheduler.is_running:
        _scheduler.stop()
    _scheduler = None
