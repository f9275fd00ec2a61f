# backend/kaspi_review/kaspi/fetcher.py

"""
期間分割 + ページングで Kaspi から注文を取得する。

ベストエフォート: ウィンドウ単位の失敗はログに残して次へ進み、
呼び出し元には決して例外を投げない（空リスト = 取得できるものが無かった）。
"""

from __future__ import annotations

import logging
import time
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from .client import KaspiClient
from .config import KaspiSettings
from .date_range import DateWindow, split_date_range, to_epoch_millis

logger = logging.getLogger(__name__)


class OrderFetcher:
    """
    KaspiClient を使って [start, end] の注文を全件集める。

    - 期間は max_days_per_request 以下のウィンドウに分割
    - 各ウィンドウは page_size 件ずつページング
    - ウィンドウが複数ある場合はウィンドウ間で request_delay_seconds 待機
    """

    def __init__(
        self,
        client: KaspiClient,
        settings: Optional[KaspiSettings] = None,
        *,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self._client = client
        self._settings = settings or client.settings
        self._sleep = sleep

    def fetch_orders(
        self,
        start: datetime,
        end: datetime,
        *,
        status: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        status = status or self._settings.order_status

        try:
            windows = split_date_range(start, end, self._settings.max_days_per_request)
        except Exception:  # noqa: BLE001 - 取得失敗で呼び出し元を落とさない
            logger.exception("Failed to split date range %s - %s", start, end)
            return []

        if not windows:
            logger.warning("No date windows to fetch for %s - %s", start, end)
            return []

        logger.info("Fetching Kaspi orders in %d window(s) from %s to %s", len(windows), start, end)

        orders: List[Dict[str, Any]] = []
        for index, window in enumerate(windows):
            if index > 0 and len(windows) > 1:
                self._sleep(self._settings.request_delay_seconds)

            try:
                window_orders = self._fetch_window(window, status)
            except Exception:  # noqa: BLE001 - 1ウィンドウの失敗で全体を止めない
                logger.exception(
                    "Failed to fetch orders for window %s - %s",
                    window.start.isoformat(),
                    window.end.isoformat(),
                )
                continue

            logger.info(
                "Fetched %d order(s) for window %s - %s",
                len(window_orders),
                window.start.isoformat(),
                window.end.isoformat(),
            )
            orders.extend(window_orders)

        logger.info("Fetched %d Kaspi order(s) in total", len(orders))
        return orders

    def _fetch_window(self, window: DateWindow, status: str) -> List[Dict[str, Any]]:
        """
        1 ウィンドウ分をページングしながら取得する。

        途中のページで失敗した場合は KaspiClientError をそのまま投げ、
        ウィンドウ全体を失敗扱いにする（部分ページを混ぜない）。
        """
        page_size = self._settings.page_size
        collected: List[Dict[str, Any]] = []

        for page_number in range(self._settings.max_pages_per_window):
            page = self._client.list_orders(
                created_from_ms=to_epoch_millis(window.start),
                created_to_ms=to_epoch_millis(window.end),
                status=status,
                page_number=page_number,
                page_size=page_size,
            )
            records = page.get("orders") or []
            collected.extend(records)

            page_count = page.get("page_count")
            raw_count = page.get("raw_count", len(records))
            if raw_count < page_size:
                break
            if page_count is not None and page_number + 1 >= page_count:
                break
        else:
            logger.warning(
                "Reached page limit (%d) for window %s - %s",
                self._settings.max_pages_per_window,
                window.start.isoformat(),
                window.end.isoformat(),
            )

        return collected
