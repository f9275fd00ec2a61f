# backend/kaspi_review/kaspi/service.py

"""
Kaspi クライアント・変換・リポジトリをつなぐ取り込みサービス層。

- 期間指定の検証（最大日数など）
- OrderFetcher で取得 → OrderEnricher で変換 → OrderRepository に重複排除 insert
- 注文詳細・商品詳細・ステータス更新のパススルー
"""

from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import Any, Dict, List, Optional

from kaspi_review.orders.db import get_session_factory
from kaspi_review.orders.repository import OrderRepository, RepositoryError

from .client import KaspiClient
from .config import KaspiSettings
from .date_range import ensure_utc
from .enricher import (
    MalformedOrderError,
    MissingCustomerContactError,
    OrderEnricher,
    as_dict,
    parse_creation_date,
)
from .fetcher import OrderFetcher
from .schemas import (
    FetchPeriod,
    IngestionSummary,
    KaspiOrderDetail,
    KaspiOrderEntry,
    KaspiOrderState,
)

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 24 * 60 * 60


def _optional_str(value: Any) -> Optional[str]:
    return str(value) if value not in (None, "") else None


def _optional_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    return number if math.isfinite(number) else None


class InvalidDateRangeError(ValueError):
    """取り込み期間の指定が不正。"""


def count_days(start: datetime, end: datetime) -> int:
    """期間の日数（切り上げ）。"""
    seconds = (ensure_utc(end) - ensure_utc(start)).total_seconds()
    return max(0, math.ceil(seconds / _SECONDS_PER_DAY))


def validate_date_range(
    start: Optional[datetime],
    end: Optional[datetime],
    max_days: int,
) -> int:
    """
    取り込み期間を検証し、日数を返す。

    :raises InvalidDateRangeError: 未指定 / start >= end / max_days 超過
    """
    if start is None or end is None:
        raise InvalidDateRangeError("Both start and end dates are required")
    if ensure_utc(start) >= ensure_utc(end):
        raise InvalidDateRangeError("Start date must be before end date")

    days = count_days(start, end)
    if days > max_days:
        raise InvalidDateRangeError(
            f"Date range too large ({days} days). Maximum: {max_days} days"
        )
    return days


class OrderIngestionService:
    """
    Kaspi の注文を取り込んで保存するサービス。

    1 件ごとの失敗は集計に数えて次へ進み、全体は止めない。
    """

    def __init__(
        self,
        client: KaspiClient,
        repository: OrderRepository,
        *,
        fetcher: Optional[OrderFetcher] = None,
        enricher: Optional[OrderEnricher] = None,
        settings: Optional[KaspiSettings] = None,
    ) -> None:
        self._client = client
        self._repository = repository
        self._settings = settings or client.settings
        self._fetcher = fetcher or OrderFetcher(client, self._settings)
        self._enricher = enricher or OrderEnricher(client)

    @property
    def settings(self) -> KaspiSettings:
        return self._settings

    def fetch_and_ingest(self, start: datetime, end: datetime) -> IngestionSummary:
        """
        [start, end] の注文を取得して保存する。

        :raises InvalidDateRangeError: 期間指定が不正な場合（取得は行わない）
        """
        days = validate_date_range(start, end, self._settings.max_fetch_range_days)

        raw_orders = self._fetcher.fetch_orders(start, end)
        summary = self.ingest_orders(raw_orders)
        summary.period = FetchPeriod(start=ensure_utc(start), end=ensure_utc(end), days=days)
        return summary

    def ingest_orders(self, raw_orders: List[Dict[str, Any]]) -> IngestionSummary:
        summary = IngestionSummary(fetched=len(raw_orders))

        for raw in raw_orders:
            order_id = raw.get("id") if isinstance(raw, dict) else None

            if order_id and self._repository.exists_by_external_id(str(order_id)):
                logger.info("Order %s already stored; skipping", order_id)
                summary.skipped_existing += 1
                continue

            try:
                order = self._enricher.enrich(raw)
            except MissingCustomerContactError as exc:
                logger.warning("Order %s skipped: missing customer contact", exc.order_id)
                summary.skipped_missing_contact += 1
                continue
            except MalformedOrderError as exc:
                logger.warning("Order %s skipped: %s", exc.order_id or "<unknown>", exc)
                summary.skipped_invalid += 1
                continue
            except Exception:  # noqa: BLE001 - 1件の失敗で取り込み全体を止めない
                logger.exception("Unexpected error while enriching order %s", order_id)
                summary.failed += 1
                continue

            try:
                inserted = self._repository.insert(order)
            except RepositoryError:
                summary.failed += 1
                continue

            if inserted:
                logger.info("Order %s stored", order.kaspi_order_id)
                summary.processed += 1
            else:
                summary.skipped_existing += 1

        logger.info(
            "Ingestion finished: fetched=%d processed=%d existing=%d no_contact=%d invalid=%d failed=%d",
            summary.fetched,
            summary.processed,
            summary.skipped_existing,
            summary.skipped_missing_contact,
            summary.skipped_invalid,
            summary.failed,
        )
        return summary

    # ---- パススルー ----------------------------------------------------

    def get_order_detail(self, order_id: str) -> Optional[KaspiOrderDetail]:
        """
        Kaspi から注文詳細と明細を取得する。注文が無ければ None。
        """
        order = self._client.get_order(order_id)
        if order is None:
            return None

        attributes = as_dict(order.get("attributes"))
        entries = []
        for raw_entry in self._client.get_order_entries(order_id):
            entry = as_dict(raw_entry)
            if not entry:
                logger.warning("Order %s: skipping malformed entry %r", order_id, raw_entry)
                continue
            entry_attrs = as_dict(entry.get("attributes"))
            product = as_dict(as_dict(as_dict(entry.get("relationships")).get("product")).get("data"))
            entries.append(
                KaspiOrderEntry(
                    id=_optional_str(entry.get("id")),
                    product_id=_optional_str(product.get("id")),
                    quantity=_optional_number(entry_attrs.get("quantity")),
                    base_price=_optional_number(entry_attrs.get("basePrice")),
                    total_price=_optional_number(entry_attrs.get("totalPrice")),
                )
            )

        return KaspiOrderDetail(
            id=str(order.get("id") or order_id),
            creation_date=parse_creation_date(attributes.get("creationDate")),
            total_price=_optional_number(attributes.get("totalPrice")),
            status=_optional_str(attributes.get("status")),
            customer=as_dict(attributes.get("customer")),
            entries=entries,
        )

    def get_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        return self._client.get_product(product_id)

    def update_order_status(self, order_id: str, status: KaspiOrderState) -> Optional[Dict[str, Any]]:
        logger.info("Updating Kaspi order %s status to %s", order_id, status.value)
        return self._client.update_order_status(order_id, status.value)


def build_order_ingestion_service() -> OrderIngestionService:
    """
    環境変数の設定から OrderIngestionService を組み立てる。

    :raises EnvVarMissingError: KASPI_API_KEY が未設定の場合
    """
    client = KaspiClient()
    repository = OrderRepository(get_session_factory())
    return OrderIngestionService(client, repository)
