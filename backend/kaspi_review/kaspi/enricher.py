# backend/kaspi_review/kaspi/enricher.py

"""
Kaspi の生の注文レコードを、保存用の OrderCreate に変換するモジュール。

- 注文明細（entries）と商品詳細（masterproducts）を解決して
  非正規化された明細リストを組み立てる
- 壊れた明細は 1 行ずつスキップし、注文全体は捨てない
- 顧客の連絡先が無い注文は MissingCustomerContactError で弾く
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from kaspi_review.orders.schemas import OrderCreate, OrderItem, OrderStatus
from kaspi_review.utils.phone import normalize_phone

from .client import KaspiClient, KaspiClientError

logger = logging.getLogger(__name__)

UNKNOWN_PRODUCT_NAME = "Unknown Product"


class OrderEnrichmentError(ValueError):
    """注文レコードを保存用データに変換できなかった場合の基底例外。"""

    def __init__(self, message: str, order_id: Optional[str] = None) -> None:
        super().__init__(message)
        self.order_id = order_id


class MalformedOrderError(OrderEnrichmentError):
    """必須フィールド（id / attributes / creationDate）が欠けている。"""


class MissingCustomerContactError(OrderEnrichmentError):
    """顧客の電話番号が無く、通知対象にできない。"""


def as_dict(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def parse_creation_date(value: Any) -> Optional[datetime]:
    """
    Kaspi の creationDate（エポックミリ秒 or ISO8601 文字列）を datetime に変換する。
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)
    return None


def _number(value: Any, default: float) -> float:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ValueError(f"not a number: {value!r}")
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"not a finite number: {value!r}")
    return number


class OrderEnricher:
    """
    KaspiClient で明細・商品を解決し、OrderCreate を組み立てるサービス。

    商品詳細は同じ商品が何度も出てくるため、インスタンス内でキャッシュする。
    """

    def __init__(self, client: KaspiClient) -> None:
        self._client = client
        self._product_cache: Dict[str, Optional[Dict[str, Any]]] = {}

    def enrich(self, raw_order: Dict[str, Any]) -> OrderCreate:
        """
        生の注文レコード 1 件を OrderCreate に変換する。

        :raises MalformedOrderError: 必須フィールドが欠けている場合
        :raises MissingCustomerContactError: 顧客の電話番号が無い場合
        """
        if not isinstance(raw_order, dict) or not raw_order.get("id"):
            raise MalformedOrderError("Kaspi order has no id")

        order_id = str(raw_order["id"])
        attributes = raw_order.get("attributes")
        if not isinstance(attributes, dict):
            raise MalformedOrderError("Kaspi order has no attributes", order_id=order_id)

        order_date = parse_creation_date(attributes.get("creationDate"))
        if order_date is None:
            raise MalformedOrderError("Kaspi order has no valid creationDate", order_id=order_id)

        customer = as_dict(attributes.get("customer"))
        phone = normalize_phone(customer.get("cellPhone"))
        if not phone:
            raise MissingCustomerContactError(
                "Kaspi order has no customer phone", order_id=order_id
            )

        customer_name = " ".join(
            part.strip()
            for part in (customer.get("firstName"), customer.get("lastName"))
            if isinstance(part, str) and part.strip()
        )

        try:
            amount: Optional[float] = _number(attributes.get("totalPrice"), 0.0)
        except (TypeError, ValueError):
            amount = None

        return OrderCreate(
            kaspi_order_id=order_id,
            order_date=order_date,
            customer_phone=phone,
            customer_name=customer_name,
            order_status=OrderStatus.COMPLETED,
            order_amount=amount,
            order_items=self.resolve_items(order_id),
        )

    def resolve_items(self, order_id: str) -> List[OrderItem]:
        """
        注文明細を取得し、商品情報を付与した OrderItem のリストを返す。

        明細一覧の取得に失敗した場合は空リスト（注文自体は保存する）。
        """
        try:
            entries = self._client.get_order_entries(order_id)
        except KaspiClientError:
            logger.exception("Failed to fetch entries for order %s", order_id)
            return []

        items: List[OrderItem] = []
        for entry in entries:
            item = self._build_item(order_id, entry)
            if item is not None:
                items.append(item)

        if len(items) < len(entries):
            logger.warning(
                "Order %s: kept %d of %d entries", order_id, len(items), len(entries)
            )
        return items

    def _build_item(self, order_id: str, entry: Any) -> Optional[OrderItem]:
        entry = as_dict(entry)
        product_ref = as_dict(as_dict(as_dict(entry.get("relationships")).get("product")).get("data"))
        product_id = product_ref.get("id")
        if not product_id:
            logger.warning("Order %s: entry %s has no product reference", order_id, entry.get("id"))
            return None

        product_id = str(product_id)
        product = self._get_product(product_id)
        if product is None:
            logger.warning("Order %s: product %s could not be resolved", order_id, product_id)
            return None

        product_attrs = as_dict(product.get("attributes"))
        entry_attrs = as_dict(entry.get("attributes"))

        try:
            quantity = int(_number(entry_attrs.get("quantity"), 1))
            unit_price = _number(entry_attrs.get("basePrice"), 0.0)
            total_price = _number(entry_attrs.get("totalPrice"), 0.0)
        except (TypeError, ValueError, OverflowError):
            logger.warning("Order %s: entry %s has invalid numbers", order_id, entry.get("id"))
            return None

        name = product_attrs.get("name")
        code = product_attrs.get("code")

        return OrderItem(
            entry_id=str(entry["id"]) if entry.get("id") else None,
            product_id=product_id,
            name=name if isinstance(name, str) and name else UNKNOWN_PRODUCT_NAME,
            code=str(code) if code else "",
            quantity=max(quantity, 0),
            unit_price=unit_price,
            total_price=total_price,
        )

    def _get_product(self, product_id: str) -> Optional[Dict[str, Any]]:
        if product_id in self._product_cache:
            return self._product_cache[product_id]

        try:
            product = self._client.get_product(product_id)
        except KaspiClientError:
            # 一時的な失敗の可能性があるのでキャッシュしない
            logger.exception("Failed to fetch product %s", product_id)
            return None

        self._product_cache[product_id] = product
        return product
