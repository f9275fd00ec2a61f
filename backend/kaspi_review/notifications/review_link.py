# backend/kaspi_review/notifications/review_link.py

"""
Kaspi のレビュー投稿ページへのリンクを組み立てる純粋関数。
"""

from typing import Any, Optional
from urllib.parse import urlencode

REVIEW_BASE_URL = "https://kaspi.kz/shop/review/productreview"
PLACEHOLDER_LINK = "#"
DEFAULT_RATING = 5


def derive_order_code(kaspi_order_id: Optional[str]) -> str:
    """
    注文コード = Kaspi 注文 ID の最初のハイフンより前（ハイフンが無ければ ID 全体）。
    """
    if not kaspi_order_id:
        return ""
    head = kaspi_order_id.split("-", 1)[0]
    return head or kaspi_order_id


def clamp_rating(rating: Any) -> int:
    try:
        value = int(rating)
    except (TypeError, ValueError):
        return DEFAULT_RATING
    return min(max(value, 1), 5)


def generate_review_link(
    product_code: Optional[str],
    order_code: Optional[str],
    rating: Any = DEFAULT_RATING,
) -> str:
    """
    レビュー投稿 URL を返す。

    - rating は 1〜5 に丸める（数値でなければ 5）
    - product_code / order_code のどちらかが無ければ PLACEHOLDER_LINK
    """
    if not product_code or not order_code:
        return PLACEHOLDER_LINK

    query = urlencode(
        {
            "productCode": product_code,
            "orderCode": order_code,
            "rating": clamp_rating(rating),
        }
    )
    return f"{REVIEW_BASE_URL}?{query}"
