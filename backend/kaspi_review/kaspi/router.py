# backend/kaspi_review/kaspi/router.py

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from kaspi_review.notifications.review_link import (
    DEFAULT_RATING,
    clamp_rating,
    derive_order_code,
    generate_review_link,
)
from kaspi_review.utils.config import EnvVarMissingError

from .client import KaspiClientError
from .schemas import (
    IngestionSummary,
    KaspiOrderDetail,
    OrderStatusUpdateRequest,
    ReviewLinkResponse,
)
from .service import InvalidDateRangeError, OrderIngestionService, build_order_ingestion_service

router = APIRouter(prefix="/kaspi", tags=["kaspi"])


# Dependency provider
# - テスト時に FastAPI dependency_overrides で差し替え可能にする
def get_ingestion_service() -> OrderIngestionService:
    return build_order_ingestion_service()


def _upstream_error(action: str, exc: KaspiClientError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_502_BAD_GATEWAY,
        detail=f"Failed to {action}: {exc}",
    )


def _resolve_period(
    days: Optional[int],
    start_date: Optional[datetime],
    end_date: Optional[datetime],
) -> tuple[datetime, datetime]:
    if start_date is not None or end_date is not None:
        if start_date is None or end_date is None:
            raise InvalidDateRangeError("Both start_date and end_date are required")
        return start_date, end_date

    days = 1 if days is None else days
    if days <= 0:
        raise InvalidDateRangeError("Parameter 'days' must be a positive number")

    end = datetime.now(timezone.utc)
    return end - timedelta(days=days), end


@router.post(
    "/fetch-orders",
    response_model=IngestionSummary,
    summary="Kaspi から注文を取得して保存",
    description="days（直近 N 日, デフォルト 1）または start_date/end_date で期間を指定する。",
)
def fetch_orders(
    days: Optional[int] = Query(None, description="直近 N 日分を取得"),
    start_date: Optional[datetime] = Query(None, description="期間の開始（ISO8601）"),
    end_date: Optional[datetime] = Query(None, description="期間の終了（ISO8601）"),
    service: OrderIngestionService = Depends(get_ingestion_service),
) -> IngestionSummary:
    """
    - 期間指定が不正: 400
    - それ以外の予期しない例外: 500
    """
    try:
        start, end = _resolve_period(days, start_date, end_date)
        return service.fetch_and_ingest(start, end)
    except InvalidDateRangeError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except EnvVarMissingError:
        raise
    except Exception as exc:  # noqa: BLE001
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch orders from Kaspi.",
        ) from exc


@router.get(
    "/orders/{order_id}",
    response_model=KaspiOrderDetail,
    summary="Kaspi の注文詳細（明細付き）",
)
def get_order(
    order_id: str,
    service: OrderIngestionService = Depends(get_ingestion_service),
) -> KaspiOrderDetail:
    try:
        detail = service.get_order_detail(order_id)
    except KaspiClientError as exc:
        raise _upstream_error(f"get order {order_id}", exc) from exc

    if detail is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Order not found")
    return detail


@router.put(
    "/orders/{order_id}/status",
    summary="Kaspi の注文ステータスを更新",
)
def update_order_status(
    order_id: str,
    request: OrderStatusUpdateRequest,
    service: OrderIngestionService = Depends(get_ingestion_service),
) -> Dict[str, Any]:
    try:
        result = service.update_order_status(order_id, request.status)
    except KaspiClientError as exc:
        raise _upstream_error(f"update order {order_id}", exc) from exc

    return {"order_id": order_id, "status": request.status.value, "data": result}


@router.get(
    "/products/{product_id}",
    summary="Kaspi の商品詳細",
)
def get_product(
    product_id: str,
    service: OrderIngestionService = Depends(get_ingestion_service),
) -> Dict[str, Any]:
    try:
        product = service.get_product(product_id)
    except KaspiClientError as exc:
        raise _upstream_error(f"get product {product_id}", exc) from exc

    if product is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Product not found")
    return product


@router.get(
    "/orders/{order_id}/review-link",
    response_model=ReviewLinkResponse,
    summary="注文のレビュー投稿リンクを生成",
)
def get_review_link(
    order_id: str,
    product_code: Optional[str] = Query(None, alias="productCode"),
    rating: int = Query(DEFAULT_RATING),
) -> ReviewLinkResponse:
    if not product_code:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Product code is required")

    order_code = derive_order_code(order_id)
    return ReviewLinkResponse(
        review_link=generate_review_link(product_code, order_code, rating),
        order_code=order_code,
        product_code=product_code,
        rating=clamp_rating(rating),
    )
