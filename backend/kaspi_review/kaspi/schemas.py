# backend/kaspi_review/kaspi/schemas.py

"""
Kaspi 連携の API レスポンスを表現するスキーマ定義。
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class KaspiOrderState(str, Enum):
    """Kaspi 側で更新可能な注文ステータス。"""

    NEW = "NEW"
    PROCESSING = "PROCESSING"
    DELIVERED = "DELIVERED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class FetchPeriod(BaseModel):
    start: datetime
    end: datetime
    days: int = Field(..., ge=0, description="期間の日数（切り上げ）")


class IngestionSummary(BaseModel):
    """
    fetch_and_ingest の結果サマリ。

    fetched は API から取得した件数、processed は新規保存できた件数。
    """

    fetched: int = Field(0, ge=0, description="Kaspi API から取得した注文件数")
    processed: int = Field(0, ge=0, description="新規に保存した注文件数")
    skipped_existing: int = Field(0, ge=0, description="保存済みのためスキップした件数")
    skipped_missing_contact: int = Field(0, ge=0, description="顧客の電話番号が無くスキップした件数")
    skipped_invalid: int = Field(0, ge=0, description="必須フィールド欠落でスキップした件数")
    failed: int = Field(0, ge=0, description="保存に失敗した件数")
    period: Optional[FetchPeriod] = None


class KaspiOrderEntry(BaseModel):
    id: Optional[str] = None
    product_id: Optional[str] = None
    quantity: Optional[float] = None
    base_price: Optional[float] = None
    total_price: Optional[float] = None


class KaspiOrderDetail(BaseModel):
    """GET /kaspi/orders/{id} のレスポンス。"""

    id: str
    creation_date: Optional[datetime] = None
    total_price: Optional[float] = None
    status: Optional[str] = None
    customer: Dict[str, Any] = Field(default_factory=dict)
    entries: List[KaspiOrderEntry] = Field(default_factory=list)


class OrderStatusUpdateRequest(BaseModel):
    status: KaspiOrderState


class ReviewLinkResponse(BaseModel):
    review_link: str
    order_code: str
    product_code: str
    rating: int
