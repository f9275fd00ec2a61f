# backend/kaspi_review/orders/schemas.py

"""
注文・許可番号を内部で扱うためのスキーマ定義。

ORM モデル（models.py）はリポジトリの外に出さず、
呼び出し側にはここで定義した pydantic モデルを返す。
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class OrderStatus(str, Enum):
    """注文のライフサイクル（Kaspi 側のステータスを小文字で保持）。"""

    NEW = "new"
    PROCESSING = "processing"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class NotificationStatus(str, Enum):
    """
    レビュー依頼通知の状態。

    - PENDING: 未送信（取り込み直後）
    - SENDING: 送信処理中（ディスパッチャが確保済み）
    - SENT / DELIVERED / READ: 送信済み（後者 2 つは外部からの配信通知）
    - FAILED: 送信失敗（再送対象）
    """

    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    DELIVERED = "delivered"
    READ = "read"
    FAILED = "failed"


class OrderItem(BaseModel):
    """注文明細 1 行分（商品情報を非正規化して保持）。"""

    entry_id: Optional[str] = Field(None, description="Kaspi の注文明細 ID")
    product_id: str = Field(..., description="Kaspi の商品 ID")
    name: str = Field("Unknown Product", description="商品名")
    code: str = Field("", description="商品コード（レビューリンクに使用）")
    quantity: int = Field(1, ge=0, description="数量")
    unit_price: float = Field(0.0, description="単価")
    total_price: float = Field(0.0, description="合計金額")


class OrderCreate(BaseModel):
    """取り込み時に保存する注文データ。"""

    kaspi_order_id: str
    order_date: datetime
    customer_phone: str
    customer_name: str = ""
    order_status: OrderStatus = OrderStatus.COMPLETED
    order_amount: Optional[float] = None
    order_items: List[OrderItem] = Field(default_factory=list)


class OrderRecord(BaseModel):
    """保存済みの注文。"""

    model_config = ConfigDict(from_attributes=True)

    id: int
    kaspi_order_id: str
    order_date: datetime
    customer_phone: str
    customer_name: str
    order_status: str
    order_amount: Optional[float] = None
    order_items: List[OrderItem] = Field(default_factory=list)
    notification_status: NotificationStatus = NotificationStatus.PENDING
    notification_sent_at: Optional[datetime] = None
    notification_error: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def first_item(self) -> Optional[OrderItem]:
        return self.order_items[0] if self.order_items else None

    @property
    def customer_first_name(self) -> str:
        parts = self.customer_name.split()
        return parts[0] if parts else ""


class AllowedPhoneRecord(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    phone_number: str
    description: Optional[str] = None
    is_active: bool = True
    user_id: Optional[int] = None
