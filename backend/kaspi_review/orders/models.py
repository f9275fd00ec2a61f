# backend/kaspi_review/orders/models.py

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, Integer, String, Text, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    pass


class Order(Base):
    """Kaspi から取り込んだ注文と、そのレビュー依頼通知の状態。"""

    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    kaspi_order_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    order_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    customer_phone: Mapped[str] = mapped_column(String(32), nullable=False)
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    order_status: Mapped[str] = mapped_column(String(32), nullable=False, default="new")
    order_amount: Mapped[Optional[float]] = mapped_column(Float)
    order_items: Mapped[List[Any]] = mapped_column(JSON, nullable=False, default=list)
    notification_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="pending", index=True
    )
    notification_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    notification_error: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )


class AllowedPhone(Base):
    """送信を許可された電話番号（数字のみに正規化）。"""

    __tablename__ = "allowed_phones"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    phone_number: Mapped[str] = mapped_column(String(32), unique=True, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # 登録したユーザーの ID（参照のみ。外部キーにはしない）
    user_id: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
