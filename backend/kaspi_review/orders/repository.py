# backend/kaspi_review/orders/repository.py

"""
注文の永続化を担当するリポジトリ。

- kaspi_order_id をキーにした重複排除付き insert
- 通知ステータスの更新と、送信前の確保（compare-and-swap）
- 統計用の読み取り

読み取り系はストレージ障害時に空 / 0 / None へ縮退する（strict=True で例外）。
書き込み系の失敗は RepositoryError として呼び出し元に伝える。
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, List, Optional, Tuple, TypeVar

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .db import session_scope
from .models import Order
from .schemas import NotificationStatus, OrderCreate, OrderRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

STALE_CLAIM_ERROR = "Dispatch was interrupted before its result was saved"

# 手動修正で変更してよいフィールド（通知系はディスパッチャ専用）
CORRECTABLE_FIELDS = frozenset(
    {"order_date", "customer_phone", "customer_name", "order_status", "order_amount", "order_items"}
)


class RepositoryError(RuntimeError):
    """ストレージの読み書きに失敗した場合の例外。"""


def _status_value(status: Any) -> str:
    return status.value if isinstance(status, NotificationStatus) else str(status)


class OrderRepository:
    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    # ------------------------------------------------------------------
    # 内部ユーティリティ
    # ------------------------------------------------------------------
    def _read(self, action: str, fn: Callable[[Session], T], default: T, strict: bool) -> T:
        try:
            with session_scope(self._session_factory) as session:
                return fn(session)
        except SQLAlchemyError as exc:
            if strict:
                raise RepositoryError(f"Failed to {action}: {exc}") from exc
            logger.exception("Failed to %s; returning fallback value", action)
            return default

    def _write(self, action: str, fn: Callable[[Session], T]) -> T:
        try:
            with session_scope(self._session_factory) as session:
                return fn(session)
        except SQLAlchemyError as exc:
            logger.exception("Failed to %s", action)
            raise RepositoryError(f"Failed to {action}: {exc}") from exc

    # ------------------------------------------------------------------
    # 取り込み
    # ------------------------------------------------------------------
    def find_by_external_id(self, kaspi_order_id: str, *, strict: bool = False) -> Optional[OrderRecord]:
        def _find(session: Session) -> Optional[OrderRecord]:
            row = session.scalar(select(Order).where(Order.kaspi_order_id == kaspi_order_id))
            return OrderRecord.model_validate(row) if row is not None else None

        return self._read(f"find order {kaspi_order_id}", _find, None, strict)

    def find_by_id(self, order_id: int, *, strict: bool = False) -> Optional[OrderRecord]:
        def _find(session: Session) -> Optional[OrderRecord]:
            row = session.get(Order, order_id)
            return OrderRecord.model_validate(row) if row is not None else None

        return self._read(f"find order id={order_id}", _find, None, strict)

    def exists_by_external_id(self, kaspi_order_id: str, *, strict: bool = False) -> bool:
        def _exists(session: Session) -> bool:
            stmt = select(Order.id).where(Order.kaspi_order_id == kaspi_order_id).limit(1)
            return session.scalar(stmt) is not None

        return self._read(f"check order {kaspi_order_id}", _exists, False, strict)

    def insert(self, order: OrderCreate) -> bool:
        """
        注文を保存する。

        :return: 新規に保存した場合 True、既に存在した場合 False
        :raises RepositoryError: 一意制約以外の理由で保存に失敗した場合
        """
        row = Order(
            kaspi_order_id=order.kaspi_order_id,
            order_date=order.order_date,
            customer_phone=order.customer_phone,
            customer_name=order.customer_name,
            order_status=order.order_status.value,
            order_amount=order.order_amount,
            order_items=[item.model_dump() for item in order.order_items],
            notification_status=NotificationStatus.PENDING.value,
        )
        try:
            with session_scope(self._session_factory) as session:
                session.add(row)
        except IntegrityError:
            # 別の取り込み処理と競合した場合もここに来る
            logger.info("Order %s already exists; insert skipped", order.kaspi_order_id)
            return False
        except SQLAlchemyError as exc:
            logger.exception("Failed to insert order %s", order.kaspi_order_id)
            raise RepositoryError(f"Failed to insert order {order.kaspi_order_id}: {exc}") from exc
        return True

    def update_fields(self, order_id: int, **fields: Any) -> bool:
        """
        通知系以外のフィールドを手動修正する。
        """
        unknown = set(fields) - CORRECTABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields cannot be corrected manually: {sorted(unknown)}")
        if not fields:
            return False

        def _update(session: Session) -> bool:
            result = session.execute(update(Order).where(Order.id == order_id).values(**fields))
            return result.rowcount == 1

        return self._write(f"update order id={order_id}", _update)

    # ------------------------------------------------------------------
    # 通知
    # ------------------------------------------------------------------
    def find_pending_for_notification(
        self,
        limit: int,
        *,
        order_status: str = "completed",
        notification_status: NotificationStatus | str = NotificationStatus.PENDING,
        strict: bool = False,
    ) -> List[OrderRecord]:
        """
        通知対象の注文を注文日時の古い順に最大 limit 件返す。
        """
        status_value = _status_value(notification_status)

        def _find(session: Session) -> List[OrderRecord]:
            stmt = (
                select(Order)
                .where(Order.order_status == order_status)
                .where(Order.notification_status == status_value)
                .order_by(Order.order_date.asc(), Order.id.asc())
                .limit(limit)
            )
            return [OrderRecord.model_validate(row) for row in session.scalars(stmt)]

        return self._read(f"find {status_value} orders", _find, [], strict)

    def claim_for_dispatch(self, order_id: int, expected_status: NotificationStatus | str) -> bool:
        """
        expected_status → sending へ条件付きで更新する（compare-and-swap）。

        他の実行がすでに確保していれば False。
        """
        expected = _status_value(expected_status)

        def _claim(session: Session) -> bool:
            result = session.execute(
                update(Order)
                .where(Order.id == order_id)
                .where(Order.notification_status == expected)
                .values(notification_status=NotificationStatus.SENDING.value)
            )
            return result.rowcount == 1

        return self._write(f"claim order id={order_id}", _claim)

    def release_stale_claims(self, older_than: datetime) -> int:
        """
        older_than より前に確保されたまま sending に残っている注文を failed に戻す。

        送信済みかどうかは判別できないので、再送は retry_failed に任せる。
        :return: 戻した件数
        """
        cutoff = older_than.astimezone(timezone.utc) if older_than.tzinfo else older_than

        def _release(session: Session) -> int:
            result = session.execute(
                update(Order)
                .where(Order.notification_status == NotificationStatus.SENDING.value)
                .where(Order.updated_at < cutoff)
                .values(
                    notification_status=NotificationStatus.FAILED.value,
                    notification_error=STALE_CLAIM_ERROR,
                )
            )
            return result.rowcount

        released = self._write("release stale dispatch claims", _release)
        if released:
            logger.warning("Released %d stale dispatch claim(s) older than %s", released, cutoff.isoformat())
        return released

    def update_notification(
        self,
        order_id: int,
        status: NotificationStatus | str,
        sent_at: Optional[datetime] = None,
        error: Optional[str] = None,
    ) -> None:
        """
        通知ステータスとエラーを更新する。sent_at は指定時のみ上書きする。
        """
        values: dict[str, Any] = {
            "notification_status": _status_value(status),
            "notification_error": error,
        }
        if sent_at is not None:
            values["notification_sent_at"] = sent_at

        def _update(session: Session) -> None:
            result = session.execute(update(Order).where(Order.id == order_id).values(**values))
            if result.rowcount != 1:
                raise RepositoryError(f"Order id={order_id} not found")

        self._write(f"update notification for order id={order_id}", _update)

    def apply_external_status(self, kaspi_order_id: str, status: NotificationStatus | str) -> bool:
        def _apply(session: Session) -> bool:
            result = session.execute(
                update(Order)
                .where(Order.kaspi_order_id == kaspi_order_id)
                .values(notification_status=_status_value(status))
            )
            return result.rowcount == 1

        return self._write(f"apply external status to {kaspi_order_id}", _apply)

    # ------------------------------------------------------------------
    # 統計
    # ------------------------------------------------------------------
    def count_by_notification_status(self, status: NotificationStatus | str, *, strict: bool = False) -> int:
        status_value = _status_value(status)

        def _count(session: Session) -> int:
            stmt = select(func.count(Order.id)).where(Order.notification_status == status_value)
            return int(session.scalar(stmt) or 0)

        return self._read(f"count {status_value} orders", _count, 0, strict)

    def count_all(self, *, strict: bool = False) -> int:
        def _count(session: Session) -> int:
            return int(session.scalar(select(func.count(Order.id))) or 0)

        return self._read("count orders", _count, 0, strict)

    def count_sent_since(self, since: datetime, *, strict: bool = False) -> int:
        def _count(session: Session) -> int:
            stmt = select(func.count(Order.id)).where(Order.notification_sent_at >= since)
            return int(session.scalar(stmt) or 0)

        return self._read("count recent notifications", _count, 0, strict)

    def find_sent_since(self, since: datetime, *, strict: bool = False) -> List[Tuple[datetime, str]]:
        """
        since 以降に送信された注文の (送信日時, 通知ステータス) を返す。
        """

        def _find(session: Session) -> List[Tuple[datetime, str]]:
            stmt = select(Order.notification_sent_at, Order.notification_status).where(
                Order.notification_sent_at >= since
            )
            return [(sent_at, status) for sent_at, status in session.execute(stmt) if sent_at]

        return self._read("find recent notifications", _find, [], strict)

    def find_recent_failed(self, limit: int = 10, *, strict: bool = False) -> List[OrderRecord]:
        def _find(session: Session) -> List[OrderRecord]:
            stmt = (
                select(Order)
                .where(Order.notification_status == NotificationStatus.FAILED.value)
                .order_by(Order.updated_at.desc(), Order.id.desc())
                .limit(limit)
            )
            return [OrderRecord.model_validate(row) for row in session.scalars(stmt)]

        return self._read("find failed orders", _find, [], strict)
