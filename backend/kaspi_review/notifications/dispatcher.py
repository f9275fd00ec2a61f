# backend/kaspi_review/notifications/dispatcher.py

"""
レビュー依頼メッセージの送信処理。

注文 1 件ごとの状態遷移:
    pending --(claim)--> sending --> sent | failed | pending（未到達なら差し戻し）

- 送信前に compare-and-swap で注文を確保し、二重送信を防ぐ
- 許可リストに無い番号には送らない（判定できない場合も送らない）
- 1 件の失敗でバッチ全体は止めない
- 一定時間 sending のまま残った注文はバッチ開始時に failed へ戻す
"""

from __future__ import annotations

import logging
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from kaspi_review.orders.allowed_phones import AllowedPhoneRepository
from kaspi_review.orders.repository import OrderRepository, RepositoryError
from kaspi_review.orders.schemas import NotificationStatus, OrderRecord

from .gateway import GatewayUnavailableError, MessagingGateway, MessagingGatewayError, SendResult
from .review_link import derive_order_code, generate_review_link
from .schemas import DispatchOutcome, DispatchResult
from .templates import DEFAULT_CUSTOMER_NAME, MessageTemplates

logger = logging.getLogger(__name__)

DEFAULT_SEND_DELAY_SECONDS = 2.0
DEFAULT_TEMPLATE_NAME = "review_request"
DEFAULT_CLAIM_TIMEOUT_SECONDS = 900.0

_EXTERNAL_STATUSES = {
    NotificationStatus.DELIVERED,
    NotificationStatus.READ,
    NotificationStatus.FAILED,
}


class PhoneNotAllowedError(ValueError):
    """送信先が許可リストに登録されていない。"""


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class NotificationDispatcher:
    """
    保存済みの注文にレビュー依頼を送るサービス。

    ゲートウェイ（WhatsApp Cloud API / ログ出力）は MessagingGateway として注入する。
    """

    def __init__(
        self,
        repository: OrderRepository,
        allowed_phones: AllowedPhoneRepository,
        gateway: MessagingGateway,
        templates: Optional[MessageTemplates] = None,
        *,
        template_name: str = DEFAULT_TEMPLATE_NAME,
        template_language: Optional[str] = None,
        send_delay_seconds: float = DEFAULT_SEND_DELAY_SECONDS,
        claim_timeout_seconds: float = DEFAULT_CLAIM_TIMEOUT_SECONDS,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._allowed_phones = allowed_phones
        self._gateway = gateway
        self._templates = templates or MessageTemplates()
        self._template_name = template_name
        self._template_language = template_language
        self._send_delay_seconds = send_delay_seconds
        self._claim_timeout_seconds = claim_timeout_seconds
        self._sleep = sleep
        self._clock = clock

    @property
    def gateway(self) -> MessagingGateway:
        return self._gateway

    # ------------------------------------------------------------------
    # バッチ
    # ------------------------------------------------------------------
    def dispatch_batch(self, limit: int) -> List[DispatchResult]:
        """
        未送信の注文を古い順に最大 limit 件送信する。

        :raises RepositoryError: 対象注文の検索自体に失敗した場合
        """
        return self._run_batch(limit, NotificationStatus.PENDING)

    def retry_failed(self, limit: int) -> List[DispatchResult]:
        """
        送信に失敗した注文を再送する。戻り値の形は dispatch_batch と同じ。
        """
        return self._run_batch(limit, NotificationStatus.FAILED)

    def _run_batch(self, limit: int, status: NotificationStatus) -> List[DispatchResult]:
        self.release_stale_claims()
        orders = self._repository.find_pending_for_notification(
            limit,
            notification_status=status,
            strict=True,
        )
        if not orders:
            logger.info("No %s orders to notify", status.value)
            return []

        logger.info("Dispatching review requests for %d %s orders", len(orders), status.value)
        results: List[DispatchResult] = []
        for index, order in enumerate(orders):
            if index > 0 and self._send_delay_seconds > 0:
                self._sleep(self._send_delay_seconds)
            results.append(self.dispatch_order(order, expected_status=status))

        sent = sum(1 for result in results if result.outcome == DispatchOutcome.SENT)
        logger.info("Dispatch finished: %d of %d sent", sent, len(results))
        return results

    def release_stale_claims(self) -> int:
        """
        claim_timeout_seconds を過ぎても sending のままの注文を failed に戻す。

        送信途中でプロセスが落ちた場合などに取り残された注文を retry_failed の対象にする。
        """
        older_than = self._clock() - timedelta(seconds=self._claim_timeout_seconds)
        try:
            return self._repository.release_stale_claims(older_than)
        except RepositoryError:
            logger.exception("Failed to release stale dispatch claims")
            return 0

    # ------------------------------------------------------------------
    # 1 件分
    # ------------------------------------------------------------------
    def dispatch_order(
        self,
        order: OrderRecord,
        *,
        expected_status: NotificationStatus = NotificationStatus.PENDING,
    ) -> DispatchResult:
        """
        注文 1 件にレビュー依頼を送り、結果を保存する。例外は投げない。
        """
        try:
            claimed = self._repository.claim_for_dispatch(order.id, expected_status)
        except RepositoryError as exc:
            logger.error("Could not claim order %s: %s", order.kaspi_order_id, exc)
            return self._result(order, DispatchOutcome.PENDING_RETRY, error=str(exc))

        if not claimed:
            logger.info("Order %s is handled by another run; skipping", order.kaspi_order_id)
            return self._result(order, DispatchOutcome.SKIPPED)

        if not self._allowed_phones.is_allowed(order.customer_phone):
            return self._fail(
                order,
                f"Phone number {order.customer_phone} is not in the allowed list",
            )

        first_item = order.first_item
        if first_item is None:
            return self._fail(order, "Order has no items to review")

        review_link = generate_review_link(first_item.code, derive_order_code(order.kaspi_order_id))

        try:
            self._send(order, review_link)
        except GatewayUnavailableError as exc:
            logger.warning("Gateway unreachable for order %s: %s", order.kaspi_order_id, exc)
            self._save(order, expected_status, error=str(exc))
            return self._result(order, DispatchOutcome.PENDING_RETRY, error=str(exc))
        except MessagingGatewayError as exc:
            return self._fail(order, str(exc))
        except Exception as exc:  # noqa: BLE001 - 1件の失敗でバッチを止めない
            logger.exception("Unexpected error while sending to order %s", order.kaspi_order_id)
            return self._fail(order, str(exc) or exc.__class__.__name__)

        try:
            self._repository.update_notification(
                order.id,
                NotificationStatus.SENT,
                sent_at=self._clock(),
                error=None,
            )
        except RepositoryError as exc:
            logger.error(
                "Review request for order %s was sent but its status was not saved: %s",
                order.kaspi_order_id,
                exc,
            )
            return self._result(
                order,
                DispatchOutcome.FAILED,
                error=f"Message sent but status update failed: {exc}",
            )

        logger.info("Review request sent for order %s", order.kaspi_order_id)
        return self._result(order, DispatchOutcome.SENT)

    def _send(self, order: OrderRecord, review_link: str) -> SendResult:
        if self._gateway.supports_templates:
            first_item = order.first_item
            parameters = [
                order.customer_first_name or DEFAULT_CUSTOMER_NAME,
                first_item.name if first_item else "",
                self._templates.company_name,
                review_link,
            ]
            try:
                return self._gateway.send_template(
                    order.customer_phone,
                    self._template_name,
                    parameters,
                    self._template_language,
                )
            except GatewayUnavailableError:
                raise
            except MessagingGatewayError as exc:
                logger.warning(
                    "Template send failed for order %s, falling back to text: %s",
                    order.kaspi_order_id,
                    exc,
                )

        body = self._templates.review_request_message(order, review_link)
        return self._gateway.send_text(order.customer_phone, body)

    def _fail(self, order: OrderRecord, error: str) -> DispatchResult:
        logger.warning("Review request for order %s failed: %s", order.kaspi_order_id, error)
        self._save(order, NotificationStatus.FAILED, error=error)
        return self._result(order, DispatchOutcome.FAILED, error=error)

    def _save(self, order: OrderRecord, status: NotificationStatus, *, error: Optional[str]) -> None:
        try:
            self._repository.update_notification(order.id, status, error=error)
        except RepositoryError:
            logger.exception("Failed to save notification status for order %s", order.kaspi_order_id)

    @staticmethod
    def _result(
        order: OrderRecord,
        outcome: DispatchOutcome,
        *,
        error: Optional[str] = None,
    ) -> DispatchResult:
        return DispatchResult(
            order_id=order.kaspi_order_id,
            outcome=outcome,
            error=error,
            recipient=order.customer_phone,
        )

    # ------------------------------------------------------------------
    # その他
    # ------------------------------------------------------------------
    def apply_external_status(self, kaspi_order_id: str, status: NotificationStatus | str) -> bool:
        """
        外部から通知された配信状態（delivered / read / failed）を反映する。

        :raises ValueError: 受け付けない状態が渡された場合
        """
        status = NotificationStatus(status)
        if status not in _EXTERNAL_STATUSES:
            raise ValueError(f"Unsupported external notification status: {status.value}")

        updated = self._repository.apply_external_status(kaspi_order_id, status)
        if not updated:
            logger.warning("External status %s for unknown order %s", status.value, kaspi_order_id)
        return updated

    def send_test_message(self, phone: str) -> SendResult:
        """
        許可リスト登録済みの番号にテストメッセージを送る。

        :raises PhoneNotAllowedError: 許可リストに無い番号の場合
        :raises MessagingGatewayError: 送信に失敗した場合
        """
        if not self._allowed_phones.is_allowed(phone):
            raise PhoneNotAllowedError(f"Phone number {phone} is not in the allowed list")
        return self._gateway.send_text(phone, self._templates.test_message(self._clock()))
