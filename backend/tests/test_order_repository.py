# backend/tests/test_order_repository.py

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError

from kaspi_review.orders.repository import STALE_CLAIM_ERROR, OrderRepository, RepositoryError
from kaspi_review.orders.schemas import NotificationStatus


def test_insert_is_idempotent(order_repository, make_order):
    assert order_repository.insert(make_order("1-A")) is True
    assert order_repository.insert(make_order("1-A")) is False

    stored = order_repository.find_by_external_id("1-A")
    assert stored.notification_status == NotificationStatus.PENDING
    assert stored.order_items[0].code == "100200300"
    assert stored.customer_first_name == "Айгерим"
    assert order_repository.exists_by_external_id("1-A")
    assert not order_repository.exists_by_external_id("missing")


def test_pending_orders_are_returned_oldest_first(order_repository, make_order):
    base = datetime(2024, 5, 1, tzinfo=timezone.utc)
    order_repository.insert(make_order("late", order_date=base + timedelta(days=2)))
    order_repository.insert(make_order("early", order_date=base))
    order_repository.insert(make_order("middle", order_date=base + timedelta(days=1)))

    pending = order_repository.find_pending_for_notification(2)

    assert [order.kaspi_order_id for order in pending] == ["early", "middle"]


def test_claim_is_compare_and_swap(order_repository, make_order):
    order_repository.insert(make_order("1-A"))
    order = order_repository.find_by_external_id("1-A")

    assert order_repository.claim_for_dispatch(order.id, NotificationStatus.PENDING) is True
    assert order_repository.claim_for_dispatch(order.id, NotificationStatus.PENDING) is False
    assert order_repository.find_by_id(order.id).notification_status == NotificationStatus.SENDING


def test_release_stale_claims_moves_old_sending_orders_to_failed(order_repository, make_order):
    order_repository.insert(make_order("1-A"))
    order_repository.insert(make_order("2-B"))
    claimed = order_repository.find_by_external_id("1-A")
    order_repository.claim_for_dispatch(claimed.id, NotificationStatus.PENDING)

    assert order_repository.release_stale_claims(datetime(2000, 1, 1, tzinfo=timezone.utc)) == 0
    assert order_repository.find_by_id(claimed.id).notification_status == NotificationStatus.SENDING

    released = order_repository.release_stale_claims(datetime.now(timezone.utc) + timedelta(hours=1))

    assert released == 1
    stored = order_repository.find_by_id(claimed.id)
    assert stored.notification_status == NotificationStatus.FAILED
    assert stored.notification_error == STALE_CLAIM_ERROR
    assert order_repository.find_by_external_id("2-B").notification_status == NotificationStatus.PENDING


def test_update_notification_keeps_sent_at_unless_given(order_repository, make_order):
    order_repository.insert(make_order("1-A"))
    order = order_repository.find_by_external_id("1-A")
    sent_at = datetime(2024, 5, 2, 12, 0, tzinfo=timezone.utc)

    order_repository.update_notification(order.id, NotificationStatus.SENT, sent_at=sent_at)
    order_repository.update_notification(order.id, NotificationStatus.FAILED, error="rejected")

    stored = order_repository.find_by_id(order.id)
    assert stored.notification_status == NotificationStatus.FAILED
    assert stored.notification_error == "rejected"
    assert stored.notification_sent_at.replace(tzinfo=timezone.utc) == sent_at


def test_update_notification_unknown_order_raises(order_repository):
    with pytest.raises(RepositoryError):
        order_repository.update_notification(999, NotificationStatus.SENT)


def test_apply_external_status(order_repository, make_order):
    order_repository.insert(make_order("1-A"))

    assert order_repository.apply_external_status("1-A", NotificationStatus.READ) is True
    assert order_repository.apply_external_status("missing", NotificationStatus.READ) is False
    assert order_repository.count_by_notification_status(NotificationStatus.READ) == 1


def test_update_fields_rejects_notification_fields(order_repository, make_order):
    order_repository.insert(make_order("1-A"))
    order = order_repository.find_by_external_id("1-A")

    with pytest.raises(ValueError):
        order_repository.update_fields(order.id, notification_status="sent")

    assert order_repository.update_fields(order.id, customer_name="Иван Петров") is True
    assert order_repository.find_by_id(order.id).customer_name == "Иван Петров"


class _BrokenSessionFactory:
    def __call__(self):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))


def test_reads_degrade_unless_strict():
    repository = OrderRepository(_BrokenSessionFactory())

    assert repository.find_pending_for_notification(10) == []
    assert repository.count_all() == 0
    assert repository.find_by_external_id("1-A") is None

    with pytest.raises(RepositoryError):
        repository.find_pending_for_notification(10, strict=True)


def test_writes_raise_repository_error(make_order):
    repository = OrderRepository(_BrokenSessionFactory())

    with pytest.raises(RepositoryError):
        repository.insert(make_order("1-A"))
    with pytest.raises(RepositoryError):
        repository.claim_for_dispatch(1, NotificationStatus.PENDING)
