# backend/tests/test_scheduler.py

import threading
from datetime import datetime, timedelta, timezone

import pytest

from kaspi_review.automation.config import SchedulerSettings
from kaspi_review.automation.scheduler import NotificationScheduler, PeriodicTrigger
from kaspi_review.automation.state import SchedulerState, is_valid_window
from kaspi_review.notifications.schemas import DispatchOutcome, DispatchResult


class _StubDispatcher:
    def __init__(self):
        self.batches = []
        self.retries = []

    def dispatch_batch(self, limit):
        self.batches.append(limit)
        return [DispatchResult(order_id="1-A", outcome=DispatchOutcome.SENT)]

    def retry_failed(self, limit):
        self.retries.append(limit)
        return []


class _StubIngestionService:
    def __init__(self):
        self.calls = []

    def fetch_and_ingest(self, start, end):
        self.calls.append((start, end))
        return None


def _scheduler(**overrides):
    settings = SchedulerSettings(
        timezone=overrides.pop("timezone", None),
        dispatch_batch_limit=20,
        ingestion_lookback_hours=24,
        ingestion_interval_seconds=overrides.pop("ingestion_interval_seconds", 3600),
        dispatch_interval_seconds=overrides.pop("dispatch_interval_seconds", 900),
    )
    dispatcher = _StubDispatcher()
    ingestion = _StubIngestionService()
    scheduler = NotificationScheduler(
        ingestion_service=ingestion,
        dispatcher=dispatcher,
        settings=settings,
        **overrides,
    )
    return scheduler, dispatcher, ingestion


def _utc(hour: int) -> datetime:
    return datetime(2024, 5, 1, hour, 30, tzinfo=timezone.utc)


def test_invalid_window_update_keeps_previous_window():
    scheduler, _, _ = _scheduler()

    assert scheduler.set_dispatch_window(9, 21) is True
    assert scheduler.set_dispatch_window(22, 20) is False

    status = scheduler.status()
    assert (status.start_hour, status.end_hour) == (9, 21)


@pytest.mark.parametrize(
    "start, end, valid",
    [
        (0, 23, True),
        (9, 21, True),
        (10, 10, False),
        (-1, 5, False),
        (5, 24, False),
        (True, 5, False),
        ("9", 21, False),
        (9.0, 21, False),
    ],
)
def test_is_valid_window(start, end, valid):
    assert is_valid_window(start, end) is valid


def test_dispatch_outside_window_is_noop():
    scheduler, dispatcher, _ = _scheduler()

    assert scheduler.send_review_requests(now=_utc(22)) == []
    assert scheduler.send_review_requests(now=_utc(8)) == []
    assert dispatcher.batches == []


def test_dispatch_inside_window_uses_batch_limit():
    scheduler, dispatcher, _ = _scheduler()

    results = scheduler.send_review_requests(now=_utc(10))

    assert [result.outcome for result in results] == [DispatchOutcome.SENT]
    assert dispatcher.batches == [20]
    assert scheduler.status().last_dispatch_at is not None


def test_window_is_evaluated_in_configured_timezone():
    scheduler, dispatcher, _ = _scheduler(timezone="Asia/Almaty")

    # 02:30 UTC is 07:30 or 08:30 in Almaty depending on the tz database version
    assert scheduler.send_review_requests(now=_utc(2)) == []
    # 05:30 UTC is 10:30 or 11:30 in Almaty
    scheduler.send_review_requests(now=_utc(5))

    assert dispatcher.batches == [20]


def test_manual_dispatch_bypasses_window():
    scheduler, dispatcher, _ = _scheduler()
    scheduler.set_dispatch_window(9, 10)

    scheduler.trigger_manual_dispatch(5)

    assert dispatcher.batches == [5]


@pytest.mark.parametrize("limit", [0, 51])
def test_manual_dispatch_limit_is_bounded(limit):
    scheduler, _, _ = _scheduler()

    with pytest.raises(ValueError):
        scheduler.trigger_manual_dispatch(limit)


def test_check_new_orders_uses_lookback():
    scheduler, _, ingestion = _scheduler()
    now = _utc(12)

    scheduler.check_new_orders(now=now)

    assert ingestion.calls == [(now - timedelta(hours=24), now)]
    assert scheduler.status().last_ingestion_at is not None


def test_failed_job_is_recorded_in_status():
    scheduler, dispatcher, _ = _scheduler()

    def broken(limit):
        raise RuntimeError("db down")

    dispatcher.dispatch_batch = broken

    with pytest.raises(RuntimeError):
        scheduler.trigger_manual_dispatch(1)

    status = scheduler.status()
    assert status.last_error == "dispatch: db down"
    assert status.dispatch_running is False


def test_periodic_trigger_keeps_running_after_failure():
    calls = []
    done = threading.Event()

    def handler():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("first tick fails")
        done.set()

    trigger = PeriodicTrigger("test", 0.01, handler)
    trigger.start()
    try:
        assert done.wait(2.0)
    finally:
        trigger.stop()

    assert len(calls) >= 2
    assert not trigger.is_alive()


def test_start_and_stop():
    scheduler, _, _ = _scheduler(ingestion_interval_seconds=3600, dispatch_interval_seconds=3600)

    scheduler.start()
    scheduler.start()
    assert scheduler.status().running is True

    scheduler.stop()
    assert scheduler.is_running is False


def test_state_rejects_invalid_initial_window():
    with pytest.raises(ValueError):
        SchedulerState(21, 9)


def test_invalid_configured_window_falls_back_to_default():
    scheduler = NotificationScheduler(
        ingestion_service=_StubIngestionService(),
        dispatcher=_StubDispatcher(),
        settings=SchedulerSettings(dispatch_start_hour=22, dispatch_end_hour=3),
    )

    status = scheduler.status()
    assert (status.start_hour, status.end_hour) == (9, 21)
