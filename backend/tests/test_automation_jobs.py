# backend/tests/test_automation_jobs.py
from datetime import datetime, timedelta, timezone

from kaspi_review.automation.jobs import run_dispatch_job, run_ingestion_job, run_retry_job
from kaspi_review.kaspi.schemas import IngestionSummary


class DummyIngestionService:
    def __init__(self) -> None:
        self.calls = []

    def fetch_and_ingest(self, start, end):
        self.calls.append((start, end))
        return IngestionSummary(fetched=1, processed=1)


class DummyDispatcher:
    def __init__(self) -> None:
        self.batches = []
        self.retries = []

    def dispatch_batch(self, limit):
        self.batches.append(limit)
        return []

    def retry_failed(self, limit):
        self.retries.append(limit)
        return []


def _utc(year: int, month: int, day: int) -> datetime:
    return datetime(year, month, day, tzinfo=timezone.utc)


def test_run_ingestion_job_uses_lookback_window() -> None:
    service = DummyIngestionService()
    now = _utc(2025, 1, 2)

    summary = run_ingestion_job(service=service, lookback_hours=48, now=now)

    assert summary.processed == 1
    assert service.calls == [(now - timedelta(hours=48), now)]


def test_run_ingestion_job_treats_naive_now_as_utc() -> None:
    service = DummyIngestionService()

    run_ingestion_job(service=service, now=datetime(2025, 1, 2))

    start, end = service.calls[0]
    assert end.tzinfo is timezone.utc
    assert end - start == timedelta(hours=24)


def test_run_dispatch_and_retry_jobs_use_default_limit() -> None:
    dispatcher = DummyDispatcher()

    run_dispatch_job(dispatcher=dispatcher)
    run_retry_job(dispatcher=dispatcher, limit=5)

    assert dispatcher.batches == [20]
    assert dispatcher.retries == [5]
