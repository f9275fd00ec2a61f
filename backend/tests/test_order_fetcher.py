# backend/tests/test_order_fetcher.py

from datetime import datetime, timedelta, timezone

from kaspi_review.kaspi.client import KaspiConnectionError
from kaspi_review.kaspi.config import KaspiSettings
from kaspi_review.kaspi.fetcher import OrderFetcher

START = datetime(2024, 3, 1, tzinfo=timezone.utc)


class _DummyKaspiClient:
    """list_orders の呼び出しを記録し、用意したページを返すダミー。"""

    def __init__(self, pages_by_window=None, failing_windows=()):
        self.settings = KaspiSettings(api_key="dummy", page_size=2, request_delay_seconds=1.5)
        self.pages_by_window = pages_by_window or {}
        self.failing_windows = set(failing_windows)
        self.calls = []
        self._window_index = {}

    def list_orders(self, *, created_from_ms, created_to_ms, status, page_number, page_size):
        window = self._window_index.setdefault(created_from_ms, len(self._window_index))
        self.calls.append((window, page_number, status))
        if window in self.failing_windows:
            raise KaspiConnectionError("timeout")
        pages = self.pages_by_window.get(window, [[]])
        records = pages[page_number] if page_number < len(pages) else []
        orders = [record for record in records if isinstance(record, dict)]
        return {"orders": orders, "page_count": None, "raw_count": len(records)}


def _orders(*ids):
    return [{"id": order_id} for order_id in ids]


def test_paginates_until_short_page():
    client = _DummyKaspiClient({0: [_orders("a", "b"), _orders("c", "d"), _orders("e")]})
    fetcher = OrderFetcher(client, sleep=lambda _: None)

    orders = fetcher.fetch_orders(START, START + timedelta(days=1))

    assert [order["id"] for order in orders] == ["a", "b", "c", "d", "e"]
    assert [call[1] for call in client.calls] == [0, 1, 2]
    assert all(call[2] == "COMPLETED" for call in client.calls)


def test_full_page_with_bad_record_keeps_paginating():
    client = _DummyKaspiClient({0: [["garbage", {"id": "b"}], _orders("c", "d"), _orders("e")]})
    fetcher = OrderFetcher(client, sleep=lambda _: None)

    orders = fetcher.fetch_orders(START, START + timedelta(days=1))

    assert [order["id"] for order in orders] == ["b", "c", "d", "e"]
    assert [call[1] for call in client.calls] == [0, 1, 2]


def test_window_failure_does_not_stop_other_windows():
    client = _DummyKaspiClient(
        {0: [_orders("a")], 2: [_orders("c")]},
        failing_windows={1},
    )
    fetcher = OrderFetcher(client, sleep=lambda _: None)

    orders = fetcher.fetch_orders(START, START + timedelta(days=30))

    assert [order["id"] for order in orders] == ["a", "c"]
    assert sorted({call[0] for call in client.calls}) == [0, 1, 2]


def test_sleeps_between_windows_only():
    sleeps = []
    client = _DummyKaspiClient()
    fetcher = OrderFetcher(client, sleep=sleeps.append)

    fetcher.fetch_orders(START, START + timedelta(days=30))

    assert sleeps == [1.5, 1.5]


def test_invalid_range_returns_empty_without_calls():
    client = _DummyKaspiClient()
    fetcher = OrderFetcher(client, sleep=lambda _: None)

    assert fetcher.fetch_orders(START, START) == []
    assert client.calls == []


def test_status_override():
    client = _DummyKaspiClient()
    fetcher = OrderFetcher(client, sleep=lambda _: None)

    fetcher.fetch_orders(START, START + timedelta(hours=1), status="DELIVERED")

    assert client.calls[0][2] == "DELIVERED"
