# backend/tests/conftest.py
"""
Pytest configuration for the Kaspi review backend tests.

- Ensures that the project root (backend/) is added to sys.path
  so that `import kaspi_review.*` works correctly in tests.
- Ensures required environment variables for tests are set
  with safe dummy values (KASPI_API_KEY, WHATSAPP_*, DATABASE_URL).
- Provides an in-memory SQLite session factory and repositories.
"""

import os
import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest


def _ensure_project_root_in_sys_path() -> None:
    # This file is located at: backend/tests/conftest.py
    # parents[1] -> backend/
    project_root = Path(__file__).resolve().parents[1]
    project_root_str = str(project_root)

    if project_root_str not in sys.path:
        sys.path.insert(0, project_root_str)


def _ensure_test_env_vars() -> None:
    """
    Set dummy environment variables required for tests.

    These values are only for local testing and do NOT contain real secrets.
    """
    os.environ.setdefault("KASPI_API_KEY", "dummy-kaspi-api-key-for-tests")
    os.environ.setdefault("WHATSAPP_PHONE_NUMBER_ID", "dummy-phone-number-id")
    os.environ.setdefault("WHATSAPP_ACCESS_TOKEN", "dummy-whatsapp-token")
    os.environ.setdefault("MESSAGING_GATEWAY", "logging")
    os.environ.setdefault("DATABASE_URL", "sqlite://")
    os.environ.setdefault("COMPANY_NAME", "Test Shop")


_ensure_project_root_in_sys_path()
_ensure_test_env_vars()


from kaspi_review.orders.allowed_phones import AllowedPhoneRepository  # noqa: E402
from kaspi_review.orders.db import create_db_engine, init_db  # noqa: E402
from kaspi_review.orders.repository import OrderRepository  # noqa: E402
from kaspi_review.orders.schemas import OrderCreate, OrderItem  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402


@pytest.fixture
def session_factory():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    factory = sessionmaker(bind=engine, expire_on_commit=False)
    yield factory
    engine.dispose()


@pytest.fixture
def order_repository(session_factory):
    return OrderRepository(session_factory)


@pytest.fixture
def allowed_phones(session_factory):
    return AllowedPhoneRepository(session_factory)


def _build_order(
    kaspi_order_id: str = "1001-A",
    *,
    phone: str = "77011234567",
    name: str = "Айгерим Серикова",
    order_date: datetime = datetime(2024, 5, 1, 10, 0, tzinfo=timezone.utc),
    items=None,
) -> OrderCreate:
    if items is None:
        items = [
            OrderItem(
                entry_id="e-1",
                product_id="p-1",
                name="Смартфон X",
                code="100200300",
                quantity=1,
                unit_price=1000.0,
                total_price=1000.0,
            )
        ]
    return OrderCreate(
        kaspi_order_id=kaspi_order_id,
        order_date=order_date,
        customer_phone=phone,
        customer_name=name,
        order_amount=1000.0,
        order_items=items,
    )


@pytest.fixture
def make_order():
    """OrderCreate を組み立てるファクトリ（明細 1 行, 許可リスト前提の電話番号）。"""
    return _build_order
