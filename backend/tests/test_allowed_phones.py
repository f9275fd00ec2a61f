# backend/tests/test_allowed_phones.py

import pytest
from sqlalchemy.exc import OperationalError

from kaspi_review.orders.allowed_phones import AllowedPhoneRepository, PhoneAlreadyAllowedError


def test_added_phone_is_allowed_in_any_format(allowed_phones):
    allowed_phones.add("+7 (701) 123-45-67", description="owner")

    assert allowed_phones.is_allowed("77011234567")
    assert allowed_phones.is_allowed("7-701-123-45-67")
    assert not allowed_phones.is_allowed("77019999999")
    assert not allowed_phones.is_allowed("")
    assert not allowed_phones.is_allowed(None)


def test_duplicate_active_phone_is_rejected(allowed_phones):
    allowed_phones.add("77011234567")

    with pytest.raises(PhoneAlreadyAllowedError):
        allowed_phones.add("+77011234567")


def test_deactivate_and_reactivate(allowed_phones):
    allowed_phones.add("77011234567")

    assert allowed_phones.deactivate("77011234567") is True
    assert not allowed_phones.is_allowed("77011234567")
    assert allowed_phones.deactivate("77011234567") is False

    record = allowed_phones.add("77011234567", description="back again")
    assert record.is_active
    assert [phone.phone_number for phone in allowed_phones.list_active()] == ["77011234567"]


def test_empty_phone_cannot_be_added(allowed_phones):
    with pytest.raises(ValueError):
        allowed_phones.add("  ")


def test_lookup_failure_denies():
    def broken_factory():
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    repository = AllowedPhoneRepository(broken_factory)

    assert repository.is_allowed("77011234567") is False
