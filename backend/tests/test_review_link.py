# backend/tests/test_review_link.py

from urllib.parse import parse_qs, urlparse

import pytest

from kaspi_review.notifications.review_link import (
    PLACEHOLDER_LINK,
    REVIEW_BASE_URL,
    derive_order_code,
    generate_review_link,
)


def _query(link: str) -> dict:
    return {key: values[0] for key, values in parse_qs(urlparse(link).query).items()}


def test_generate_review_link():
    link = generate_review_link("100200300", "123456")

    assert link.startswith(REVIEW_BASE_URL + "?")
    assert _query(link) == {"productCode": "100200300", "orderCode": "123456", "rating": "5"}


@pytest.mark.parametrize("rating, expected", [(0, "1"), (3, "3"), (9, "5"), ("4", "4"), ("bad", "5"), (None, "5")])
def test_rating_is_clamped(rating, expected):
    assert _query(generate_review_link("p", "o", rating))["rating"] == expected


def test_query_values_are_percent_encoded():
    link = generate_review_link("a b&c", "o/1")

    assert "a+b%26c" in link
    assert _query(link)["productCode"] == "a b&c"


@pytest.mark.parametrize("product_code, order_code", [("", "1"), ("1", ""), (None, "1"), ("1", None)])
def test_missing_codes_give_placeholder(product_code, order_code):
    assert generate_review_link(product_code, order_code) == PLACEHOLDER_LINK


@pytest.mark.parametrize(
    "order_id, expected",
    [("123456-7890", "123456"), ("123456", "123456"), ("1-2-3", "1"), ("", ""), (None, "")],
)
def test_derive_order_code(order_id, expected):
    assert derive_order_code(order_id) == expected
