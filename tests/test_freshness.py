"""
Tests for the renewal-threshold decision (renewal/freshness.py).
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from renewal.freshness import days_until_expiry, should_renew

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

DOMAIN = {"subdomain": "www", "zone": "example.com", "resource_group": "rg"}


def _stored(secret_store, days):
    secret_store.get_certificate.return_value = {"name": "www", "expiry": NOW + timedelta(days=days)}


def test_absent_certificate_renews(secret_store):
    assert should_renew(DOMAIN, secret_store, now=NOW) is True
    secret_store.get_certificate.assert_called_once_with("www")


@pytest.mark.parametrize(
    "days, expected",
    [
        (11, False),
        (10, True),
        (3, True),
        (-2, True),
        (60, False),
    ],
)
def test_threshold(secret_store, days, expected):
    _stored(secret_store, days)
    assert should_renew(DOMAIN, secret_store, now=NOW) is expected


def test_partial_day_rounds_down(secret_store):
    secret_store.get_certificate.return_value = {
        "name": "www",
        "expiry": NOW + timedelta(days=10, hours=23),
    }
    assert should_renew(DOMAIN, secret_store, now=NOW) is True


def test_nested_subdomain_uses_dashed_name(secret_store):
    domain = {"subdomain": "api.v2", "zone": "example.com", "resource_group": "rg"}
    should_renew(domain, secret_store, now=NOW)
    secret_store.get_certificate.assert_called_once_with("api-v2")


def test_naive_expiry_is_treated_as_utc():
    naive = datetime(2026, 3, 11, 12, 0)
    assert days_until_expiry(naive, now=NOW) == 10
