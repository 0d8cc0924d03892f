"""
Tests for ACME account bootstrap and reuse (renewal/account.py).
"""
from __future__ import annotations

import base64
import json
import logging

import pytest
import responses as resp_lib

from acmekit.client import AccountNotReadyError, AcmeClient
from renewal.account import ensure_account
from storage import filesystem as fs

DIRECTORY_URL = "https://acme.test/directory"

FAKE_DIRECTORY = {
    "newNonce": "https://acme.test/newNonce",
    "newAccount": "https://acme.test/newAccount",
    "newOrder": "https://acme.test/newOrder",
}


def _decode(b64: str) -> dict:
    return json.loads(base64.urlsafe_b64decode(b64 + "=" * (-len(b64) % 4)))


def _factory(account):
    return AcmeClient(account)


def _mock_directory_and_nonce():
    resp_lib.add(resp_lib.GET, DIRECTORY_URL, json=FAKE_DIRECTORY)
    resp_lib.add(resp_lib.HEAD, FAKE_DIRECTORY["newNonce"], headers={"Replay-Nonce": "n1"})


@resp_lib.activate
def test_creates_and_persists_account(tmp_path):
    _mock_directory_and_nonce()
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["newAccount"],
        json={"status": "valid"},
        status=201,
        headers={"Location": "https://acme.test/acct/7", "Replay-Nonce": "n2"},
    )
    path = fs.account_path(str(tmp_path))

    account = ensure_account(str(path), "ops@example.com", DIRECTORY_URL, client_factory=_factory)

    assert account["account_url"] == "https://acme.test/acct/7"
    assert account["account_key"] is not None
    assert path.exists()
    assert fs.read_account_state(path)["account_url"] == "https://acme.test/acct/7"


@resp_lib.activate
def test_second_call_reuses_account_without_registering(tmp_path):
    _mock_directory_and_nonce()
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["newAccount"],
        json={"status": "valid"},
        status=201,
        headers={"Location": "https://acme.test/acct/1", "Replay-Nonce": "n2"},
    )
    path = fs.account_path(str(tmp_path))

    first = ensure_account(str(path), "ops@example.com", DIRECTORY_URL, client_factory=_factory)
    calls_after_bootstrap = len(resp_lib.calls)
    before = path.read_bytes()
    second = ensure_account(str(path), "ops@example.com", DIRECTORY_URL, client_factory=_factory)

    registrations = [c for c in resp_lib.calls if c.request.url == FAKE_DIRECTORY["newAccount"]]
    assert len(registrations) == 1
    assert len(resp_lib.calls) == calls_after_bootstrap
    assert second["account_url"] == first["account_url"]
    assert path.read_bytes() == before


@resp_lib.activate
def test_reloaded_account_fetches_fresh_nonce_before_first_request(tmp_path):
    _mock_directory_and_nonce()
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["newAccount"],
        json={"status": "valid"},
        status=201,
        headers={"Location": "https://acme.test/acct/1", "Replay-Nonce": "used-at-bootstrap"},
    )
    path = fs.account_path(str(tmp_path))
    ensure_account(str(path), "ops@example.com", DIRECTORY_URL, client_factory=_factory)

    assert "used-at-bootstrap" not in path.read_text()

    # Next run: same file, new process
    account = ensure_account(str(path), "ops@example.com", DIRECTORY_URL, client_factory=_factory)
    assert account["nonce"] is None

    resp_lib.replace(resp_lib.HEAD, FAKE_DIRECTORY["newNonce"], headers={"Replay-Nonce": "fresh"})
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["newOrder"],
        json={"status": "pending", "authorizations": [], "finalize": "https://acme.test/finalize/1"},
        status=201,
        headers={"Location": "https://acme.test/order/1", "Replay-Nonce": "n3"},
    )
    start = len(resp_lib.calls)
    AcmeClient(account).create_order("www.example.com")

    run_calls = [(c.request.method, c.request.url) for c in resp_lib.calls[start:]]
    assert run_calls[-2:] == [("HEAD", FAKE_DIRECTORY["newNonce"]), ("POST", FAKE_DIRECTORY["newOrder"])]
    posted = json.loads(resp_lib.calls[-1].request.body)
    assert _decode(posted["protected"])["nonce"] == "fresh"


@resp_lib.activate
def test_registration_failure_is_logged_and_not_persisted(tmp_path, caplog):
    _mock_directory_and_nonce()
    resp_lib.add(
        resp_lib.POST,
        FAKE_DIRECTORY["newAccount"],
        json={"type": "urn:ietf:params:acme:error:invalidContact", "detail": "bad email"},
        status=400,
        headers={"Replay-Nonce": "n2"},
    )
    path = fs.account_path(str(tmp_path))

    with caplog.at_level(logging.INFO, logger="renewal.account"):
        account = ensure_account(str(path), "not-an-email", DIRECTORY_URL, client_factory=_factory)

    assert not path.exists()
    assert account["account_url"] is None
    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert warnings and "invalidContact" in warnings[0].getMessage()
    assert caplog.records[-1].getMessage() == "ACME account setup finished"

    # Every later signed request fails per domain instead of crashing the run
    with pytest.raises(AccountNotReadyError):
        AcmeClient(account).create_order("www.example.com")


@resp_lib.activate
def test_unreachable_directory_is_logged(tmp_path, caplog):
    resp_lib.add(resp_lib.GET, DIRECTORY_URL, status=503)
    path = fs.account_path(str(tmp_path))

    with caplog.at_level(logging.WARNING, logger="renewal.account"):
        account = ensure_account(str(path), "ops@example.com", DIRECTORY_URL, client_factory=_factory)

    assert account["account_key"] is None
    assert not path.exists()
    assert any("bootstrap failed" in r.getMessage() for r in caplog.records)


@resp_lib.activate
def test_incomplete_directory_is_logged(tmp_path, caplog):
    resp_lib.add(resp_lib.GET, DIRECTORY_URL, json={"meta": {}})
    path = fs.account_path(str(tmp_path))

    with caplog.at_level(logging.WARNING, logger="renewal.account"):
        account = ensure_account(str(path), "ops@example.com", DIRECTORY_URL, client_factory=_factory)

    assert account["account_url"] is None
    assert not path.exists()
    assert any("newNonce" in r.getMessage() for r in caplog.records)
