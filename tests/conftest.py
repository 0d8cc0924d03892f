"""
Shared pytest fixtures.

ScriptedAcmeClient
------------------
Stands in for acmekit.client.AcmeClient in orchestrator and batch tests.  It
records every primitive call in order and lets a test script the order
status sequence, the poll on which the certificate URL appears, and which
primitive (or which identifier) fails.
"""
from __future__ import annotations

import datetime
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.x509.oid import NameOID

from acmekit import jws as jwslib
from acmekit.client import AcmeError
from providers.dns import DnsProvider
from providers.keyvault import SecretStore

DIRECTORY_URL = "https://acme.test/directory"

FAKE_NONCE = "testnonce12345"


# ─── Keys & certificates ──────────────────────────────────────────────────────

@pytest.fixture(scope="session")
def account_key():
    return jwslib.generate_account_key(key_size=2048)


@pytest.fixture()
def registered_account(account_key):
    return {
        "directory_url": DIRECTORY_URL,
        "account_key": account_key,
        "nonce": FAKE_NONCE,
        "account_url": "https://acme.test/acct/1",
    }


@pytest.fixture()
def issue_cert():
    """Factory: self-signed (or issuer-signed) certificate for *common_name*."""

    def _issue(key, common_name, days=90, issuer_key=None, issuer_name=None):
        now = datetime.datetime.now(datetime.timezone.utc)
        subject = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, common_name)])
        return (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer_name or subject)
            .public_key(key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + datetime.timedelta(days=days))
            .sign(issuer_key or key, hashes.SHA256())
        )

    return _issue


@pytest.fixture(scope="session")
def cert_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


# ─── Providers ────────────────────────────────────────────────────────────────

@pytest.fixture()
def dns():
    return MagicMock(spec=DnsProvider)


@pytest.fixture()
def secret_store():
    store = MagicMock(spec=SecretStore)
    store.get_certificate.return_value = None
    return store


# ─── Scripted ACME client ─────────────────────────────────────────────────────

class ScriptedAcmeClient:

    def __init__(
        self,
        validation_statuses=("ready",),
        certificate_after=1,
        fail_at=None,
        fail_identifiers=(),
    ):
        self.calls: list[str] = []
        self.validation_statuses = list(validation_statuses)
        self.certificate_after = certificate_after
        self.fail_at = fail_at
        self.fail_identifiers = set(fail_identifiers)
        self.validation_polls = 0
        self.certificate_polls = 0
        self.finalized = False
        self.downloads: list[tuple[str, str]] = []

    def _record(self, name, identifier=None):
        self.calls.append(name)
        if name == self.fail_at or (identifier in self.fail_identifiers and name == "create_order"):
            raise AcmeError(500, {"type": "serverInternal", "detail": f"{name} exploded"})

    def _order(self, identifier, status="pending", certificate_url=None):
        return {
            "url": f"https://acme.test/order/{identifier}",
            "identifier": identifier,
            "status": status,
            "authorizations": [f"https://acme.test/authz/{identifier}"],
            "finalize_url": f"https://acme.test/finalize/{identifier}",
            "certificate_url": certificate_url,
            "error": None,
        }

    def create_order(self, identifier):
        self._record("create_order", identifier)
        self.finalized = False
        self.validation_polls = 0
        self.certificate_polls = 0
        return self._order(identifier)

    def get_authorization(self, order):
        self._record("get_authorization")
        return {
            "url": order["authorizations"][0],
            "identifier": order["identifier"],
            "status": "pending",
            "challenges": [],
        }

    def get_challenge(self, authorization, challenge_type="dns-01"):
        self._record("get_challenge")
        return {
            "type": challenge_type,
            "url": "https://acme.test/chall/1",
            "token": "tok",
            "status": "pending",
            "key_authorization": "tok.thumb",
            "record_name": f"_acme-challenge.{authorization['identifier']}",
            "record_value": "txt-value",
        }

    def complete_challenge(self, challenge):
        self._record("complete_challenge")

    def refresh_order(self, order):
        self._record("refresh_order")
        if not self.finalized:
            self.validation_polls += 1
            index = min(self.validation_polls, len(self.validation_statuses)) - 1
            return self._order(order["identifier"], status=self.validation_statuses[index])

        self.certificate_polls += 1
        if self.certificate_polls >= self.certificate_after:
            return self._order(
                order["identifier"],
                status="valid",
                certificate_url=f"https://acme.test/cert/{order['identifier']}",
            )
        return self._order(order["identifier"], status="processing")

    def finalize_order(self, order):
        self._record("finalize_order")
        self.finalized = True

    def download_certificate(self, order, path, password):
        self._record("download_certificate")
        self.downloads.append((path, password))
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        Path(path).write_bytes(b"PFX")
        return {
            "domain": order["identifier"],
            "path": path,
            "pfx_bytes": b"PFX",
            "password": password,
            "expiry": datetime.datetime(2030, 1, 1, tzinfo=datetime.timezone.utc),
        }


@pytest.fixture()
def scripted_client():
    return ScriptedAcmeClient
