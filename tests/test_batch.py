"""
Tests for domain discovery and the batch loop (renewal/batch.py).
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from renewal.batch import BatchRunner, discover_domains
from renewal.orchestrator import OrderOrchestrator
from renewal.state import DomainResult, fqdn

ZONES = [
    {"name": "example.com", "resource_group": "rg"},
    {"name": "example.org", "resource_group": "rg2"},
]

RECORDS = {
    "example.com": [
        {"name": "@", "type": "A"},
        {"name": "www", "type": "A"},
        {"name": "api", "type": "A"},
        {"name": "mail", "type": "MX"},
        {"name": "*", "type": "A"},
        {"name": "*.dev", "type": "A"},
        {"name": "_acme-challenge.www", "type": "TXT"},
    ],
    "example.org": [
        {"name": "shop", "type": "A"},
    ],
}


@pytest.fixture()
def zoned_dns(dns):
    dns.list_zones.return_value = ZONES
    dns.list_records.side_effect = lambda zone: RECORDS[zone["name"]]
    return dns


def test_discovers_only_named_a_records(zoned_dns):
    domains = discover_domains(zoned_dns)

    assert domains == [
        {"subdomain": "www", "zone": "example.com", "resource_group": "rg"},
        {"subdomain": "api", "zone": "example.com", "resource_group": "rg"},
        {"subdomain": "shop", "zone": "example.org", "resource_group": "rg2"},
    ]


def test_discovery_limited_to_zones(zoned_dns):
    domains = discover_domains(zoned_dns, zones=["Example.org"])

    assert [d["subdomain"] for d in domains] == ["shop"]
    zoned_dns.list_records.assert_called_once_with(ZONES[1])


def test_one_failure_does_not_stop_the_batch(scripted_client, zoned_dns, secret_store, tmp_path):
    client = scripted_client(fail_identifiers={"www.example.com"})
    orchestrator = OrderOrchestrator(
        client, zoned_dns, secret_store, str(tmp_path),
        validation_interval=0, certificate_interval=0, sleep=lambda s: None,
    )

    report = BatchRunner(zoned_dns, secret_store, orchestrator).run()

    assert report.failed == ["www.example.com"]
    assert report.renewed == ["api.example.com", "shop.example.org"]
    assert not report.ok
    assert secret_store.import_certificate.call_count == 2


def test_fresh_certificate_is_skipped(zoned_dns, secret_store):
    expiry = datetime.now(tz=timezone.utc) + timedelta(days=60)
    secret_store.get_certificate.side_effect = lambda name: (
        {"name": name, "expiry": expiry} if name == "api" else None
    )
    orchestrator = _RecordingOrchestrator()

    report = BatchRunner(zoned_dns, secret_store, orchestrator).run()

    assert report.skipped == ["api.example.com"]
    assert orchestrator.domains == ["www", "shop"]
    assert report.ok


def test_secret_store_error_marks_domain_failed(zoned_dns, secret_store):
    secret_store.get_certificate.side_effect = RuntimeError("vault unreachable")
    orchestrator = _RecordingOrchestrator()

    report = BatchRunner(zoned_dns, secret_store, orchestrator, zones=["example.org"]).run()

    assert report.failed == ["shop.example.org"]
    assert "vault unreachable" in report.results[0].reason
    assert orchestrator.domains == []


def test_explicit_domain_list_skips_discovery(dns, secret_store):
    orchestrator = _RecordingOrchestrator()
    domain = {"subdomain": "www", "zone": "example.net", "resource_group": "rg"}

    report = BatchRunner(dns, secret_store, orchestrator).run([domain])

    assert report.renewed == ["www.example.net"]
    dns.list_zones.assert_not_called()


class _RecordingOrchestrator:

    def __init__(self):
        self.domains = []

    def run(self, domain):
        self.domains.append(domain["subdomain"])
        return DomainResult(domain=fqdn(domain), outcome="renewed")
