"""
Batch Runner — walk every A record of every zone, renew what is due.

Domains are processed one at a time in zone/record enumeration order.  A
failure is recorded in the BatchReport and the loop moves on; deciding what a
failed domain means for the exit code is left to the caller (main.py).
"""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from providers.dns import DnsProvider
from providers.keyvault import SecretStore
from renewal.freshness import should_renew
from renewal.orchestrator import OrderOrchestrator
from renewal.state import BatchReport, DomainRecord, DomainResult, fqdn

logger = logging.getLogger(__name__)

# Apex and wildcard A records have no subdomain label to name a certificate by
_SKIPPED_RECORD_NAMES = {"@", "*"}


def discover_domains(dns: DnsProvider, zones: Optional[Iterable[str]] = None) -> List[DomainRecord]:
    """Return one DomainRecord per A record, optionally limited to *zones*."""
    wanted = {z.lower() for z in zones} if zones else None
    domains: List[DomainRecord] = []

    for zone in dns.list_zones():
        if wanted is not None and zone["name"].lower() not in wanted:
            continue
        for record in dns.list_records(zone):
            if record["type"] != "A":
                continue
            if record["name"] in _SKIPPED_RECORD_NAMES or record["name"].startswith("*."):
                logger.debug("Skipping %s record in %s", record["name"], zone["name"])
                continue
            domains.append(
                {
                    "subdomain": record["name"],
                    "zone": zone["name"],
                    "resource_group": zone["resource_group"],
                }
            )

    logger.info("Discovered %d domain(s) in %s", len(domains), "configured zones" if wanted else "all zones")
    return domains


class BatchRunner:

    def __init__(
        self,
        dns: DnsProvider,
        secret_store: SecretStore,
        orchestrator: OrderOrchestrator,
        zones: Optional[Iterable[str]] = None,
    ) -> None:
        self.dns = dns
        self.secret_store = secret_store
        self.orchestrator = orchestrator
        self.zones = list(zones) if zones else None

    def run(self, domains: Optional[List[DomainRecord]] = None) -> BatchReport:
        if domains is None:
            domains = discover_domains(self.dns, self.zones)

        report = BatchReport()
        for domain in domains:
            report.add(self._process(domain))

        logger.info(
            "Batch complete — renewed: %s | skipped: %s | failed: %s",
            ", ".join(report.renewed) or "none",
            ", ".join(report.skipped) or "none",
            ", ".join(report.failed) or "none",
        )
        return report

    def _process(self, domain: DomainRecord) -> DomainResult:
        name = fqdn(domain)
        try:
            if not should_renew(domain, self.secret_store):
                return DomainResult(domain=name, outcome="skipped", reason="certificate still fresh")
            return self.orchestrator.run(domain)
        except Exception as exc:
            logger.warning("Processing failed for %s: %s", name, exc)
            return DomainResult(domain=name, outcome="failed", reason=str(exc))
