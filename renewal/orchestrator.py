"""
Order Orchestrator — one domain's issuance, start to finish.

  CREATE_ORDER → FETCH_CHALLENGE → PUBLISH_RECORD → SIGNAL_READY
    → POLL_VALIDATION (until ready | invalid)
    → FINALIZE
    → POLL_CERTIFICATE_URL (until certificate URL present)
    → EXPORT (PFX in the state dir, password = DNS zone name)
    → IMPORT (secret store)
  CLEANUP always runs, exactly once.

The TXT record is held as a lease (challenge_record()): the lease only exists
once the DNS provider has created the record, and releasing it deletes the
record only in that case.  A failure while publishing therefore leaves nothing
to clean up.

run() never raises: every failure becomes a "failed" DomainResult so the
batch can move on to the next domain.
"""
from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from typing import Callable, Generator

from acmekit.client import AcmeClient, AcmeError
from providers.dns import DnsProvider, relative_record_name
from providers.keyvault import SecretStore
from renewal.polling import poll_until
from renewal.state import (
    AcmeOrder,
    Challenge,
    ChallengeRecord,
    DnsZone,
    DomainRecord,
    DomainResult,
    certificate_name,
    fqdn,
)
from storage import filesystem as fs

logger = logging.getLogger(__name__)


class OrderInvalidError(AcmeError):
    """The CA moved the order to `invalid`."""

    def __init__(self, order: AcmeOrder) -> None:
        detail = "order invalid"
        if order.get("error"):
            detail = f"order invalid: {order['error'].get('detail', order['error'])}"
        super().__init__(0, {"type": "orderInvalid", "detail": detail})


class OrderOrchestrator:

    def __init__(
        self,
        client: AcmeClient,
        dns: DnsProvider,
        secret_store: SecretStore,
        state_dir: str,
        txt_ttl: int = 60,
        validation_interval: float = 5,
        certificate_interval: float = 15,
        poll_timeout: float = 900,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.dns = dns
        self.secret_store = secret_store
        self.state_dir = state_dir
        self.txt_ttl = txt_ttl
        self.validation_interval = validation_interval
        self.certificate_interval = certificate_interval
        self.poll_timeout = poll_timeout
        self._sleep = sleep

    def run(self, domain: DomainRecord) -> DomainResult:
        name = fqdn(domain)
        logger.info("Starting renewal for %s", name)
        try:
            self._issue(domain)
        except Exception as exc:
            logger.warning("Renewal failed for %s: %s", name, exc)
            return DomainResult(domain=name, outcome="failed", reason=str(exc))

        logger.info("Renewal complete for %s", name)
        return DomainResult(domain=name, outcome="renewed")

    # ── States ────────────────────────────────────────────────────────────

    def _issue(self, domain: DomainRecord) -> None:
        order = self.client.create_order(fqdn(domain))
        authorization = self.client.get_authorization(order)
        challenge = self.client.get_challenge(authorization)

        with self.challenge_record(domain, challenge):
            self.client.complete_challenge(challenge)
            order = self._await_validation(order)
            self.client.finalize_order(order)
            order = self._await_certificate(order)
            self._export_and_import(domain, order)

    def _await_validation(self, order: AcmeOrder) -> AcmeOrder:
        order = poll_until(
            lambda: self.client.refresh_order(order),
            lambda o: o["status"] in ("ready", "invalid"),
            interval=self.validation_interval,
            timeout=self.poll_timeout,
            what=f"validation of {order['identifier']}",
            sleep=self._sleep,
        )
        if order["status"] == "invalid":
            raise OrderInvalidError(order)
        return order

    def _await_certificate(self, order: AcmeOrder) -> AcmeOrder:
        order = poll_until(
            lambda: self.client.refresh_order(order),
            lambda o: bool(o["certificate_url"]) or o["status"] == "invalid",
            interval=self.certificate_interval,
            timeout=self.poll_timeout,
            what=f"certificate for {order['identifier']}",
            sleep=self._sleep,
        )
        if not order["certificate_url"]:
            raise OrderInvalidError(order)
        return order

    def _export_and_import(self, domain: DomainRecord, order: AcmeOrder) -> None:
        cert_name = certificate_name(domain)
        path = str(fs.pfx_path(self.state_dir, cert_name))
        # The zone name only protects the file while it sits on local disk
        password = domain["zone"]
        try:
            cert = self.client.download_certificate(order, path, password)
            self.secret_store.import_certificate(cert_name, cert["pfx_bytes"], password)
            logger.info(
                "Stored %s in secret store as %r (expires %s)",
                cert["domain"],
                cert_name,
                cert["expiry"].strftime("%Y-%m-%d"),
            )
        finally:
            fs.remove_artifact(path)

    # ── Challenge record lease ────────────────────────────────────────────

    @contextmanager
    def challenge_record(
        self, domain: DomainRecord, challenge: Challenge
    ) -> Generator[ChallengeRecord, None, None]:
        zone: DnsZone = {"name": domain["zone"], "resource_group": domain["resource_group"]}
        record: ChallengeRecord = {
            "zone": domain["zone"],
            "resource_group": domain["resource_group"],
            "name": relative_record_name(challenge["record_name"], domain["zone"]),
            "value": challenge["record_value"],
            "ttl": self.txt_ttl,
        }
        self.dns.create_txt_record(zone, record["name"], record["value"], record["ttl"])
        try:
            yield record
        finally:
            try:
                self.dns.delete_txt_record(zone, record["name"])
            except Exception as exc:
                logger.warning(
                    "Failed to delete TXT record %s in %s: %s", record["name"], domain["zone"], exc
                )
