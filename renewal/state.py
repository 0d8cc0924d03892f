"""
Data model shared by the ACME client, the orchestrator and the batch runner.

ACME resources are plain TypedDicts (they mirror the JSON the CA returns and
are cheap to copy); only the batch report carries behaviour.

Key design decisions:
  - AccountState is the single piece of state shared between domains.  It is
    owned by exactly one AcmeClient per run, which rotates the nonce in place
    after every request.
  - AcmeOrder is never updated locally: a fresh copy comes back from
    AcmeClient.refresh_order() and replaces the stale one.
  - ChallengeRecord.name is relative to the DNS zone ("_acme-challenge.www"),
    which is the form Azure DNS record sets are addressed by.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Literal, Optional

from josepy.jwk import JWKRSA
from typing_extensions import TypedDict

OrderStatus = Literal["pending", "ready", "processing", "valid", "invalid"]
Outcome = Literal["renewed", "skipped", "failed"]


class DomainRecord(TypedDict):
    subdomain: str                    # A record name, e.g. "www"
    zone: str                         # DNS zone, e.g. "example.com"
    resource_group: str               # Resource group holding the zone


class AccountState(TypedDict):
    directory_url: str
    account_key: Optional[JWKRSA]     # None until bootstrap generated one
    nonce: Optional[str]              # Last Replay-Nonce seen; consumed per request
    account_url: Optional[str]        # "kid" for signed requests; None = not registered


class AcmeOrder(TypedDict):
    url: str
    identifier: str
    status: OrderStatus
    authorizations: List[str]
    finalize_url: str
    certificate_url: Optional[str]    # Present once the CA has issued
    error: Optional[dict]


class Challenge(TypedDict):
    type: str                         # always "dns-01" here
    url: str
    token: str
    status: str
    key_authorization: str            # token + "." + account JWK thumbprint
    record_name: str                  # _acme-challenge.<identifier>
    record_value: str                 # base64url(SHA-256(key_authorization))


class Authorization(TypedDict):
    url: str
    identifier: str
    status: str
    challenges: List[dict]            # raw challenge objects from the CA


class ChallengeRecord(TypedDict):
    zone: str
    resource_group: str
    name: str                         # relative to zone
    value: str
    ttl: int


class Certificate(TypedDict):
    domain: str
    path: str                         # transient PFX artifact
    pfx_bytes: bytes
    password: str
    expiry: datetime


class StoredCertificate(TypedDict):
    name: str
    expiry: Optional[datetime]


class DnsZone(TypedDict):
    name: str
    resource_group: str


class DnsRecord(TypedDict):
    name: str
    type: str                         # "A", "TXT", ... (provider prefixes stripped)


def empty_account(directory_url: str) -> AccountState:
    return {
        "directory_url": directory_url,
        "account_key": None,
        "nonce": None,
        "account_url": None,
    }


def fqdn(domain: DomainRecord) -> str:
    return f"{domain['subdomain']}.{domain['zone']}"


def certificate_name(domain: DomainRecord) -> str:
    """Secret-store object name for a domain: its subdomain label.

    Key Vault names only allow alphanumerics and dashes, so nested labels
    ("api.v2") become "api-v2".
    """
    return domain["subdomain"].replace(".", "-")


@dataclass
class DomainResult:
    domain: str
    outcome: Outcome
    reason: str = ""


@dataclass
class BatchReport:
    results: List[DomainResult] = field(default_factory=list)

    def add(self, result: DomainResult) -> None:
        self.results.append(result)

    def _with(self, outcome: Outcome) -> List[str]:
        return [r.domain for r in self.results if r.outcome == outcome]

    @property
    def renewed(self) -> List[str]:
        return self._with("renewed")

    @property
    def skipped(self) -> List[str]:
        return self._with("skipped")

    @property
    def failed(self) -> List[str]:
        return self._with("failed")

    @property
    def ok(self) -> bool:
        return not self.failed
