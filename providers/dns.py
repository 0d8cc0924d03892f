"""
DNS provider boundary: zone/record enumeration and DNS-01 TXT records.

Provides:
  DnsProvider (ABC)
      Interface the batch runner and the orchestrator talk to.

  AzureDnsProvider — uses `azure-mgmt-dns` against one resource group

  relative_record_name(record_name, zone) -> str
      "_acme-challenge.www.example.com" in zone "example.com" →
      "_acme-challenge.www"

  make_dns_provider(credential) -> DnsProvider
      Factory that reads settings and returns the configured provider.

TXT record names are deterministic per domain, so create_txt_record()
replaces any record left behind by an earlier failed run instead of adding
a second value to it.
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import List

from azure.core.exceptions import ResourceNotFoundError
from azure.mgmt.dns import DnsManagementClient
from azure.mgmt.dns.models import RecordSet, TxtRecord

from renewal.state import DnsRecord, DnsZone

logger = logging.getLogger(__name__)


def relative_record_name(record_name: str, zone: str) -> str:
    """Strip the zone suffix from a fully-qualified record name."""
    name = record_name.rstrip(".")
    suffix = "." + zone.rstrip(".")
    if name.endswith(suffix):
        return name[: -len(suffix)]
    if name == zone.rstrip("."):
        return "@"
    raise ValueError(f"{record_name!r} is not inside zone {zone!r}")


# ─── Provider ABC ─────────────────────────────────────────────────────────────


class DnsProvider(ABC):
    """Abstract base for zone enumeration and DNS-01 TXT record management."""

    @abstractmethod
    def list_zones(self) -> List[DnsZone]:
        """Return the zones this provider manages, in a stable order."""

    @abstractmethod
    def list_records(self, zone: DnsZone) -> List[DnsRecord]:
        """Return every record set of *zone*; callers filter by type."""

    @abstractmethod
    def create_txt_record(self, zone: DnsZone, name: str, value: str, ttl: int) -> None:
        """Create or replace the TXT record *name* (relative to *zone*)."""

    @abstractmethod
    def delete_txt_record(self, zone: DnsZone, name: str) -> None:
        """Delete the TXT record *name*; a missing record is not an error."""


# ─── Azure DNS ────────────────────────────────────────────────────────────────


class AzureDnsProvider(DnsProvider):
    """DNS provider backed by Azure DNS zones in a single resource group."""

    def __init__(
        self,
        credential=None,
        subscription_id: str = "",
        resource_group: str = "",
        client: DnsManagementClient | None = None,
    ) -> None:
        self._resource_group = resource_group
        self._client = client or DnsManagementClient(credential, subscription_id)

    def list_zones(self) -> List[DnsZone]:
        zones = self._client.zones.list_by_resource_group(self._resource_group)
        return [{"name": z.name, "resource_group": self._resource_group} for z in zones]

    def list_records(self, zone: DnsZone) -> List[DnsRecord]:
        record_sets = self._client.record_sets.list_by_dns_zone(
            zone["resource_group"], zone["name"]
        )
        # Azure reports types as "Microsoft.Network/dnszones/A"
        return [{"name": rs.name, "type": rs.type.split("/")[-1]} for rs in record_sets]

    def create_txt_record(self, zone: DnsZone, name: str, value: str, ttl: int) -> None:
        self._client.record_sets.create_or_update(
            resource_group_name=zone["resource_group"],
            zone_name=zone["name"],
            relative_record_set_name=name,
            record_type="TXT",
            parameters=RecordSet(ttl=ttl, txt_records=[TxtRecord(value=[value])]),
        )
        logger.info("Created TXT record %s in zone %s", name, zone["name"])

    def delete_txt_record(self, zone: DnsZone, name: str) -> None:
        try:
            self._client.record_sets.delete(
                resource_group_name=zone["resource_group"],
                zone_name=zone["name"],
                relative_record_set_name=name,
                record_type="TXT",
            )
        except ResourceNotFoundError:
            logger.debug("TXT record %s not found in %s — nothing to delete", name, zone["name"])
            return
        logger.info("Deleted TXT record %s in zone %s", name, zone["name"])


# ─── Factory ──────────────────────────────────────────────────────────────────


def make_dns_provider(credential) -> DnsProvider:
    """Instantiate the Azure DNS provider from the current settings."""
    from config import settings  # late import to avoid circular dependency

    return AzureDnsProvider(
        credential=credential,
        subscription_id=settings.AZURE_SUBSCRIPTION_ID,
        resource_group=settings.RESOURCE_GROUP,
    )
