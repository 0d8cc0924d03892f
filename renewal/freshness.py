"""
Certificate Freshness Oracle — decide whether a domain needs a new certificate.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from providers.keyvault import SecretStore
from renewal.state import DomainRecord, certificate_name

logger = logging.getLogger(__name__)

# Fixed policy: renew when 10 or fewer whole days remain.
RENEWAL_THRESHOLD_DAYS = 10


def days_until_expiry(expiry: datetime, now: Optional[datetime] = None) -> int:
    """Return integer days until expiry (negative if already expired)."""
    now = now or datetime.now(tz=timezone.utc)
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=timezone.utc)
    return (expiry - now).days


def should_renew(
    domain: DomainRecord,
    secret_store: SecretStore,
    now: Optional[datetime] = None,
) -> bool:
    name = certificate_name(domain)
    stored = secret_store.get_certificate(name)

    if stored is None or stored["expiry"] is None:
        logger.info("  %s → no certificate %r in secret store — will renew", domain["subdomain"], name)
        return True

    days = days_until_expiry(stored["expiry"], now)
    renew = days <= RENEWAL_THRESHOLD_DAYS
    logger.info(
        "  %s → expires %s (%d days) — %s",
        domain["subdomain"],
        stored["expiry"].strftime("%Y-%m-%d"),
        days,
        "RENEW" if renew else "OK",
    )
    return renew
