"""
Secret-store boundary: certificate lookup and PFX import.

  SecretStore (ABC)         — what the freshness oracle and orchestrator use
  KeyVaultSecretStore       — Azure Key Vault via `azure-keyvault-certificates`
  make_secret_store(credential)
"""
from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Optional

from azure.core.exceptions import ResourceNotFoundError
from azure.keyvault.certificates import CertificateClient

from renewal.state import StoredCertificate

logger = logging.getLogger(__name__)


class SecretStore(ABC):

    @abstractmethod
    def get_certificate(self, name: str) -> Optional[StoredCertificate]:
        """Return the current certificate *name*, or None when absent."""

    @abstractmethod
    def import_certificate(self, name: str, pfx_bytes: bytes, password: str) -> None:
        """Import a PKCS#12 bundle as a new version of certificate *name*."""


class KeyVaultSecretStore(SecretStore):

    def __init__(
        self,
        vault_name: str = "",
        credential=None,
        client: CertificateClient | None = None,
    ) -> None:
        self._client = client or CertificateClient(
            vault_url=f"https://{vault_name}.vault.azure.net",
            credential=credential,
        )

    def get_certificate(self, name: str) -> Optional[StoredCertificate]:
        try:
            cert = self._client.get_certificate(name)
        except ResourceNotFoundError:
            return None
        return {"name": name, "expiry": cert.properties.expires_on}

    def import_certificate(self, name: str, pfx_bytes: bytes, password: str) -> None:
        self._client.import_certificate(
            certificate_name=name,
            certificate_bytes=pfx_bytes,
            password=password,
        )
        logger.info("Imported certificate %s into Key Vault", name)


def make_secret_store(credential) -> SecretStore:
    from config import settings  # late import to avoid circular dependency

    return KeyVaultSecretStore(vault_name=settings.KEY_VAULT_NAME, credential=credential)
