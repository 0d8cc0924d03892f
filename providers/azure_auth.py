"""
Azure credential setup.

Interactive runs reuse whatever DefaultAzureCredential finds (Azure CLI login,
environment, managed identity).  Unattended runs log in with a service
principal first; that login is the one network step retried here, a bounded
number of times with a fixed delay.
"""
from __future__ import annotations

import logging
import time
from typing import Callable

from azure.core.exceptions import ClientAuthenticationError
from azure.identity import ClientSecretCredential, DefaultAzureCredential

logger = logging.getLogger(__name__)

MANAGEMENT_SCOPE = "https://management.azure.com/.default"


class AzureLoginError(Exception):
    """Service-principal login failed on every attempt."""


def login(
    credential,
    max_attempts: int = 10,
    retry_delay: float = 6.0,
    sleep: Callable[[float], None] = time.sleep,
) -> None:
    """Acquire a management token, retrying authentication failures."""
    last_error: ClientAuthenticationError | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            credential.get_token(MANAGEMENT_SCOPE)
            logger.info("Azure login succeeded (attempt %d)", attempt)
            return
        except ClientAuthenticationError as exc:
            logger.warning("Azure login attempt %d/%d failed: %s", attempt, max_attempts, exc)
            if attempt < max_attempts:
                sleep(retry_delay)
            last_error = exc

    raise AzureLoginError(f"Azure login failed after {max_attempts} attempts") from last_error


def make_credential(
    run_as_service: bool,
    tenant_id: str = "",
    client_id: str = "",
    client_secret: str = "",
    max_attempts: int = 10,
    retry_delay: float = 6.0,
):
    if not run_as_service:
        logger.info("Interactive mode — using DefaultAzureCredential")
        return DefaultAzureCredential()

    logger.info("Service mode — logging in as service principal %s", client_id)
    credential = ClientSecretCredential(
        tenant_id=tenant_id,
        client_id=client_id,
        client_secret=client_secret,
    )
    login(credential, max_attempts=max_attempts, retry_delay=retry_delay)
    return credential
