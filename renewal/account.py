"""
Account State Store — create the ACME account once, then reuse it.

The presence of <STATE_DIR>/account.json is the only idempotency signal: when
it exists it is loaded and returned untouched, with no network calls.
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from acmekit import jws as jwslib
from acmekit.client import AcmeClient, make_client
from renewal.state import AccountState, empty_account
from storage import filesystem as fs

logger = logging.getLogger(__name__)


def ensure_account(
    path: str,
    contact_email: str,
    directory_url: str,
    client_factory: Optional[Callable[[AccountState], AcmeClient]] = None,
) -> AccountState:
    """
    Return the persisted account at *path*, registering a new one if absent.

    Bootstrap failures are logged as warnings and the (incomplete) state is
    returned anyway; the AcmeClient then raises AccountNotReadyError for the
    first domain that needs the account.
    """
    p = Path(path)
    if p.exists():
        account = fs.read_account_state(p)
        logger.info("Using existing ACME account %s", account["account_url"])
        return account

    account = empty_account(directory_url)
    factory = client_factory or make_client
    try:
        logger.info("No ACME account at %s — registering %s", p, contact_email)
        client = factory(account)
        client.get_directory()
        client.new_nonce()
        account["account_key"] = jwslib.generate_account_key()
        client.register_account(contact_email)
        fs.write_account_state(p, account)
    except Exception as exc:
        logger.warning("ACME account bootstrap failed: %s", exc)
    finally:
        logger.info("ACME account setup finished")

    return account
