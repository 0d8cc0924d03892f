"""
Local state directory for the renewer.

Layout (default <tempdir>/acme, see Settings.STATE_DIR):
  account.json   — ACME account state (directory URL, account URL, PEM
                   account key), mode 0o600.  Nonces are single-use and
                   expire, so none is stored: a loaded account starts with
                   nonce=None and the first signed request fetches one.
  <name>.pfx     — transient certificate export, removed after import

All writes are atomic: temp file + fsync + atomic rename.
"""
from __future__ import annotations

import json
import logging
import tempfile
from pathlib import Path

from acmekit import jws as jwslib
from renewal.state import AccountState
from storage.atomic import atomic_write_text

logger = logging.getLogger(__name__)

ACCOUNT_FILE = "account.json"


def default_state_dir() -> str:
    return str(Path(tempfile.gettempdir()) / "acme")


def account_path(state_dir: str) -> Path:
    return Path(state_dir) / ACCOUNT_FILE


def pfx_path(state_dir: str, name: str) -> Path:
    return Path(state_dir) / f"{name}.pfx"


def write_account_state(path: Path, account: AccountState) -> None:
    """Persist *account* to *path* (0o600, atomic)."""
    key = account["account_key"]
    data = {
        "directory_url": account["directory_url"],
        "account_url": account["account_url"],
        "account_key": jwslib.account_key_to_pem(key) if key is not None else None,
    }
    atomic_write_text(Path(path), json.dumps(data, indent=2), mode=0o600)


def read_account_state(path: Path) -> AccountState:
    data = json.loads(Path(path).read_text())
    key_pem = data.get("account_key")
    return {
        "directory_url": data["directory_url"],
        "account_url": data.get("account_url"),
        "nonce": None,
        "account_key": jwslib.account_key_from_pem(key_pem) if key_pem else None,
    }


def remove_artifact(path: str) -> None:
    """Delete a transient export; a missing file is not an error."""
    p = Path(path)
    if p.exists():
        p.unlink()
        logger.debug("Removed transient artifact %s", p)
