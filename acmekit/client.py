"""
ACME RFC 8555 HTTP client (account, order, authorization, challenge,
finalize, certificate download).

Each AcmeClient owns exactly one AccountState and is the only thing that
mutates it.  The nonce is handled transactionally per request:

  * the stored nonce is cleared before a signed request is sent (it is
    single-use whether or not the request succeeds);
  * the Replay-Nonce of the response, error responses included, becomes the
    next stored nonce;
  * with no stored nonce, HEAD newNonce is issued first.

The client never retries.  A `badNonce` problem raises BadNonceError
(retryable) after the fresh nonce has been stored; polling and retry policy
belong to the caller (renewal/orchestrator.py).

RFC 8555 compliance notes
--------------------------
* POST-as-GET: orders, authorizations and certificates are fetched with a
  signed empty payload, not plain GET (§6.3).
"""
from __future__ import annotations

import base64
import logging
from pathlib import Path
from typing import Optional

import requests
from cryptography.hazmat.primitives.asymmetric import rsa

from acmekit import crypto
from acmekit import jws as jwslib
from renewal.state import (
    AccountState,
    AcmeOrder,
    Authorization,
    Certificate,
    Challenge,
)
from storage.atomic import atomic_write_bytes

logger = logging.getLogger(__name__)

DNS01 = "dns-01"


class AcmeError(Exception):
    """Raised when the ACME server returns an error response."""

    retryable = False

    def __init__(self, status_code: int, body: dict) -> None:
        self.status_code = status_code
        self.body = body
        problem_type = body.get("type", "unknown")
        detail = body.get("detail", str(body))
        super().__init__(f"ACME {status_code}: {problem_type}: {detail}")


class BadNonceError(AcmeError):
    """The CA rejected the nonce.  A fresh one is already stored; retry is safe."""

    retryable = True


class AccountNotReadyError(AcmeError):
    """A signed request was attempted without a registered account."""

    def __init__(self, detail: str) -> None:
        super().__init__(0, {"type": "accountNotReady", "detail": detail})


class AcmeClient:
    """
    Implements the subset of RFC 8555 needed for DNS-01 issuance.
    Tested against Pebble and Let's Encrypt staging.
    """

    def __init__(
        self,
        account: AccountState,
        timeout: int = 30,
        ca_bundle: str = "",
        insecure: bool = False,
    ) -> None:
        self.account = account
        self.timeout = timeout
        self._directory: Optional[dict] = None
        # Certificate keys generated at finalize time, keyed by order URL
        self._order_keys: dict[str, rsa.RSAPrivateKey] = {}
        self._session = requests.Session()
        self._session.headers.update({"User-Agent": "keyvault-acme/1.0"})

        if insecure:
            import urllib3
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
            self._session.verify = False
        elif ca_bundle:
            self._session.verify = ca_bundle

    # ── Directory & nonce ─────────────────────────────────────────────────

    def get_directory(self) -> dict:
        """GET /directory — discover ACME endpoint URLs (cached per client)."""
        if self._directory is None:
            resp = self._session.get(self.account["directory_url"], timeout=self.timeout)
            resp.raise_for_status()
            self._directory = resp.json()
        return self._directory

    def new_nonce(self) -> str:
        """HEAD /newNonce — fetch a fresh anti-replay nonce and store it."""
        resp = self._session.head(self.get_directory()["newNonce"], timeout=self.timeout)
        nonce = resp.headers.get("Replay-Nonce")
        if not nonce:
            raise AcmeError(resp.status_code, {"detail": "No Replay-Nonce header"})
        self.account["nonce"] = nonce
        return nonce

    # ── Account ───────────────────────────────────────────────────────────

    def register_account(self, contact_email: str) -> str:
        """
        POST /newAccount with the contact address and terms-of-service
        agreement.  Stores and returns the account URL.
        """
        if self.account["account_key"] is None:
            raise AccountNotReadyError("cannot register an account without an account key")

        payload = {
            "contact": [f"mailto:{contact_email}"],
            "termsOfServiceAgreed": True,
        }
        resp = self._post_signed(payload, self.get_directory()["newAccount"], use_jwk=True)
        account_url = resp.headers.get("Location", "")
        if not account_url:
            raise AcmeError(resp.status_code, {"detail": "newAccount response has no Location"})
        self.account["account_url"] = account_url
        logger.info("Registered ACME account %s", account_url)
        return account_url

    # ── Orders ────────────────────────────────────────────────────────────

    def create_order(self, identifier: str) -> AcmeOrder:
        """POST /newOrder for a single DNS identifier."""
        payload = {"identifiers": [{"type": "dns", "value": identifier}]}
        resp = self._post_signed(payload, self.get_directory()["newOrder"])
        order_url = resp.headers.get("Location", "")
        logger.debug("Order %s created for %s", order_url, identifier)
        return _order_from_body(resp.json(), order_url, identifier)

    def refresh_order(self, order: AcmeOrder) -> AcmeOrder:
        """POST-as-GET the order URL and return an up-to-date copy."""
        resp = self._post_signed(None, order["url"])
        return _order_from_body(resp.json(), order["url"], order["identifier"])

    # ── Authorizations & challenges ───────────────────────────────────────

    def get_authorization(self, order: AcmeOrder) -> Authorization:
        """Fetch the (single) authorization of a single-identifier order."""
        if not order["authorizations"]:
            raise AcmeError(0, {"detail": f"Order {order['url']} has no authorizations"})
        auth_url = order["authorizations"][0]
        body = self._post_signed(None, auth_url).json()
        return {
            "url": auth_url,
            "identifier": body.get("identifier", {}).get("value", order["identifier"]),
            "status": body.get("status", "pending"),
            "challenges": body.get("challenges", []),
        }

    def get_challenge(self, authorization: Authorization, challenge_type: str = DNS01) -> Challenge:
        """
        Select the challenge of *challenge_type* and compute what has to be
        published for it.
        """
        raw = next(
            (c for c in authorization["challenges"] if c.get("type") == challenge_type),
            None,
        )
        if raw is None:
            raise AcmeError(
                0,
                {"detail": f"No {challenge_type} challenge in authorization {authorization['url']}"},
            )

        account_key = self._require_account_key()
        key_auth = jwslib.compute_key_authorization(raw["token"], account_key)
        return {
            "type": challenge_type,
            "url": raw["url"],
            "token": raw["token"],
            "status": raw.get("status", "pending"),
            "key_authorization": key_auth,
            "record_name": f"_acme-challenge.{authorization['identifier']}",
            "record_value": jwslib.compute_dns_txt_value(key_auth),
        }

    def complete_challenge(self, challenge: Challenge) -> None:
        """POST {} to the challenge URL: validation data is published, go check."""
        self._post_signed({}, challenge["url"])

    # ── Finalization & certificate download ───────────────────────────────

    def finalize_order(self, order: AcmeOrder) -> None:
        """
        Generate a fresh certificate key, then POST the CSR to /finalize.
        The key is held by the client until download_certificate().
        """
        key = crypto.generate_rsa_key()
        csr_der = crypto.create_csr(key, order["identifier"])
        csr_b64 = base64.urlsafe_b64encode(csr_der).rstrip(b"=").decode()
        self._post_signed({"csr": csr_b64}, order["finalize_url"])
        self._order_keys[order["url"]] = key

    def download_certificate(self, order: AcmeOrder, path: str, password: str) -> Certificate:
        """
        POST-as-GET the certificate URL and export key + chain as a
        password-protected PFX at *path*.
        """
        cert_url = order.get("certificate_url")
        if not cert_url:
            raise AcmeError(0, {"detail": f"Order {order['url']} has no certificate URL yet"})
        key = self._order_keys.get(order["url"])
        if key is None:
            raise AcmeError(0, {"detail": f"Order {order['url']} was not finalized by this client"})

        resp = self._post_signed(None, cert_url, accept="application/pem-certificate-chain")
        chain = crypto.split_pem_chain(resp.text)
        pfx = crypto.build_pfx(key, chain, password, friendly_name=order["identifier"])
        atomic_write_bytes(Path(path), pfx, mode=0o600)
        del self._order_keys[order["url"]]

        logger.info("Exported certificate for %s to %s", order["identifier"], path)
        return {
            "domain": order["identifier"],
            "path": str(path),
            "pfx_bytes": pfx,
            "password": password,
            "expiry": crypto.not_valid_after(chain[0]),
        }

    # ── Internal ──────────────────────────────────────────────────────────

    def _require_account_key(self):
        key = self.account["account_key"]
        if key is None:
            raise AccountNotReadyError("no ACME account key; account bootstrap did not complete")
        return key

    def _post_signed(
        self,
        payload: dict | None,
        url: str,
        use_jwk: bool = False,
        accept: str = "application/json",
    ) -> requests.Response:
        """Sign *payload* with the account key, POST it, and rotate the nonce."""
        account_key = self._require_account_key()
        account_url = None
        if not use_jwk:
            account_url = self.account["account_url"]
            if not account_url:
                raise AccountNotReadyError("ACME account is not registered; account bootstrap failed")

        nonce = self.account["nonce"] or self.new_nonce()
        self.account["nonce"] = None

        body = jwslib.sign_request(payload, account_key, nonce, url, account_url)
        resp = self._session.post(
            url,
            json=body,
            headers={
                "Content-Type": "application/jose+json",
                "Accept": accept,
            },
            timeout=self.timeout,
        )
        self.account["nonce"] = resp.headers.get("Replay-Nonce") or None

        if resp.ok:
            return resp

        try:
            error_body = resp.json()
        except ValueError:
            error_body = {"detail": resp.text}

        if "badNonce" in error_body.get("type", ""):
            raise BadNonceError(resp.status_code, error_body)
        raise AcmeError(resp.status_code, error_body)


def _order_from_body(body: dict, url: str, identifier: str) -> AcmeOrder:
    return {
        "url": url,
        "identifier": identifier,
        "status": body.get("status", "pending"),
        "authorizations": body.get("authorizations", []),
        "finalize_url": body.get("finalize", ""),
        "certificate_url": body.get("certificate"),
        "error": body.get("error"),
    }


def make_client(account: AccountState) -> AcmeClient:
    """
    Create an AcmeClient for *account* using the current application settings.
    Late-imports config to avoid circular imports at module load time.
    """
    from config import settings  # noqa: PLC0415

    return AcmeClient(
        account,
        ca_bundle=settings.ACME_CA_BUNDLE,
        insecure=settings.ACME_INSECURE,
    )
