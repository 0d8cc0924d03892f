"""
JWK / JWS utilities for the ACME protocol (RFC 8555).

Uses *josepy* (the library powering Certbot) for the account JWK.

Responsibilities (boundary with acmekit/crypto.py):
  - Generate the **account** RSA key and (de)serialize it as PEM
  - Compute the RFC 7638 JWK thumbprint and DNS-01 key-authorization digest
  - Sign ACME POST bodies as JWS (with jwk or kid header)
"""
from __future__ import annotations

import base64
import hashlib
import json
from typing import Any

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from josepy.jwk import JWKRSA


# ─── Account key ──────────────────────────────────────────────────────────────


def generate_account_key(key_size: int = 2048) -> JWKRSA:
    """Generate a new RSA account key wrapped in a josepy JWKRSA."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=key_size)
    return JWKRSA(key=private_key)


def account_key_to_pem(jwk: JWKRSA) -> str:
    """Serialize the account key as unencrypted PKCS8 PEM text."""
    return jwk.key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode("ascii")


def account_key_from_pem(pem: str) -> JWKRSA:
    private_key = serialization.load_pem_private_key(pem.encode("ascii"), password=None)
    return JWKRSA(key=private_key)


# ─── Thumbprint & key authorization ───────────────────────────────────────────


def compute_jwk_thumbprint(jwk: JWKRSA) -> str:
    """Return the base64url SHA-256 thumbprint (RFC 7638) of the public JWK."""
    return _b64url(jwk.public_key().thumbprint(hash_function=hashes.SHA256))


def compute_key_authorization(token: str, jwk: JWKRSA) -> str:
    """key_authorization = token + "." + thumbprint (RFC 8555 §8.1)."""
    return f"{token}.{compute_jwk_thumbprint(jwk)}"


def compute_dns_txt_value(key_authorization: str) -> str:
    """Return base64url(SHA-256(key_authorization)) with no padding.

    This is the value the CA expects in the _acme-challenge TXT record
    (RFC 8555 §8.4).
    """
    digest = hashlib.sha256(key_authorization.encode("ascii")).digest()
    return _b64url(digest)


# ─── JWS signing ─────────────────────────────────────────────────────────────


def sign_request(
    payload: dict | None,
    account_key: JWKRSA,
    nonce: str,
    url: str,
    account_url: str | None = None,
) -> dict:
    """
    Sign an ACME request payload and return the flattened JWS dict to POST.

    If *account_url* is None the protected header carries the full JWK (only
    newAccount does this).  Otherwise it uses the "kid" form.  A *payload* of
    None produces the empty payload used for POST-as-GET.
    """
    header: dict[str, Any] = {
        "alg": "RS256",
        "nonce": nonce,
        "url": url,
    }
    if account_url:
        header["kid"] = account_url
    else:
        header["jwk"] = account_key.public_key().fields_to_partial_json()
        header["jwk"]["kty"] = "RSA"

    protected = _b64url(json.dumps(header).encode())
    payload_b64 = "" if payload is None else _b64url(json.dumps(payload).encode())

    signing_input = f"{protected}.{payload_b64}".encode()
    signature = account_key.key.sign(signing_input, padding.PKCS1v15(), hashes.SHA256())

    return {
        "protected": protected,
        "payload": payload_b64,
        "signature": _b64url(signature),
    }


# ─── Internal helpers ─────────────────────────────────────────────────────────


def _b64url(data: bytes) -> str:
    """URL-safe base64 encoding with no padding (as required by JOSE)."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()
