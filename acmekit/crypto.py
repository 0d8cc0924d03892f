"""
Certificate private-key generation, CSR creation and PKCS#12 export.

Boundary: this module owns everything cryptographic that is *certificate*-
specific.  Account-key operations (JWK, JWS) live in acmekit/jws.py.
"""
from __future__ import annotations

from datetime import datetime, timezone

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import pkcs12
from cryptography.x509.oid import NameOID


def generate_rsa_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
    """Generate an RSA private key for a domain certificate."""
    return rsa.generate_private_key(public_exponent=65537, key_size=key_size)


def create_csr(private_key: rsa.RSAPrivateKey, domain: str) -> bytes:
    """Create a DER-encoded CSR with *domain* as CN and sole SAN."""
    csr = (
        x509.CertificateSigningRequestBuilder()
        .subject_name(x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, domain)]))
        .add_extension(x509.SubjectAlternativeName([x509.DNSName(domain)]), critical=False)
        .sign(private_key, hashes.SHA256())
    )
    return csr.public_bytes(serialization.Encoding.DER)


def split_pem_chain(full_chain: str) -> list[x509.Certificate]:
    """
    Parse a PEM chain into certificates, leaf first.

    The CA returns: [leaf] [intermediate1] [intermediate2] ...
    """
    certs = x509.load_pem_x509_certificates(full_chain.encode())
    if not certs:
        raise ValueError("certificate chain contains no PEM certificates")
    return certs


def not_valid_after(cert: x509.Certificate) -> datetime:
    """notAfter as a timezone-aware UTC datetime."""
    try:
        return cert.not_valid_after_utc
    except AttributeError:
        # cryptography < 42 only exposes the naive value
        return cert.not_valid_after.replace(tzinfo=timezone.utc)


def build_pfx(
    private_key: rsa.RSAPrivateKey,
    chain: list[x509.Certificate],
    password: str,
    friendly_name: str,
) -> bytes:
    """Bundle key + leaf + intermediates into a password-protected PKCS#12 blob."""
    leaf, *intermediates = chain
    return pkcs12.serialize_key_and_certificates(
        name=friendly_name.encode(),
        key=private_key,
        cert=leaf,
        cas=intermediates or None,
        encryption_algorithm=serialization.BestAvailableEncryption(password.encode()),
    )
