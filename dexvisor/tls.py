"""TLS material for the Dex HTTPS endpoint.

At startup dexvisor either reuses a certificate/key pair mounted by the
operator or generates a self-signed one, then persists the pair where the
rendered Dex configuration points (``web.tlsCert`` / ``web.tlsKey``).
"""

from __future__ import annotations

import ipaddress
import os
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from pathlib import Path

from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from dexvisor.errors import PersistenceError
from dexvisor.observability.logging import get_logger

_log = get_logger("tls")

_ORGANIZATION = "Argo CD"
_VALIDITY = timedelta(days=365)


@dataclass(frozen=True)
class TLSMaterial:
    """PEM-encoded certificate and private key."""

    cert_pem: bytes
    key_pem: bytes


def _subject_alt_names(hosts: list[str]) -> x509.SubjectAlternativeName:
    names: list[x509.GeneralName] = []
    for host in hosts:
        try:
            names.append(x509.IPAddress(ipaddress.ip_address(host)))
        except ValueError:
            names.append(x509.DNSName(host))
    return x509.SubjectAlternativeName(names)


def generate_self_signed(hosts: list[str], now: datetime | None = None) -> TLSMaterial:
    """Generate a self-signed ECDSA P-256 certificate valid for *hosts*."""
    now = now or datetime.now(tz=UTC)
    key = ec.generate_private_key(ec.SECP256R1())
    name = x509.Name([x509.NameAttribute(NameOID.ORGANIZATION_NAME, _ORGANIZATION)])

    builder = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now - timedelta(minutes=5))
        .not_valid_after(now + _VALIDITY)
        .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
        .add_extension(
            x509.KeyUsage(
                digital_signature=True,
                content_commitment=False,
                key_encipherment=True,
                data_encipherment=False,
                key_agreement=False,
                key_cert_sign=True,
                crl_sign=False,
                encipher_only=False,
                decipher_only=False,
            ),
            critical=True,
        )
        .add_extension(x509.ExtendedKeyUsage([ExtendedKeyUsageOID.SERVER_AUTH]), critical=False)
    )
    if hosts:
        builder = builder.add_extension(_subject_alt_names(hosts), critical=False)
    cert = builder.sign(key, hashes.SHA256())

    return TLSMaterial(
        cert_pem=cert.public_bytes(serialization.Encoding.PEM),
        key_pem=key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption(),
        ),
    )


def load_or_generate(cert_path: str, key_path: str, hosts: list[str]) -> TLSMaterial:
    """Load the mounted pair at *cert_path*/*key_path*, or generate one.

    A mounted pair that fails to parse raises ``ValueError`` rather than
    silently falling back to a self-signed certificate.
    """
    cert_file, key_file = Path(cert_path), Path(key_path)
    if cert_file.exists() and key_file.exists():
        cert_pem = cert_file.read_bytes()
        key_pem = key_file.read_bytes()
        x509.load_pem_x509_certificate(cert_pem)
        serialization.load_pem_private_key(key_pem, password=None)
        _log.info("tls_material_loaded", cert_path=cert_path)
        return TLSMaterial(cert_pem=cert_pem, key_pem=key_pem)

    _log.info("tls_material_generated", hosts=hosts)
    return generate_self_signed(hosts)


def _write_private(path: str, data: bytes) -> None:
    """Write *data* to *path* readable and writable by the owner only."""
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        # A pre-existing file keeps its old mode on open; tighten it before writing.
        os.fchmod(fd, 0o600)
        with os.fdopen(fd, "wb") as fh:
            fh.write(data)
    except OSError as exc:
        raise PersistenceError(path, exc) from exc


def write_material(material: TLSMaterial, cert_path: str, key_path: str) -> None:
    """Persist *material* for Dex.

    Raises:
        PersistenceError: either file could not be written.
    """
    _write_private(cert_path, material.cert_pem)
    _write_private(key_path, material.key_pem)
    _log.debug("tls_material_written", cert_path=cert_path, key_path=key_path)
