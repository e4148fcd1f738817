"""Root and intermediate certificate authority generation.

The root is a name-constrained ECDSA P-256 CA that only ever signs
intermediates; every service that issues certificates gets a fresh
intermediate with MaxPathLen=0 signed by it.
"""

from __future__ import annotations

import datetime
import ipaddress
import os
import secrets
import socket
from dataclasses import dataclass, field
from pathlib import Path

from cryptography import x509
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import ExtendedKeyUsageOID, NameOID

from ..errors import CertificateError, ConfigurationError
from ..shared.logging import get_logger

logger = get_logger(__name__)

VALIDITY = datetime.timedelta(days=365)
DEFAULT_SERVICE_ALIAS = "stepca"

PERMITTED_IP_RANGES = (
    ipaddress.ip_network("127.0.0.1/32"),
    ipaddress.ip_network("::1/128"),
    # TEST-NET-1, routed to the local proxy by sslip.io names
    ipaddress.ip_network("192.0.2.0/24"),
)

KEY_USAGE_NAMES = (
    "digital_signature",
    "content_commitment",
    "key_encipherment",
    "data_encipherment",
    "key_agreement",
    "key_cert_sign",
    "crl_sign",
)

EXTENDED_KEY_USAGE_NAMES = {
    getattr(ExtendedKeyUsageOID, name): name.lower() for name in dir(ExtendedKeyUsageOID) if name.isupper()
}


def permitted_dns_domains(domain: str, service_alias: str = DEFAULT_SERVICE_ALIAS) -> list[str]:
    """DNS names the root CA is allowed to certify."""
    return [domain, "." + domain, "localhost", ".localhost", service_alias]


def _serial_number() -> int:
    # 128-bit positive serial
    return secrets.randbelow(2**128 - 1) + 1


def _key_usage(digital_signature: bool) -> x509.KeyUsage:
    return x509.KeyUsage(
        digital_signature=digital_signature,
        content_commitment=False,
        key_encipherment=False,
        data_encipherment=False,
        key_agreement=False,
        key_cert_sign=True,
        crl_sign=True,
        encipher_only=False,
        decipher_only=False,
    )


def _write_pair(
    cert: x509.Certificate,
    key: ec.EllipticCurvePrivateKey,
    cert_path: Path,
    key_path: Path,
) -> None:
    """Write cert (0644) and PKCS#8 key (0600) as PEM."""
    key_pem = key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    )
    try:
        cert_path.parent.mkdir(parents=True, exist_ok=True)
        key_path.parent.mkdir(parents=True, exist_ok=True)
        cert_path.write_bytes(cert.public_bytes(serialization.Encoding.PEM))
        os.chmod(cert_path, 0o644)
        # Create with owner-only permissions so the key is never world-readable
        fd = os.open(key_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "wb") as f:
            f.write(key_pem)
        os.chmod(key_path, 0o600)
    except OSError as e:
        raise ConfigurationError(
            message=f"Cannot write certificate material: {e}",
            details={"cert_path": str(cert_path), "key_path": str(key_path)},
        ) from e


def generate_root(
    cert_path: str | Path,
    key_path: str | Path,
    domain: str,
    app_name: str = "kinder",
    service_alias: str = DEFAULT_SERVICE_ALIAS,
    hostname: str | None = None,
) -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    """Generate a self-signed, name-constrained root CA.

    Overwrites any existing files at the destination with new, unrelated
    key material. Callers decide whether an existing root should be reused.

    Args:
        cert_path: Destination for the PEM certificate (0644)
        key_path: Destination for the PKCS#8 PEM key (0600)
        domain: Base domain the CA may certify (plus its subdomains)
        app_name: Used in the subject CN and O
        service_alias: Extra bare hostname permitted by the name constraints
        hostname: Hostname shown in the CN; defaults to this machine's

    Returns:
        Tuple of (certificate, private key).

    Raises:
        ConfigurationError: If the files cannot be written.
        CertificateError: If key or certificate construction fails.
    """
    hostname = hostname or socket.gethostname()
    try:
        key = ec.generate_private_key(ec.SECP256R1())
        name = x509.Name(
            [
                x509.NameAttribute(NameOID.COMMON_NAME, f"{app_name} Root CA ({hostname})"),
                x509.NameAttribute(NameOID.ORGANIZATION_NAME, app_name),
            ]
        )
        now = datetime.datetime.now(datetime.timezone.utc)
        constraints = x509.NameConstraints(
            permitted_subtrees=[x509.DNSName(d) for d in permitted_dns_domains(domain, service_alias)]
            + [x509.IPAddress(net) for net in PERMITTED_IP_RANGES],
            excluded_subtrees=None,
        )
        cert = (
            x509.CertificateBuilder()
            .subject_name(name)
            .issuer_name(name)
            .public_key(key.public_key())
            .serial_number(_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + VALIDITY)
            .add_extension(x509.BasicConstraints(ca=True, path_length=None), critical=True)
            .add_extension(_key_usage(digital_signature=False), critical=True)
            .add_extension(constraints, critical=True)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
            .sign(key, hashes.SHA256())
        )
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CertificateError(message=f"Failed to build root CA: {e}") from e

    _write_pair(cert, key, Path(cert_path), Path(key_path))
    logger.info("root CA generated", cert_path=str(cert_path), domain=domain, serial=hex(cert.serial_number))
    return cert, key


def load_certificate(path: str | Path) -> x509.Certificate:
    """Parse a PEM certificate from disk.

    Raises:
        ConfigurationError: If the file cannot be read.
        CertificateError: If the content is not a PEM certificate.
    """
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise ConfigurationError(message=f"Cannot read certificate {path}: {e}") from e
    try:
        return x509.load_pem_x509_certificate(data)
    except ValueError as e:
        raise CertificateError(message=f"Invalid certificate {path}: {e}") from e


def load_private_key(path: str | Path):
    """Parse an unencrypted PEM private key from disk."""
    try:
        data = Path(path).read_bytes()
    except OSError as e:
        raise ConfigurationError(message=f"Cannot read private key {path}: {e}") from e
    try:
        return serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CertificateError(message=f"Invalid private key {path}: {e}") from e


def generate_intermediate(
    root_cert_path: str | Path,
    root_key_path: str | Path,
    cert_path: str | Path,
    key_path: str | Path,
    app_name: str = "kinder",
) -> tuple[x509.Certificate, ec.EllipticCurvePrivateKey]:
    """Generate an intermediate CA signed by the root.

    The intermediate may sign leaf certificates but no further CAs
    (path length 0). It inherits the root's name constraints by chain.

    Args:
        root_cert_path: Root CA certificate (PEM)
        root_key_path: Root CA private key (PEM, ECDSA)
        cert_path: Destination for the intermediate certificate
        key_path: Destination for the intermediate key

    Returns:
        Tuple of (certificate, private key).

    Raises:
        CertificateError: If root material is malformed or not ECDSA.
        ConfigurationError: If files cannot be read or written.
    """
    root_cert = load_certificate(root_cert_path)
    root_key = load_private_key(root_key_path)
    if not isinstance(root_key, ec.EllipticCurvePrivateKey):
        raise CertificateError(
            message="Root private key is not ECDSA",
            details={"key_type": type(root_key).__name__},
        )

    try:
        key = ec.generate_private_key(ec.SECP256R1())
        now = datetime.datetime.now(datetime.timezone.utc)
        cert = (
            x509.CertificateBuilder()
            .subject_name(
                x509.Name(
                    [
                        x509.NameAttribute(NameOID.COMMON_NAME, f"{app_name} Intermediate CA"),
                        x509.NameAttribute(NameOID.ORGANIZATION_NAME, app_name),
                    ]
                )
            )
            .issuer_name(root_cert.subject)
            .public_key(key.public_key())
            .serial_number(_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + VALIDITY)
            .add_extension(x509.BasicConstraints(ca=True, path_length=0), critical=True)
            .add_extension(_key_usage(digital_signature=True), critical=True)
            .add_extension(x509.SubjectKeyIdentifier.from_public_key(key.public_key()), critical=False)
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(root_key.public_key()),
                critical=False,
            )
            .sign(root_key, hashes.SHA256())
        )
    except (ValueError, TypeError, UnsupportedAlgorithm) as e:
        raise CertificateError(message=f"Failed to build intermediate CA: {e}") from e

    _write_pair(cert, key, Path(cert_path), Path(key_path))
    logger.debug("intermediate CA generated", cert_path=str(cert_path))
    return cert, key


@dataclass
class CertificateInfo:
    """Human-oriented summary of a CA certificate."""

    path: Path
    common_name: str
    organization: str
    not_before: datetime.datetime
    not_after: datetime.datetime
    serial_hex: str
    key_type: str
    is_ca: bool
    key_format: str | None = None
    key_usages: list[str] = field(default_factory=list)
    extended_key_usages: list[str] = field(default_factory=list)
    name_constraints_critical: bool = False
    permitted_dns: list[str] = field(default_factory=list)
    permitted_ips: list[str] = field(default_factory=list)

    def days_remaining(self, now: datetime.datetime | None = None) -> int:
        now = now or datetime.datetime.now(datetime.timezone.utc)
        return (self.not_after - now).days

    @property
    def expired(self) -> bool:
        return self.not_after <= datetime.datetime.now(datetime.timezone.utc)


def _name_value(name: x509.Name, oid: x509.ObjectIdentifier) -> str:
    attrs = name.get_attributes_for_oid(oid)
    return str(attrs[0].value) if attrs else ""


def _key_type(cert: x509.Certificate) -> str:
    public_key = cert.public_key()
    if isinstance(public_key, ec.EllipticCurvePublicKey):
        return f"ECDSA {public_key.curve.name} ({public_key.curve.key_size} bits)"
    return type(public_key).__name__


def _key_format(key_path: Path) -> str:
    try:
        text = key_path.read_text()
    except OSError as e:
        raise ConfigurationError(message=f"Cannot read private key {key_path}: {e}") from e
    if "BEGIN PRIVATE KEY" in text:
        return "PKCS#8"
    if "BEGIN EC PRIVATE KEY" in text:
        return "SEC1"
    return "unknown"


def describe_certificate(path: str | Path, key_path: str | Path | None = None) -> CertificateInfo:
    """Summarize a certificate for display.

    Args:
        path: PEM certificate
        key_path: Optional private key, only inspected for its encoding

    Returns:
        CertificateInfo
    """
    cert = load_certificate(path)
    info = CertificateInfo(
        path=Path(path),
        common_name=_name_value(cert.subject, NameOID.COMMON_NAME),
        organization=_name_value(cert.subject, NameOID.ORGANIZATION_NAME),
        not_before=cert.not_valid_before_utc,
        not_after=cert.not_valid_after_utc,
        serial_hex=format(cert.serial_number, "x"),
        key_type=_key_type(cert),
        is_ca=False,
    )
    if key_path is not None and Path(key_path).exists():
        info.key_format = _key_format(Path(key_path))

    extensions = cert.extensions
    try:
        info.is_ca = extensions.get_extension_for_class(x509.BasicConstraints).value.ca
    except x509.ExtensionNotFound:
        pass
    try:
        usage = extensions.get_extension_for_class(x509.KeyUsage).value
        info.key_usages = [n for n in KEY_USAGE_NAMES if getattr(usage, n)]
    except x509.ExtensionNotFound:
        pass
    try:
        ekus = extensions.get_extension_for_class(x509.ExtendedKeyUsage).value
        info.extended_key_usages = [EXTENDED_KEY_USAGE_NAMES.get(oid, oid.dotted_string) for oid in ekus]
    except x509.ExtensionNotFound:
        pass
    try:
        ext = extensions.get_extension_for_class(x509.NameConstraints)
        info.name_constraints_critical = ext.critical
        for subtree in ext.value.permitted_subtrees or []:
            if isinstance(subtree, x509.DNSName):
                info.permitted_dns.append(subtree.value)
            elif isinstance(subtree, x509.IPAddress):
                info.permitted_ips.append(str(subtree.value))
    except x509.ExtensionNotFound:
        pass
    return info
