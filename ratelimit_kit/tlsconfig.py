"""Building TLS contexts from certificate, key and CA files."""

from __future__ import annotations

import enum
import ssl
from pathlib import Path


class CAType(enum.Enum):
    """Which side's certificates a CA file is used to verify."""

    CLIENT_CA = 0
    SERVER_CA = 1


class TlsConfigError(Exception):
    """Raised when TLS material cannot be loaded."""


def _read_file(name: str) -> bytes:
    try:
        return Path(name).read_bytes()
    except OSError as exc:
        raise TlsConfigError(f"failed to read file: {name}: {exc}") from exc


def tls_config_from_files(
    cert_file: str,
    key_file: str,
    ca_cert_file: str,
    ca_type: CAType,
    skip_hostname_verification: bool,
) -> ssl.SSLContext:
    """Return an SSL context built from the given files.

    A ``CLIENT_CA`` context is server-side and verifies client certificates;
    a ``SERVER_CA`` context is client-side and verifies server certificates.
    With ``skip_hostname_verification`` the chain is still verified but the
    host name is not checked.
    """
    if ca_type is CAType.CLIENT_CA:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        purpose = ssl.Purpose.CLIENT_AUTH
    else:
        context = ssl.SSLContext(ssl.PROTOCOL_TLS_CLIENT)
        purpose = ssl.Purpose.SERVER_AUTH
        context.load_default_certs(purpose)

    if skip_hostname_verification:
        context.check_hostname = False
        context.verify_mode = ssl.CERT_REQUIRED

    if cert_file and key_file:
        try:
            context.load_cert_chain(cert_file, key_file)
        except (OSError, ssl.SSLError) as exc:
            raise TlsConfigError(
                f"failed to load TLS key pair ({cert_file},{key_file}): {exc}"
            ) from exc

    if ca_cert_file:
        data = _read_file(ca_cert_file)
        if ca_type is CAType.CLIENT_CA:
            context.load_default_certs(purpose)
        try:
            context.load_verify_locations(cadata=data.decode("ascii"))
        except (ssl.SSLError, ValueError) as exc:
            raise TlsConfigError(
                f"failed to load the provided TLS CA certificate: {ca_cert_file}"
            ) from exc

    return context