"""Server certificate pinning for the backchannel.

Validators are called after the TLS handshake with the host name and the
DER-encoded leaf certificate. They run in addition to regular chain
verification, never instead of it.
"""

from __future__ import annotations

import base64
import hashlib
import logging
from collections.abc import Iterable
from typing import Protocol

from cryptography import x509
from cryptography.hazmat.primitives import serialization

logger = logging.getLogger(__name__)


class CertificateValidator(Protocol):
    """Decides whether a backchannel server certificate is acceptable."""

    def validate(self, hostname: str, der_certificate: bytes) -> bool:
        """Return True to accept the certificate presented by `hostname`."""
        ...


class CertificateThumbprintValidator:
    """Accepts certificates whose thumbprint is in a known set.

    Thumbprints are hex digests of the DER certificate. Comparison ignores
    case and colon separators, so values copied from most certificate
    viewers work as-is.
    """

    def __init__(self, valid_thumbprints: Iterable[str], algorithm: str = "sha1"):
        self._valid_thumbprints = frozenset(
            _normalize_thumbprint(thumbprint) for thumbprint in valid_thumbprints
        )
        if not self._valid_thumbprints:
            raise ValueError("At least one certificate thumbprint is required")
        self.algorithm = algorithm

    def validate(self, hostname: str, der_certificate: bytes) -> bool:
        thumbprint = hashlib.new(self.algorithm, der_certificate).hexdigest()
        if thumbprint in self._valid_thumbprints:
            return True

        logger.warning(f"Certificate thumbprint {thumbprint} for {hostname} is not pinned")
        return False


class CertificateSubjectPublicKeyInfoValidator:
    """Accepts certificates whose public key hash is in a known set.

    Hashes are base64 digests of the DER SubjectPublicKeyInfo, the same
    format HTTP public key pinning used. Pinning the key instead of the
    certificate survives certificate renewal with the same key.
    """

    def __init__(self, valid_base64_hashes: Iterable[str], algorithm: str = "sha256"):
        self._valid_hashes = frozenset(valid_base64_hashes)
        if not self._valid_hashes:
            raise ValueError("At least one public key hash is required")
        self.algorithm = algorithm

    def validate(self, hostname: str, der_certificate: bytes) -> bool:
        try:
            certificate = x509.load_der_x509_certificate(der_certificate)
        except ValueError as e:
            logger.warning(f"Unreadable certificate presented by {hostname}: {e}")
            return False

        spki = certificate.public_key().public_bytes(
            serialization.Encoding.DER,
            serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        spki_hash = base64.b64encode(hashlib.new(self.algorithm, spki).digest()).decode(
            "ascii"
        )
        if spki_hash in self._valid_hashes:
            return True

        logger.warning(f"Public key hash {spki_hash} for {hostname} is not pinned")
        return False


def _normalize_thumbprint(thumbprint: str) -> str:
    return thumbprint.replace(":", "").replace(" ", "").lower()
