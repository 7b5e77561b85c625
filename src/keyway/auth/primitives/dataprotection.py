"""Purpose-scoped data protection for opaque payloads.

A data protector seals bytes with confidentiality and integrity. Protectors
are scoped by a purpose chain: a payload protected under one chain cannot be
unprotected under another, even with the same master key.

The AES-256-GCM implementation derives one key per purpose chain with
HKDF-SHA256 and emits `version || nonce || ciphertext || tag`.
"""

from __future__ import annotations

import logging
import os
from typing import Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from keyway.auth.models.errors import CryptographicError

logger = logging.getLogger(__name__)


class DataProtector(Protocol):
    """Seals and unseals byte payloads."""

    def protect(self, plaintext: bytes) -> bytes: ...

    def unprotect(self, protected_data: bytes) -> bytes:
        """Reverse `protect`.

        Raises:
            CryptographicError: If the payload cannot be authenticated
        """
        ...


class DataProtectionProvider(Protocol):
    """Creates data protectors scoped by a purpose chain."""

    def create_protector(self, purpose: str, *purposes: str) -> DataProtector: ...


class AesGcmDataProtector:
    """AES-256-GCM protector bound to a single purpose chain."""

    FORMAT_VERSION = 1
    KEY_SIZE = 32  # 256 bits for AES-256
    NONCE_SIZE = 12  # 96 bits recommended for GCM
    TAG_SIZE = 16

    def __init__(self, master_key: bytes, purposes: tuple[str, ...]):
        self._master_key = master_key
        self.purposes = purposes
        self._additional_data = _encode_purposes(purposes)
        self._cipher = AESGCM(self._derive_key(master_key, self._additional_data))

    def create_protector(self, purpose: str, *purposes: str) -> AesGcmDataProtector:
        """Create a child protector whose purpose chain extends this one."""
        return AesGcmDataProtector(
            self._master_key, self.purposes + (purpose, *purposes)
        )

    def protect(self, plaintext: bytes) -> bytes:
        nonce = os.urandom(self.NONCE_SIZE)
        ciphertext_and_tag = self._cipher.encrypt(
            nonce, plaintext, self._additional_data
        )
        return bytes([self.FORMAT_VERSION]) + nonce + ciphertext_and_tag

    def unprotect(self, protected_data: bytes) -> bytes:
        if len(protected_data) < 1 + self.NONCE_SIZE + self.TAG_SIZE:
            raise CryptographicError("Protected payload is too short")
        if protected_data[0] != self.FORMAT_VERSION:
            raise CryptographicError(
                f"Unsupported protected payload version: {protected_data[0]}"
            )

        nonce = protected_data[1 : 1 + self.NONCE_SIZE]
        ciphertext_and_tag = protected_data[1 + self.NONCE_SIZE :]

        try:
            return self._cipher.decrypt(nonce, ciphertext_and_tag, self._additional_data)
        except InvalidTag as e:
            raise CryptographicError("Protected payload failed verification") from e

    @classmethod
    def _derive_key(cls, master_key: bytes, info: bytes) -> bytes:
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=cls.KEY_SIZE,
            salt=None,
            info=info,
        )
        return hkdf.derive(master_key)


class AesGcmDataProtectionProvider:
    """Data protection provider backed by a single AES-256 master key.

    Every process sharing the master key can unprotect the payloads of the
    others, which is what a load-balanced deployment needs.
    """

    def __init__(self, master_key: bytes):
        """Initialize the provider.

        Args:
            master_key: 32 bytes of secret key material

        Raises:
            ValueError: If the key has the wrong length
        """
        if len(master_key) != AesGcmDataProtector.KEY_SIZE:
            raise ValueError(
                f"Master key must be {AesGcmDataProtector.KEY_SIZE} bytes "
                f"(got {len(master_key)})"
            )
        self._master_key = master_key

    @classmethod
    def ephemeral(cls) -> AesGcmDataProtectionProvider:
        """Create a provider with a random key that lives as long as the process."""
        return cls(AESGCM.generate_key(bit_length=256))

    def create_protector(self, purpose: str, *purposes: str) -> AesGcmDataProtector:
        return AesGcmDataProtector(self._master_key, (purpose, *purposes))


def create_data_protector(
    provider: DataProtectionProvider | None,
    owner_type_name: str,
    *purposes: str,
) -> DataProtector:
    """Create a protector for `owner_type_name` scoped by `purposes`.

    Falls back to an ephemeral provider when none is configured. Payloads
    protected that way do not survive a restart and are not readable by
    other instances of the application.
    """
    if provider is None:
        logger.warning(
            f"No data protection provider configured for {owner_type_name}; "
            "using an ephemeral key"
        )
        provider = AesGcmDataProtectionProvider.ephemeral()

    return provider.create_protector(owner_type_name, *purposes)


def _encode_purposes(purposes: tuple[str, ...]) -> bytes:
    # Length-prefixed so ("ab", "c") and ("a", "bc") derive different keys
    encoded = bytearray()
    for purpose in purposes:
        data = purpose.encode("utf-8")
        encoded += len(data).to_bytes(4, "big") + data
    return bytes(encoded)
