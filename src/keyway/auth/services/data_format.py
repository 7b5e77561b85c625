"""Protected serialization of the OAuth state parameter.

A secure data format serializes a value, seals it with a data protector and
encodes the result as base64url so it can travel in a query string. Reading
it back never raises: any failure yields None, which callers treat as an
invalid state.
"""

from __future__ import annotations

import logging
from typing import Generic, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from keyway.auth.models.errors import CryptographicError
from keyway.auth.models.properties import AuthenticationProperties
from keyway.auth.primitives.dataprotection import DataProtector
from keyway.auth.primitives.encoding import base64url_decode, base64url_encode

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DataSerializer(Protocol[T]):
    def serialize(self, model: T) -> bytes: ...

    def deserialize(self, data: bytes) -> T: ...


class _SerializedProperties(BaseModel):
    version: int
    properties: AuthenticationProperties


class PropertiesSerializer:
    """Versioned JSON encoding of `AuthenticationProperties`."""

    FORMAT_VERSION = 1

    def serialize(self, model: AuthenticationProperties) -> bytes:
        envelope = _SerializedProperties(
            version=self.FORMAT_VERSION, properties=model
        )
        return envelope.model_dump_json(exclude_none=True).encode("utf-8")

    def deserialize(self, data: bytes) -> AuthenticationProperties:
        """Decode serialized properties.

        Raises:
            ValueError: If the payload is malformed or of another version
        """
        envelope = _SerializedProperties.model_validate_json(data)
        if envelope.version != self.FORMAT_VERSION:
            raise ValueError(f"Unsupported properties version: {envelope.version}")
        return envelope.properties


class SecureDataFormat(Generic[T]):
    """Serialize, protect and encode values of type T."""

    def __init__(self, serializer: DataSerializer[T], protector: DataProtector):
        self._serializer = serializer
        self._protector = protector

    def protect(self, data: T) -> str:
        user_data = self._serializer.serialize(data)
        protected_data = self._protector.protect(user_data)
        return base64url_encode(protected_data)

    def unprotect(self, protected_text: str | None) -> T | None:
        """Reverse `protect`, returning None if the text cannot be read back."""
        if not protected_text:
            return None

        try:
            protected_data = base64url_decode(protected_text)
            user_data = self._protector.unprotect(protected_data)
            return self._serializer.deserialize(user_data)
        except (ValueError, ValidationError, CryptographicError) as e:
            logger.debug(f"Rejected protected data: {e}")
            return None


class PropertiesDataFormat(SecureDataFormat[AuthenticationProperties]):
    """Secure data format for the properties bag carried in the OAuth state."""

    def __init__(self, protector: DataProtector):
        super().__init__(PropertiesSerializer(), protector)
