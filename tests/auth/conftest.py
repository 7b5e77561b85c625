import datetime

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.x509.oid import NameOID

from keyway.auth.models.options import OAuthAuthenticationOptions
from keyway.auth.primitives.dataprotection import AesGcmDataProtectionProvider

MASTER_KEY = bytes(range(32))


def make_options(**overrides) -> OAuthAuthenticationOptions:
    """Options with all required fields set, overridable per test."""
    values = {
        "client_id": "abc",
        "client_secret": "s3cr3t",
        "authorization_endpoint": "https://a/auth",
        "token_endpoint": "https://a/token",
    }
    values.update(overrides)
    return OAuthAuthenticationOptions(**values)


@pytest.fixture
def data_protection_provider() -> AesGcmDataProtectionProvider:
    return AesGcmDataProtectionProvider(MASTER_KEY)


@pytest.fixture
def certificate_key() -> ec.EllipticCurvePrivateKey:
    return ec.generate_private_key(ec.SECP256R1())


@pytest.fixture
def der_certificate(certificate_key) -> bytes:
    """Self-signed DER certificate for auth.example.com."""
    name = x509.Name([x509.NameAttribute(NameOID.COMMON_NAME, "auth.example.com")])
    now = datetime.datetime.now(datetime.timezone.utc)
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(certificate_key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(now)
        .not_valid_after(now + datetime.timedelta(days=1))
        .sign(certificate_key, hashes.SHA256())
    )
    return certificate.public_bytes(serialization.Encoding.DER)
