"""Configuration options for the OAuth authentication middleware."""

from __future__ import annotations

from dataclasses import dataclass, field

from keyway.auth.models.notifications import (
    DefaultOAuthAuthenticationNotifications,
    OAuthAuthenticationNotifications,
)
from keyway.auth.services.backchannel import BackchannelHttpHandler
from keyway.auth.services.certificates import CertificateValidator
from keyway.auth.services.data_format import SecureDataFormat

DEFAULT_AUTHENTICATION_SCHEME = "OAuth"
DEFAULT_CALLBACK_PATH = "/signin-oauth"
DEFAULT_BACKCHANNEL_TIMEOUT = 60.0


@dataclass(frozen=True)
class OAuthAuthenticationOptions:
    """OAuth client settings consumed by `OAuthAuthenticationMiddleware`.

    The four endpoint and credential fields are required. They are checked
    when the middleware is constructed, so an options value on its own may
    still be incomplete.
    """

    client_id: str = ""
    client_secret: str = field(default="", repr=False)
    authorization_endpoint: str = ""
    token_endpoint: str = ""

    authentication_scheme: str = DEFAULT_AUTHENTICATION_SCHEME
    callback_path: str = DEFAULT_CALLBACK_PATH
    scope: tuple[str, ...] = ()
    caption: str | None = None

    backchannel_timeout: float = DEFAULT_BACKCHANNEL_TIMEOUT  # seconds
    backchannel_http_handler: BackchannelHttpHandler | None = None
    backchannel_certificate_validator: CertificateValidator | None = None

    state_data_format: SecureDataFormat | None = None
    notifications: OAuthAuthenticationNotifications = field(
        default_factory=DefaultOAuthAuthenticationNotifications
    )
