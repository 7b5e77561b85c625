"""ASGI middleware that wires an OAuth 2.0 client into a request pipeline.

Validates the client options, derives the state protector, builds the
backchannel and hands a fresh authentication handler to every request.
"""

from __future__ import annotations

import dataclasses
import logging
from collections.abc import Callable

from starlette.middleware import Middleware
from starlette.requests import HTTPConnection, Request
from starlette.types import ASGIApp, Receive, Scope, Send

from keyway.auth.models.errors import (
    ConfigurationError,
    ValidatorHandlerMismatchError,
)
from keyway.auth.models.options import (
    DEFAULT_AUTHENTICATION_SCHEME,
    OAuthAuthenticationOptions,
)
from keyway.auth.primitives.dataprotection import (
    DataProtectionProvider,
    create_data_protector,
)
from keyway.auth.services.backchannel import (
    MAX_RESPONSE_CONTENT_BUFFER_SIZE,
    Backchannel,
    BackchannelHttpHandler,
    DefaultBackchannelHttpHandler,
)
from keyway.auth.services.data_format import PropertiesDataFormat
from keyway.auth.services.handler import OAuthAuthenticationHandler

AUTH_HANDLERS_STATE_KEY = "auth_handlers"
STATE_PROTECTOR_VERSION = "v1"

LoggerFactory = Callable[[str], logging.Logger]


class OAuthAuthenticationMiddleware:
    """ASGI middleware authenticating users against an OAuth 2.0 server.

    All configuration problems surface from the constructor. Once built,
    the backchannel and state data format are shared read-only by every
    request.
    """

    def __init__(
        self,
        app: ASGIApp,
        options: OAuthAuthenticationOptions,
        data_protection_provider: DataProtectionProvider | None = None,
        logger_factory: LoggerFactory = logging.getLogger,
    ):
        """Initialize the middleware.

        Args:
            app: The next ASGI application in the pipeline
            options: OAuth client configuration
            data_protection_provider: Source of the state protector when the
                options carry no `state_data_format`
            logger_factory: Creates the middleware logger from a category name

        Raises:
            ConfigurationError: If a required option is blank or the
                certificate validator does not fit the backchannel handler
        """
        _require_option(options.client_id, "ClientId")
        _require_option(options.client_secret, "ClientSecret")
        _require_option(options.authorization_endpoint, "AuthorizationEndpoint")
        _require_option(options.token_endpoint, "TokenEndpoint")

        self.app = app
        self.logger = logger_factory(self.full_type_name())

        if options.state_data_format is None:
            data_protector = create_data_protector(
                data_protection_provider,
                self.full_type_name(),
                options.authentication_scheme,
                STATE_PROTECTOR_VERSION,
            )
            options = dataclasses.replace(
                options, state_data_format=PropertiesDataFormat(data_protector)
            )
        self.options = options

        self.backchannel = Backchannel(
            resolve_http_handler(options),
            timeout=options.backchannel_timeout,
            max_response_content_buffer_size=MAX_RESPONSE_CONTENT_BUFFER_SIZE,
        )

        self.logger.info(
            f"OAuth middleware ready for scheme {options.authentication_scheme} "
            f"(client {options.client_id})"
        )

    @classmethod
    def full_type_name(cls) -> str:
        return f"{cls.__module__}.{cls.__qualname__}"

    def create_handler(self) -> OAuthAuthenticationHandler:
        """Create the handler for one request."""
        return OAuthAuthenticationHandler(self.backchannel, self.logger)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        handler = self.create_handler()
        handler.initialize(self.options, request)

        handlers = scope.setdefault("state", {}).setdefault(AUTH_HANDLERS_STATE_KEY, {})
        handlers[self.options.authentication_scheme] = handler

        await self.app(scope, receive, send)

    async def close(self) -> None:
        """Close the backchannel and release its connections."""
        await self.backchannel.aclose()


def resolve_http_handler(options: OAuthAuthenticationOptions) -> BackchannelHttpHandler:
    """Resolve the backchannel handler, attaching the certificate validator.

    Raises:
        ValidatorHandlerMismatchError: If a validator is configured but the
            handler cannot run certificate validation callbacks
    """
    handler = options.backchannel_http_handler or DefaultBackchannelHttpHandler()

    # A validator is either applied or construction fails
    validator = options.backchannel_certificate_validator
    if validator is not None:
        if not handler.supports_certificate_validation():
            raise ValidatorHandlerMismatchError()
        handler.server_certificate_validation_callback = validator.validate

    return handler


def get_authentication_handler(
    connection: HTTPConnection, scheme: str = DEFAULT_AUTHENTICATION_SCHEME
) -> OAuthAuthenticationHandler:
    """Return the handler the middleware created for this request.

    Raises:
        LookupError: If no middleware for `scheme` ran on this request
    """
    handlers = connection.scope.get("state", {}).get(AUTH_HANDLERS_STATE_KEY, {})
    try:
        return handlers[scheme]
    except KeyError:
        raise LookupError(
            f"No authentication handler registered for scheme '{scheme}'"
        ) from None


def oauth_middleware(
    options: OAuthAuthenticationOptions,
    data_protection_provider: DataProtectionProvider | None = None,
    logger_factory: LoggerFactory = logging.getLogger,
) -> Middleware:
    """Build the Starlette middleware entry for an OAuth client.

    Example:
        app = Starlette(routes=routes, middleware=[oauth_middleware(options)])
    """
    return Middleware(
        OAuthAuthenticationMiddleware,
        options=options,
        data_protection_provider=data_protection_provider,
        logger_factory=logger_factory,
    )


def _require_option(value: str | None, option_name: str) -> None:
    if value is None or not value.strip():
        raise ConfigurationError.option_must_be_provided(option_name)
