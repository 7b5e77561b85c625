"""Per-request OAuth authentication handler.

The middleware creates one handler per HTTP request. The handler issues the
challenge redirect to the authorization endpoint with a protected state
parameter, and validates that state when the user agent comes back.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from starlette.requests import Request
from starlette.responses import RedirectResponse, Response

from keyway.auth.models.errors import StateValidationError
from keyway.auth.models.notifications import ApplyRedirectContext
from keyway.auth.models.options import OAuthAuthenticationOptions
from keyway.auth.models.properties import AuthenticationProperties
from keyway.auth.primitives.security import (
    generate_correlation_id,
    validate_correlation,
)
from keyway.auth.services.backchannel import Backchannel

CORRELATION_ITEM = ".xsrf"
CORRELATION_COOKIE_PREFIX = ".keyway.Correlation."


class OAuthAuthenticationHandler:
    """Handles the OAuth redirect flow for a single request.

    Shares the backchannel and logger of the middleware that created it.
    """

    def __init__(self, backchannel: Backchannel, logger: logging.Logger):
        self.backchannel = backchannel
        self.logger = logger
        self.options: OAuthAuthenticationOptions | None = None
        self.request: Request | None = None

    def initialize(self, options: OAuthAuthenticationOptions, request: Request) -> None:
        """Bind the handler to resolved options and the current request."""
        self.options = options
        self.request = request

    @property
    def correlation_cookie_name(self) -> str:
        return f"{CORRELATION_COOKIE_PREFIX}{self.options.authentication_scheme}"

    def build_redirect_uri(self, target_path: str) -> str:
        """Build an absolute URI on this application for `target_path`."""
        base_url = str(self.request.base_url).rstrip("/")
        return f"{base_url}/{target_path.lstrip('/')}"

    def build_challenge_url(
        self, properties: AuthenticationProperties, redirect_uri: str
    ) -> str:
        """Build the authorization endpoint URL carrying the protected state."""
        params = {"client_id": self.options.client_id}

        if self.options.scope:
            params["scope"] = " ".join(self.options.scope)

        params["response_type"] = "code"
        params["redirect_uri"] = redirect_uri
        params["state"] = self.options.state_data_format.protect(properties)

        endpoint = self.options.authorization_endpoint
        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(params)}"

    async def challenge(
        self, properties: AuthenticationProperties | None = None
    ) -> Response:
        """Redirect the user agent to the authorization endpoint.

        Args:
            properties: Values to round-trip through the authorization
                server. Defaults to an empty bag returning to the current URL.

        Returns:
            302 response that also sets the correlation cookie
        """
        if properties is None:
            properties = AuthenticationProperties()
        else:
            properties = properties.model_copy(deep=True)

        if properties.redirect_uri is None:
            properties.redirect_uri = str(self.request.url)

        correlation_id = generate_correlation_id()
        properties.items[CORRELATION_ITEM] = correlation_id

        redirect_uri = self.build_redirect_uri(self.options.callback_path)
        authorization_url = self.build_challenge_url(properties, redirect_uri)

        context = ApplyRedirectContext(
            request=self.request,
            redirect_uri=authorization_url,
            properties=properties,
        )
        await self.options.notifications.apply_redirect(context)

        response = RedirectResponse(context.redirect_uri, status_code=302)
        response.set_cookie(
            self.correlation_cookie_name,
            correlation_id,
            httponly=True,
            secure=self._is_https(),
            samesite="lax",
        )

        self.logger.debug(
            f"Challenge for scheme {self.options.authentication_scheme} "
            f"redirecting to {self.options.authorization_endpoint}"
        )
        return response

    def validate_state(self, state: str | None) -> AuthenticationProperties:
        """Read back the properties from a callback's state parameter.

        Args:
            state: Raw `state` query parameter of the callback

        Returns:
            The properties passed to `challenge`, without the correlation item

        Raises:
            StateValidationError: If the state is missing, unreadable, or was
                issued to another user agent
        """
        properties = self.options.state_data_format.unprotect(state)
        if properties is None:
            self.logger.warning("The oauth state was missing or invalid")
            raise StateValidationError("The oauth state was missing or invalid")

        expected = properties.items.pop(CORRELATION_ITEM, None)
        actual = self.request.cookies.get(self.correlation_cookie_name)
        try:
            validate_correlation(expected, actual)
        except StateValidationError:
            self.logger.warning(
                f"Correlation failed for scheme {self.options.authentication_scheme}"
            )
            raise

        return properties

    def delete_correlation_cookie(self, response: Response) -> None:
        response.delete_cookie(
            self.correlation_cookie_name,
            httponly=True,
            secure=self._is_https(),
            samesite="lax",
        )

    def _is_https(self) -> bool:
        return self.request.url.scheme == "https"
