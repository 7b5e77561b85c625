"""Notification hooks raised by the OAuth authentication handler."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from starlette.requests import Request

from keyway.auth.models.properties import AuthenticationProperties


@dataclass
class ApplyRedirectContext:
    """Context for the redirect to the authorization endpoint.

    Hooks may rewrite `redirect_uri` before the handler issues the redirect.
    """

    request: Request
    redirect_uri: str
    properties: AuthenticationProperties


class OAuthAuthenticationNotifications(Protocol):
    """Hook set the handler calls during the authentication flow."""

    async def apply_redirect(self, context: ApplyRedirectContext) -> None:
        """Called before redirecting the user agent to the authorization server."""
        ...


class DefaultOAuthAuthenticationNotifications:
    """Notifications that leave every context untouched."""

    async def apply_redirect(self, context: ApplyRedirectContext) -> None:
        pass
