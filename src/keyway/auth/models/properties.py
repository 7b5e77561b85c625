"""Authentication properties carried through the OAuth redirect flow.

The properties bag travels inside the protected state parameter, so
everything stored here comes back on the callback.
"""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class AuthenticationProperties(BaseModel):
    """Key-value payload round-tripped through the authorization server."""

    items: dict[str, str] = Field(default_factory=dict)

    redirect_uri: str | None = None
    issued_at: datetime | None = None
    expires_at: datetime | None = None
    is_persistent: bool = False
    allow_refresh: bool | None = None
