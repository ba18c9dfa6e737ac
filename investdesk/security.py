"""Request authentication for the investdesk API."""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .errors import Unauthorized
from .models import TokenPayload
from .tokens import TokenError, TokenService

logger = logging.getLogger("investdesk.security")


class BearerAuth:
    """Resolve ``Authorization: Bearer <token>`` headers to an identity.

    Missing, malformed, invalid and expired tokens all resolve to ``None`` so
    that callers cannot tell which check failed.
    """

    def __init__(self, tokens: TokenService):
        self._tokens = tokens
        self._bearer = HTTPBearer(auto_error=False)

    async def resolve_identity(self, request: Request) -> Optional[TokenPayload]:
        credentials: HTTPAuthorizationCredentials | None = await self._bearer(request)  # type: ignore[assignment]
        if credentials is None or credentials.scheme.lower() != "bearer":
            return None

        provided = credentials.credentials.strip()
        if not provided:
            return None

        try:
            return self._tokens.verify(provided)
        except TokenError as exc:
            logger.debug("Rejected bearer token on %s: %s", request.url.path, type(exc).__name__)
            return None

    async def __call__(self, request: Request) -> TokenPayload:
        identity = await self.resolve_identity(request)
        if identity is None:
            raise Unauthorized()
        request.state.identity = identity
        return identity


__all__ = ["BearerAuth"]
