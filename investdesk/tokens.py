"""Signed identity tokens."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Optional

from jose import JWTError, jwt

from .config import ConfigurationError, Settings
from .models import Role, TokenPayload


class TokenError(Exception):
    """Base class for token verification failures."""


class InvalidToken(TokenError):
    """The token is malformed, carries a bad signature or lacks required claims."""


class TokenExpired(TokenError):
    """The token was valid but its expiry has passed."""


Clock = Callable[[], datetime]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenService:
    """Issue and verify HMAC-signed JWTs with a fixed lifetime.

    The signing secret comes from the injected :class:`Settings`; the service
    never reads the environment itself. Tokens are stateless, so there is no
    revocation: validity depends only on the signature and ``exp``.
    """

    def __init__(self, settings: Settings, *, clock: Optional[Clock] = None) -> None:
        if not settings.jwt_secret:
            raise ConfigurationError("A JWT signing secret is required")
        self._secret = settings.jwt_secret
        self._algorithm = settings.jwt_algorithm
        self._ttl: timedelta = settings.token_ttl
        self._clock = clock or _utcnow

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def issue(self, payload: TokenPayload) -> str:
        issued_at = self._now()
        expires_at = issued_at + self._ttl
        claims: Dict[str, object] = {
            "userId": payload.user_id,
            "email": payload.email,
            "role": Role(payload.role).value,
            "iat": int(issued_at.timestamp()),
            "exp": int(expires_at.timestamp()),
        }
        return jwt.encode(claims, self._secret, algorithm=self._algorithm)

    def verify(self, token: str) -> TokenPayload:
        try:
            claims = jwt.decode(
                token,
                self._secret,
                algorithms=[self._algorithm],
                options={"verify_exp": False},
            )
        except JWTError as exc:
            raise InvalidToken("Token could not be decoded") from exc

        try:
            user_id = str(claims["userId"])
            email = str(claims["email"])
            role = Role(claims["role"])
            expires_at = datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)
        except (KeyError, TypeError, ValueError) as exc:
            raise InvalidToken("Token is missing required claims") from exc

        if expires_at <= self._now():
            raise TokenExpired("Token has expired")

        return TokenPayload(user_id=user_id, email=email, role=role, expires_at=expires_at)

    def _now(self) -> datetime:
        return self._clock()


__all__ = ["InvalidToken", "TokenError", "TokenExpired", "TokenService"]
