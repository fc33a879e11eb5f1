from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, MutableMapping

import jwt
from jwt import PyJWTError

from upload_service.common.config import Settings

logger = logging.getLogger("auth")


class AuthenticationError(Exception):
    """Raised when authentication fails."""


@dataclass(frozen=True)
class Principal:
    """The authenticated caller of a request."""

    user_id: str
    source: str
    token: str | None = None
    claims: Mapping[str, Any] = field(default_factory=dict)


class Authenticator:
    """Resolves the acting principal from request headers.

    With ``AUTH_ENABLED`` off the ``X-User-Id`` header is trusted as is. With
    it on, a bearer JWT is required unless anonymous access is allowed, in
    which case a missing token yields no principal at all.
    """

    def __init__(self, settings: Settings):
        self._settings = settings

    def authenticate(
        self,
        authorization_header: str | None,
        fallback_user_id: str | None,
    ) -> Principal | None:
        if not self._settings.AUTH_ENABLED:
            return self._principal_from_header(fallback_user_id, source="header")

        if not authorization_header or authorization_header.strip().lower() == "bearer":
            if self._settings.AUTH_ALLOW_ANONYMOUS:
                return None
            raise AuthenticationError("Missing bearer token")

        scheme, _, credentials = authorization_header.partition(" ")
        if scheme.lower() != "bearer" or not credentials.strip():
            raise AuthenticationError("Invalid authorization header")

        token = credentials.strip()
        claims = self._decode_token(token)

        subject = claims.get("sub")
        if not subject:
            raise AuthenticationError("Token missing 'sub' claim")

        return Principal(
            user_id=str(subject),
            source="bearer",
            token=token,
            claims=claims,
        )

    @staticmethod
    def _principal_from_header(
        user_id: str | None,
        *,
        source: str,
    ) -> Principal | None:
        if user_id is None or not user_id.strip():
            return None
        return Principal(user_id=user_id.strip(), source=source)

    def _decode_token(self, token: str) -> MutableMapping[str, Any]:
        secret = self._settings.AUTH_TOKEN_SECRET
        if not secret:
            raise AuthenticationError(
                "Authentication secret is not configured while AUTH_ENABLED is true"
            )

        decode_kwargs: dict[str, Any] = {
            "algorithms": [self._settings.AUTH_TOKEN_ALGORITHM],
        }
        if self._settings.AUTH_TOKEN_AUDIENCE:
            decode_kwargs["audience"] = self._settings.AUTH_TOKEN_AUDIENCE
        if self._settings.AUTH_TOKEN_ISSUER:
            decode_kwargs["issuer"] = self._settings.AUTH_TOKEN_ISSUER
        if self._settings.AUTH_TOKEN_LEEWAY:
            decode_kwargs["leeway"] = self._settings.AUTH_TOKEN_LEEWAY

        try:
            return jwt.decode(token, secret, **decode_kwargs)
        except PyJWTError as exc:
            logger.debug("token_decode_error", exc_info=exc)
            raise AuthenticationError("Invalid authentication token") from exc
