from __future__ import annotations

from typing import Generator

from fastapi import Depends, Header, HTTPException

from upload_service.common.auth import AuthenticationError, Authenticator, Principal
from upload_service.common.config import get_settings
from upload_service.infra.db.session import get_session_factory


def get_db() -> Generator:
    session_factory = get_session_factory()
    db = session_factory()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_current_principal(
    authorization: str | None = Header(default=None),
    x_user_id: str | None = Header(default=None),
) -> Principal | None:
    """Acting principal, or None for an anonymous caller."""
    authenticator = Authenticator(get_settings())
    try:
        return authenticator.authenticate(
            authorization_header=authorization,
            fallback_user_id=x_user_id,
        )
    except AuthenticationError as exc:
        raise HTTPException(
            status_code=401,
            detail={
                "message": str(exc),
                "error_code": "unauthenticated",
            },
        ) from exc


def get_current_user_id(
    principal: Principal | None = Depends(get_current_principal),
) -> str | None:
    return principal.user_id if principal is not None else None


def require_user(
    principal: Principal | None = Depends(get_current_principal),
) -> str:
    if principal is None:
        raise HTTPException(
            status_code=401,
            detail={
                "message": "An acting user is required",
                "error_code": "unauthenticated",
            },
        )
    return principal.user_id


def require_api_key(x_api_key: str | None = Header(default=None)) -> None:
    settings = get_settings()
    if settings.API_KEY_ENABLED:
        api_key_expected = settings.API_KEY
        if not x_api_key or (api_key_expected and x_api_key != api_key_expected):
            raise HTTPException(status_code=401, detail="Invalid API key")
