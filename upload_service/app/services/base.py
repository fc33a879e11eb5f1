from __future__ import annotations

from enum import Enum

from sqlalchemy.orm import Session


class ServiceError(Exception):
    """Base class for application service level exceptions."""


class MissingUserError(ServiceError):
    """Raised when an operation lacks a valid acting user."""


class AccessDeniedError(ServiceError):
    """Raised when the acting user may not read or manage a file."""


class FailureSeverity(str, Enum):
    """How a caller should treat a failed operation.

    ``retryable`` means the provider was unreachable or overloaded and the
    same request may succeed later; ``fatal`` means it will not.
    """

    RETRYABLE = "retryable"
    FATAL = "fatal"


class BaseService:
    """Provides guard rails and helpers shared by application services."""

    def __init__(self, session: Session):
        self._session = session

    @property
    def session(self) -> Session:
        return self._session

    def _ensure_user(self, user_id: str | None) -> str:
        if user_id is None or not str(user_id).strip():
            raise MissingUserError("user_id is required for this operation")
        return str(user_id).strip()

    def _commit(self) -> None:
        try:
            self._session.commit()
        except Exception:
            self._session.rollback()
            raise

