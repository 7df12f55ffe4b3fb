import os
from datetime import datetime, timedelta, timezone
from uuid import UUID

from fastapi import Depends, Header
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from . import models
from .database import get_db
from .errors import ErrorCode, WorkflowError
from .rbac import CallerContext, build_caller_context

SECRET_KEY = os.getenv("SECRET_KEY", "change-me")
ALGORITHM = os.getenv("ACCESS_TOKEN_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "60"))

bearer_scheme = HTTPBearer(auto_error=False)


def create_access_token(data: dict, expires_minutes: int | None = None) -> str:
    to_encode = {key: str(value) for key, value in data.items()}
    expire = datetime.now(timezone.utc) + timedelta(
        minutes=expires_minutes or ACCESS_TOKEN_EXPIRE_MINUTES
    )
    to_encode["exp"] = expire
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def _decode(token: str) -> dict:
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except JWTError as exc:
        raise WorkflowError(ErrorCode.UNAUTHENTICATED) from exc


def _parse_uuid(value: str | None) -> UUID | None:
    if not value:
        return None
    try:
        return UUID(str(value))
    except ValueError:
        return None


def _user_for_token(db: Session, token: str | None) -> models.User:
    if not token:
        raise WorkflowError(ErrorCode.UNAUTHENTICATED)
    email = _decode(token).get("sub")
    if not email:
        raise WorkflowError(ErrorCode.UNAUTHENTICATED)
    user = db.query(models.User).filter(models.User.email == email).first()
    if user is None or not user.is_active:
        raise WorkflowError(ErrorCode.UNAUTHENTICATED)
    return user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> models.User:
    return _user_for_token(db, credentials.credentials if credentials else None)


def caller_for_token(db: Session, token: str | None, organization_id: str | None) -> CallerContext:
    """Resolve a caller from a raw token, for transports without an Authorization header."""

    user = _user_for_token(db, token)
    return build_caller_context(db, user, _parse_uuid(organization_id))


async def get_caller(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    x_organization_id: str | None = Header(default=None),
    user: models.User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> CallerContext:
    """Resolve the caller and their active organization.

    The active organization comes from the ``X-Organization-Id`` header and
    falls back to the token's ``org_id`` claim.
    """

    organization_id = _parse_uuid(x_organization_id)
    if organization_id is None and credentials is not None:
        organization_id = _parse_uuid(_decode(credentials.credentials).get("org_id"))
    return build_caller_context(db, user, organization_id)
