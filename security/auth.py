import logging
from typing import Optional

import jwt
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from core.db import get_db
from models.user import User
from security import jwt as jwt_utils
from services.checkout_errors import Unauthorized

logger = logging.getLogger(__name__)


def bearer_token(authorization: Optional[str]) -> str:
    if not authorization:
        raise Unauthorized("Missing Authorization Header")
    if not authorization.lower().startswith("bearer "):
        raise Unauthorized("Unauthorized: Invalid Token")
    return authorization.split(" ", 1)[1].strip()


def resolve_user(db: Session, authorization: Optional[str]) -> User:
    """Resolve an ``Authorization: Bearer`` header to a user or raise ``Unauthorized``."""
    token = bearer_token(authorization)
    try:
        payload = jwt_utils.decode_access(token)
    except jwt.PyJWTError as exc:
        logger.error("Auth Error: %s", exc)
        raise Unauthorized("Unauthorized: Invalid Token") from exc
    user_id = payload.get("sub")
    user = db.query(User).filter(User.id == str(user_id)).one_or_none() if user_id else None
    if not user:
        raise Unauthorized("Unauthorized: Invalid Token")
    return user


def get_current_user(
    db: Session = Depends(get_db), authorization: Optional[str] = Header(default=None, alias="Authorization")
) -> User:
    try:
        return resolve_user(db, authorization)
    except Unauthorized as exc:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(exc))


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user
