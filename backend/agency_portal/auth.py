"""
Agency Portal - Back-office Accounts
Password checks, signed session tokens, and role gates for routes.

Tokens carry the role the user held when they signed in. A token whose role
no longer matches the account is refused, so a demoted supervisor cannot
keep approving enforcement action on an old session.
"""
import logging
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from . import config
from .database import get_db
from .models.db_models import UserDB, UserRole

logger = logging.getLogger(__name__)

TOKEN_ALGORITHM = "HS256"

bearer_scheme = HTTPBearer()


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def authenticate(db: Session, email: str, password: str) -> Optional[UserDB]:
    """The account matching the credentials, or None."""
    user = db.query(UserDB).filter(UserDB.email == email).first()
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user


def issue_token(user: UserDB, now: Optional[datetime] = None) -> str:
    """
    Signed session token for a back-office user.

    The `name` claim is the signing name used on notices and timeline
    entries, so clients can show who they are acting as without a lookup.
    """
    now = now or datetime.utcnow()
    claims = {
        "sub": user.id,
        "email": user.email,
        "role": user.role,
        "name": user.display_name,
        "iat": now,
        "exp": now + timedelta(hours=config.ACCESS_TOKEN_EXPIRE_HOURS),
    }
    return jwt.encode(claims, config.JWT_SECRET_KEY, algorithm=TOKEN_ALGORITHM)


def read_token(token: str) -> Optional[dict]:
    """Claims of a valid, unexpired token, or None."""
    try:
        return jwt.decode(token, config.JWT_SECRET_KEY, algorithms=[TOKEN_ALGORITHM])
    except JWTError:
        return None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    db: Session = Depends(get_db),
) -> UserDB:
    unauthorized = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    claims = read_token(credentials.credentials)
    if not claims or not claims.get("sub"):
        raise unauthorized

    user = db.query(UserDB).filter(UserDB.id == claims["sub"]).first()
    if user is None:
        raise unauthorized
    if claims.get("role") != user.role:
        logger.warning(f"Token for {user.email} issued as {claims.get('role')}, account is now {user.role}")
        raise unauthorized

    return user


def require_role(*roles: UserRole):
    """Route dependency admitting only users holding one of `roles`."""
    allowed = {r.value for r in roles}

    async def dependency(current_user: UserDB = Depends(get_current_user)) -> UserDB:
        if current_user.role not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Requires role: {', '.join(sorted(allowed))}",
            )
        return current_user

    return dependency


require_admin = require_role(UserRole.ADMIN)
