"""
JWT authentication + password hashing service.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from loguru import logger
from passlib.context import CryptContext

from config import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

RESET_PURPOSE = "password_reset"


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed)
    except ValueError:
        return False


def create_access_token(user: dict, expires_delta: Optional[timedelta] = None) -> str:
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(days=settings.JWT_EXPIRE_DAYS))
    payload = {
        "sub": user["id"],
        "email": user["email"],
        "verified": user.get("is_verified", False),
        "ver": user.get("updated_at"),
        "iat": now,
        "exp": expire,
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def create_reset_token(user: dict) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": user["id"],
        "purpose": RESET_PURPOSE,
        "ver": user.get("updated_at"),
        "iat": now,
        "exp": now + timedelta(hours=settings.RESET_TOKEN_EXPIRE_HOURS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """Return the token claims, or None when the signature or expiry check fails."""
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT rejected: {e}")
        return None


def token_matches_user(claims: dict, user: dict) -> bool:
    """True while the user record still has the updated_at the token was issued against."""
    return claims.get("ver") == user.get("updated_at")


def _auth_error(status_code: int, detail: str, code: str) -> HTTPException:
    return HTTPException(
        status_code=status_code,
        detail={"error": detail, "code": code},
        headers={"WWW-Authenticate": "Bearer"},
    )


def _session_claims(token: str) -> Optional[dict]:
    payload = decode_token(token)
    # reset tokens carry a purpose and must not open a session
    if not payload or payload.get("purpose") or not payload.get("sub"):
        return None
    return payload


def _load_user(user_id: str) -> Optional[dict]:
    # user_service imports this module, so resolve it lazily
    from services.user_service import get_user_by_id

    return get_user_by_id(user_id)


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> dict:
    if credentials is None:
        raise _auth_error(status.HTTP_401_UNAUTHORIZED, "访问令牌缺失", "TOKEN_MISSING")

    claims = _session_claims(credentials.credentials)
    if claims is None:
        raise _auth_error(status.HTTP_403_FORBIDDEN, "访问令牌无效或已过期", "TOKEN_INVALID")

    user = _load_user(claims["sub"])
    if user is None:
        raise _auth_error(status.HTTP_403_FORBIDDEN, "用户不存在", "USER_NOT_FOUND")
    if not token_matches_user(claims, user):
        raise _auth_error(status.HTTP_403_FORBIDDEN, "访问令牌无效或已过期", "TOKEN_INVALID")
    return user


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Optional[dict]:
    if credentials is None:
        return None
    claims = _session_claims(credentials.credentials)
    if claims is None:
        return None
    user = _load_user(claims["sub"])
    if user is None or not token_matches_user(claims, user):
        return None
    return user


async def require_verified(user: dict = Depends(get_current_user)) -> dict:
    if not user.get("is_verified"):
        raise HTTPException(
            status_code=403,
            detail={"error": "需要验证邮箱后才能使用此功能", "code": "EMAIL_NOT_VERIFIED"},
        )
    return user
