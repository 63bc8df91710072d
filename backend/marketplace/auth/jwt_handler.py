"""
JWT token creation and verification
"""

from datetime import timedelta
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel

from ..config import settings
from ..utils.clock import utcnow


class TokenData(BaseModel):
    user_id: int
    username: Optional[str] = None


class InvalidToken(Exception):
    pass


def create_access_token(user_id: int, username: Optional[str] = None, expires_delta: Optional[timedelta] = None) -> str:
    """Sign a token for ``user_id``; issuance for real accounts happens in the identity service"""
    expire = utcnow() + (expires_delta or timedelta(minutes=settings.access_token_expire_minutes))
    claims = {"sub": str(user_id), "userId": user_id, "exp": expire}
    if username:
        claims["username"] = username
    return jwt.encode(claims, settings.secret_key, algorithm=settings.algorithm)


def verify_token(token: str) -> TokenData:
    """Decode and validate ``token``; raises ``InvalidToken`` on any failure"""
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[settings.algorithm])
    except JWTError as e:
        raise InvalidToken(str(e)) from e

    user_id = payload.get("userId", payload.get("sub"))
    if user_id is None:
        raise InvalidToken("Token has no subject")
    try:
        return TokenData(user_id=int(user_id), username=payload.get("username"))
    except (TypeError, ValueError) as e:
        raise InvalidToken("Token subject is not a user id") from e
