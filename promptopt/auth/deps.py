from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from promptopt.config import settings

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthenticatedUser:
    """Identity taken from a verified session token."""
    user_id: str
    email: Optional[str] = None
    is_admin: bool = False


def decode_token(token: str) -> AuthenticatedUser:
    """
    Verify a session token issued by the identity provider.

    Raises:
        JWTError: bad signature, expired, wrong audience or missing subject
    """
    options = {"verify_aud": settings.JWT_AUDIENCE is not None}
    payload = jwt.decode(
        token,
        settings.JWT_SECRET,
        algorithms=[settings.JWT_ALGORITHM],
        audience=settings.JWT_AUDIENCE,
        options=options,
    )

    user_id = payload.get("sub")
    if not user_id:
        raise JWTError("Token has no subject")

    app_metadata = payload.get("app_metadata") or {}
    return AuthenticatedUser(
        user_id=str(user_id),
        email=payload.get("email"),
        is_admin=app_metadata.get("role") == "admin",
    )


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(bearer_scheme)],
) -> AuthenticatedUser:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception

    try:
        return decode_token(credentials.credentials)
    except JWTError:
        raise credentials_exception


async def require_admin(current_user: Annotated[AuthenticatedUser, Depends(get_current_user)]) -> AuthenticatedUser:
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required")
    return current_user
