"""JWT authentication dependencies.

Tokens are issued by the course management service. The payload carries the
user id in "sub" and the role in "role"; no user table is consulted here.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt

from app.dependencies import Services, get_services

security = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    id: str
    role: str
    email: str | None = None


def create_access_token(data: dict, settings, expires_minutes: int = 60) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expires_minutes)
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str, settings) -> dict:
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
    services: Services = Depends(get_services),
) -> CurrentUser:
    if credentials is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    payload = decode_token(credentials.credentials, services.settings)
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token payload")
    return CurrentUser(id=str(user_id), role=payload.get("role", "student"), email=payload.get("email"))


def require_admin(
    current_user: CurrentUser = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> CurrentUser:
    if current_user.role != services.settings.ADMIN_ROLE:
        raise HTTPException(status_code=403, detail="Admin role required")
    return current_user
