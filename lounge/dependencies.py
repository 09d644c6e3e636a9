"""FastAPI dependencies for staff auth, service keys and shared singletons."""
from functools import lru_cache
from typing import Callable

from fastapi import Depends, HTTPException, Security, status
from fastapi.security import APIKeyHeader, OAuth2PasswordBearer
from sqlalchemy.orm import Session

from .auth import decode_staff_token, get_user_by_username
from .availability import AvailabilityChecker
from .cache import AvailabilityCache
from .config import get_settings
from .database import get_db
from .models import RoleEnum, User

settings = get_settings()
oauth_scheme = OAuth2PasswordBearer(tokenUrl="/users/login")
service_api_key_header = APIKeyHeader(name="X-Service-Key", auto_error=False)

STAFF_ROLES = (RoleEnum.ADMIN, RoleEnum.STAFF)


def get_current_user(token: str = Depends(oauth_scheme), db: Session = Depends(get_db)) -> User:
    token_data = decode_staff_token(token)
    user = get_user_by_username(db, token_data.username)
    if not user:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    if user.role != token_data.role:
        # Role changed since login; the old token no longer speaks for this user.
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Role changed, log in again",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


def get_current_active_user(current_user: User = Depends(get_current_user)) -> User:
    return current_user


def allow_roles(*roles: RoleEnum) -> Callable[[User], User]:
    def dependency(current_user: User = Depends(get_current_active_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return dependency


require_staff = allow_roles(*STAFF_ROLES)
require_admin = allow_roles(RoleEnum.ADMIN)


def require_service_key(api_key: str = Security(service_api_key_header)) -> None:
    if not api_key or api_key != settings.service_api_key:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid service key")


@lru_cache
def get_availability_checker() -> AvailabilityChecker:
    """Process-wide checker sharing one availability cache."""
    current = get_settings()
    return AvailabilityChecker(
        cache=AvailabilityCache(ttl=current.availability_cache_ttl),
        fail_mode=current.availability_fail_mode,
    )
