# auth.py - Bearer authentication & RBAC for the report service
# Features:
# - JWT access tokens (issued by the identity service, verified here)
# - Role -> permission scopes
# - Explicit principal passed into every operation (no ambient session state)

import os
import uuid
import secrets
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any, List

from jose import jwt, JWTError, ExpiredSignatureError
from fastapi import HTTPException, Depends, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from pydantic import BaseModel
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database import get_db_session
from models import User, UserRole

logger = logging.getLogger("humanitarian-reports.auth")

# ============================================================
# CONFIGURATION
# ============================================================

SECRET_KEY = os.getenv("JWT_SECRET_KEY", "")
if not SECRET_KEY or SECRET_KEY == "change-this-to-a-secure-random-key-in-production":
    SECRET_KEY = secrets.token_urlsafe(64)
    logger.warning(
        "⚠️  JWT_SECRET_KEY not set or insecure. Generated ephemeral key. "
        "Set JWT_SECRET_KEY in production!"
    )

ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "30"))

security = HTTPBearer(auto_error=False)


# ============================================================
# ROLE PERMISSIONS
# ============================================================

ROLE_PERMISSIONS = {
    UserRole.SUPER_ADMIN: [
        "reports:read", "reports:write", "reports:delete",
        "reports:export", "reports:share", "reports:collaborate",
    ],
    UserRole.ORG_ADMIN: [
        "reports:read", "reports:write", "reports:delete",
        "reports:export", "reports:share", "reports:collaborate",
    ],
    UserRole.MANAGER: [
        "reports:read", "reports:write", "reports:delete",
        "reports:export", "reports:share", "reports:collaborate",
    ],
    UserRole.COORDINATOR: [
        "reports:read", "reports:write",
        "reports:export", "reports:share", "reports:collaborate",
    ],
    UserRole.FIELD_WORKER: [
        "reports:read", "reports:write", "reports:export", "reports:collaborate",
    ],
    UserRole.VIEWER: [
        "reports:read", "reports:export",
    ],
}


# ============================================================
# PYDANTIC SCHEMAS
# ============================================================

class CurrentUser(BaseModel):
    id: str
    email: str
    display_name: str
    organisation_id: str
    role: str
    is_active: bool
    permissions: List[str] = []


# ============================================================
# AUTH SERVICE
# ============================================================

class AuthService:
    """Token handling and role lookups"""

    @staticmethod
    def _create_token(data: Dict[str, Any], token_type: str, expires_delta: timedelta) -> str:
        to_encode = data.copy()
        now = datetime.now(timezone.utc)
        to_encode.update({
            "exp": now + expires_delta,
            "iat": now,
            "type": token_type,
            "jti": str(uuid.uuid4()),
        })
        return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

    @staticmethod
    def create_access_token(data: Dict[str, Any], expires_delta: Optional[timedelta] = None) -> str:
        delta = expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
        return AuthService._create_token(data, "access", delta)

    @staticmethod
    def verify_token(token: str) -> Dict[str, Any]:
        try:
            payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
            return payload
        except ExpiredSignatureError:
            raise HTTPException(status_code=401, detail="Token expired")
        except JWTError:
            raise HTTPException(status_code=401, detail="Invalid token")

    @staticmethod
    def decode_access_token(token: str) -> Optional[Dict[str, Any]]:
        """Non-raising variant for transports without HTTP error responses (WebSocket)"""
        try:
            payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        except JWTError:
            return None
        if payload.get("type") != "access" or not payload.get("sub"):
            return None
        return payload

    @staticmethod
    def get_user_permissions(role: UserRole) -> List[str]:
        try:
            return ROLE_PERMISSIONS.get(UserRole(role), ROLE_PERMISSIONS[UserRole.VIEWER])
        except (ValueError, KeyError):
            return ROLE_PERMISSIONS[UserRole.VIEWER]

    @staticmethod
    async def load_principal(user_id: str, db: AsyncSession) -> Optional[CurrentUser]:
        result = await db.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
        if not user or not user.is_active:
            return None
        return CurrentUser(
            id=user.id,
            email=user.email,
            display_name=user.display_name,
            organisation_id=user.organisation_id,
            role=user.role.value if isinstance(user.role, UserRole) else user.role,
            is_active=user.is_active,
            permissions=AuthService.get_user_permissions(user.role),
        )


# ============================================================
# FASTAPI DEPENDENCIES
# ============================================================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db_session),
) -> CurrentUser:
    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = AuthService.verify_token(credentials.credentials)

    if payload.get("type") != "access":
        raise HTTPException(status_code=401, detail="Invalid token type")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")

    principal = await AuthService.load_principal(user_id, db)
    if principal is None:
        raise HTTPException(status_code=401, detail="User not found or inactive")
    return principal


def require_permission(*scopes: str):
    """Dependency factory: require user to have specific permission scopes"""
    async def _check(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        for scope in scopes:
            if scope not in user.permissions:
                raise HTTPException(
                    status_code=403,
                    detail=f"Missing required permission: {scope}",
                )
        return user
    return _check
