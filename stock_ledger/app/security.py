"""
Security Module for the Stock Ledger
====================================
- Secret key management
- Password hashing
- JWT bearer tokens
- Role-based access control with fine-grained permissions
- Warehouse scoping for non-admin users
"""

import os
import secrets
import hashlib
import warnings
from datetime import datetime, timedelta
from typing import Optional, Set

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
import bcrypt
from sqlalchemy.orm import Session

from .db import SessionLocal


# =============================================================================
# CONFIGURATION - Secure Defaults
# =============================================================================

def get_secret_key() -> str:
    """
    Get secret key from environment with validation.
    NEVER use a default secret key in production!
    """
    secret = os.getenv("STOCK_SECRET_KEY")

    if not secret:
        env = os.getenv("ENVIRONMENT", "development")
        if env == "production":
            raise RuntimeError(
                "CRITICAL: STOCK_SECRET_KEY environment variable must be set in production! "
                "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(64))\""
            )
        warnings.warn(
            "Using auto-generated secret key. Set STOCK_SECRET_KEY for production!",
            RuntimeWarning
        )
        # Deterministic in development so tokens survive hot-reload
        secret = hashlib.sha256(b"dev-mode-insecure-key").hexdigest()

    if len(secret) < 32:
        raise RuntimeError("STOCK_SECRET_KEY must be at least 32 characters")

    return secret


SECRET_KEY = get_secret_key()
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("TOKEN_EXPIRE_MINUTES", "60"))

ADMIN_ROLE = "admin"
USER_ROLE = "user"


# =============================================================================
# PASSWORD SECURITY
# =============================================================================

MIN_PASSWORD_LENGTH = 8


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    return bcrypt.checkpw(plain_password.encode('utf-8'), hashed_password.encode('utf-8'))


def get_password_hash(password: str) -> str:
    """Hash a password using bcrypt"""
    return bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=12)).decode('utf-8')


# =============================================================================
# TOKEN MANAGEMENT
# =============================================================================

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None
) -> str:
    to_encode = data.copy()

    now = datetime.utcnow()
    expire = now + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))

    to_encode.update({
        "exp": expire,
        "iat": now,
        "jti": secrets.token_urlsafe(16),
        "type": "access"
    })

    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT token.

    Raises:
        HTTPException: If token is invalid or expired
    """
    try:
        return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"}
        )
    except JWTError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"}
        )


# =============================================================================
# ROLE-BASED ACCESS CONTROL (RBAC)
# =============================================================================

class Permission:
    """Fine-grained permissions for stock operations"""

    LOT_VIEW = "lot:view"
    LOT_ADJUST = "lot:adjust"  # Direct qty_on_hand corrections
    LOT_DAMAGE = "lot:damage"
    LOT_EXPIRE = "lot:expire"

    RECEIVE_VIEW = "receive:view"
    RECEIVE_CREATE = "receive:create"

    ISSUE_VIEW = "issue:view"
    ISSUE_CREATE = "issue:create"
    ISSUE_CANCEL = "issue:cancel"

    TRANSFER_VIEW = "transfer:view"
    TRANSFER_CREATE = "transfer:create"
    TRANSFER_RESPOND = "transfer:respond"  # Confirm / reject

    REPORT_VIEW = "report:view"

    SETTINGS_VIEW = "settings:view"
    SETTINGS_UPDATE = "settings:update"

    ALL_WAREHOUSES = "warehouse:all"


ROLE_PERMISSIONS: dict[str, Set[str]] = {
    ADMIN_ROLE: {
        Permission.LOT_VIEW, Permission.LOT_ADJUST, Permission.LOT_DAMAGE, Permission.LOT_EXPIRE,
        Permission.RECEIVE_VIEW, Permission.RECEIVE_CREATE,
        Permission.ISSUE_VIEW, Permission.ISSUE_CREATE, Permission.ISSUE_CANCEL,
        Permission.TRANSFER_VIEW, Permission.TRANSFER_CREATE, Permission.TRANSFER_RESPOND,
        Permission.REPORT_VIEW,
        Permission.SETTINGS_VIEW, Permission.SETTINGS_UPDATE,
        Permission.ALL_WAREHOUSES,
    },

    USER_ROLE: {
        Permission.LOT_VIEW, Permission.LOT_DAMAGE,
        Permission.RECEIVE_VIEW, Permission.RECEIVE_CREATE,
        Permission.ISSUE_VIEW, Permission.ISSUE_CREATE,
        Permission.TRANSFER_VIEW, Permission.TRANSFER_CREATE, Permission.TRANSFER_RESPOND,
        Permission.REPORT_VIEW,
        Permission.SETTINGS_VIEW,
    },
}


def get_role_permissions(role: str) -> Set[str]:
    """Get permissions for a role"""
    return ROLE_PERMISSIONS.get(role, set())


# =============================================================================
# DEPENDENCY INJECTION
# =============================================================================

def get_db():
    """
    Database session dependency.

    Closing the session rolls back whatever transaction an aborted request
    left open.
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
):
    """
    Get current authenticated user from JWT token.
    """
    from . import models  # Avoid circular import

    payload = decode_token(token)

    username = payload.get("sub")
    if username is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
            headers={"WWW-Authenticate": "Bearer"}
        )

    user = db.query(models.User).filter(models.User.username == username).first()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"}
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User account is disabled"
        )

    return user


def require_permission(*required_permissions: str):
    """
    Dependency that requires user to have specific permissions.
    """
    def permission_checker(current_user=Depends(get_current_user)):
        user_permissions = get_role_permissions(current_user.role)

        missing = set(required_permissions) - user_permissions
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(sorted(missing))}"
            )

        return current_user

    return permission_checker


# =============================================================================
# WAREHOUSE SCOPING
# =============================================================================

def is_admin(user) -> bool:
    return Permission.ALL_WAREHOUSES in get_role_permissions(user.role)


def scoped_warehouse(user, requested: Optional[int]) -> Optional[int]:
    """
    Warehouse filter for a read. Admins see what they ask for (None means
    every warehouse); everyone else is pinned to their home warehouse.
    """
    if is_admin(user):
        return requested
    if requested is not None and requested != user.warehouse_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access limited to your own warehouse"
        )
    return user.warehouse_id


def ensure_warehouse_access(user, warehouse_id: int) -> None:
    """Refuse a write against a warehouse the user does not belong to"""
    if not is_admin(user) and warehouse_id != user.warehouse_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access limited to your own warehouse"
        )
