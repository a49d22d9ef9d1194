from jose import jwt, JWTError
from datetime import timedelta
from typing import Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from office_access.core.clock import utcnow
from office_access.core.config import settings
from office_access.core.database import get_db
from office_access.core.errors import AuthenticationError, PermissionDeniedError
from office_access.models.user import User, UserStatus, UserType
from office_access.schemas.user import TokenData


# Security scheme for bearer token; missing credentials are reported as 401 by get_current_user
security = HTTPBearer(auto_error=False)


class AuthUtils:
    """Utility class for token operations. Tokens are issued by the login service."""

    @staticmethod
    def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
        """
        Create a JWT access token.

        Args:
            data: Dictionary of data to encode in the token; "sub" carries the user id
            expires_delta: Optional expiration time delta

        Returns:
            Encoded JWT token string
        """
        to_encode = data.copy()
        if "sub" in to_encode:
            to_encode["sub"] = str(to_encode["sub"])

        if expires_delta:
            expire = utcnow() + expires_delta
        else:
            expire = utcnow() + timedelta(hours=settings.JWT_EXPIRATION_HOURS)

        to_encode.update({"exp": expire})
        encoded_jwt = jwt.encode(
            to_encode,
            settings.JWT_SECRET,
            algorithm=settings.JWT_ALGORITHM
        )
        return encoded_jwt

    @staticmethod
    def decode_token(token: str) -> TokenData:
        """
        Decode and validate a JWT token.

        Args:
            token: JWT token string

        Returns:
            TokenData with the user id

        Raises:
            AuthenticationError: If token is invalid or expired
        """
        try:
            payload = jwt.decode(
                token,
                settings.JWT_SECRET,
                algorithms=[settings.JWT_ALGORITHM]
            )
        except JWTError:
            raise AuthenticationError("Could not validate credentials")

        subject = payload.get("sub")
        try:
            user_id = int(subject)
        except (TypeError, ValueError):
            raise AuthenticationError("Could not validate credentials")

        return TokenData(user_id=user_id, user_type=payload.get("user_type"))


def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """
    Dependency to get the current authenticated user.

    Args:
        credentials: HTTP bearer token credentials
        db: Database session

    Returns:
        User object of the authenticated user

    Raises:
        AuthenticationError: If no valid token is supplied or the user is unknown
        PermissionDeniedError: If the account is not active
    """
    if credentials is None or not credentials.credentials:
        raise AuthenticationError("Not authenticated")

    token_data = AuthUtils.decode_token(credentials.credentials)

    user = db.get(User, token_data.user_id)
    if user is None:
        raise AuthenticationError("User not found")

    if user.status != UserStatus.ACTIVE:
        raise PermissionDeniedError("Inactive account")

    return user


def get_current_admin(
    current_user: User = Depends(get_current_user)
) -> User:
    """
    Dependency to verify current user is a tenant or merchant admin.

    Raises:
        PermissionDeniedError: If user is not an admin
    """
    if not current_user.is_admin:
        raise PermissionDeniedError("Not enough permissions. Admin access required.")

    return current_user


def check_merchant_scope(current_user: User, user: User) -> None:
    """
    Merchant admins only manage the people of their own merchant.

    Raises:
        PermissionDeniedError: If user belongs to another merchant
    """
    if current_user.user_type == UserType.MERCHANT_ADMIN and user.merchant_id != current_user.merchant_id:
        raise PermissionDeniedError("User belongs to another merchant")
