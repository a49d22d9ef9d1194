"""
User Router
Minimal user management: the owners of passcodes and access records
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError
from typing import Optional
import logging

from office_access.core.auth import check_merchant_scope, get_current_user, get_current_admin
from office_access.core.config import settings
from office_access.core.database import get_db
from office_access.core.errors import ConflictError, NotFoundError, PermissionDeniedError
from office_access.models.user import User, UserStatus, UserType
from office_access.repositories.passcode import PasscodeRepository
from office_access.schemas.common import api_response, paginate
from office_access.schemas.user import UserCreate, UserResponse, UserStatusUpdate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["Users"])


def _get_user_or_404(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise NotFoundError(f"User with ID {user_id} not found")
    return user


@router.post("", status_code=status.HTTP_201_CREATED)
def create_user(
    user_data: UserCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin),
):
    """
    Register an employee, visitor or admin.

    Merchant admins can only add users to their own merchant and cannot
    create tenant admins.

    Raises:
        ConflictError: If the username is already taken
        PermissionDeniedError: If a merchant admin oversteps its merchant
    """
    values = user_data.model_dump()
    if current_user.user_type == UserType.MERCHANT_ADMIN:
        if user_data.user_type == UserType.TENANT_ADMIN:
            raise PermissionDeniedError("Merchant admins cannot create tenant admins")
        values["merchant_id"] = current_user.merchant_id

    if user_data.username and db.query(User).filter(User.username == user_data.username).first():
        raise ConflictError("Username already exists")

    user = User(**values)
    db.add(user)
    try:
        db.commit()
    except IntegrityError as e:
        db.rollback()
        raise ConflictError("Username already exists") from e
    db.refresh(user)

    logger.info(f"Admin {current_user.id} created {user.user_type.value} user {user.id}")
    return api_response("User created", data=UserResponse.model_validate(user).to_wire())


@router.get("")
def list_users(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    user_type: Optional[UserType] = Query(None, alias="userType"),
    user_status: Optional[UserStatus] = Query(None, alias="status"),
    merchant_id: Optional[int] = Query(None, alias="merchantId"),
    search: Optional[str] = Query(None, max_length=100),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin),
):
    """List users with optional filters, newest first."""
    if current_user.user_type == UserType.MERCHANT_ADMIN:
        merchant_id = current_user.merchant_id

    query = db.query(User)
    if user_type:
        query = query.filter(User.user_type == user_type)
    if user_status:
        query = query.filter(User.status == user_status)
    if merchant_id:
        query = query.filter(User.merchant_id == merchant_id)
    if search:
        term = f"%{search}%"
        query = query.filter(User.name.ilike(term) | User.phone.ilike(term) | User.username.ilike(term))

    total = query.count()
    users = (
        query.order_by(User.created_at.desc(), User.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    items = [UserResponse.model_validate(u).to_wire() for u in users]
    return api_response("Users retrieved", data=paginate(items, page, limit, total))


@router.get("/me")
def get_me(current_user: User = Depends(get_current_user)):
    return api_response("User retrieved", data=UserResponse.model_validate(current_user).to_wire())


@router.get("/{user_id}")
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin),
):
    user = _get_user_or_404(db, user_id)
    check_merchant_scope(current_user, user)
    return api_response("User retrieved", data=UserResponse.model_validate(user).to_wire())


@router.patch("/{user_id}/status")
def update_user_status(
    user_id: int,
    status_data: UserStatusUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_admin),
):
    """
    Change a user's account status.

    Leaving the active state revokes every active passcode of the user.
    """
    user = _get_user_or_404(db, user_id)
    check_merchant_scope(current_user, user)

    previous = user.status
    user.status = status_data.status
    db.commit()
    db.refresh(user)

    revoked = 0
    if previous == UserStatus.ACTIVE and user.status != UserStatus.ACTIVE:
        revoked = PasscodeRepository(db).revoke_user_passcodes(user.id)

    logger.info(f"Admin {current_user.id} changed user {user.id} status {previous.value} -> {user.status.value}")
    data = UserResponse.model_validate(user).to_wire()
    data["revokedPasscodes"] = revoked
    return api_response("User status updated", data=data)
