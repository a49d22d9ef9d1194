"""
Passcode Router
Admin endpoints for issuing and maintaining passcodes
"""
from fastapi import APIRouter, Depends, Query, status
from typing import Optional
import logging

from office_access.core.auth import check_merchant_scope, get_current_admin
from office_access.core.errors import NotFoundError
from office_access.models.passcode import Passcode, PasscodeType
from office_access.models.user import User, UserType
from office_access.schemas.common import api_response
from office_access.schemas.passcode import PasscodeBatchGenerate, PasscodeCreate, PasscodeGenerate, PasscodeUpdate
from office_access.services.passcode_service import (
    PasscodeGenerationOptions,
    PasscodeService,
    get_passcode_service,
    serialize_dynamic_passcode,
    serialize_passcode,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/passcodes", tags=["Passcodes"])


def _get_owner(passcodes: PasscodeService, current_user: User, user_id: int) -> User:
    owner = passcodes.db.get(User, user_id)
    if not owner:
        raise NotFoundError(f"User with ID {user_id} not found")
    check_merchant_scope(current_user, owner)
    return owner


def _get_passcode(passcodes: PasscodeService, current_user: User, passcode_id: int) -> Passcode:
    passcode = passcodes.passcodes.find_by_id(passcode_id)
    if not passcode:
        raise NotFoundError(f"Passcode with ID {passcode_id} not found")
    check_merchant_scope(current_user, passcodes.db.get(User, passcode.user_id))
    return passcode


@router.post("/generate", status_code=status.HTTP_201_CREATED)
def generate_passcode(
    request: PasscodeGenerate,
    passcodes: PasscodeService = Depends(get_passcode_service),
    current_user: User = Depends(get_current_admin),
):
    """
    Issue a passcode with QR content to a user.

    The user's currently active passcodes are revoked first. Employees default
    to a working-day code, visitors with an approved application to a short one.

    Args:
        request: Owner, type and optional duration/usage limit/permissions

    Returns:
        The new passcode with qrContent, timeBasedCode and a PNG qrImage
    """
    _get_owner(passcodes, current_user, request.user_id)

    options = PasscodeGenerationOptions(
        duration=request.duration,
        usage_limit=request.usage_limit,
        permissions=list(request.permissions),
    )

    if request.type == PasscodeType.EMPLOYEE:
        dynamic = passcodes.generate_employee_passcode(request.user_id, options)
    elif request.application_id:
        dynamic = passcodes.generate_visitor_passcode(request.user_id, request.application_id, options)
    else:
        dynamic = passcodes.generate_dynamic_qr_passcode(request.user_id, request.type, options)

    logger.info(f"Admin {current_user.id} issued passcode {dynamic.passcode.id} to user {request.user_id}")
    return api_response("Passcode generated", data=serialize_dynamic_passcode(dynamic))


@router.post("/batch", status_code=status.HTTP_201_CREATED)
def batch_generate_passcodes(
    request: PasscodeBatchGenerate,
    passcodes: PasscodeService = Depends(get_passcode_service),
    current_user: User = Depends(get_current_admin),
):
    """Issue passcodes for several users; users that cannot receive one are listed under failed."""
    for user_id in request.user_ids:
        owner = passcodes.db.get(User, user_id)
        if owner:
            check_merchant_scope(current_user, owner)

    options = PasscodeGenerationOptions(
        duration=request.duration,
        usage_limit=request.usage_limit,
        permissions=list(request.permissions),
    )
    outcome = passcodes.batch_generate_passcodes(request.user_ids, request.type, options)
    issued = outcome["passcodes"]
    return api_response(
        f"Generated {len(issued)} passcode(s)",
        data={
            "passcodes": [serialize_passcode(p) for p in issued],
            "failed": outcome["failed"],
        },
    )


@router.post("", status_code=status.HTTP_201_CREATED)
def create_passcode(
    request: PasscodeCreate,
    passcodes: PasscodeService = Depends(get_passcode_service),
    current_user: User = Depends(get_current_admin),
):
    """Create a passcode with an explicit code string."""
    _get_owner(passcodes, current_user, request.user_id)

    passcode = passcodes.passcodes.create(request.model_dump())
    return api_response("Passcode created", data=serialize_passcode(passcode))


@router.get("/stats")
def get_passcode_statistics(
    user_id: Optional[int] = Query(None, alias="userId"),
    passcode_type: Optional[PasscodeType] = Query(None, alias="type"),
    passcodes: PasscodeService = Depends(get_passcode_service),
    current_user: User = Depends(get_current_admin),
):
    """Passcode counts by status; merchant admins only count their own merchant's passcodes."""
    merchant_id = None
    if current_user.user_type == UserType.MERCHANT_ADMIN:
        merchant_id = current_user.merchant_id

    return api_response(
        "Passcode statistics retrieved",
        data=passcodes.get_passcode_statistics(
            user_id=user_id, passcode_type=passcode_type, merchant_id=merchant_id
        ),
    )


@router.post("/cleanup")
def cleanup_expired_passcodes(
    passcodes: PasscodeService = Depends(get_passcode_service),
    current_user: User = Depends(get_current_admin),
):
    """Flip every active passcode past its expiry time to expired."""
    expired = passcodes.cleanup_expired_passcodes()
    return api_response(f"Expired {expired} passcode(s)", data={"expiredCount": expired})


@router.get("/user/{user_id}")
def get_user_passcodes(
    user_id: int,
    limit: int = Query(10, ge=1, le=100),
    passcodes: PasscodeService = Depends(get_passcode_service),
    current_user: User = Depends(get_current_admin),
):
    _get_owner(passcodes, current_user, user_id)
    rows = passcodes.passcodes.find_by_user_id(user_id, limit=limit)
    return api_response("User passcodes retrieved", data=[serialize_passcode(p) for p in rows])


@router.get("/{passcode_id}")
def get_passcode(
    passcode_id: int,
    passcodes: PasscodeService = Depends(get_passcode_service),
    current_user: User = Depends(get_current_admin),
):
    passcode = _get_passcode(passcodes, current_user, passcode_id)
    return api_response("Passcode retrieved", data=serialize_passcode(passcode))


@router.put("/{passcode_id}")
def update_passcode(
    passcode_id: int,
    request: PasscodeUpdate,
    passcodes: PasscodeService = Depends(get_passcode_service),
    current_user: User = Depends(get_current_admin),
):
    """
    Partially update a passcode.

    Expired and revoked passcodes cannot be reactivated, and usage_count can
    neither decrease nor exceed usage_limit.
    """
    _get_passcode(passcodes, current_user, passcode_id)
    passcode = passcodes.passcodes.update(passcode_id, request.model_dump(exclude_unset=True))
    logger.info(f"Admin {current_user.id} updated passcode {passcode_id}")
    return api_response("Passcode updated", data=serialize_passcode(passcode))


@router.delete("/{passcode_id}")
def delete_passcode(
    passcode_id: int,
    passcodes: PasscodeService = Depends(get_passcode_service),
    current_user: User = Depends(get_current_admin),
):
    """Remove a passcode row; its access records keep their history with passcodeId cleared."""
    _get_passcode(passcodes, current_user, passcode_id)
    passcodes.passcodes.delete(passcode_id)
    logger.info(f"Admin {current_user.id} deleted passcode {passcode_id}")
    return api_response("Passcode deleted", data={"id": passcode_id})
