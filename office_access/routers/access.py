"""
Access Router
Device-facing passcode validation and the access ledger endpoints
"""
from fastapi import APIRouter, Depends, Query, status
from typing import Optional
from datetime import datetime
import logging

from office_access.core.auth import get_current_user, get_current_admin
from office_access.core.clock import ensure_utc
from office_access.core.config import settings
from office_access.core.errors import NotFoundError, PermissionDeniedError, ValidationError
from office_access.models.access_record import AccessDirection, AccessResult
from office_access.models.user import User, UserType
from office_access.repositories.access_record import AccessRecordQuery
from office_access.schemas.access import (
    AccessRecordBatchCreate,
    DeviceContext,
    PasscodeValidationData,
    ValidatePasscodeRequest,
    ValidateQRPasscodeRequest,
    ValidateTimeBasedPasscodeRequest,
)
from office_access.schemas.common import api_response, now_iso
from office_access.services.access_record_service import (
    AccessRecordService,
    get_access_record_service,
    serialize_record,
)
from office_access.services.passcode_service import (
    PasscodeService,
    PasscodeValidationResult,
    get_passcode_service,
    serialize_dynamic_passcode,
    serialize_passcode,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/access", tags=["Access"])


def _require(message: str, *values: Optional[str]) -> None:
    if any(value is None or not str(value).strip() for value in values):
        raise ValidationError(message)


def _record_attempt(
    records: AccessRecordService,
    context: DeviceContext,
    result: PasscodeValidationResult,
) -> None:
    """Append exactly one ledger entry for a validation attempt."""
    if result.valid:
        user_id = result.user_id
    else:
        # Refusals carry a user only when the owner account itself was refused.
        user_id = result.user_id or 0

    records.record_access(
        {
            "user_id": user_id,
            "passcode_id": result.passcode_id,
            "device_id": context.device_id,
            "device_type": context.device_type,
            "direction": context.direction,
            "result": AccessResult.SUCCESS if result.valid else AccessResult.FAILED,
            "fail_reason": None if result.valid else result.reason,
            "project_id": context.project_id,
            "venue_id": context.venue_id,
            "floor_id": context.floor_id,
        },
        allow_anonymous=user_id == 0,
    )


def _validation_response(result: PasscodeValidationResult, success_message: str) -> dict:
    # Invalid passcodes still answer 200; validity is carried by success/data.valid.
    data = PasscodeValidationData(
        valid=result.valid,
        user_id=result.user_id,
        user_name=result.user_name,
        user_type=result.user_type,
        permissions=result.permissions if result.valid else None,
        reason=result.reason,
        timestamp=now_iso(),
    )
    return api_response(
        success_message if result.valid else result.reason,
        data=data.to_wire(),
        success=result.valid,
    )


# ============================================================================
# Validation (device endpoints)
# ============================================================================

@router.post("/validate", status_code=status.HTTP_200_OK)
def validate_passcode(
    request: ValidatePasscodeRequest,
    passcodes: PasscodeService = Depends(get_passcode_service),
    records: AccessRecordService = Depends(get_access_record_service),
):
    """
    Validate a passcode read by an access device.

    Every attempt, granted or refused, is appended to the access ledger before
    the device gets its answer.

    Args:
        request: Code, device id, direction and optional location

    Returns:
        Envelope with success mirroring data.valid; HTTP 200 either way

    Raises:
        ValidationError: If code or deviceId is missing (400)
    """
    _require("Passcode and device ID are required", request.code, request.device_id)

    result = passcodes.validate_passcode(request.code, request.device_id)
    _record_attempt(records, request, result)
    return _validation_response(result, "Access granted")


@router.post("/validate/qr", status_code=status.HTTP_200_OK)
def validate_qr_passcode(
    request: ValidateQRPasscodeRequest,
    passcodes: PasscodeService = Depends(get_passcode_service),
    records: AccessRecordService = Depends(get_access_record_service),
):
    """Validate an encrypted dynamic QR code; same contract as /validate."""
    _require("QR content and device ID are required", request.qr_content, request.device_id)

    result = passcodes.validate_qr_passcode(request.qr_content, request.device_id)
    _record_attempt(records, request, result)
    return _validation_response(result, "QR code access granted")


@router.post("/validate/time-based", status_code=status.HTTP_200_OK)
def validate_time_based_passcode(
    request: ValidateTimeBasedPasscodeRequest,
    passcodes: PasscodeService = Depends(get_passcode_service),
    records: AccessRecordService = Depends(get_access_record_service),
):
    """Validate a time-window code together with the passcode it derives from."""
    _require(
        "Time-based code, base code and device ID are required",
        request.time_based_code, request.base_code, request.device_id,
    )

    result = passcodes.validate_time_based_passcode(request.time_based_code, request.base_code, request.device_id)
    _record_attempt(records, request, result)
    return _validation_response(result, "Time-based code access granted")


# ============================================================================
# Access records
# ============================================================================

@router.get("/records")
def get_access_records(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    user_id: Optional[int] = Query(None, alias="userId"),
    device_id: Optional[str] = Query(None, alias="deviceId"),
    direction: Optional[AccessDirection] = Query(None),
    result: Optional[AccessResult] = Query(None),
    project_id: Optional[int] = Query(None, alias="projectId"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    search: Optional[str] = Query(None, max_length=100),
    sort_by: str = Query("timestamp", alias="sortBy"),
    sort_order: str = Query("desc", alias="sortOrder"),
    records: AccessRecordService = Depends(get_access_record_service),
    current_user: User = Depends(get_current_user),
):
    """
    List access records with filters, sorting and pagination.

    Non-admin users only ever see their own records.
    """
    if not current_user.is_admin:
        user_id = current_user.id

    query = AccessRecordQuery(
        page=page,
        limit=limit,
        user_id=user_id,
        device_id=device_id,
        direction=direction,
        result=result,
        project_id=project_id,
        start_date=ensure_utc(start_date),
        end_date=ensure_utc(end_date),
        search=search,
        sort_by=sort_by,
        sort_order=sort_order,
    )
    return api_response("Access records retrieved", data=records.get_access_records(query))


@router.get("/records/user/{user_id}")
def get_user_access_records(
    user_id: int,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    records: AccessRecordService = Depends(get_access_record_service),
    current_user: User = Depends(get_current_user),
):
    """Access records of one user; users may read their own, admins anyone's."""
    if user_id <= 0:
        raise ValidationError("User ID is invalid")
    if not current_user.is_admin and current_user.id != user_id:
        raise PermissionDeniedError("Not allowed to read another user's access records")

    return api_response(
        "User access records retrieved",
        data=records.get_user_access_records(user_id, page=page, limit=limit),
    )


@router.get("/records/device/{device_id}")
def get_device_access_records(
    device_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    records: AccessRecordService = Depends(get_access_record_service),
    current_user: User = Depends(get_current_admin),
):
    """Access records written by one device."""
    _require("Device ID is required", device_id)
    return api_response(
        "Device access records retrieved",
        data=records.get_device_access_records(device_id, page=page, limit=limit),
    )


@router.post("/records/batch", status_code=status.HTTP_201_CREATED)
def batch_create_access_records(
    batch: AccessRecordBatchCreate,
    records: AccessRecordService = Depends(get_access_record_service),
    current_user: User = Depends(get_current_admin),
):
    """Import records in one transaction; one invalid record rejects the whole batch."""
    created = records.batch_record_access([record.model_dump() for record in batch.records])
    logger.info(f"User {current_user.id} imported {len(created)} access records")
    return api_response(
        f"{len(created)} access records created",
        data=[serialize_record(record) for record in created],
    )


@router.delete("/records/cleanup")
def cleanup_access_records(
    days: int = Query(settings.access_record_retention_days, ge=0, description="Days of records to keep"),
    records: AccessRecordService = Depends(get_access_record_service),
    current_user: User = Depends(get_current_admin),
):
    """Delete access records older than the retention window."""
    removed = records.cleanup_old_records(days)
    logger.info(f"User {current_user.id} purged {removed} access records older than {days} days")
    return api_response(f"Removed {removed} access records", data={"deletedCount": removed, "daysToKeep": days})


# ============================================================================
# Statistics & status
# ============================================================================

@router.get("/stats")
def get_access_stats(
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    merchant_id: Optional[int] = Query(None, alias="merchantId"),
    device_id: Optional[str] = Query(None, alias="deviceId"),
    records: AccessRecordService = Depends(get_access_record_service),
    current_user: User = Depends(get_current_admin),
):
    """Aggregated access statistics; merchant admins are scoped to their merchant."""
    if current_user.user_type == UserType.MERCHANT_ADMIN:
        merchant_id = current_user.merchant_id

    stats = records.get_access_stats(
        start_date=start_date,
        end_date=end_date,
        merchant_id=merchant_id,
        device_id=device_id,
    )
    return api_response("Access statistics retrieved", data=stats)


@router.get("/realtime-status")
def get_realtime_status(
    device_id: Optional[str] = Query(None, alias="deviceId"),
    records: AccessRecordService = Depends(get_access_record_service),
    current_user: User = Depends(get_current_user),
):
    """Whether a device (or the site) has been active recently, with today's counts."""
    return api_response("Realtime access status retrieved", data=records.get_realtime_status(device_id))


# ============================================================================
# Passcodes (user and device facing)
# ============================================================================

@router.post("/passcode/refresh")
def refresh_passcode(
    passcodes: PasscodeService = Depends(get_passcode_service),
    current_user: User = Depends(get_current_user),
):
    """Revoke the caller's active passcode and issue a new one with fresh QR content."""
    dynamic = passcodes.refresh_passcode(current_user.id)
    return api_response("Passcode refreshed", data=serialize_dynamic_passcode(dynamic))


@router.get("/passcode/current")
def get_current_passcode(
    passcodes: PasscodeService = Depends(get_passcode_service),
    current_user: User = Depends(get_current_user),
):
    """The caller's most recent active passcode."""
    passcode = passcodes.get_current_passcode(current_user.id)
    if not passcode:
        raise NotFoundError("No active passcode")
    return api_response("Current passcode retrieved", data=serialize_passcode(passcode))


@router.get("/passcode/{code}")
def get_passcode_info(
    code: str,
    passcodes: PasscodeService = Depends(get_passcode_service),
):
    """Passcode details for devices; does not consume a use."""
    _require("Passcode is required", code)
    return api_response("Passcode info retrieved", data=passcodes.get_passcode_info(code))
