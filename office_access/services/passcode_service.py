"""
Passcode Service for issuing passcodes and validating them at access devices.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional
import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from office_access.core.clock import ensure_utc, isoformat, utcnow
from office_access.core.config import settings
from office_access.core.database import get_db
from office_access.core.errors import NotFoundError, ValidationError
from office_access.models.passcode import Passcode, PasscodeStatus, PasscodeType
from office_access.models.user import User, UserStatus, UserType
from office_access.repositories.passcode import PasscodeRepository
from office_access.services import qr_codes

logger = logging.getLogger(__name__)

BASIC_ACCESS = "basic_access"

# Failure reasons reported to devices and written to the access ledger
REASON_NOT_FOUND = "code does not exist"
REASON_INACTIVE = "code is no longer active"
REASON_EXPIRED = "code has expired"
REASON_USAGE_LIMIT = "usage limit reached"
REASON_USER_NOT_FOUND = "user does not exist"
REASON_USER_DISABLED = "user account is disabled"
REASON_QR_INVALID = "QR code format is invalid"
REASON_QR_EXPIRED = "QR code has expired"
REASON_QR_MISMATCH = "QR code does not match the passcode owner"
REASON_TIME_CODE_EXPIRED = "time-based code has expired"


@dataclass
class PasscodeValidationResult:
    valid: bool
    reason: Optional[str] = None
    passcode: Optional[Passcode] = None
    user_id: Optional[int] = None
    user_name: Optional[str] = None
    user_type: Optional[str] = None
    permissions: List[str] = field(default_factory=list)

    @property
    def passcode_id(self) -> Optional[int]:
        return self.passcode.id if self.passcode else None


@dataclass
class PasscodeGenerationOptions:
    duration: Optional[int] = None          # minutes
    usage_limit: Optional[int] = None
    permissions: List[str] = field(default_factory=list)
    application_id: Optional[int] = None


@dataclass
class DynamicPasscode:
    passcode: Passcode
    qr_content: str
    time_based_code: Optional[str] = None


def serialize_passcode(passcode: Passcode) -> dict:
    return {
        "id": passcode.id,
        "userId": passcode.user_id,
        "code": passcode.code,
        "type": passcode.type.value,
        "status": passcode.status.value,
        "expiryTime": isoformat(passcode.expiry_time),
        "usageLimit": passcode.usage_limit,
        "usageCount": passcode.usage_count,
        "permissions": list(passcode.permissions or []),
        "applicationId": passcode.application_id,
        "createdAt": isoformat(passcode.created_at),
        "updatedAt": isoformat(passcode.updated_at),
    }


def serialize_dynamic_passcode(dynamic: DynamicPasscode, include_image: bool = True) -> dict:
    data = serialize_passcode(dynamic.passcode)
    data["qrContent"] = dynamic.qr_content
    data["timeBasedCode"] = dynamic.time_based_code
    if include_image:
        data["qrImage"] = qr_codes.qr_code_data_url(dynamic.qr_content)
    return data


class PasscodeService:
    """
    Validation and lifecycle of passcodes.

    Every instance works against the session it is given; time_provider lets
    callers pin "now" for expiry decisions.
    """

    def __init__(self, db: Session, time_provider: Callable[[], datetime] = utcnow):
        self.db = db
        self.passcodes = PasscodeRepository(db)
        self.now = time_provider

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate_passcode(self, code: str, device_id: Optional[str] = None) -> PasscodeValidationResult:
        """
        Decide whether a submitted code grants passage and, if so, use it once.

        Args:
            code: Code string read by the device
            device_id: Device that read the code

        Returns:
            PasscodeValidationResult; reason is set whenever valid is False
        """
        passcode = self.passcodes.find_by_code(code)
        if not passcode:
            return self._refuse(REASON_NOT_FOUND, device_id)

        if passcode.status != PasscodeStatus.ACTIVE:
            return self._refuse(REASON_INACTIVE, device_id, passcode)

        now = self.now()
        if passcode.expiry_time and ensure_utc(passcode.expiry_time) <= now:
            self.passcodes.mark_expired(passcode.id)
            return self._refuse(REASON_EXPIRED, device_id, passcode)

        if passcode.usage_limit is not None and passcode.usage_count >= passcode.usage_limit:
            self.passcodes.mark_expired(passcode.id)
            return self._refuse(REASON_USAGE_LIMIT, device_id, passcode)

        user = self.db.get(User, passcode.user_id)
        if not user:
            return self._refuse(REASON_USER_NOT_FOUND, device_id, passcode)
        if user.status != UserStatus.ACTIVE:
            return self._refuse(REASON_USER_DISABLED, device_id, passcode, user_id=user.id)

        if not self.passcodes.consume(passcode.id, now=now):
            # Another validation took the last use (or the code changed) in between.
            self.db.refresh(passcode)
            reason = REASON_USAGE_LIMIT
            if passcode.status != PasscodeStatus.ACTIVE:
                reason = REASON_INACTIVE
            elif passcode.expiry_time and ensure_utc(passcode.expiry_time) <= now:
                reason = REASON_EXPIRED
            return self._refuse(reason, device_id, passcode)

        self.db.refresh(passcode)
        logger.info(f"Passcode {passcode.id} accepted for user {user.id} at device {device_id} "
                    f"(usage {passcode.usage_count}/{passcode.usage_limit})")
        return PasscodeValidationResult(
            valid=True,
            passcode=passcode,
            user_id=user.id,
            user_name=user.name,
            user_type=user.user_type.value,
            permissions=list(passcode.permissions or []),
        )

    def validate_qr_passcode(self, qr_content: str, device_id: Optional[str] = None) -> PasscodeValidationResult:
        """Decrypt QR content, check its own expiry, then validate the embedded code."""
        payload = qr_codes.parse_qr_content(qr_content)
        if not payload:
            return self._refuse(REASON_QR_INVALID, device_id)

        if not qr_codes.is_qr_code_valid(payload.expiry_time, now=self.now()):
            return self._refuse(REASON_QR_EXPIRED, device_id)

        passcode = self.passcodes.find_by_code(payload.code)
        if passcode and passcode.user_id != payload.user_id:
            return self._refuse(REASON_QR_MISMATCH, device_id, passcode)

        return self.validate_passcode(payload.code, device_id)

    def validate_time_based_passcode(
        self,
        time_based_code: str,
        base_code: str,
        device_id: Optional[str] = None,
    ) -> PasscodeValidationResult:
        """Accept a time-window code derived from base_code, then validate base_code."""
        if not qr_codes.validate_time_based_code(
            time_based_code, base_code, settings.passcode_time_window_minutes, now=self.now()
        ):
            return self._refuse(REASON_TIME_CODE_EXPIRED, device_id)
        return self.validate_passcode(base_code, device_id)

    # ------------------------------------------------------------------
    # Issuance
    # ------------------------------------------------------------------

    def generate_passcode(
        self,
        user_id: int,
        passcode_type: PasscodeType,
        options: Optional[PasscodeGenerationOptions] = None,
    ) -> Passcode:
        """
        Issue a new passcode, revoking the user's currently active ones.

        Raises:
            NotFoundError: If the user does not exist
        """
        options = options or PasscodeGenerationOptions()
        user = self.db.get(User, user_id)
        if not user:
            raise NotFoundError(f"User with ID {user_id} not found")
        if user.status != UserStatus.ACTIVE:
            raise ValidationError(f"User {user_id} is not active")

        self.passcodes.revoke_user_passcodes(user_id)

        permissions = [BASIC_ACCESS]
        for permission in options.permissions:
            if permission not in permissions:
                permissions.append(permission)

        now = self.now()
        duration = options.duration or settings.passcode_default_duration_minutes
        passcode = self.passcodes.create(
            {
                "user_id": user_id,
                "code": self._generate_unique_code(),
                "type": passcode_type,
                "status": PasscodeStatus.ACTIVE,
                "expiry_time": qr_codes.expiry_after(duration, now=now),
                "usage_limit": options.usage_limit or settings.passcode_default_usage_limit,
                "usage_count": 0,
                "permissions": permissions,
                "application_id": options.application_id,
            },
            now=now,
        )
        logger.info(f"Issued {passcode_type.value} passcode {passcode.id} to user {user_id} "
                    f"(expires {isoformat(passcode.expiry_time)})")
        return passcode

    def generate_dynamic_qr_passcode(
        self,
        user_id: int,
        passcode_type: PasscodeType,
        options: Optional[PasscodeGenerationOptions] = None,
    ) -> DynamicPasscode:
        passcode = self.generate_passcode(user_id, passcode_type, options)
        qr_content = qr_codes.generate_qr_content(
            user_id=user_id,
            code=passcode.code,
            passcode_type=passcode.type.value,
            expiry_time=passcode.expiry_time,
            permissions=passcode.permissions,
            now=self.now(),
        )
        time_based_code = qr_codes.generate_time_based_code(
            passcode.code, settings.passcode_time_window_minutes, now=self.now()
        )
        return DynamicPasscode(passcode=passcode, qr_content=qr_content, time_based_code=time_based_code)

    def generate_employee_passcode(
        self, user_id: int, options: Optional[PasscodeGenerationOptions] = None
    ) -> DynamicPasscode:
        # Employees get a working-day passcode with generous usage
        options = options or PasscodeGenerationOptions()
        options.duration = options.duration or 480
        options.usage_limit = options.usage_limit or 50
        return self.generate_dynamic_qr_passcode(user_id, PasscodeType.EMPLOYEE, options)

    def generate_visitor_passcode(
        self, user_id: int, application_id: int, options: Optional[PasscodeGenerationOptions] = None
    ) -> DynamicPasscode:
        options = options or PasscodeGenerationOptions()
        options.duration = options.duration or 120
        options.usage_limit = options.usage_limit or 5
        options.application_id = application_id
        return self.generate_dynamic_qr_passcode(user_id, PasscodeType.VISITOR, options)

    def batch_generate_passcodes(
        self,
        user_ids: List[int],
        passcode_type: PasscodeType,
        options: Optional[PasscodeGenerationOptions] = None,
    ) -> dict:
        """Issue passcodes for several users; failures are reported per user."""
        issued = []
        failed = []
        for user_id in user_ids:
            try:
                issued.append(self.generate_passcode(user_id, passcode_type, options))
            except (NotFoundError, ValidationError) as e:
                logger.warning(f"Could not issue passcode for user {user_id}: {e.message}")
                failed.append({"userId": user_id, "reason": e.message})
        return {"passcodes": issued, "failed": failed}

    def refresh_passcode(self, user_id: int) -> DynamicPasscode:
        """Replace the user's active passcode with a fresh one of the matching type."""
        user = self.db.get(User, user_id)
        if not user:
            raise NotFoundError(f"User with ID {user_id} not found")
        passcode_type = PasscodeType.VISITOR if user.user_type == UserType.VISITOR else PasscodeType.EMPLOYEE
        return self.generate_dynamic_qr_passcode(user_id, passcode_type)

    def get_current_passcode(self, user_id: int) -> Optional[Passcode]:
        return self.passcodes.find_active_by_user_id(user_id, now=self.now())

    def get_passcode_info(self, code: str) -> dict:
        passcode = self.passcodes.find_by_code(code)
        if not passcode:
            raise NotFoundError("Passcode not found")

        user = self.db.get(User, passcode.user_id)
        return {
            "id": passcode.id,
            "type": passcode.type.value,
            "status": passcode.status.value,
            "expiryTime": isoformat(passcode.expiry_time),
            "usageLimit": passcode.usage_limit,
            "usageCount": passcode.usage_count,
            "permissions": list(passcode.permissions or []),
            "user": {
                "id": user.id,
                "name": user.name,
                "userType": user.user_type.value,
            } if user else None,
        }

    def cleanup_expired_passcodes(self) -> int:
        expired = self.passcodes.cleanup_expired(now=self.now())
        if expired:
            logger.info(f"Expired {expired} passcode(s) past their expiry time")
        return expired

    def get_passcode_statistics(
        self,
        user_id: Optional[int] = None,
        passcode_type: Optional[PasscodeType] = None,
        merchant_id: Optional[int] = None,
    ) -> dict:
        filters = {"user_id": user_id, "passcode_type": passcode_type, "merchant_id": merchant_id}
        return {
            "total": self.passcodes.count(**filters),
            "active": self.passcodes.count(status=PasscodeStatus.ACTIVE, **filters),
            "expired": self.passcodes.count(status=PasscodeStatus.EXPIRED, **filters),
            "revoked": self.passcodes.count(status=PasscodeStatus.REVOKED, **filters),
        }

    # ------------------------------------------------------------------

    def _generate_unique_code(self) -> str:
        code = qr_codes.generate_unique_id()
        while self.passcodes.code_exists(code):
            code = qr_codes.generate_unique_id()
        return code

    def _refuse(
        self,
        reason: str,
        device_id: Optional[str],
        passcode: Optional[Passcode] = None,
        user_id: Optional[int] = None,
    ) -> PasscodeValidationResult:
        logger.warning(f"Passcode refused at device {device_id}: {reason}"
                       + (f" (passcode {passcode.id})" if passcode else ""))
        return PasscodeValidationResult(valid=False, reason=reason, passcode=passcode, user_id=user_id)


def get_passcode_service(db: Session = Depends(get_db)) -> PasscodeService:
    """Dependency providing a PasscodeService bound to the request session."""
    return PasscodeService(db)
