"""
Passcode store: persistence and lifecycle of passcodes.
"""
from datetime import datetime
from typing import Any, List, Mapping, Optional
import logging

from sqlalchemy import or_, update
from sqlalchemy.exc import SQLAlchemyError

from office_access.core.clock import ensure_utc, utcnow
from office_access.core.errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from office_access.models.passcode import Passcode, PasscodeStatus, PasscodeType, TERMINAL_STATUSES
from office_access.models.user import User
from office_access.repositories.base import BaseRepository, ValidationOutcome, parse_datetime

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = ("status", "expiry_time", "usage_limit", "usage_count", "permissions")

_PASSCODE_TYPES = {t.value for t in PasscodeType}
_PASSCODE_STATUSES = {s.value for s in PasscodeStatus}


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def validate_passcode_data(data: Mapping[str, Any], now: Optional[datetime] = None) -> ValidationOutcome:
    """
    Check passcode fields without touching the database.

    Args:
        data: Partial passcode fields (snake_case keys)
        now: Reference time for the expiry check (defaults to the current time)

    Returns:
        ValidationOutcome listing every failing field
    """
    now = now or utcnow()
    errors = []

    user_id = data.get("user_id")
    if not isinstance(user_id, int) or isinstance(user_id, bool) or user_id <= 0:
        errors.append("user_id is invalid")

    code = data.get("code")
    if not isinstance(code, str) or not code.strip():
        errors.append("code must not be empty")

    passcode_type = _enum_value(data.get("type"))
    if not passcode_type:
        errors.append("type is required")
    elif passcode_type not in _PASSCODE_TYPES:
        errors.append("type is invalid")

    status = _enum_value(data.get("status"))
    if status is not None and status not in _PASSCODE_STATUSES:
        errors.append("status is invalid")

    usage_count = data.get("usage_count")
    if usage_count is not None and usage_count < 0:
        errors.append("usage_count must not be negative")

    usage_limit = data.get("usage_limit")
    if usage_limit is not None and usage_limit <= 0:
        errors.append("usage_limit must be greater than 0")

    expiry_time = data.get("expiry_time")
    if expiry_time:
        try:
            parsed = parse_datetime(expiry_time)
        except ValueError:
            errors.append("expiry_time format is invalid")
        else:
            if parsed <= ensure_utc(now):
                errors.append("expiry_time must be in the future")

    return ValidationOutcome(is_valid=not errors, errors=errors)


class PasscodeRepository(BaseRepository):
    """Passcode persistence operations bound to one session."""

    def create(self, data: Mapping[str, Any], now: Optional[datetime] = None) -> Passcode:
        outcome = validate_passcode_data(data, now=now)
        if not outcome.is_valid:
            raise ValidationError("Invalid passcode data", errors=outcome.errors)

        if self.code_exists(data["code"]):
            raise ConflictError("Passcode code already exists")

        passcode = Passcode(
            user_id=data["user_id"],
            code=data["code"],
            type=PasscodeType(_enum_value(data["type"])),
            status=PasscodeStatus(_enum_value(data.get("status") or PasscodeStatus.ACTIVE)),
            expiry_time=parse_datetime(data.get("expiry_time")),
            usage_limit=data.get("usage_limit"),
            usage_count=data.get("usage_count") or 0,
            permissions=list(data.get("permissions") or []),
            application_id=data.get("application_id"),
        )
        self.db.add(passcode)
        self._commit("create passcode", conflict_message="Passcode code already exists")
        self.db.refresh(passcode)

        logger.info(f"Created passcode {passcode.id} for user {passcode.user_id} ({passcode.type.value})")
        return passcode

    def find_by_id(self, passcode_id: int) -> Optional[Passcode]:
        return self.db.query(Passcode).filter(Passcode.id == passcode_id).first()

    def find_by_code(self, code: str) -> Optional[Passcode]:
        return self.db.query(Passcode).filter(Passcode.code == code).first()

    def find_active_by_user_id(self, user_id: int, now: Optional[datetime] = None) -> Optional[Passcode]:
        """Most recently created active passcode of the user that has not expired."""
        now = now or utcnow()
        return (
            self.db.query(Passcode)
            .filter(
                Passcode.user_id == user_id,
                Passcode.status == PasscodeStatus.ACTIVE,
                or_(Passcode.expiry_time.is_(None), Passcode.expiry_time > now),
            )
            .order_by(Passcode.created_at.desc(), Passcode.id.desc())
            .first()
        )

    def find_by_user_id(self, user_id: int, limit: int = 10) -> List[Passcode]:
        return (
            self.db.query(Passcode)
            .filter(Passcode.user_id == user_id)
            .order_by(Passcode.created_at.desc(), Passcode.id.desc())
            .limit(limit)
            .all()
        )

    def update(self, passcode_id: int, fields: Mapping[str, Any]) -> Passcode:
        """
        Apply a partial update.

        Raises:
            ValidationError: If no updatable field is given or a lifecycle rule is broken
            NotFoundError: If the passcode does not exist
        """
        changes = {k: v for k, v in fields.items() if k in UPDATABLE_FIELDS}
        if not changes:
            raise ValidationError("No fields to update")

        passcode = self.find_by_id(passcode_id)
        if not passcode:
            raise NotFoundError(f"Passcode with ID {passcode_id} not found")

        errors = []
        if "status" in changes:
            try:
                new_status = PasscodeStatus(_enum_value(changes["status"]))
            except ValueError:
                errors.append("status is invalid")
            else:
                if passcode.status in TERMINAL_STATUSES and new_status != passcode.status:
                    errors.append(f"status '{passcode.status.value}' is terminal")
                changes["status"] = new_status

        if "expiry_time" in changes:
            try:
                changes["expiry_time"] = parse_datetime(changes["expiry_time"])
            except ValueError:
                errors.append("expiry_time format is invalid")

        new_limit = changes.get("usage_limit", passcode.usage_limit)
        new_count = changes.get("usage_count", passcode.usage_count)
        if "usage_limit" in changes and new_limit is not None and new_limit <= 0:
            errors.append("usage_limit must be greater than 0")
        if new_count is None or new_count < passcode.usage_count:
            errors.append("usage_count cannot decrease")
        elif new_limit is not None and new_count > new_limit:
            errors.append("usage_count cannot exceed usage_limit")

        if errors:
            raise ValidationError("Invalid passcode update", errors=errors)

        for field, value in changes.items():
            setattr(passcode, field, value)

        self._commit(f"update passcode {passcode_id}")
        self.db.refresh(passcode)
        return passcode

    def increment_usage_count(self, passcode_id: int) -> None:
        self._execute_update(
            update(Passcode)
            .where(Passcode.id == passcode_id)
            .values(usage_count=Passcode.usage_count + 1, updated_at=utcnow()),
            f"increment usage of passcode {passcode_id}",
        )

    def consume(self, passcode_id: int, now: Optional[datetime] = None) -> bool:
        """
        Grant one use in a single conditional UPDATE.

        The status, expiry and usage-limit checks happen in the same statement
        as the increment, so concurrent validations cannot both take the last use.

        Returns:
            True if a use was granted, False otherwise
        """
        now = now or utcnow()
        affected = self._execute_update(
            update(Passcode)
            .where(
                Passcode.id == passcode_id,
                Passcode.status == PasscodeStatus.ACTIVE,
                or_(Passcode.expiry_time.is_(None), Passcode.expiry_time > now),
                or_(Passcode.usage_limit.is_(None), Passcode.usage_count < Passcode.usage_limit),
            )
            .values(usage_count=Passcode.usage_count + 1, updated_at=now),
            f"consume passcode {passcode_id}",
        )
        return affected == 1

    def mark_expired(self, passcode_id: int) -> bool:
        affected = self._execute_update(
            update(Passcode)
            .where(Passcode.id == passcode_id, Passcode.status == PasscodeStatus.ACTIVE)
            .values(status=PasscodeStatus.EXPIRED, updated_at=utcnow()),
            f"expire passcode {passcode_id}",
        )
        return affected == 1

    def revoke_user_passcodes(self, user_id: int) -> int:
        revoked = self._execute_update(
            update(Passcode)
            .where(Passcode.user_id == user_id, Passcode.status == PasscodeStatus.ACTIVE)
            .values(status=PasscodeStatus.REVOKED, updated_at=utcnow()),
            f"revoke passcodes of user {user_id}",
        )
        if revoked:
            logger.info(f"Revoked {revoked} active passcode(s) of user {user_id}")
        return revoked

    def delete(self, passcode_id: int) -> None:
        passcode = self.find_by_id(passcode_id)
        if not passcode:
            raise NotFoundError(f"Passcode with ID {passcode_id} not found")
        self.db.delete(passcode)
        self._commit(f"delete passcode {passcode_id}")

    def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        """Flip active passcodes whose expiry time has passed to expired."""
        now = now or utcnow()
        return self._execute_update(
            update(Passcode)
            .where(
                Passcode.status == PasscodeStatus.ACTIVE,
                Passcode.expiry_time.isnot(None),
                Passcode.expiry_time <= now,
            )
            .values(status=PasscodeStatus.EXPIRED, updated_at=now),
            "expire outdated passcodes",
        )

    def count(
        self,
        user_id: Optional[int] = None,
        status: Optional[PasscodeStatus] = None,
        passcode_type: Optional[PasscodeType] = None,
        merchant_id: Optional[int] = None,
    ) -> int:
        query = self.db.query(Passcode)
        if merchant_id is not None:
            query = query.join(User, User.id == Passcode.user_id).filter(User.merchant_id == merchant_id)
        if user_id:
            query = query.filter(Passcode.user_id == user_id)
        if status:
            query = query.filter(Passcode.status == status)
        if passcode_type:
            query = query.filter(Passcode.type == passcode_type)
        return query.count()

    def exists(self, passcode_id: int) -> bool:
        return self.db.query(Passcode.id).filter(Passcode.id == passcode_id).first() is not None

    def code_exists(self, code: str, exclude_id: Optional[int] = None) -> bool:
        query = self.db.query(Passcode.id).filter(Passcode.code == code)
        if exclude_id:
            query = query.filter(Passcode.id != exclude_id)
        return query.first() is not None

    def _execute_update(self, statement, action: str) -> int:
        try:
            result = self.db.execute(statement.execution_options(synchronize_session=False))
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error while trying to {action}: {e}")
            raise PersistenceError(f"Failed to {action}") from e
        self._commit(action)
        # Bulk statements bypass the identity map; drop stale copies.
        self.db.expire_all()
        return result.rowcount
