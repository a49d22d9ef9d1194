"""
Access record store: append-only ledger of pass attempts.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Iterable, List, Mapping, Optional
import logging

from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError

from office_access.core.clock import utcnow
from office_access.core.errors import PersistenceError, ValidationError
from office_access.models.access_record import AccessDirection, AccessRecord, AccessResult
from office_access.models.user import User
from office_access.repositories.base import BaseRepository, ValidationOutcome, parse_datetime

logger = logging.getLogger(__name__)

SORTABLE_COLUMNS = {
    "id": AccessRecord.id,
    "timestamp": AccessRecord.timestamp,
    "user_id": AccessRecord.user_id,
    "device_id": AccessRecord.device_id,
    "direction": AccessRecord.direction,
    "result": AccessRecord.result,
}

_DIRECTIONS = {d.value for d in AccessDirection}
_RESULTS = {r.value for r in AccessResult}

RECORD_FIELDS = (
    "user_id", "passcode_id", "device_id", "device_type", "direction", "result",
    "fail_reason", "project_id", "venue_id", "floor_id", "timestamp",
)


def _enum_value(value: Any) -> Any:
    return value.value if hasattr(value, "value") else value


def validate_record_data(data: Mapping[str, Any], allow_anonymous: bool = False) -> ValidationOutcome:
    """
    Check access record fields without touching the database.

    Args:
        data: Record fields (snake_case keys)
        allow_anonymous: Accept user_id 0, used for attempts with an unknown code

    Returns:
        ValidationOutcome listing every failing field
    """
    errors = []

    user_id = data.get("user_id")
    if user_id is None:
        errors.append("user_id is required")
    elif not isinstance(user_id, int) or isinstance(user_id, bool) or user_id < 0:
        errors.append("user_id is invalid")
    elif user_id == 0 and not allow_anonymous:
        errors.append("user_id is invalid")

    device_id = data.get("device_id")
    if not isinstance(device_id, str) or not device_id.strip():
        errors.append("device_id must not be empty")

    direction = _enum_value(data.get("direction"))
    if not direction:
        errors.append("direction is required")
    elif direction not in _DIRECTIONS:
        errors.append("direction is invalid")

    result = _enum_value(data.get("result"))
    if not result:
        errors.append("result is required")
    elif result not in _RESULTS:
        errors.append("result is invalid")

    fail_reason = data.get("fail_reason")
    if result == AccessResult.FAILED.value and (not isinstance(fail_reason, str) or not fail_reason.strip()):
        errors.append("fail_reason is required when result is failed")

    return ValidationOutcome(is_valid=not errors, errors=errors)


@dataclass
class AccessRecordQuery:
    """Filters, sorting and pagination for record listings."""
    page: int = 1
    limit: Optional[int] = 10
    user_id: Optional[int] = None
    device_id: Optional[str] = None
    direction: Optional[AccessDirection] = None
    result: Optional[AccessResult] = None
    project_id: Optional[int] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    search: Optional[str] = None
    sort_by: str = "timestamp"
    sort_order: str = "desc"


class AccessRecordRepository(BaseRepository):
    """Access record persistence operations bound to one session."""

    def create(self, data: Mapping[str, Any], allow_anonymous: bool = False) -> AccessRecord:
        record = self._build(data, allow_anonymous=allow_anonymous)
        self.db.add(record)
        self._commit("create access record")
        self.db.refresh(record)
        return record

    def batch_create(self, records: Iterable[Mapping[str, Any]]) -> List[AccessRecord]:
        """
        Insert all records in one transaction; one invalid record rejects the batch.
        """
        rows = []
        errors = []
        for index, data in enumerate(records):
            try:
                rows.append(self._build(data))
            except ValidationError as e:
                errors.extend(f"records[{index}]: {err}" for err in e.errors)
        if errors:
            raise ValidationError("Batch contains invalid access records", errors=errors)
        if not rows:
            return []

        self.db.add_all(rows)
        self._commit(f"create {len(rows)} access records")
        for row in rows:
            self.db.refresh(row)
        logger.info(f"Batch created {len(rows)} access records")
        return rows

    def find_by_id(self, record_id: int) -> Optional[AccessRecord]:
        return self.db.query(AccessRecord).filter(AccessRecord.id == record_id).first()

    def find_all(self, query: AccessRecordQuery) -> List[AccessRecord]:
        sort_column = SORTABLE_COLUMNS.get(query.sort_by)
        if sort_column is None:
            raise ValidationError(f"Cannot sort by '{query.sort_by}'")
        order = (query.sort_order or "desc").lower()
        if order not in ("asc", "desc"):
            raise ValidationError(f"Invalid sort order '{query.sort_order}'")

        q = self._filtered(query)
        if order == "asc":
            q = q.order_by(sort_column.asc(), AccessRecord.id.asc())
        else:
            q = q.order_by(sort_column.desc(), AccessRecord.id.desc())

        if query.limit:
            q = q.limit(query.limit)
            if query.page and query.page > 1:
                q = q.offset((query.page - 1) * query.limit)
        return q.all()

    def count(self, query: Optional[AccessRecordQuery] = None) -> int:
        return self._filtered(query or AccessRecordQuery()).count()

    def count_by_date_range(
        self,
        start: datetime,
        end: datetime,
        user_id: Optional[int] = None,
        device_id: Optional[str] = None,
        result: Optional[AccessResult] = None,
        merchant_id: Optional[int] = None,
    ) -> int:
        q = self.db.query(AccessRecord).filter(AccessRecord.timestamp >= start, AccessRecord.timestamp <= end)
        if user_id:
            q = q.filter(AccessRecord.user_id == user_id)
        if device_id:
            q = q.filter(AccessRecord.device_id == device_id)
        if result:
            q = q.filter(AccessRecord.result == result)
        if merchant_id:
            q = q.join(User, User.id == AccessRecord.user_id).filter(User.merchant_id == merchant_id)
        return q.count()

    def find_by_user_id(self, user_id: int, limit: Optional[int] = None) -> List[AccessRecord]:
        return self._latest(AccessRecord.user_id == user_id, limit)

    def find_by_device_id(self, device_id: str, limit: Optional[int] = None) -> List[AccessRecord]:
        return self._latest(AccessRecord.device_id == device_id, limit)

    def find_by_passcode_id(self, passcode_id: int, limit: Optional[int] = None) -> List[AccessRecord]:
        return self._latest(AccessRecord.passcode_id == passcode_id, limit)

    def find_by_result(self, result: AccessResult, limit: Optional[int] = None) -> List[AccessRecord]:
        return self._latest(AccessRecord.result == result, limit)

    def get_statistics(
        self,
        user_id: Optional[int] = None,
        device_id: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
    ) -> dict:
        def _count(**extra) -> int:
            return self.count(AccessRecordQuery(
                user_id=user_id, device_id=device_id, start_date=start_date, end_date=end_date, **extra
            ))

        total = _count()
        success = _count(result=AccessResult.SUCCESS)
        failed = _count(result=AccessResult.FAILED)
        inbound = _count(direction=AccessDirection.IN)
        outbound = _count(direction=AccessDirection.OUT)
        success_rate = (success / total) * 100 if total > 0 else 0

        return {
            "totalCount": total,
            "successCount": success,
            "failedCount": failed,
            "inCount": inbound,
            "outCount": outbound,
            "successRate": round(success_rate, 2),
        }

    def cleanup(self, days_to_keep: int = 90, now: Optional[datetime] = None) -> int:
        """Delete records older than the retention window; returns the number removed."""
        if days_to_keep < 0:
            raise ValidationError("days_to_keep must not be negative")
        cutoff = (now or utcnow()) - timedelta(days=days_to_keep)
        try:
            removed = (
                self.db.query(AccessRecord)
                .filter(AccessRecord.timestamp < cutoff)
                .delete(synchronize_session=False)
            )
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error while purging access records: {e}")
            raise PersistenceError("Failed to purge access records") from e
        self._commit("purge access records")
        if removed:
            logger.info(f"Removed {removed} access records older than {cutoff.isoformat()}")
        return removed

    def exists(self, record_id: int) -> bool:
        return self.db.query(AccessRecord.id).filter(AccessRecord.id == record_id).first() is not None

    def _build(self, data: Mapping[str, Any], allow_anonymous: bool = False) -> AccessRecord:
        outcome = validate_record_data(data, allow_anonymous=allow_anonymous)
        if not outcome.is_valid:
            raise ValidationError("Invalid access record data", errors=outcome.errors)

        values = {key: data[key] for key in RECORD_FIELDS if data.get(key) is not None}
        values["direction"] = AccessDirection(_enum_value(values["direction"]))
        values["result"] = AccessResult(_enum_value(values["result"]))
        try:
            values["timestamp"] = parse_datetime(values.get("timestamp")) or utcnow()
        except ValueError:
            raise ValidationError("Invalid access record data", errors=["timestamp format is invalid"])
        return AccessRecord(**values)

    def _filtered(self, query: AccessRecordQuery):
        q = self.db.query(AccessRecord)
        if query.user_id is not None:
            q = q.filter(AccessRecord.user_id == query.user_id)
        if query.device_id:
            q = q.filter(AccessRecord.device_id == query.device_id)
        if query.direction:
            q = q.filter(AccessRecord.direction == query.direction)
        if query.result:
            q = q.filter(AccessRecord.result == query.result)
        if query.project_id:
            q = q.filter(AccessRecord.project_id == query.project_id)
        if query.start_date:
            q = q.filter(AccessRecord.timestamp >= query.start_date)
        if query.end_date:
            q = q.filter(AccessRecord.timestamp <= query.end_date)
        if query.search:
            term = f"%{query.search}%"
            q = q.filter(or_(AccessRecord.device_id.ilike(term), AccessRecord.fail_reason.ilike(term)))
        return q

    def _latest(self, condition, limit: Optional[int]) -> List[AccessRecord]:
        q = self.db.query(AccessRecord).filter(condition).order_by(
            AccessRecord.timestamp.desc(), AccessRecord.id.desc()
        )
        if limit:
            q = q.limit(limit)
        return q.all()
