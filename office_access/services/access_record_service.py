"""
Access Record Service: recording pass attempts and reporting on them.
"""
from datetime import datetime, timedelta
from typing import Any, Callable, List, Mapping, Optional
import logging

from fastapi import Depends
from sqlalchemy import func
from sqlalchemy.orm import Session

from office_access.core.clock import ensure_utc, isoformat, utcnow
from office_access.core.config import settings
from office_access.core.database import get_db
from office_access.core.errors import ValidationError
from office_access.models.access_record import AccessRecord, AccessResult
from office_access.models.user import User
from office_access.repositories.access_record import AccessRecordQuery, AccessRecordRepository
from office_access.schemas.common import paginate

logger = logging.getLogger(__name__)

DEFAULT_STATS_DAYS = 7
RECENT_ACTIVITY_LIMIT = 10
TOP_DEVICES_LIMIT = 10


def serialize_record(record: AccessRecord, user: Optional[User] = None) -> dict:
    data = {
        "id": record.id,
        "userId": record.user_id,
        "passcodeId": record.passcode_id,
        "deviceId": record.device_id,
        "deviceType": record.device_type,
        "direction": record.direction.value,
        "result": record.result.value,
        "failReason": record.fail_reason,
        "projectId": record.project_id,
        "venueId": record.venue_id,
        "floorId": record.floor_id,
        "timestamp": isoformat(record.timestamp),
    }
    if user is not None:
        data["user"] = {"id": user.id, "name": user.name, "userType": user.user_type.value}
    return data


class AccessRecordService:
    """Recording and reporting over the access ledger."""

    def __init__(self, db: Session, time_provider: Callable[[], datetime] = utcnow):
        self.db = db
        self.records = AccessRecordRepository(db)
        self.now = time_provider

    def record_access(self, data: Mapping[str, Any], allow_anonymous: bool = False) -> AccessRecord:
        """
        Append one access record.

        Args:
            data: Record fields (snake_case keys)
            allow_anonymous: Accept user_id 0 for attempts with an unknown code

        Returns:
            The persisted AccessRecord
        """
        values = dict(data)
        values.setdefault("timestamp", self.now())
        record = self.records.create(values, allow_anonymous=allow_anonymous)
        logger.info(f"Recorded {record.result.value} access for user {record.user_id} "
                    f"at device {record.device_id} ({record.direction.value})")
        return record

    def batch_record_access(self, records: List[Mapping[str, Any]]) -> List[AccessRecord]:
        if not records:
            raise ValidationError("records must not be empty")
        return self.records.batch_create(records)

    def get_access_records(self, query: AccessRecordQuery) -> dict:
        page, limit = self._page_bounds(query.page, query.limit)
        query.page, query.limit = page, limit
        rows = self.records.find_all(query)
        total = self.records.count(query)
        return paginate(self._serialize_with_users(rows), page, limit, total)

    def get_user_access_records(self, user_id: int, page: int = 1, limit: Optional[int] = None) -> dict:
        return self.get_access_records(AccessRecordQuery(page=page, limit=limit, user_id=user_id))

    def get_device_access_records(self, device_id: str, page: int = 1, limit: Optional[int] = None) -> dict:
        return self.get_access_records(AccessRecordQuery(page=page, limit=limit, device_id=device_id))

    def get_access_stats(
        self,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        merchant_id: Optional[int] = None,
        device_id: Optional[str] = None,
    ) -> dict:
        """
        Aggregate the ledger over a period (the last 7 days by default).

        Returns:
            Totals, success rate, hourly/device/user-type breakdowns,
            the most recent records and the period itself
        """
        end = ensure_utc(end_date) if end_date else self.now()
        start = ensure_utc(start_date) if start_date else end - timedelta(days=DEFAULT_STATS_DAYS)
        if start > end:
            raise ValidationError("startDate must not be after endDate")

        total = self.records.count_by_date_range(start, end, device_id=device_id, merchant_id=merchant_id)
        success = self.records.count_by_date_range(
            start, end, device_id=device_id, result=AccessResult.SUCCESS, merchant_id=merchant_id
        )
        failed = self.records.count_by_date_range(
            start, end, device_id=device_id, result=AccessResult.FAILED, merchant_id=merchant_id
        )

        return {
            "totalCount": total,
            "successCount": success,
            "failedCount": failed,
            "successRate": round(success / total * 100, 2) if total else 0,
            "byHour": self._count_by_hour(start, end, merchant_id, device_id),
            "byDevice": self._count_by_device(start, end, merchant_id, device_id),
            "byUserType": self._count_by_user_type(start, end, merchant_id, device_id),
            "recentActivity": self._recent_activity(start, end, merchant_id, device_id),
            "period": {"startDate": isoformat(start), "endDate": isoformat(end)},
        }

    def get_realtime_status(self, device_id: Optional[str] = None) -> dict:
        now = self.now()
        day_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
        hour_start = now.replace(minute=0, second=0, microsecond=0)

        latest = self.records.find_by_device_id(device_id, limit=1) if device_id else \
            self.records.find_all(AccessRecordQuery(limit=1))
        last_activity = ensure_utc(latest[0].timestamp) if latest else None

        if last_activity is None:
            device_status = "unknown"
            is_online = False
        else:
            is_online = now - last_activity <= timedelta(minutes=settings.device_online_window_minutes)
            device_status = "active" if is_online else "offline"

        return {
            "deviceId": device_id,
            "isOnline": is_online,
            "todayCount": self.records.count_by_date_range(day_start, now, device_id=device_id),
            "currentHourCount": self.records.count_by_date_range(hour_start, now, device_id=device_id),
            "lastActivity": isoformat(last_activity),
            "status": device_status,
        }

    def cleanup_old_records(self, days_to_keep: Optional[int] = None) -> int:
        days = settings.access_record_retention_days if days_to_keep is None else days_to_keep
        return self.records.cleanup(days, now=self.now())

    # ------------------------------------------------------------------

    def _page_bounds(self, page: Optional[int], limit: Optional[int]):
        page = page or 1
        limit = limit or settings.default_page_size
        if page < 1:
            raise ValidationError("page must be at least 1")
        if limit < 1 or limit > settings.max_page_size:
            raise ValidationError(f"limit must be between 1 and {settings.max_page_size}")
        return page, limit

    def _serialize_with_users(self, rows: List[AccessRecord]) -> List[dict]:
        user_ids = {row.user_id for row in rows if row.user_id}
        users = {}
        if user_ids:
            users = {u.id: u for u in self.db.query(User).filter(User.id.in_(user_ids)).all()}
        return [serialize_record(row, users.get(row.user_id)) for row in rows]

    def _period_query(self, columns, start, end, merchant_id, device_id, join_users=False):
        q = self.db.query(*columns).filter(AccessRecord.timestamp >= start, AccessRecord.timestamp <= end)
        if join_users or merchant_id:
            q = q.join(User, User.id == AccessRecord.user_id)
        if merchant_id:
            q = q.filter(User.merchant_id == merchant_id)
        if device_id:
            q = q.filter(AccessRecord.device_id == device_id)
        return q

    def _count_by_hour(self, start, end, merchant_id, device_id) -> List[dict]:
        # Bucketed in Python: hour extraction differs between SQLite and PostgreSQL
        rows = self._period_query([AccessRecord.timestamp], start, end, merchant_id, device_id).all()
        counts = [0] * 24
        for (timestamp,) in rows:
            counts[ensure_utc(timestamp).hour] += 1
        return [{"hour": hour, "count": count} for hour, count in enumerate(counts)]

    def _count_by_device(self, start, end, merchant_id, device_id) -> List[dict]:
        count = func.count(AccessRecord.id)
        rows = (
            self._period_query([AccessRecord.device_id, count], start, end, merchant_id, device_id)
            .group_by(AccessRecord.device_id)
            .order_by(count.desc(), AccessRecord.device_id)
            .limit(TOP_DEVICES_LIMIT)
            .all()
        )
        return [{"deviceId": device, "count": n} for device, n in rows]

    def _count_by_user_type(self, start, end, merchant_id, device_id) -> List[dict]:
        count = func.count(AccessRecord.id)
        rows = (
            self._period_query([User.user_type, count], start, end, merchant_id, device_id, join_users=True)
            .group_by(User.user_type)
            .order_by(count.desc())
            .all()
        )
        return [{"userType": user_type.value, "count": n} for user_type, n in rows]

    def _recent_activity(self, start, end, merchant_id, device_id) -> List[dict]:
        rows = (
            self._period_query([AccessRecord], start, end, merchant_id, device_id)
            .order_by(AccessRecord.timestamp.desc(), AccessRecord.id.desc())
            .limit(RECENT_ACTIVITY_LIMIT)
            .all()
        )
        return self._serialize_with_users(rows)


def get_access_record_service(db: Session = Depends(get_db)) -> AccessRecordService:
    """Dependency providing an AccessRecordService bound to the request session."""
    return AccessRecordService(db)
