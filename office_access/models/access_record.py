from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, CheckConstraint, Index, Enum as SQLEnum
from office_access.core.clock import utcnow
from office_access.core.database import Base
import enum


class AccessDirection(str, enum.Enum):
    IN = "in"
    OUT = "out"


class AccessResult(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"


class AccessRecord(Base):
    """
    Append-only log entry of one pass attempt.

    user_id is 0 for failed attempts whose code matched no passcode, so it
    carries no foreign key.
    """
    __tablename__ = "access_records"
    __table_args__ = (
        CheckConstraint(
            "result <> 'failed' OR (fail_reason IS NOT NULL AND fail_reason <> '')",
            name="ck_access_records_fail_reason",
        ),
        Index("ix_access_records_device_timestamp", "device_id", "timestamp"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, nullable=False, index=True)
    passcode_id = Column(Integer, ForeignKey("passcodes.id", ondelete="SET NULL"), nullable=True, index=True)
    device_id = Column(String(100), nullable=False)
    device_type = Column(String(50), nullable=True)
    direction = Column(SQLEnum(AccessDirection, values_callable=lambda e: [m.value for m in e], native_enum=False),
                       nullable=False)
    result = Column(SQLEnum(AccessResult, values_callable=lambda e: [m.value for m in e], native_enum=False),
                    nullable=False, index=True)
    fail_reason = Column(String(255), nullable=True)

    # Location
    project_id = Column(Integer, nullable=True, index=True)
    venue_id = Column(Integer, nullable=True)
    floor_id = Column(Integer, nullable=True)

    timestamp = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return (f"<AccessRecord(id={self.id}, user_id={self.user_id}, device='{self.device_id}', "
                f"direction='{self.direction}', result='{self.result}')>")
