from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, CheckConstraint, Enum as SQLEnum
from office_access.core.clock import utcnow
from office_access.core.database import Base
from office_access.models.types import PermissionList
import enum


class PasscodeType(str, enum.Enum):
    EMPLOYEE = "employee"
    VISITOR = "visitor"


class PasscodeStatus(str, enum.Enum):
    """`expired` and `revoked` are terminal."""
    ACTIVE = "active"
    EXPIRED = "expired"
    REVOKED = "revoked"


TERMINAL_STATUSES = (PasscodeStatus.EXPIRED, PasscodeStatus.REVOKED)


class Passcode(Base):
    """
    Code string granting its owner time- and usage-bounded access.
    """
    __tablename__ = "passcodes"
    __table_args__ = (
        CheckConstraint("usage_count >= 0", name="ck_passcodes_usage_count_non_negative"),
        CheckConstraint("usage_limit IS NULL OR usage_limit > 0", name="ck_passcodes_usage_limit_positive"),
        CheckConstraint("usage_limit IS NULL OR usage_count <= usage_limit", name="ck_passcodes_usage_within_limit"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    code = Column(String(128), unique=True, nullable=False, index=True)
    type = Column(SQLEnum(PasscodeType, values_callable=lambda e: [m.value for m in e], native_enum=False),
                  nullable=False)
    status = Column(SQLEnum(PasscodeStatus, values_callable=lambda e: [m.value for m in e], native_enum=False),
                    default=PasscodeStatus.ACTIVE, nullable=False, index=True)
    expiry_time = Column(DateTime(timezone=True), nullable=True)
    usage_limit = Column(Integer, nullable=True)
    usage_count = Column(Integer, default=0, nullable=False)
    permissions = Column(PermissionList, nullable=True)
    application_id = Column(Integer, nullable=True)  # Approved visitor application, if any

    # Timestamps
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return (f"<Passcode(id={self.id}, user_id={self.user_id}, type='{self.type}', status='{self.status}', "
                f"usage={self.usage_count}/{self.usage_limit})>")
