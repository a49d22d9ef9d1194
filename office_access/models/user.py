from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum
from office_access.core.clock import utcnow
from office_access.core.database import Base
import enum


class UserType(str, enum.Enum):
    TENANT_ADMIN = "tenant_admin"
    MERCHANT_ADMIN = "merchant_admin"
    EMPLOYEE = "employee"
    VISITOR = "visitor"


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    PENDING = "pending"


ADMIN_USER_TYPES = (UserType.TENANT_ADMIN, UserType.MERCHANT_ADMIN)


class User(Base):
    """
    Person who can hold passcodes: employees, visitors and the admins
    operating the back office.
    """
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(50), unique=True, nullable=True, index=True)
    name = Column(String(255), nullable=False)
    phone = Column(String(20), nullable=True)
    user_type = Column(SQLEnum(UserType, values_callable=lambda e: [m.value for m in e], native_enum=False),
                       nullable=False, index=True)
    status = Column(SQLEnum(UserStatus, values_callable=lambda e: [m.value for m in e], native_enum=False),
                    default=UserStatus.ACTIVE, nullable=False)
    merchant_id = Column(Integer, nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def is_admin(self) -> bool:
        return self.user_type in ADMIN_USER_TYPES

    def __repr__(self):
        return f"<User(id={self.id}, name='{self.name}', type='{self.user_type}', status='{self.status}')>"
