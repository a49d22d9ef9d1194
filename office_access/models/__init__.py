from office_access.models.user import User, UserType, UserStatus
from office_access.models.passcode import Passcode, PasscodeType, PasscodeStatus
from office_access.models.access_record import AccessRecord, AccessDirection, AccessResult

__all__ = [
    "User",
    "UserType",
    "UserStatus",
    "Passcode",
    "PasscodeType",
    "PasscodeStatus",
    "AccessRecord",
    "AccessDirection",
    "AccessResult",
]
