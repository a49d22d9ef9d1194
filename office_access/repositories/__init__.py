from office_access.repositories.base import ValidationOutcome
from office_access.repositories.passcode import PasscodeRepository, validate_passcode_data
from office_access.repositories.access_record import (
    AccessRecordQuery,
    AccessRecordRepository,
    validate_record_data,
)

__all__ = [
    "ValidationOutcome",
    "PasscodeRepository",
    "validate_passcode_data",
    "AccessRecordQuery",
    "AccessRecordRepository",
    "validate_record_data",
]
