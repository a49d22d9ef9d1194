from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, List, Optional
import logging

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from office_access.core.clock import ensure_utc
from office_access.core.errors import ConflictError, PersistenceError

logger = logging.getLogger(__name__)


@dataclass
class ValidationOutcome:
    """Result of a pure validation rule: every failing field is reported."""
    is_valid: bool
    errors: List[str] = field(default_factory=list)


def parse_datetime(value: Any) -> Optional[datetime]:
    """
    Accept a datetime or an ISO-8601 string and return an aware UTC datetime.

    Raises:
        ValueError: If a string cannot be parsed
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        return ensure_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))
    raise ValueError(f"Unsupported datetime value: {value!r}")


class BaseRepository:
    """Holds the session a store works against; one per request."""

    def __init__(self, db: Session):
        self.db = db

    def _commit(self, action: str, conflict_message: Optional[str] = None) -> None:
        try:
            self.db.commit()
        except IntegrityError as e:
            self.db.rollback()
            if conflict_message:
                raise ConflictError(conflict_message) from e
            logger.error(f"Integrity error while trying to {action}: {e}")
            raise PersistenceError(f"Failed to {action}") from e
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(f"Database error while trying to {action}: {e}")
            raise PersistenceError(f"Failed to {action}") from e
