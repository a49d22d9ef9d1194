"""
Column types shared by the models.
"""
import json

from sqlalchemy.types import Text, TypeDecorator


def _check_permissions(value, direction: str) -> list:
    if not isinstance(value, (list, tuple)):
        raise ValueError(f"Permissions must be a list of strings ({direction}), got {type(value).__name__}")
    for item in value:
        if not isinstance(item, str) or not item.strip():
            raise ValueError(f"Permission entries must be non-empty strings ({direction}), got {item!r}")
    return list(value)


class PermissionList(TypeDecorator):
    """
    List of permission codes persisted as a JSON array in a text column.
    Values are checked both when written and when read back.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return json.dumps(_check_permissions(value, "write"))

    def process_result_value(self, value, dialect):
        if value is None:
            return []
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError as e:
            raise ValueError(f"Stored permissions are not valid JSON: {e}") from e
        return _check_permissions(decoded, "read")
