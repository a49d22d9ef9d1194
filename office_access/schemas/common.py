from typing import Any, List, Optional
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from office_access.core.clock import utcnow


class CamelModel(BaseModel):
    """Base schema: snake_case attributes, camelCase on the wire"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


def now_iso() -> str:
    return utcnow().isoformat()


def api_response(message: str, data: Any = None, success: bool = True) -> dict:
    """Envelope shared by every endpoint"""
    return {
        "success": success,
        "message": message,
        "data": data,
        "timestamp": now_iso(),
    }


def error_body(message: str, errors: Optional[List[str]] = None) -> dict:
    body = api_response(message, data=None, success=False)
    if errors:
        body["errors"] = errors
    return body


def paginate(items: List[Any], page: int, limit: int, total: int) -> dict:
    total_pages = (total + limit - 1) // limit if limit else 0
    return {
        "data": items,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": total_pages,
        },
    }
