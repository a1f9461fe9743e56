from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID


def to_jsonable(value: object) -> object:
    """Coerce metadata values into something the JSON column accepts."""
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (list, tuple, set)):
        return [to_jsonable(v) for v in value]
    if isinstance(value, dict):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    return value
