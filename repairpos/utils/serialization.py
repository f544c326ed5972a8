"""JSON helpers for service results (Decimals and dates as strings)."""
from datetime import date, datetime
from decimal import Decimal
from typing import Any


def serialize_value(val: Any) -> Any:
    """Recursively make a value JSON serializable."""
    if isinstance(val, Decimal):
        return str(val)
    if isinstance(val, (datetime, date)):
        return val.isoformat()
    if isinstance(val, dict):
        return {k: serialize_value(v) for k, v in val.items()}
    if isinstance(val, (list, tuple)):
        return [serialize_value(v) for v in val]
    return val
