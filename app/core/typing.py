"""
Small helpers for SQLModel queries and timestamps.

SQLite drops tzinfo on round-trip, so datetimes read back from the store go
through `ensure_utc()` before being compared with `utc_now()`.
"""

from typing import TYPE_CHECKING, Optional, TypeVar
from datetime import datetime, timezone

if TYPE_CHECKING:
    from sqlalchemy.orm.attributes import InstrumentedAttribute

T = TypeVar("T")


def col(attr: T) -> "InstrumentedAttribute[T]":
    """
    Lets type checkers accept column methods on model attributes, e.g.
    `col(PriceSnapshot.recorded_at).desc()`. Returns its argument.
    """
    return attr  # type: ignore[return-value]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Naive values are taken to be UTC; aware ones are converted."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ensure_int(value: Optional[int], default: int = 0) -> int:
    """Primary keys are Optional until flushed; persisted rows always have one."""
    return value if value is not None else default
