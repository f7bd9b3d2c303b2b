from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterator, Optional, Union

from bson import ObjectId


DateLike = Union[date, datetime, str]


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def iso_ts(value: Optional[datetime] = None) -> str:
    """Fixed-width UTC timestamp string; sorts the same as the instant it encodes."""
    dt = to_utc(value) if value is not None else now_utc()
    return dt.strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def to_date(value: DateLike) -> date:
    """Coerce YYYY-MM-DD strings and datetimes into a plain date."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def to_utc(value: datetime) -> datetime:
    """Return a timezone-aware UTC datetime (Mongo returns naive UTC)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def iter_nights(check_in: DateLike, check_out: DateLike) -> Iterator[date]:
    """Inclusive start, exclusive end (accommodation nights)."""
    cur = to_date(check_in)
    end = to_date(check_out)
    while cur < end:
        yield cur
        cur += timedelta(days=1)


def iter_days(start: DateLike, end: DateLike) -> Iterator[date]:
    """Yield all dates between start and end inclusive."""
    cur = to_date(start)
    last = to_date(end)
    while cur <= last:
        yield cur
        cur += timedelta(days=1)


def date_range_yyyy_mm_dd(start: DateLike, end: DateLike) -> list[str]:
    """Inclusive start, exclusive end (accommodation nights)."""
    return [d.isoformat() for d in iter_nights(start, end)]


def serialize_doc(doc: Any) -> Any:
    """Recursively convert MongoDB docs into JSON-serializable structures."""
    if doc is None:
        return None

    if isinstance(doc, ObjectId):
        return str(doc)

    if isinstance(doc, datetime):
        return doc.isoformat()

    if isinstance(doc, date):
        return doc.isoformat()

    if isinstance(doc, Decimal):
        return float(doc)

    if isinstance(doc, (list, tuple)):
        return [serialize_doc(x) for x in doc]

    if isinstance(doc, dict):
        out: dict[str, Any] = {}
        for k, v in doc.items():
            if k == "_id":
                out["id"] = serialize_doc(v)
            else:
                out[k] = serialize_doc(v)
        return out

    return doc


def new_id(prefix: Optional[str] = None) -> str:
    oid = str(ObjectId())
    return f"{prefix}_{oid}" if prefix else oid
