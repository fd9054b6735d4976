import datetime as dt
import hashlib
from typing import Callable

Clock = Callable[[], dt.datetime]


def utc_now() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def as_utc(d: dt.datetime) -> dt.datetime:
    # naive datetimes from cryptography or JSON payloads are UTC
    if d.tzinfo is None:
        d = d.replace(tzinfo=dt.timezone.utc)
    return d.astimezone(dt.timezone.utc)


def iso_utc(d: dt.datetime) -> str:
    return as_utc(d).isoformat().replace("+00:00", "Z")


def whole_days_between(start: dt.datetime, end: dt.datetime) -> int:
    delta = as_utc(end) - as_utc(start)
    return int(delta.total_seconds() // 86400)


def colon_fingerprint(data: bytes) -> str:
    digest = hashlib.sha256(data).hexdigest().upper()
    return ":".join(digest[i:i + 2] for i in range(0, len(digest), 2))
