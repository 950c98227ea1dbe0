import hashlib
import json
import math
import re
import uuid
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import Any, List

import pendulum


class HashUtils:
    """SHA-256 hashing utilities for input fingerprints."""

    @staticmethod
    def sha256_file(path: Path) -> str:
        """Compute SHA-256 of entire file contents."""
        hasher = hashlib.sha256()
        with open(path, 'rb') as f:
            while chunk := f.read(8192):
                hasher.update(chunk)
        return hasher.hexdigest()


def canonical_json(obj: Any) -> str:
    """Deterministic JSON used for hashing, ids and stored audit payloads."""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


class IDGenerator:
    """Deterministic UUIDv5 ids from component lists."""

    def __init__(self, namespace: uuid.UUID):
        self.namespace = namespace

    def generate(self, components: List[Any]) -> str:
        encoded = []
        for c in components:
            if c is None:
                encoded.append("__NULL__")
            elif c == "":
                encoded.append("__EMPTY__")
            else:
                encoded.append(c)
        return str(uuid.uuid5(self.namespace, canonical_json(encoded)))


class DateUtils:
    """
    Calendar-date helpers.

    Link dates are plain datetime.date values; pendulum does the parsing and
    supplies "today" in the configured timezone.
    """
    ISO_UTC_MILLIS = "YYYY-MM-DD[T]HH:mm:ss.SSS[Z]"

    @staticmethod
    def now_utc() -> str:
        return pendulum.now("UTC").format(DateUtils.ISO_UTC_MILLIS)

    @staticmethod
    def today(tz: str = "UTC") -> date:
        return DateUtils.as_date(pendulum.today(tz))

    @staticmethod
    def as_date(value: date) -> date:
        """Drop any time part and pendulum subclassing."""
        return date(value.year, value.month, value.day)

    # YYYY-MM-DD, optionally followed by a time part as SQLite timestamps carry
    _ISO_DATE_RE = re.compile(r"^(\d{4}-\d{2}-\d{2})(?:[T ]\d{2}:\d{2}(?::\d{2}(?:\.\d+)?)?)?$")
    _COMPACT_DATE_RE = re.compile(r"^\d{8}$")

    @staticmethod
    def parse(value: Any) -> date:
        """
        Parse a date from a date/datetime object or a string.

        Strings must be complete calendar dates, either ISO YYYY-MM-DD or
        compact YYYYMMDD. Raises ValueError on anything else.
        """
        if isinstance(value, datetime):
            return DateUtils.as_date(value)
        if isinstance(value, date):
            return DateUtils.as_date(value)
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            if isinstance(value, float) and not value.is_integer():
                raise ValueError(f"Not a date: {value!r}")
            value = str(int(value))
        if not isinstance(value, str):
            raise ValueError(f"Unsupported date value: {value!r}")

        s = value.strip()
        if not s:
            raise ValueError("Empty date string")
        iso = DateUtils._ISO_DATE_RE.match(s)
        if iso:
            s, fmt = iso.group(1), "YYYY-MM-DD"
        elif DateUtils._COMPACT_DATE_RE.match(s):
            fmt = "YYYYMMDD"
        else:
            raise ValueError(f"Not a YYYY-MM-DD or YYYYMMDD date: {value!r}")
        try:
            parsed = pendulum.from_format(s, fmt)
        except ValueError as e:
            raise ValueError(f"Invalid calendar date {value!r}: {e}") from e
        return DateUtils.as_date(parsed)

    @staticmethod
    def format(value: date | None) -> str | None:
        return value.isoformat() if value is not None else None

    @staticmethod
    def days_between(earlier: date, later: date) -> int:
        """Signed number of days from earlier to later."""
        return (later - earlier).days

    @staticmethod
    def shift_clamped(value: date, days: float, lower: date, upper: date) -> date:
        """
        Move value by a (possibly unbounded) number of days and clamp into
        [lower, upper]. Infinite shifts land directly on the bound.
        """
        if math.isinf(days):
            return upper if days > 0 else lower
        if days >= 0:
            room = (upper - value).days
            shifted = upper if days >= room else value + timedelta(days=int(days))
        else:
            room = (value - lower).days
            shifted = lower if -days >= room else value - timedelta(days=int(-days))
        return min(max(shifted, lower), upper)
