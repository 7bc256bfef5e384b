"""Small helpers for building indexed documents."""

from __future__ import annotations

import re
import uuid
from datetime import datetime, timedelta, timezone

# Stable namespace for deterministic UIDs of Salesforce objects.
_SALESFORCE_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "https://lfx.dev/salesforce")

_TIMESTAMP = re.compile(
    r"(\d{4})-(\d{2})-(\d{2})([T ])(\d{2}):(\d{2}):(\d{2})"
    r"(?:\.(\d+))?"
    r"(Z|[+-]\d{2}:?\d{2})?"
)


def generate_deterministic_uid(sfid: str) -> str:
    """Return the UUID v5 of a Salesforce ID under the platform namespace."""
    return str(uuid.uuid5(_SALESFORCE_NAMESPACE, sfid))


def build_membership_name(company_name: str, product_name: str) -> str:
    """Return "{company} - {product}", or whichever part is not empty."""
    if company_name and product_name:
        return f"{company_name} - {product_name}"
    return company_name or product_name or ""


def coalesce_date(*args: str) -> str:
    """Return the first non-empty value, or an empty string."""
    return next((value for value in args if value), "")


def _parse_offset(text: str) -> timezone | None:
    if text == "Z":
        return timezone.utc
    digits = text[1:].replace(":", "")
    hours, minutes = int(digits[:2]), int(digits[2:])
    if hours > 23 or minutes > 59:
        return None
    delta = timedelta(hours=hours, minutes=minutes)
    return timezone(-delta if text[0] == "-" else delta)


def _parse_timestamp(s: str) -> datetime | None:
    match = _TIMESTAMP.fullmatch(s)
    if match is None:
        return None
    year, month, day, sep, hour, minute, second, fraction, zone = match.groups()
    if sep == "T":
        if zone is None:
            return None
        tz = _parse_offset(zone)
        if tz is None:
            return None
    else:
        if zone is not None:
            return None
        tz = timezone.utc
    micro = int((fraction or "")[:6].ljust(6, "0"))
    try:
        moment = datetime(
            int(year), int(month), int(day), int(hour), int(minute), int(second), micro, tzinfo=tz
        )
    except ValueError:
        return None
    return moment.astimezone(timezone.utc)


def parse_timestamp_or_now(s: str) -> datetime:
    """Parse a Salesforce timestamp into an aware UTC datetime.

    Accepts RFC 3339 and the ISO 8601 variants Salesforce emits (offset with or
    without colon, optional fraction) and "YYYY-MM-DD HH:MM:SS" taken as UTC.
    Returns the current UTC time when the string is empty or unparseable.
    """
    if s:
        parsed = _parse_timestamp(s)
        if parsed is not None:
            return parsed
    return datetime.now(timezone.utc)