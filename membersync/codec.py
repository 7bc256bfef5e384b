"""Decoding of key-value payloads and soft-delete detection."""

from __future__ import annotations

import json
from typing import Any, Mapping

import msgpack


class DecodeError(ValueError):
    """A payload is neither a JSON object nor a msgpack map."""


def _as_record(value: Any) -> dict[str, Any] | None:
    if value is None:
        return {}
    if isinstance(value, dict) and all(isinstance(k, str) for k in value):
        return value
    return None


def decode_payload(data: bytes) -> dict[str, Any]:
    """Decode data as a JSON object, falling back to a msgpack map.

    A null payload decodes to an empty mapping.
    """
    try:
        record = _as_record(json.loads(data))
    except (ValueError, UnicodeDecodeError):
        record = None
    if record is not None:
        return record

    try:
        unpacked = msgpack.unpackb(data, raw=False, strict_map_key=False)
    except Exception as exc:  # msgpack raises several unrelated types
        raise DecodeError(f"payload is neither JSON nor msgpack: {exc}") from exc
    record = _as_record(unpacked)
    if record is None:
        raise DecodeError(f"payload is not a map: got {type(unpacked).__name__}")
    return record


def is_soft_deleted(data: Mapping[str, Any]) -> bool:
    """Tell whether a decoded record is logically deleted.

    True when _sdc_deleted_at is set to anything but null or an empty string,
    or when IsDeleted is true (a boolean or the string "true" in any case).
    """
    marker = data.get("_sdc_deleted_at")
    if marker is not None and (not isinstance(marker, str) or marker != ""):
        return True

    flag = data.get("IsDeleted")
    if isinstance(flag, bool):
        return flag
    if isinstance(flag, str):
        return flag.lower() == "true"
    return False