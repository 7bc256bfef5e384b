"""Forward-lookup indexes kept as JSON string lists in a key-value bucket."""

from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Protocol

logger = logging.getLogger(__name__)

# Key formats of the forward-lookup indexes in the mapping bucket.
_ACCOUNT_ASSETS = "account.assets.{}"
_PRODUCT2_ASSETS = "product2.assets.{}"
_CONTACT_PROJECT_ROLES = "contact.project-roles.{}"
_ASSET_PROJECT_ROLES = "asset.project-roles.{}"
_CONTACT_EMAILS = "contact.emails.{}"

_OCC_MAX_RETRIES = 5
_OCC_RETRY_INTERVAL = 0.2


@dataclass(frozen=True)
class KeyValueEntry:
    """A value read from a key-value bucket together with its revision."""

    key: str
    value: bytes
    revision: int


class KeyNotFoundError(LookupError):
    """The requested key does not exist in the bucket."""


class RevisionMismatchError(Exception):
    """A compare-and-set write saw a different revision than expected."""


class _KeyValue(Protocol):
    def get(self, key: str) -> KeyValueEntry: ...

    def create(self, key: str, value: bytes) -> int: ...

    def update(self, key: str, value: bytes, revision: int) -> int: ...


class MemoryKeyValue:
    """Thread-safe in-memory bucket with stream-style revision numbers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, KeyValueEntry] = {}
        self._sequence = 0

    def _store(self, key: str, value: bytes) -> int:
        self._sequence += 1
        self._entries[key] = KeyValueEntry(key, bytes(value), self._sequence)
        return self._sequence

    def get(self, key: str) -> KeyValueEntry:
        """Return the entry for key or raise KeyNotFoundError."""
        with self._lock:
            try:
                return self._entries[key]
            except KeyError:
                raise KeyNotFoundError(f"key not found: {key}") from None

    def put(self, key: str, value: bytes) -> int:
        """Write value unconditionally and return its revision."""
        with self._lock:
            return self._store(key, value)

    def create(self, key: str, value: bytes) -> int:
        """Write value only if key does not exist yet."""
        with self._lock:
            if key in self._entries:
                raise RevisionMismatchError(f"key exists: {key}")
            return self._store(key, value)

    def update(self, key: str, value: bytes, revision: int) -> int:
        """Write value only if the key's current revision equals revision."""
        with self._lock:
            current = self._entries.get(key)
            if current is None or current.revision != revision:
                raise RevisionMismatchError(
                    f"wrong last sequence: {current.revision if current else 0}"
                )
            return self._store(key, value)

    def delete(self, key: str) -> None:
        """Remove key; removing a missing key does nothing."""
        with self._lock:
            self._entries.pop(key, None)


def is_revision_mismatch_error(err: BaseException) -> bool:
    """Tell whether err is a concurrency conflict worth retrying."""
    if isinstance(err, RevisionMismatchError):
        return True
    text = str(err)
    return (
        "err_code=10071" in text
        or "wrong last sequence" in text
        or "key exists" in text
    )


class MappingStore:
    """Maintains forward-lookup index lists with optimistic concurrency control."""

    def __init__(self, kv: _KeyValue, retry_interval: float = _OCC_RETRY_INTERVAL) -> None:
        self._kv = kv
        self._retry_interval = retry_interval

    def get_list(self, key: str) -> tuple[list[str], int]:
        """Return the list stored at key and its revision; ([], 0) when missing."""
        try:
            entry = self._kv.get(key)
        except KeyNotFoundError:
            return [], 0
        try:
            decoded = json.loads(entry.value)
        except (ValueError, UnicodeDecodeError) as exc:
            raise ValueError(f"mapping get_list unmarshal {key!r}: {exc}") from exc
        if decoded is None:
            decoded = []
        if not isinstance(decoded, list) or not all(isinstance(v, str) for v in decoded):
            raise ValueError(f"mapping get_list unmarshal {key!r}: not a list of strings")
        return decoded, entry.revision

    def list_values(self, key: str) -> list[str]:
        """Return the list stored at key, or an empty list."""
        values, _ = self.get_list(key)
        return values

    def _conflict(self, operation: str, key: str, attempt: int, err: Exception) -> None:
        if is_revision_mismatch_error(err):
            logger.debug("mapping OCC conflict on %s, retrying: key=%s attempt=%d error=%s",
                         operation, key, attempt, err)
        else:
            logger.warning("mapping non-OCC error on %s, retrying: key=%s attempt=%d error=%s",
                           operation, key, attempt, err)
        time.sleep(self._retry_interval)

    def add_to_list(self, key: str, value: str) -> None:
        """Append value to the list at key; adding a present value does nothing."""
        for attempt in range(1, _OCC_MAX_RETRIES + 1):
            values, revision = self.get_list(key)
            if value in values:
                return
            encoded = json.dumps([*values, value]).encode("utf-8")
            try:
                if revision == 0:
                    self._kv.create(key, encoded)
                else:
                    self._kv.update(key, encoded, revision)
                return
            except Exception as exc:  # any write failure is retried
                self._conflict("add_to_list", key, attempt, exc)
        raise RuntimeError(
            f"mapping add_to_list {key!r}: exceeded {_OCC_MAX_RETRIES} OCC retries"
        )

    def remove_from_list(self, key: str, value: str) -> None:
        """Remove value from the list at key; removing an absent value does nothing."""
        for attempt in range(1, _OCC_MAX_RETRIES + 1):
            values, revision = self.get_list(key)
            if value not in values or revision == 0:
                return
            encoded = json.dumps([v for v in values if v != value]).encode("utf-8")
            try:
                self._kv.update(key, encoded, revision)
                return
            except Exception as exc:  # any write failure is retried
                self._conflict("remove_from_list", key, attempt, exc)
        raise RuntimeError(
            f"mapping remove_from_list {key!r}: exceeded {_OCC_MAX_RETRIES} OCC retries"
        )

    # ---- typed helpers for each index ----

    def add_asset_to_account(self, account_sfid: str, asset_sfid: str) -> None:
        self.add_to_list(_ACCOUNT_ASSETS.format(account_sfid), asset_sfid)

    def remove_asset_from_account(self, account_sfid: str, asset_sfid: str) -> None:
        self.remove_from_list(_ACCOUNT_ASSETS.format(account_sfid), asset_sfid)

    def get_assets_for_account(self, account_sfid: str) -> list[str]:
        return self.list_values(_ACCOUNT_ASSETS.format(account_sfid))

    def add_asset_to_product2(self, product2_sfid: str, asset_sfid: str) -> None:
        self.add_to_list(_PRODUCT2_ASSETS.format(product2_sfid), asset_sfid)

    def remove_asset_from_product2(self, product2_sfid: str, asset_sfid: str) -> None:
        self.remove_from_list(_PRODUCT2_ASSETS.format(product2_sfid), asset_sfid)

    def get_assets_for_product2(self, product2_sfid: str) -> list[str]:
        return self.list_values(_PRODUCT2_ASSETS.format(product2_sfid))

    def add_project_role_to_contact(self, contact_sfid: str, role_sfid: str) -> None:
        self.add_to_list(_CONTACT_PROJECT_ROLES.format(contact_sfid), role_sfid)

    def remove_project_role_from_contact(self, contact_sfid: str, role_sfid: str) -> None:
        self.remove_from_list(_CONTACT_PROJECT_ROLES.format(contact_sfid), role_sfid)

    def get_project_roles_for_contact(self, contact_sfid: str) -> list[str]:
        return self.list_values(_CONTACT_PROJECT_ROLES.format(contact_sfid))

    def add_project_role_to_asset(self, asset_sfid: str, role_sfid: str) -> None:
        self.add_to_list(_ASSET_PROJECT_ROLES.format(asset_sfid), role_sfid)

    def remove_project_role_from_asset(self, asset_sfid: str, role_sfid: str) -> None:
        self.remove_from_list(_ASSET_PROJECT_ROLES.format(asset_sfid), role_sfid)

    def get_project_roles_for_asset(self, asset_sfid: str) -> list[str]:
        return self.list_values(_ASSET_PROJECT_ROLES.format(asset_sfid))

    def add_email_to_contact(self, contact_sfid: str, email_sfid: str) -> None:
        self.add_to_list(_CONTACT_EMAILS.format(contact_sfid), email_sfid)

    def remove_email_from_contact(self, contact_sfid: str, email_sfid: str) -> None:
        self.remove_from_list(_CONTACT_EMAILS.format(contact_sfid), email_sfid)

    def get_emails_for_contact(self, contact_sfid: str) -> list[str]:
        return self.list_values(_CONTACT_EMAILS.format(contact_sfid))