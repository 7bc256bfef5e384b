"""Resolution of linked Salesforce records and of v2 project UIDs."""

from __future__ import annotations

import logging
from typing import Any, Callable, Protocol

from membersync.codec import DecodeError, decode_payload
from membersync.mapping import KeyNotFoundError, KeyValueEntry, MappingStore
from membersync.models import (
    ProjectInfo,
    SFAccount,
    SFAlternateEmail,
    SFAsset,
    SFContact,
    SFProduct2,
    SFProject,
)
from membersync.project_cache import ProjectCache

logger = logging.getLogger(__name__)

DEFAULT_LOOKUP_SUBJECT = "lfx.lookup_v1_mapping"
LOOKUP_TIMEOUT = 5.0

Lookup = Callable[[str, bytes, float], bytes]
"""Request-reply call: (subject, payload, timeout in seconds) -> reply body."""


class RetryableError(Exception):
    """A transient failure; the message being processed should be retried."""


class PgFallback(Protocol):
    """Point lookups used when a dependency record is not yet in the bucket."""

    def fetch_account(self, sfid: str) -> SFAccount | None: ...

    def fetch_product2(self, sfid: str) -> SFProduct2 | None: ...

    def fetch_contact(self, sfid: str) -> SFContact | None: ...

    def fetch_primary_email(self, contact_sfid: str) -> str: ...


class _ReadOnlyKeyValue(Protocol):
    def get(self, key: str) -> KeyValueEntry: ...


class Resolver:
    """Looks up linked records in the objects bucket, with optional database fallback.

    Resolve methods return None when a record cannot be found (the caller
    should skip) and raise RetryableError on transient failures.
    """

    def __init__(
        self,
        v1_objects_kv: _ReadOnlyKeyValue,
        mapping: MappingStore,
        project_cache: ProjectCache | None,
        lookup: Lookup,
        lookup_subject: str = DEFAULT_LOOKUP_SUBJECT,
        pg_fallback: PgFallback | None = None,
    ) -> None:
        self._kv = v1_objects_kv
        self._mapping = mapping
        self._project_cache = project_cache if project_cache is not None else ProjectCache()
        self._lookup = lookup
        self._lookup_subject = lookup_subject or DEFAULT_LOOKUP_SUBJECT
        self._pg = pg_fallback

    @property
    def project_cache(self) -> ProjectCache:
        return self._project_cache

    def fetch_kv_record(self, key: str) -> dict[str, Any]:
        """Read and decode (JSON or msgpack) the record stored at key.

        Raises KeyNotFoundError when the key is missing and DecodeError when
        the value cannot be decoded.
        """
        entry = self._kv.get(key)
        try:
            return decode_payload(entry.value)
        except DecodeError as exc:
            raise DecodeError(
                f"fetch_kv_record: could not decode {key!r} as JSON or msgpack"
            ) from exc

    def _fetch(self, kind: str, sfid: str) -> dict[str, Any] | None:
        """Fetch a dependency record; None when missing, RetryableError otherwise."""
        try:
            return self.fetch_kv_record(f"salesforce_b2b-{kind}.{sfid}")
        except KeyNotFoundError:
            return None
        except Exception as exc:
            logger.error("failed to fetch %s record from KV: sfid=%s error=%s", kind, sfid, exc)
            raise RetryableError(f"fetch {kind} {sfid}: {exc}") from exc

    def resolve_project(self, project_sfid: str) -> ProjectInfo | None:
        """Return the v2 UID and B2B name/slug for a project SFID, using the cache."""
        if not project_sfid:
            return None

        cached = self._project_cache.get(project_sfid)
        if cached is not None:
            return cached

        data = self._fetch("Project__c", project_sfid)
        if data is None:
            logger.info("project__c record not found in KV (project may not be in v2): %s",
                        project_sfid)
            return None

        try:
            project = SFProject.from_dict(data)
        except ValueError as exc:
            logger.error("failed to decode project__c record %s: %s", project_sfid, exc)
            return None

        project_uid = self.lookup_v2_project_uid(project_sfid)
        if not project_uid:
            logger.info("v2 project UID not found for SFID (project may not be in v2): %s",
                        project_sfid)
            return None

        info = ProjectInfo(uid=project_uid, name=project.name, slug=project.slug)
        self._project_cache.set(project_sfid, info)
        return info

    def _resolve_with_fallback(
        self,
        kind: str,
        sfid: str,
        record_type: Any,
        fallback: Callable[[str], Any] | None,
    ) -> Any:
        if not sfid:
            return None
        data = self._fetch(kind, sfid)
        if data is None:
            if fallback is not None:
                try:
                    record = fallback(sfid)
                except Exception as exc:
                    logger.error("pg fallback failed for %s %s: %s", kind, sfid, exc)
                    raise RetryableError(f"pg fallback {kind} {sfid}: {exc}") from exc
                if record is not None:
                    logger.info("resolved %s %s via pg fallback (not yet in KV)", kind, sfid)
                    return record
            logger.warning("%s record not found in KV: %s", kind, sfid)
            return None
        try:
            return record_type.from_dict(data)
        except ValueError as exc:
            logger.error("failed to decode %s record %s: %s", kind, sfid, exc)
            return None

    def resolve_account(self, account_sfid: str) -> SFAccount | None:
        """Return the Account record, falling back to the database when configured."""
        fallback = self._pg.fetch_account if self._pg is not None else None
        return self._resolve_with_fallback("Account", account_sfid, SFAccount, fallback)

    def resolve_product2(self, product2_sfid: str) -> SFProduct2 | None:
        """Return the Product2 record, falling back to the database when configured."""
        fallback = self._pg.fetch_product2 if self._pg is not None else None
        return self._resolve_with_fallback("Product2", product2_sfid, SFProduct2, fallback)

    def resolve_asset(self, asset_sfid: str) -> SFAsset | None:
        """Return the Asset record from the bucket only."""
        return self._resolve_with_fallback("Asset", asset_sfid, SFAsset, None)

    def resolve_contact(self, contact_sfid: str) -> SFContact | None:
        """Return the Contact record, falling back to the database when configured."""
        fallback = self._pg.fetch_contact if self._pg is not None else None
        return self._resolve_with_fallback("Contact", contact_sfid, SFContact, fallback)

    def resolve_primary_email(self, contact_sfid: str) -> str:
        """Return the contact's primary email, else its first active email, else ""."""
        try:
            email_sfids = self._mapping.get_emails_for_contact(contact_sfid)
        except Exception as exc:
            logger.debug("no emails index found for contact %s: %s", contact_sfid, exc)
            email_sfids = []

        if not email_sfids:
            if self._pg is not None:
                try:
                    email = self._pg.fetch_primary_email(contact_sfid)
                except Exception as exc:
                    logger.warning("pg fallback failed for primary email of %s: %s",
                                   contact_sfid, exc)
                else:
                    if email:
                        logger.info("resolved primary email of %s via pg fallback", contact_sfid)
                        return email
            return ""

        fallback_email = ""
        for email_sfid in email_sfids:
            try:
                data = self.fetch_kv_record(f"salesforce_b2b-Alternate_Email__c.{email_sfid}")
                record = SFAlternateEmail.from_dict(data)
            except Exception as exc:
                logger.debug("skipping alternate email %s: %s", email_sfid, exc)
                continue

            if not record.active:
                continue
            if record.is_deleted or record.sdc_deleted_at:
                continue
            if record.contact_id != contact_sfid:
                continue
            if not record.alternate_email_address:
                continue
            if record.primary_email:
                return record.alternate_email_address
            if not fallback_email:
                fallback_email = record.alternate_email_address

        if fallback_email:
            logger.debug("using first active email as fallback for %s", contact_sfid)
        return fallback_email

    def lookup_v2_project_uid(self, project_sfid: str) -> str:
        """Translate a project SFID to a v2 UID; "" when no mapping exists."""
        mapping_key = f"salesforce-project__c.{project_sfid}"
        try:
            reply = self._lookup(self._lookup_subject, mapping_key.encode("utf-8"), LOOKUP_TIMEOUT)
        except Exception as exc:
            logger.warning("project UID lookup failed for %s: %s", project_sfid, exc)
            raise RetryableError(f"project UID lookup {mapping_key}: {exc}") from exc

        response = reply.decode("utf-8", errors="replace").strip()
        if not response:
            return ""
        if response.startswith("error: "):
            logger.warning("project UID lookup returned error for %s: %s", project_sfid, response)
            raise RetryableError(f"project UID lookup {mapping_key}: {response}")
        return response