"""Database point lookups for dependency records missing from the objects bucket."""

from __future__ import annotations

import logging
from contextlib import closing
from typing import Any, Protocol, Sequence

from membersync.models import SFAccount, SFContact, SFProduct2

logger = logging.getLogger(__name__)

_ACCOUNT_QUERY = """
SELECT "Id",
       COALESCE("Name", ''),
       "Logo_URL__c",
       "Website",
       "SFID_B2B__c",
       COALESCE("IsDeleted", false),
       "CreatedDate"::text,
       "LastModifiedDate"::text
  FROM salesforce_b2b."Account"
 WHERE "Id" = %s
 LIMIT 1
"""

_PRODUCT2_QUERY = """
SELECT "Id",
       COALESCE("Name", ''),
       "Family",
       "Type__c",
       "Project__c",
       COALESCE("IsDeleted", false),
       "CreatedDate"::text,
       "LastModifiedDate"::text
  FROM salesforce_b2b."Product2"
 WHERE "Id" = %s
 LIMIT 1
"""

_CONTACT_QUERY = """
SELECT "Id",
       "FirstName",
       "LastName",
       "Title",
       COALESCE("IsDeleted", false),
       "CreatedDate"::text,
       "LastModifiedDate"::text
  FROM salesforce_b2b."Contact"
 WHERE "Id" = %s
 LIMIT 1
"""

# Primary emails sort first; otherwise the oldest active, non-deleted email wins.
_PRIMARY_EMAIL_QUERY = """
SELECT COALESCE("Alternate_Email_Address__c", ''),
       COALESCE("Primary_Email__c", false)
  FROM salesforce_b2b."Alternate_Email__c"
 WHERE "Contact_ID__c" = %s
   AND COALESCE("IsDeleted", false) = false
   AND COALESCE("Active__c", false) = true
   AND "Alternate_Email_Address__c" IS NOT NULL
   AND "Alternate_Email_Address__c" != ''
 ORDER BY "Primary_Email__c" DESC, "CreatedDate" ASC
 LIMIT 1
"""


class _Cursor(Protocol):
    def execute(self, query: str, params: Sequence[Any]) -> Any: ...

    def fetchone(self) -> Sequence[Any] | None: ...

    def close(self) -> Any: ...


class _Connection(Protocol):
    def cursor(self) -> _Cursor: ...


def _text(value: Any) -> str:
    return "" if value is None else str(value)


class PgFallbackRepo:
    """Read-only point lookups against the salesforce_b2b schema.

    Works with any DB-API 2.0 connection using the "%s" parameter style.
    Lookups return None (or "" for emails) when no row matches and raise
    RuntimeError when the query itself fails.
    """

    def __init__(self, connection: _Connection) -> None:
        self._connection = connection

    def _fetch_row(self, operation: str, query: str, sfid: str) -> Sequence[Any] | None:
        try:
            with closing(self._connection.cursor()) as cursor:
                cursor.execute(query, (sfid,))
                return cursor.fetchone()
        except Exception as exc:
            raise RuntimeError(f"pg fallback {operation} {sfid}: {exc}") from exc

    def fetch_account(self, sfid: str) -> SFAccount | None:
        """Return the Account with the given ID, or None."""
        row = self._fetch_row("fetch_account", _ACCOUNT_QUERY, sfid)
        if row is None:
            return None
        id_, name, logo_url, website, sfid_b2b, is_deleted, created, modified = row
        logger.debug("pg fallback: resolved account %s (%s)", sfid, name)
        return SFAccount(
            id=_text(id_),
            name=_text(name),
            logo_url=_text(logo_url),
            website=_text(website),
            sfid_b2b=_text(sfid_b2b),
            is_deleted=bool(is_deleted),
            created_date=_text(created),
            last_modified_date=_text(modified),
        )

    def fetch_product2(self, sfid: str) -> SFProduct2 | None:
        """Return the Product2 with the given ID, or None."""
        row = self._fetch_row("fetch_product2", _PRODUCT2_QUERY, sfid)
        if row is None:
            return None
        id_, name, family, type_, project_sfid, is_deleted, created, modified = row
        logger.debug("pg fallback: resolved product2 %s (%s)", sfid, name)
        return SFProduct2(
            id=_text(id_),
            name=_text(name),
            family=_text(family),
            type=_text(type_),
            project_sfid=_text(project_sfid),
            is_deleted=bool(is_deleted),
            created_date=_text(created),
            last_modified_date=_text(modified),
        )

    def fetch_contact(self, sfid: str) -> SFContact | None:
        """Return the Contact with the given ID, or None."""
        row = self._fetch_row("fetch_contact", _CONTACT_QUERY, sfid)
        if row is None:
            return None
        id_, first_name, last_name, title, is_deleted, created, modified = row
        logger.debug("pg fallback: resolved contact %s", sfid)
        return SFContact(
            id=_text(id_),
            first_name=_text(first_name),
            last_name=_text(last_name),
            title=_text(title),
            is_deleted=bool(is_deleted),
            created_date=_text(created),
            last_modified_date=_text(modified),
        )

    def fetch_primary_email(self, contact_sfid: str) -> str:
        """Return the contact's primary (else first active) email, or ""."""
        row = self._fetch_row("fetch_primary_email", _PRIMARY_EMAIL_QUERY, contact_sfid)
        if row is None:
            return ""
        email, is_primary = row
        logger.debug("pg fallback: resolved email of contact %s (primary=%s)",
                     contact_sfid, bool(is_primary))
        return _text(email)