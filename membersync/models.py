"""Indexer wire messages, Salesforce source records and indexed documents."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Mapping, Protocol, TypeVar, runtime_checkable

_ZERO_TIME = datetime(1, 1, 1, tzinfo=timezone.utc)

_Record = TypeVar("_Record")


class MessageAction(str, Enum):
    """Action carried by an indexer message."""

    UPDATED = "updated"
    DELETED = "deleted"


@dataclass(frozen=True)
class IndexSubjects:
    """NATS subjects of the indexer, one per indexed resource type."""

    project_membership_tier: str
    project_membership: str
    key_contact: str


@runtime_checkable
class _Serializable(Protocol):
    def to_dict(self) -> dict[str, Any]: ...


def _plain(value: Any) -> Any:
    if isinstance(value, _Serializable):
        return value.to_dict()
    return value


def format_time(moment: datetime) -> str:
    """Format a timestamp the way the indexer expects (RFC 3339, trimmed fraction)."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    text = (
        f"{moment.year:04d}-{moment.month:02d}-{moment.day:02d}"
        f"T{moment.hour:02d}:{moment.minute:02d}:{moment.second:02d}"
    )
    if moment.microsecond:
        text += f".{moment.microsecond:06d}".rstrip("0")
    offset = moment.utcoffset()
    seconds = int(offset.total_seconds()) if offset is not None else 0
    if seconds == 0:
        return text + "Z"
    sign = "+" if seconds > 0 else "-"
    hours, minutes = divmod(abs(seconds) // 60, 60)
    return f"{text}{sign}{hours:02d}:{minutes:02d}"


def _compact(items: list[tuple[str, Any]], optional: set[str]) -> dict[str, Any]:
    """Build a dict, leaving out optional keys whose value is empty."""
    return {key: value for key, value in items if key not in optional or value}


@dataclass
class IndexingConfig:
    """Pre-computed indexing metadata sent with each upsert message."""

    object_id: str
    access_check_object: str
    access_check_relation: str
    history_check_object: str
    history_check_relation: str
    public: bool | None = None
    sort_name: str = ""
    name_and_aliases: list[str] = field(default_factory=list)
    parent_refs: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    fulltext: str = ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "object_id": self.object_id,
            "access_check_object": self.access_check_object,
            "access_check_relation": self.access_check_relation,
            "history_check_object": self.history_check_object,
            "history_check_relation": self.history_check_relation,
        }
        if self.public is not None:
            result["public"] = self.public
        result.update(
            _compact(
                [
                    ("sort_name", self.sort_name),
                    ("name_and_aliases", list(self.name_and_aliases)),
                    ("parent_refs", list(self.parent_refs)),
                    ("tags", list(self.tags)),
                    ("fulltext", self.fulltext),
                ],
                {"sort_name", "name_and_aliases", "parent_refs", "tags", "fulltext"},
            )
        )
        return result


@dataclass
class IndexerMessage:
    """Wire format of a message published to the indexer."""

    action: MessageAction
    data: Any
    headers: dict[str, str] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)
    indexing_config: IndexingConfig | None = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "action": MessageAction(self.action).value,
            "headers": dict(self.headers),
            "data": _plain(self.data),
            "tags": list(self.tags),
        }
        if self.indexing_config is not None:
            result["indexing_config"] = self.indexing_config.to_dict()
        return result


class IndexPublisher:
    """Publishes upsert and delete messages to the indexer through a publish callable."""

    def __init__(self, publish: Callable[[str, bytes], None]) -> None:
        self._publish = publish

    def publish_upsert(self, subject: str, doc: Any, config: IndexingConfig | None) -> None:
        """Send an 'updated' message carrying the document and its indexing config."""
        self._send(subject, IndexerMessage(MessageAction.UPDATED, doc, indexing_config=config))

    def publish_delete(self, subject: str, uid: str) -> None:
        """Send a 'deleted' message for the document with the given UID."""
        self._send(subject, IndexerMessage(MessageAction.DELETED, uid))

    def _send(self, subject: str, message: IndexerMessage) -> None:
        body = json.dumps(message.to_dict(), separators=(",", ":")).encode("utf-8")
        self._publish(subject, body)


# ---- Salesforce source records ----


def _text(key: str) -> Any:
    return field(default="", metadata={"key": key, "kind": "text"})


def _optional_text(key: str) -> Any:
    return field(default=None, metadata={"key": key, "kind": "optional_text"})


def _flag(key: str) -> Any:
    return field(default=False, metadata={"key": key, "kind": "flag"})


def _number(key: str) -> Any:
    return field(default=0.0, metadata={"key": key, "kind": "number"})


def _coerce(raw: Any, kind: str, key: str) -> Any:
    if kind in ("text", "optional_text"):
        if isinstance(raw, str):
            return raw
    elif kind == "flag":
        if isinstance(raw, bool):
            return raw
    elif kind == "number":
        if isinstance(raw, (int, float)) and not isinstance(raw, bool):
            return float(raw)
    raise ValueError(f"field {key!r}: unexpected value of type {type(raw).__name__}")


def _decode_record(cls: type[_Record], data: Mapping[str, Any]) -> _Record:
    """Decode a generic mapping into a typed record; missing or null fields keep defaults.

    Keys match exactly first, then case-insensitively. A value of the wrong
    type raises ValueError.
    """
    folded = {k.lower(): k for k in data if isinstance(k, str)}
    values: dict[str, Any] = {}
    for spec in fields(cls):  # type: ignore[arg-type]
        key = spec.metadata["key"]
        if key in data:
            raw = data[key]
        elif key.lower() in folded:
            raw = data[folded[key.lower()]]
        else:
            continue
        if raw is None:
            continue
        values[spec.name] = _coerce(raw, spec.metadata["kind"], key)
    return cls(**values)


@dataclass
class SFProduct2:
    """A Product2 record."""

    id: str = _text("Id")
    name: str = _text("Name")
    family: str = _text("Family")
    type: str = _text("Type__c")
    project_sfid: str = _text("Project__c")
    is_deleted: bool = _flag("IsDeleted")
    sdc_deleted_at: str | None = _optional_text("_sdc_deleted_at")
    created_date: str = _text("CreatedDate")
    last_modified_date: str = _text("LastModifiedDate")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SFProduct2:
        """Decode a Product2 record from a generic mapping."""
        return _decode_record(cls, data)


@dataclass
class SFAsset:
    """An Asset (membership) record."""

    id: str = _text("Id")
    name: str = _text("Name")
    account_id: str = _text("AccountId")
    product2_id: str = _text("Product2Id")
    product_family: str = _text("Product_Family__c")
    projects_sfid: str = _text("Projects__c")
    status: str = _text("Status")
    year: str = _text("Year__c")
    tier: str = _text("Tier__c")
    record_type_id: str = _text("RecordTypeId")
    auto_renew: bool = _flag("Auto_Renew__c")
    renewal_type: str = _text("Renewal_Type__c")
    price: float = _number("Price")
    annual_full_price: float = _number("Annual_Full_Price__c")
    payment_frequency: str = _text("PaymentFrequency__c")
    payment_terms: str = _text("PaymentTerms__c")
    agreement_date: str = _text("Agreement_Date__c")
    purchase_date: str = _text("PurchaseDate")
    install_date: str = _text("InstallDate")
    usage_end_date: str = _text("UsageEndDate")
    is_deleted: bool = _flag("IsDeleted")
    sdc_deleted_at: str | None = _optional_text("_sdc_deleted_at")
    created_date: str = _text("CreatedDate")
    last_modified_date: str = _text("LastModifiedDate")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SFAsset:
        """Decode an Asset record from a generic mapping."""
        return _decode_record(cls, data)


@dataclass
class SFAccount:
    """An Account record."""

    id: str = _text("Id")
    name: str = _text("Name")
    logo_url: str = _text("Logo_URL__c")
    website: str = _text("Website")
    sfid_b2b: str = _text("SFID_B2B__c")
    is_deleted: bool = _flag("IsDeleted")
    sdc_deleted_at: str | None = _optional_text("_sdc_deleted_at")
    created_date: str = _text("CreatedDate")
    last_modified_date: str = _text("LastModifiedDate")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SFAccount:
        """Decode an Account record from a generic mapping."""
        return _decode_record(cls, data)


@dataclass
class SFProject:
    """A Project__c record."""

    id: str = _text("Id")
    name: str = _text("Name")
    slug: str = _text("Slug__c")
    status: str = _text("Status__c")
    is_deleted: bool = _flag("IsDeleted")
    sdc_deleted_at: str | None = _optional_text("_sdc_deleted_at")
    created_date: str = _text("CreatedDate")
    last_modified_date: str = _text("LastModifiedDate")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SFProject:
        """Decode a Project__c record from a generic mapping."""
        return _decode_record(cls, data)


@dataclass
class SFContact:
    """A Contact record."""

    id: str = _text("Id")
    first_name: str = _text("FirstName")
    last_name: str = _text("LastName")
    title: str = _text("Title")
    is_deleted: bool = _flag("IsDeleted")
    sdc_deleted_at: str | None = _optional_text("_sdc_deleted_at")
    created_date: str = _text("CreatedDate")
    last_modified_date: str = _text("LastModifiedDate")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SFContact:
        """Decode a Contact record from a generic mapping."""
        return _decode_record(cls, data)


@dataclass
class SFAlternateEmail:
    """An Alternate_Email__c record."""

    id: str = _text("Id")
    contact_id: str = _text("Contact_ID__c")
    alternate_email_address: str = _text("Alternate_Email_Address__c")
    primary_email: bool = _flag("Primary_Email__c")
    active: bool = _flag("Active__c")
    is_deleted: bool = _flag("IsDeleted")
    sdc_deleted_at: str | None = _optional_text("_sdc_deleted_at")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SFAlternateEmail:
        """Decode an Alternate_Email__c record from a generic mapping."""
        return _decode_record(cls, data)


@dataclass
class SFProjectRole:
    """A Project_Role__c record."""

    id: str = _text("Id")
    asset_sfid: str = _text("Asset__c")
    contact_sfid: str = _text("Contact__c")
    role: str = _text("Role__c")
    status: str = _text("Status__c")
    board_member: bool = _flag("Board_Member__c")
    primary_contact: bool = _flag("Primary_Contact__c")
    is_deleted: bool = _flag("IsDeleted")
    sdc_deleted_at: str | None = _optional_text("_sdc_deleted_at")
    created_date: str = _text("CreatedDate")
    last_modified_date: str = _text("LastModifiedDate")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SFProjectRole:
        """Decode a Project_Role__c record from a generic mapping."""
        return _decode_record(cls, data)


# ---- Indexed documents ----


@dataclass
class IndexedProjectMembershipTier:
    """Indexer payload for a project_membership_tier document."""

    uid: str = ""
    name: str = ""
    aliases: list[str] = field(default_factory=list)
    family: str = ""
    type: str = ""
    project_uid: str = ""
    project_name: str = ""
    project_slug: str = ""
    created_at: datetime = _ZERO_TIME
    updated_at: datetime = _ZERO_TIME

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            [
                ("uid", self.uid),
                ("name", self.name),
                ("aliases", list(self.aliases)),
                ("family", self.family),
                ("type", self.type),
                ("project_uid", self.project_uid),
                ("project_name", self.project_name),
                ("project_slug", self.project_slug),
                ("created_at", format_time(self.created_at)),
                ("updated_at", format_time(self.updated_at)),
            ],
            {"aliases", "family", "type", "project_name", "project_slug"},
        )


@dataclass
class IndexedProjectMembership:
    """Indexer payload for a project_membership document."""

    uid: str = ""
    name: str = ""
    aliases: list[str] = field(default_factory=list)
    status: str = ""
    year: str = ""
    tier: str = ""
    annual_full_price: float = 0.0
    agreement_date: str = ""
    purchase_date: str = ""
    start_date: str = ""
    end_date: str = ""
    company_name: str = ""
    company_logo_url: str = ""
    company_website: str = ""
    product_name: str = ""
    product_family: str = ""
    product_type: str = ""
    product_uid: str = ""
    project_uid: str = ""
    project_name: str = ""
    project_slug: str = ""
    created_at: datetime = _ZERO_TIME
    updated_at: datetime = _ZERO_TIME

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            [
                ("uid", self.uid),
                ("name", self.name),
                ("aliases", list(self.aliases)),
                ("status", self.status),
                ("year", self.year),
                ("tier", self.tier),
                ("annual_full_price", self.annual_full_price),
                ("agreement_date", self.agreement_date),
                ("purchase_date", self.purchase_date),
                ("start_date", self.start_date),
                ("end_date", self.end_date),
                ("company_name", self.company_name),
                ("company_logo_url", self.company_logo_url),
                ("company_website", self.company_website),
                ("product_name", self.product_name),
                ("product_family", self.product_family),
                ("product_type", self.product_type),
                ("product_uid", self.product_uid),
                ("project_uid", self.project_uid),
                ("project_name", self.project_name),
                ("project_slug", self.project_slug),
                ("created_at", format_time(self.created_at)),
                ("updated_at", format_time(self.updated_at)),
            ],
            {
                "aliases", "status", "year", "tier", "annual_full_price",
                "agreement_date", "purchase_date", "start_date", "end_date",
                "company_name", "company_logo_url", "company_website",
                "product_name", "product_family", "product_type", "product_uid",
                "project_name", "project_slug",
            },
        )


@dataclass
class IndexedKeyContact:
    """Indexer payload for a key_contact document."""

    uid: str = ""
    membership_uid: str = ""
    product_uid: str = ""
    role: str = ""
    status: str = ""
    board_member: bool = False
    primary_contact: bool = False
    first_name: str = ""
    last_name: str = ""
    title: str = ""
    email: str = ""
    company_name: str = ""
    company_logo_url: str = ""
    company_website: str = ""
    project_uid: str = ""
    project_name: str = ""
    project_slug: str = ""
    created_at: datetime = _ZERO_TIME
    updated_at: datetime = _ZERO_TIME

    def to_dict(self) -> dict[str, Any]:
        return _compact(
            [
                ("uid", self.uid),
                ("membership_uid", self.membership_uid),
                ("product_uid", self.product_uid),
                ("role", self.role),
                ("status", self.status),
                ("board_member", self.board_member),
                ("primary_contact", self.primary_contact),
                ("first_name", self.first_name),
                ("last_name", self.last_name),
                ("title", self.title),
                ("email", self.email),
                ("company_name", self.company_name),
                ("company_logo_url", self.company_logo_url),
                ("company_website", self.company_website),
                ("project_uid", self.project_uid),
                ("project_name", self.project_name),
                ("project_slug", self.project_slug),
                ("created_at", format_time(self.created_at)),
                ("updated_at", format_time(self.updated_at)),
            ],
            {
                "product_uid", "role", "status", "first_name", "last_name",
                "title", "email", "company_name", "company_logo_url",
                "company_website", "project_name", "project_slug",
            },
        )


@dataclass
class DeleteRequest:
    """Request to remove a document from the index."""

    uid: str

    def to_dict(self) -> dict[str, Any]:
        return {"uid": self.uid}


@dataclass(frozen=True)
class ProjectInfo:
    """Resolved project: v2 UID plus the B2B project name and slug."""

    uid: str
    name: str = ""
    slug: str = ""