import json

import msgpack
import pytest

from membersync.codec import DecodeError
from membersync.mapping import KeyNotFoundError, MappingStore, MemoryKeyValue
from membersync.models import ProjectInfo, SFAccount, SFContact, SFProduct2
from membersync.project_cache import ProjectCache
from membersync.resolvers import Resolver, RetryableError


class FakeLookup:
    def __init__(self, reply=b"", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    def __call__(self, subject, payload, timeout):
        self.calls.append((subject, payload, timeout))
        if self.error is not None:
            raise self.error
        return self.reply


class FakePg:
    def __init__(self, account=None, product=None, contact=None, email="", error=None):
        self.account = account
        self.product = product
        self.contact = contact
        self.email = email
        self.error = error
        self.calls = []

    def _answer(self, name, value):
        self.calls.append(name)
        if self.error is not None:
            raise self.error
        return value

    def fetch_account(self, sfid):
        return self._answer("account", self.account)

    def fetch_product2(self, sfid):
        return self._answer("product2", self.product)

    def fetch_contact(self, sfid):
        return self._answer("contact", self.contact)

    def fetch_primary_email(self, contact_sfid):
        return self._answer("email", self.email)


class BrokenKV:
    def get(self, key):
        raise RuntimeError("connection lost")


def put_json(kv, key, record):
    kv.put(key, json.dumps(record).encode())


def make(kv=None, lookup=None, pg=None, mapping_kv=None, subject="lfx.lookup_v1_mapping"):
    kv = kv if kv is not None else MemoryKeyValue()
    mapping = MappingStore(mapping_kv if mapping_kv is not None else MemoryKeyValue(),
                           retry_interval=0)
    resolver = Resolver(kv, mapping, ProjectCache(), lookup or FakeLookup(),
                        subject, pg)
    return resolver, kv, mapping


def test_fetch_kv_record_json_and_msgpack():
    resolver, kv, _ = make()
    put_json(kv, "a", {"Name": "Acme"})
    kv.put("b", msgpack.packb({"Name": "Beta"}))
    assert resolver.fetch_kv_record("a") == {"Name": "Acme"}
    assert resolver.fetch_kv_record("b") == {"Name": "Beta"}


def test_fetch_kv_record_missing_and_garbage():
    resolver, kv, _ = make()
    with pytest.raises(KeyNotFoundError):
        resolver.fetch_kv_record("nope")
    kv.put("bad", b"\xc1")
    with pytest.raises(DecodeError):
        resolver.fetch_kv_record("bad")


def test_resolve_project_success_and_cached():
    lookup = FakeLookup(reply=b"  uid-1\n")
    resolver, kv, _ = make(lookup=lookup, subject="custom.subject")
    put_json(kv, "salesforce_b2b-Project__c.P1", {"Name": "Proj", "Slug__c": "proj"})
    first = resolver.resolve_project("P1")
    assert first == ProjectInfo(uid="uid-1", name="Proj", slug="proj")
    assert resolver.resolve_project("P1") == first
    assert len(lookup.calls) == 1
    subject, payload, _ = lookup.calls[0]
    assert subject == "custom.subject"
    assert payload == b"salesforce-project__c.P1"


def test_resolve_project_empty_and_missing():
    lookup = FakeLookup(reply=b"uid")
    resolver, _, _ = make(lookup=lookup)
    assert resolver.resolve_project("") is None
    assert resolver.resolve_project("P9") is None
    assert lookup.calls == []


def test_resolve_project_no_mapping_not_cached():
    lookup = FakeLookup(reply=b"   ")
    resolver, kv, _ = make(lookup=lookup)
    put_json(kv, "salesforce_b2b-Project__c.P1", {"Name": "Proj"})
    assert resolver.resolve_project("P1") is None
    assert resolver.project_cache.get("P1") is None


def test_resolve_project_lookup_errors_are_retryable():
    resolver, kv, _ = make(lookup=FakeLookup(reply=b"error: boom"))
    put_json(kv, "salesforce_b2b-Project__c.P1", {"Name": "Proj"})
    with pytest.raises(RetryableError):
        resolver.resolve_project("P1")
    resolver2, kv2, _ = make(lookup=FakeLookup(error=TimeoutError("timeout")))
    put_json(kv2, "salesforce_b2b-Project__c.P1", {"Name": "Proj"})
    with pytest.raises(RetryableError):
        resolver2.resolve_project("P1")


def test_resolve_project_bad_record_skips():
    lookup = FakeLookup(reply=b"uid")
    resolver, kv, _ = make(lookup=lookup)
    put_json(kv, "salesforce_b2b-Project__c.P1", {"Name": 12})
    assert resolver.resolve_project("P1") is None
    assert lookup.calls == []


def test_kv_failure_is_retryable():
    resolver, _, _ = make(kv=BrokenKV())
    with pytest.raises(RetryableError):
        resolver.resolve_account("A1")
    with pytest.raises(RetryableError):
        resolver.resolve_project("P1")


def test_resolve_account_from_kv():
    pg = FakePg()
    resolver, kv, _ = make(pg=pg)
    put_json(kv, "salesforce_b2b-Account.A1", {"Name": "Acme", "Website": "acme.example.com"})
    account = resolver.resolve_account("A1")
    assert account.name == "Acme"
    assert account.website == "acme.example.com"
    assert pg.calls == []


def test_resolve_account_missing_without_and_with_fallback():
    resolver, _, _ = make()
    assert resolver.resolve_account("A1") is None
    assert resolver.resolve_account("") is None

    fallback_account = SFAccount(id="A1", name="Acme")
    resolver2, _, _ = make(pg=FakePg(account=fallback_account))
    assert resolver2.resolve_account("A1") is fallback_account

    resolver3, _, _ = make(pg=FakePg(account=None))
    assert resolver3.resolve_account("A1") is None


def test_resolve_account_fallback_error_is_retryable():
    resolver, _, _ = make(pg=FakePg(error=RuntimeError("db down")))
    with pytest.raises(RetryableError):
        resolver.resolve_account("A1")


def test_resolve_product2_and_contact_fallback():
    product = SFProduct2(id="X", name="Gold")
    contact = SFContact(id="C", first_name="Ann")
    resolver, kv, _ = make(pg=FakePg(product=product, contact=contact))
    assert resolver.resolve_product2("X") is product
    assert resolver.resolve_contact("C") is contact
    put_json(kv, "salesforce_b2b-Product2.Y", {"Name": "Silver", "Family": "Membership"})
    resolved = resolver.resolve_product2("Y")
    assert (resolved.name, resolved.family) == ("Silver", "Membership")


def test_resolve_asset_no_fallback():
    pg = FakePg()
    resolver, kv, _ = make(pg=pg)
    assert resolver.resolve_asset("S1") is None
    put_json(kv, "salesforce_b2b-Asset.S1", {"AccountId": "A1", "Projects__c": "P1"})
    asset = resolver.resolve_asset("S1")
    assert (asset.account_id, asset.projects_sfid) == ("A1", "P1")
    assert pg.calls == []


def add_email(kv, mapping, sfid, contact, address, primary=False, active=True, **extra):
    record = {
        "Contact_ID__c": contact,
        "Alternate_Email_Address__c": address,
        "Primary_Email__c": primary,
        "Active__c": active,
    }
    record.update(extra)
    put_json(kv, f"salesforce_b2b-Alternate_Email__c.{sfid}", record)
    mapping.add_email_to_contact(contact, sfid)


def test_primary_email_preferred():
    resolver, kv, mapping = make()
    add_email(kv, mapping, "E1", "C1", "first@example.com")
    add_email(kv, mapping, "E2", "C1", "main@example.com", primary=True)
    assert resolver.resolve_primary_email("C1") == "main@example.com"


def test_primary_email_fallback_to_first_valid():
    resolver, kv, mapping = make()
    mapping.add_email_to_contact("C1", "GONE")
    add_email(kv, mapping, "E1", "C1", "inactive@example.com", primary=True, active=False)
    add_email(kv, mapping, "E2", "C1", "deleted@example.com", primary=True, IsDeleted=True)
    add_email(kv, mapping, "E3", "C1", "sdc@example.com", primary=True,
              _sdc_deleted_at="2024-01-01")
    add_email(kv, mapping, "E4", "C1", "", primary=True)
    put_json(kv, "salesforce_b2b-Alternate_Email__c.E5",
             {"Contact_ID__c": "C2", "Alternate_Email_Address__c": "other@example.com",
              "Primary_Email__c": True, "Active__c": True})
    mapping.add_email_to_contact("C1", "E5")
    add_email(kv, mapping, "E6", "C1", "one@example.com")
    add_email(kv, mapping, "E7", "C1", "two@example.com")
    assert resolver.resolve_primary_email("C1") == "one@example.com"


def test_primary_email_none_found():
    resolver, kv, mapping = make(pg=FakePg(email="pg@example.com"))
    add_email(kv, mapping, "E1", "C1", "x@example.com", active=False)
    assert resolver.resolve_primary_email("C1") == ""


def test_primary_email_pg_fallback_when_index_empty():
    pg = FakePg(email="pg@example.com")
    resolver, _, _ = make(pg=pg)
    assert resolver.resolve_primary_email("C1") == "pg@example.com"
    assert pg.calls == ["email"]

    resolver2, _, _ = make()
    assert resolver2.resolve_primary_email("C1") == ""

    resolver3, _, _ = make(pg=FakePg(error=RuntimeError("db down")))
    assert resolver3.resolve_primary_email("C1") == ""


def test_primary_email_broken_index_uses_fallback():
    mapping_kv = MemoryKeyValue()
    mapping_kv.put("contact.emails.C1", b"not json")
    resolver, _, _ = make(pg=FakePg(email="pg@example.com"), mapping_kv=mapping_kv)
    assert resolver.resolve_primary_email("C1") == "pg@example.com"