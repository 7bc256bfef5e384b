# membersync

`membersync` provides the parts needed to turn Salesforce B2B records from a
key-value store into search-index documents for membership data. It covers
three resource types:

- **project_membership_tier** (`IndexedProjectMembershipTier`)
- **project_membership** (`IndexedProjectMembership`)
- **key_contact** (`IndexedKeyContact`)

It also provides typed source records, payload decoding, dependency
resolution, forward-lookup indexes and an indexer publisher.

## Installation

```
pip install membersync
```

To run the test suite:

```
pip install "membersync[test]"
pytest
```

## Modules

### `membersync.models`

Dataclasses for the source records: `SFProduct2`, `SFAsset`, `SFAccount`,
`SFProject`, `SFContact`, `SFAlternateEmail` and `SFProjectRole`.

- Each record has a `from_dict(data)` class method. It maps the Salesforce
  field names (`Product2Id`, `Projects__c` and so on) onto attributes.
- Keys are matched exactly first, then case-insensitively.
- Missing or `null` fields keep their defaults.
- A value of the wrong type raises `ValueError`.

The indexed document classes, `IndexingConfig`, `IndexerMessage` and
`DeleteRequest` have a `to_dict()` method that produces the wire form:

- Optional fields that are empty are left out.
- Timestamps are written as RFC 3339 in UTC, with a `Z` suffix.

`IndexPublisher` wraps a callable `publish(subject, body)`:

- `publish_upsert(subject, doc, config)` sends an `"updated"` message that
  carries the document and its indexing config.
- `publish_delete(subject, uid)` sends a `"deleted"` message.
- The body is compact JSON in UTF-8.

`IndexSubjects` groups the three indexer subjects. `ProjectInfo` holds a
resolved project: its v2 UID, name and slug.

### `membersync.helpers`

- `generate_deterministic_uid(sfid)`: a UUID v5 of the Salesforce ID under a
  fixed namespace, so the same record always maps to the same document.
- `build_membership_name(company, product)`: returns `"Company - Product"`,
  or whichever of the two is not empty.
- `coalesce_date(*values)`: returns the first value that is not empty.
- `parse_timestamp_or_now(s)`: returns an aware UTC datetime. It accepts:
  - RFC 3339
  - Salesforce's `+0000`-style offsets, with or without a fraction
  - `YYYY-MM-DD HH:MM:SS`, read as UTC

  For an empty or unparseable string it returns the current time.

### `membersync.codec`

- `decode_payload(data)` decodes a JSON object and falls back to a msgpack
  map. A `null` payload gives `{}`. Anything else raises `DecodeError`.
- `is_soft_deleted(data)` is true in either of these cases:
  - `_sdc_deleted_at` is set to anything other than `null` or `""`.
  - `IsDeleted` is `true`, either as a boolean or as the string `"true"` in
    any case.

### `membersync.mapping`

`MappingStore` keeps JSON string lists in a key-value bucket. The lists are:

| List | Methods |
| --- | --- |
| account → assets | `add_asset_to_account`, `remove_asset_from_account`, `get_assets_for_account` |
| product2 → assets | the `*_product2` methods |
| contact → project roles | the `*_project_role*_contact` methods |
| asset → project roles | the `*_project_role*_asset` methods |
| contact → e-mails | the `*_email*_contact` methods |

Writing to a list:

- Adding a value that is already present does nothing, and so does removing
  one that is absent.
- Writes use `create` for a new key and a compare-and-set `update` for an
  existing one.
- A failed write is retried up to 5 times, waiting `retry_interval` between
  tries (0.2 s by default). After that it raises `RuntimeError`.
- `get_list` raises `ValueError` when the stored value is not a JSON list of
  strings.

`MemoryKeyValue` is a thread-safe in-memory bucket with stream-style
revisions. It has `get`, `put`, `create`, `update` and `delete`.

- `get` raises `KeyNotFoundError` for a missing key.
- `create` and `update` raise `RevisionMismatchError` on conflict.
- `is_revision_mismatch_error(err)` recognises these conflicts, including by
  their error text.

### `membersync.project_cache`

`ProjectCache(ttl=600.0, clock=time.monotonic)` is a thread-safe map from
project SFID to `ProjectInfo`. It has `get`, `set` and `delete`.

- Entries expire after `ttl` seconds. A `ttl` of zero or less means entries
  never expire.
- `get` returns `None` for an entry that is missing or has expired.

### `membersync.resolvers`

`Resolver(v1_objects_kv, mapping, project_cache, lookup, lookup_subject, pg_fallback)`
reads dependency records from the objects bucket under keys such as
`salesforce_b2b-Account.<sfid>`.

The `resolve_*` methods share the same outcomes:

- `None` when the record cannot be found.
- `RetryableError` on a transient failure: a bucket error, a failed lookup,
  or a failed fallback query.

The individual methods:

- `resolve_account`, `resolve_product2` and `resolve_contact` fall back to
  the optional `PgFallback` when the key is missing.
- `resolve_asset` reads the bucket only.
- `resolve_project(sfid)` reads the `Project__c` record for its name and
  slug. It then asks `lookup(subject, payload, timeout)` for the v2 UID,
  sending `salesforce-project__c.<sfid>` to `lookup_subject` (default
  `lfx.lookup_v1_mapping`, timeout 5 s). The result is cached. An empty reply
  means there is no mapping; a reply starting with `error: ` raises
  `RetryableError`.
- `resolve_primary_email(contact_sfid)` goes through the contact's e-mail
  list. It returns the active, non-deleted primary address, or else the first
  active one, or else `""`. When the list is empty it asks the fallback.

### `membersync.pg_fallback`

`PgFallbackRepo(connection)` runs read-only point lookups against the
`salesforce_b2b` schema. It works with any DB-API 2.0 connection that uses
the `%s` parameter style.

- It provides `fetch_account`, `fetch_product2`, `fetch_contact` and
  `fetch_primary_email`.
- The `fetch_*` methods for records return `None` when no row matches, and
  `fetch_primary_email` returns `""`.
- A failed query raises `RuntimeError`.

## Example

```python
import json

from membersync.mapping import MappingStore, MemoryKeyValue
from membersync.project_cache import ProjectCache
from membersync.resolvers import Resolver

objects = MemoryKeyValue()
objects.put(
    "salesforce_b2b-Project__c.a0P000000000001",
    json.dumps({"Name": "Example Project", "Slug__c": "example"}).encode(),
)

def lookup(subject, payload, timeout):
    return b"00000000-0000-0000-0000-000000000001"

resolver = Resolver(objects, MappingStore(MemoryKeyValue()), ProjectCache(), lookup)
print(resolver.resolve_project("a0P000000000001"))
# ProjectInfo(uid='00000000-0000-0000-0000-000000000001', name='Example Project', slug='example')
```

## What this package does not do

The package has no component that receives change messages from a stream and
acknowledges them. It also has no handlers that read `Asset`, `Product2` or
`Project_Role__c` records, build the indexed documents from them and re-index
dependants when an account, product or contact changes. The pieces above are
there to build those on.

It ships no messaging client, no database driver and no command-line
program. You supply the bucket, the `lookup` callable, the `publish` callable
and the database connection.