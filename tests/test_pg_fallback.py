import pytest

from membersync.models import SFAccount, SFContact, SFProduct2
from membersync.pg_fallback import PgFallbackRepo


class FakeCursor:
    def __init__(self, connection):
        self.connection = connection

    def execute(self, query, params):
        self.connection.calls.append((query, params))
        if self.connection.error is not None:
            raise self.connection.error

    def fetchone(self):
        return self.connection.row

    def close(self):
        self.connection.closed += 1


class FakeConnection:
    def __init__(self, row=None, error=None):
        self.row = row
        self.error = error
        self.calls = []
        self.closed = 0

    def cursor(self):
        return FakeCursor(self)


def test_fetch_account_maps_row_and_nulls():
    conn = FakeConnection(
        row=("001A", "Acme", None, "https://acme.example.com", None, False, "2024-01-02", None)
    )
    account = PgFallbackRepo(conn).fetch_account("001A")
    assert account == SFAccount(
        id="001A",
        name="Acme",
        logo_url="",
        website="https://acme.example.com",
        sfid_b2b="",
        is_deleted=False,
        created_date="2024-01-02",
        last_modified_date="",
    )
    query, params = conn.calls[0]
    assert params == ("001A",)
    assert 'salesforce_b2b."Account"' in query
    assert conn.closed == 1


def test_fetch_account_missing_returns_none():
    conn = FakeConnection(row=None)
    assert PgFallbackRepo(conn).fetch_account("001X") is None
    assert conn.closed == 1


def test_fetch_account_error_is_wrapped():
    conn = FakeConnection(error=OSError("connection reset"))
    with pytest.raises(RuntimeError, match="connection reset"):
        PgFallbackRepo(conn).fetch_account("001A")
    assert conn.closed == 1


def test_fetch_product2_maps_row():
    conn = FakeConnection(
        row=("01tP", "Gold", "Membership", None, "a0P1", True, None, "2024-03-04")
    )
    product = PgFallbackRepo(conn).fetch_product2("01tP")
    assert product == SFProduct2(
        id="01tP",
        name="Gold",
        family="Membership",
        type="",
        project_sfid="a0P1",
        is_deleted=True,
        created_date="",
        last_modified_date="2024-03-04",
    )
    assert 'salesforce_b2b."Product2"' in conn.calls[0][0]


def test_fetch_product2_missing_returns_none():
    assert PgFallbackRepo(FakeConnection()).fetch_product2("01tX") is None


def test_fetch_contact_maps_row():
    conn = FakeConnection(row=("003C", "Ada", None, "Engineer", False, None, None))
    contact = PgFallbackRepo(conn).fetch_contact("003C")
    assert contact == SFContact(
        id="003C", first_name="Ada", last_name="", title="Engineer", is_deleted=False
    )
    assert conn.calls[0][1] == ("003C",)


def test_fetch_contact_error_is_wrapped():
    conn = FakeConnection(error=ValueError("bad"))
    with pytest.raises(RuntimeError):
        PgFallbackRepo(conn).fetch_contact("003C")


def test_fetch_primary_email_returns_address():
    conn = FakeConnection(row=("ada@example.com", True))
    assert PgFallbackRepo(conn).fetch_primary_email("003C") == "ada@example.com"
    query, params = conn.calls[0]
    assert params == ("003C",)
    assert 'salesforce_b2b."Alternate_Email__c"' in query


def test_fetch_primary_email_missing_returns_empty():
    assert PgFallbackRepo(FakeConnection()).fetch_primary_email("003C") == ""


def test_fetch_primary_email_error_is_wrapped():
    conn = FakeConnection(error=RuntimeError("timeout"))
    with pytest.raises(RuntimeError, match="timeout"):
        PgFallbackRepo(conn).fetch_primary_email("003C")