"""Tests for changescan/lib/selector.py - database and table selection."""

import pytest

from changescan.lib.catalog import InMemoryCatalogClient
from changescan.lib.errors import CatalogListingFailure, ConfigurationError
from changescan.lib.selector import DatasetSelector, NamePattern
from tests.conftest import make_table


class TestNamePattern:
    """Tests for NamePattern."""

    @pytest.mark.parametrize(
        "pattern,name,expected",
        [
            ("*", "anything", True),
            ("sales", "sales", True),
            ("sales", "sales_eu", False),
            ("sales_*", "sales_eu", True),
            ("sales_*|audit", "audit", True),
            ("sales_*, audit", "audit", True),
            ("sales_*|audit", "marketing", False),
            ("SALES", "sales", True),
            ("regex:^tmp_\\d+$", "tmp_42", True),
            ("regex:tmp_\\d+", "tmp_42_old", False),
        ],
    )
    def test_matches(self, pattern, name, expected):
        assert NamePattern(pattern).matches(name) is expected

    def test_case_sensitive(self):
        assert not NamePattern("SALES", case_sensitive=True).matches("sales")

    def test_empty_pattern_matches_everything(self):
        assert NamePattern("").matches("db")

    def test_invalid_regex(self):
        with pytest.raises(ConfigurationError, match="regular expression"):
            NamePattern("regex:([")


class TestDatasetSelector:
    """Tests for DatasetSelector."""

    @pytest.fixture
    def client(self):
        client = InMemoryCatalogClient()
        for db, table in [
            ("sales", "orders"),
            ("sales", "orders_tmp"),
            ("sales", "customers"),
            ("marketing", "campaigns"),
            ("audit", "events"),
        ]:
            client.add_table(make_table(db, table))
        return client

    def test_select_all(self, client):
        selection = DatasetSelector().select(client)

        assert len(selection.tables) == 5
        assert selection.failures == []

    def test_catalog_order(self, client):
        selection = DatasetSelector().select(client)

        assert [t.identifier.urn for t in selection.tables] == [
            "sales@orders",
            "sales@orders_tmp",
            "sales@customers",
            "marketing@campaigns",
            "audit@events",
        ]

    def test_database_and_table_patterns(self, client):
        selection = DatasetSelector("sales|audit", "orders*|events").select(client)

        assert [t.identifier.urn for t in selection.tables] == [
            "sales@orders",
            "sales@orders_tmp",
            "audit@events",
        ]

    def test_exclude(self, client):
        selector = DatasetSelector("sales", exclude=["sales.*_tmp"])

        assert [t.name for t in selector.select(client).tables] == ["orders", "customers"]

    def test_exclude_needs_database(self):
        with pytest.raises(ConfigurationError, match="database.table"):
            DatasetSelector(exclude=["orders_tmp"])

    def test_select_databases(self, client):
        assert DatasetSelector("*ing|audit").select_databases(client) == ["marketing", "audit"]

    def test_no_match(self, client):
        assert DatasetSelector("finance").select(client).tables == []

    def test_failing_database_is_recorded(self, client):
        class BrokenClient(InMemoryCatalogClient):
            def list_tables(self, database):
                if database == "marketing":
                    raise TimeoutError("read timed out")
                return super().list_tables(database)

        broken = BrokenClient()
        for table in client.list_tables("sales") + client.list_tables("marketing"):
            broken.add_table(table)

        selection = DatasetSelector().select(broken)

        assert [t.database for t in selection.tables] == ["sales"] * 3
        assert len(selection.failures) == 1
        assert selection.failures[0].database == "marketing"
        assert isinstance(selection.failures[0].cause, TimeoutError)

    def test_database_list_failure_raises(self):
        class DownClient(InMemoryCatalogClient):
            def list_databases(self):
                raise ConnectionResetError("connection reset")

        with pytest.raises(CatalogListingFailure, match="Could not list databases"):
            DatasetSelector().select(DownClient())

    def test_repr(self):
        assert repr(DatasetSelector("sales", "orders")) == (
            "DatasetSelector(database_pattern='sales', table_pattern='orders')"
        )
