"""Tests for changescan/lib/work.py and entities - work descriptors."""

import pytest

from changescan.lib.entities import DatasetIdentifier, PartitionHandle, TableHandle, parse_partition_name
from changescan.lib.work import PropertyKeys, WorkDescriptor
from tests.conftest import NOW_MS, make_partition, make_table


@pytest.fixture
def partitioned_descriptor():
    table = make_table("sales", "orders", partition_keys=["ds", "hr"], location="/warehouse/sales/orders")
    partition = make_partition(table, ["2025-01-15", "03"])
    return WorkDescriptor(
        dataset=table.identifier, table=table, update_time=NOW_MS, partition=partition
    )


class TestDatasetIdentifier:
    """Tests for DatasetIdentifier urns."""

    def test_urn(self):
        assert DatasetIdentifier("db", "t").urn == "db@t"
        assert str(DatasetIdentifier("db", "t")) == "db@t"

    def test_from_urn(self):
        assert DatasetIdentifier.from_urn("db@t") == DatasetIdentifier("db", "t")

    @pytest.mark.parametrize("urn", ["db", "@t", "db@", "db@t@x", ""])
    def test_invalid_urn(self, urn):
        with pytest.raises(ValueError):
            DatasetIdentifier.from_urn(urn)


class TestPartitionNames:
    """Tests for partition name rendering and parsing."""

    def test_name_for(self):
        partition = PartitionHandle(DatasetIdentifier("db", "t"), ("f1",))
        assert partition.name_for(["field"]) == "field=f1"

    def test_name_for_mismatch(self):
        partition = PartitionHandle(DatasetIdentifier("db", "t"), ("f1",))
        with pytest.raises(ValueError):
            partition.name_for(["ds", "hr"])

    def test_parse(self):
        assert parse_partition_name("ds=2025-01-15/hr=03") == (("ds", "hr"), ("2025-01-15", "03"))

    def test_parse_empty_value(self):
        assert parse_partition_name("ds=") == (("ds",), ("",))

    @pytest.mark.parametrize("name", ["ds", "=x", "ds=1/hr"])
    def test_parse_invalid(self, name):
        with pytest.raises(ValueError):
            parse_partition_name(name)


class TestWorkDescriptor:
    """Tests for WorkDescriptor serialization."""

    def test_table_properties(self):
        table = make_table("db", "t", location="/warehouse/db/t")
        descriptor = WorkDescriptor(dataset=table.identifier, table=table, update_time=NOW_MS)

        props = descriptor.to_properties()

        assert props == {
            PropertyKeys.DATASET_URN: "db@t",
            PropertyKeys.DATABASE: "db",
            PropertyKeys.TABLE: "t",
            PropertyKeys.TABLE_LOCATION: "/warehouse/db/t",
            PropertyKeys.SERDE_FORMAT: "avro",
            PropertyKeys.SCHEMA_URL: "/tmp/dummy",
            PropertyKeys.UPDATE_TIME: str(NOW_MS),
        }
        assert not descriptor.is_partition
        assert descriptor.partition_name is None

    def test_partition_properties(self, partitioned_descriptor):
        props = partitioned_descriptor.to_properties()

        assert props[PropertyKeys.PARTITION_NAME] == "ds=2025-01-15/hr=03"
        assert props[PropertyKeys.PARTITION_KEYS] == "ds,hr"
        assert props[PropertyKeys.PARTITION_LOCATION] == "/warehouse/sales/orders/ds=2025-01-15/hr=03"
        assert partitioned_descriptor.is_partition

    def test_absent_values_are_omitted(self):
        table = TableHandle(DatasetIdentifier("db", "t"), create_time=1)
        props = WorkDescriptor(dataset=table.identifier, table=table, update_time=1000).to_properties()

        assert set(props) == {
            PropertyKeys.DATASET_URN,
            PropertyKeys.DATABASE,
            PropertyKeys.TABLE,
            PropertyKeys.UPDATE_TIME,
        }

    def test_from_properties(self, partitioned_descriptor):
        restored = WorkDescriptor.from_properties(partitioned_descriptor.to_properties())

        assert restored.dataset == partitioned_descriptor.dataset
        assert restored.update_time == NOW_MS
        assert restored.partition_name == "ds=2025-01-15/hr=03"
        assert restored.table.location == "/warehouse/sales/orders"
        assert restored.to_properties() == partitioned_descriptor.to_properties()

    def test_from_properties_missing_key(self):
        with pytest.raises(KeyError):
            WorkDescriptor.from_properties({PropertyKeys.DATASET_URN: "db@t"})

    def test_from_properties_mismatched_partition(self, partitioned_descriptor):
        props = partitioned_descriptor.to_properties()
        props[PropertyKeys.PARTITION_NAME] = "dt=2025-01-15"

        with pytest.raises(ValueError):
            WorkDescriptor.from_properties(props)

    def test_to_dict(self, partitioned_descriptor):
        data = partitioned_descriptor.to_dict()

        assert data["dataset"] == "sales@orders"
        assert data["table"]["partition_keys"] == ["ds", "hr"]
        assert data["partition"]["name"] == "ds=2025-01-15/hr=03"
