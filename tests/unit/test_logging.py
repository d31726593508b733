"""Tests for changescan/lib/logging.py - JSON logs and dataset context."""

import json
import logging
import sys

from changescan.lib.logging import JSONFormatter, get_dataset_logger, setup_logging


def _record(msg="hello %s", args=("world",), **extra):
    record = logging.LogRecord("changescan.test", logging.INFO, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:
    """Tests for JSONFormatter."""

    def test_basic_fields(self):
        data = json.loads(JSONFormatter().format(_record()))

        assert data["level"] == "INFO"
        assert data["logger"] == "changescan.test"
        assert data["message"] == "hello world"
        assert data["timestamp"].endswith("Z")
        assert "extra" not in data

    def test_extra_fields(self):
        data = json.loads(JSONFormatter().format(_record(database="sales", table="orders")))

        assert data["extra"] == {"database": "sales", "table": "orders"}

    def test_exclude_fields(self):
        formatter = JSONFormatter(exclude_fields=["table"])
        data = json.loads(formatter.format(_record(database="sales", table="orders")))

        assert data["extra"] == {"database": "sales"}

    def test_exception(self):
        try:
            raise ValueError("bad")
        except ValueError:
            record = logging.LogRecord(
                "changescan.test", logging.ERROR, __file__, 1, "failed", (), sys.exc_info()
            )

        data = json.loads(JSONFormatter().format(record))
        assert "ValueError: bad" in data["exception"]


class TestDatasetLogger:
    """Tests for DatasetLogger."""

    def test_context_on_records(self, caplog):
        log = get_dataset_logger("changescan.test", database="sales", table="orders")

        with caplog.at_level(logging.INFO, logger="changescan.test"):
            log.info("Scanned %d partition(s)", 3)

        record = caplog.records[-1]
        assert record.getMessage() == "Scanned 3 partition(s)"
        assert record.database == "sales"
        assert record.table == "orders"

    def test_bind(self):
        log = get_dataset_logger("changescan.test", database="sales")
        bound = log.bind(table="orders")

        assert bound.context == {"database": "sales", "table": "orders"}
        assert log.context == {"database": "sales"}

    def test_explicit_extra_is_kept(self, caplog):
        log = get_dataset_logger("changescan.test", database="sales")

        with caplog.at_level(logging.WARNING, logger="changescan.test"):
            log.warning("Skipping", extra={"partition": "ds=1"})

        record = caplog.records[-1]
        assert record.partition == "ds=1"
        assert record.database == "sales"


class TestSetupLogging:
    """Tests for setup_logging()."""

    def test_json_to_file(self, tmp_path, restore_logging):
        log_file = tmp_path / "scan.log"

        setup_logging(verbose=True, json_format=True, log_file=str(log_file))
        logging.getLogger("changescan.test").debug("debug line")
        for handler in logging.getLogger().handlers:
            handler.flush()

        line = log_file.read_text().strip().splitlines()[-1]
        assert json.loads(line)["message"] == "debug line"
        assert logging.getLogger().level == logging.DEBUG

    def test_quiets_fsspec(self, restore_logging):
        setup_logging()

        assert logging.getLogger("fsspec").level == logging.WARNING
        assert logging.getLogger().level == logging.INFO
