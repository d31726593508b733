"""Tests for the changescan CLI (changescan/__main__.py)."""

import json

import pytest

from changescan.__main__ import EXIT_CONFIG, EXIT_OK, EXIT_PARTIAL, build_parser, main
from tests.conftest import DAY_SECONDS, NOW_MS, NOW_SECONDS

CATALOG = f"""
databases:
  sales:
    tables:
      orders:
        location: /warehouse/sales/orders
        partition_keys: [ds]
        serde: {{format: avro, schema_url: /schemas/orders.avsc}}
        create_time: {NOW_SECONDS - 40 * DAY_SECONDS}
        partitions:
          - name: ds=2024-12-01
            create_time: {NOW_SECONDS - 45 * DAY_SECONDS}
          - name: ds=2025-01-14
            create_time: {NOW_SECONDS - DAY_SECONDS}
      customers:
        create_time: {NOW_SECONDS - 2 * DAY_SECONDS}
      legacy:
        create_time: 0
  scratch:
    tables:
      tmp:
        create_time: {NOW_SECONDS}
"""


@pytest.fixture
def workspace(tmp_path, restore_logging):
    (tmp_path / "catalog.yaml").write_text(CATALOG)
    config = tmp_path / "scan.yaml"
    config.write_text(
        """
scan:
  database_pattern: sales
  lookback_duration: 30d
  catalog: catalog.yaml
"""
    )
    return tmp_path


def _lines(text):
    return [json.loads(line) for line in text.splitlines() if line.strip()]


class TestScanCommand:
    """Tests for `changescan scan`."""

    def test_scan_prints_descriptors(self, workspace, capsys):
        code = main(["scan", str(workspace / "scan.yaml"), "--now", str(NOW_MS)])

        captured = capsys.readouterr()
        descriptors = _lines(captured.out)
        assert code == EXIT_OK
        assert [(d["dataset.urn"], d.get("partition.name")) for d in descriptors] == [
            ("sales@orders", "ds=2025-01-14"),
            ("sales@customers", None),
        ]
        assert "SCAN SUMMARY" in captured.err
        assert "sales@legacy" in captured.err

    def test_commit_then_rescan_is_empty(self, workspace, capsys):
        state = workspace / "state" / "watermarks.json"
        args = ["scan", str(workspace / "scan.yaml"), "--now", str(NOW_MS), "--watermarks", str(state)]

        assert main(args + ["--commit"]) == EXIT_OK
        capsys.readouterr()

        saved = json.loads(state.read_text())["watermarks"]
        assert saved == {
            "sales@customers": (NOW_SECONDS - 2 * DAY_SECONDS) * 1000,
            "sales@orders": (NOW_SECONDS - DAY_SECONDS) * 1000,
        }

        assert main(args) == EXIT_OK
        assert _lines(capsys.readouterr().out) == []

    def test_output_file(self, workspace, capsys):
        output = workspace / "work.jsonl"

        main(["scan", str(workspace / "scan.yaml"), "--now", str(NOW_MS), "--output", str(output)])

        assert capsys.readouterr().out == ""
        assert len(_lines(output.read_text())) == 2

    def test_fail_on_partial(self, workspace, capsys):
        code = main(["scan", str(workspace / "scan.yaml"), "--now", str(NOW_MS), "--fail-on-partial"])

        assert code == EXIT_PARTIAL

    def test_commit_needs_watermarks(self, workspace, capsys):
        code = main(["scan", str(workspace / "scan.yaml"), "--now", str(NOW_MS), "--commit"])

        captured = capsys.readouterr()
        assert code == EXIT_CONFIG
        assert "--commit needs --watermarks" in captured.err
        assert captured.out == ""

    def test_missing_config(self, tmp_path, capsys, restore_logging):
        code = main(["scan", str(tmp_path / "missing.yaml")])

        assert code == EXIT_CONFIG
        assert "Configuration error" in capsys.readouterr().err


class TestValidateCommand:
    """Tests for `changescan validate`."""

    def test_valid(self, workspace, capsys):
        assert main(["validate", str(workspace / "scan.yaml")]) == EXIT_OK

        out = capsys.readouterr().out
        assert out.startswith("Configuration OK")
        assert '"database_pattern": "sales"' in out

    def test_invalid(self, tmp_path, capsys, restore_logging):
        config = tmp_path / "scan.yaml"
        config.write_text("scan:\n  max_workers: 0\n")

        assert main(["validate", str(config)]) == EXIT_CONFIG
        assert "max_workers" in capsys.readouterr().err


class TestParser:
    """Tests for argument parsing."""

    def test_global_flags(self):
        args = build_parser().parse_args(["-v", "--json-log", "scan", "scan.yaml", "--now", "5"])

        assert args.verbose
        assert args.json_log
        assert args.now == 5
        assert args.command == "scan"

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])
