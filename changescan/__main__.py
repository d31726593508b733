"""CLI entry point for catalog change scans.

Usage:
    python -m changescan scan ./scan.yaml --watermarks .state/watermarks.json
    python -m changescan scan ./scan.yaml --watermarks .state/watermarks.json --commit
    python -m changescan scan ./scan.yaml --output work.jsonl --json-log
    python -m changescan validate ./scan.yaml

Exit codes:
    0  scan completed
    1  scan completed with partial failures (only with --fail-on-partial)
    2  invalid configuration
    3  catalog connection failure
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import IO, List, Optional

from changescan.lib.config import ScanConfig, load_config
from changescan.lib.errors import CatalogConnectionFailure, ConfigurationError
from changescan.lib.logging import setup_logging
from changescan.lib.scheduler import ScanResult
from changescan.lib.watermark import load_watermarks, merge_watermarks, save_watermarks

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PARTIAL = 1
EXIT_CONFIG = 2
EXIT_CONNECTION = 3


def write_descriptors(result: ScanResult, stream: IO[str]) -> None:
    """Write one JSON property bag per line."""
    for descriptor in result.descriptors:
        stream.write(json.dumps(descriptor.to_properties(), sort_keys=True))
        stream.write("\n")


def print_summary(config: ScanConfig, result: ScanResult) -> None:
    """Print a human-readable scan summary to stderr."""
    out = sys.stderr
    print(file=out)
    print("=" * 60, file=out)
    print("SCAN SUMMARY", file=out)
    print("=" * 60, file=out)
    print(f"  Databases:         {config.database_pattern}", file=out)
    print(f"  Tables:            {config.table_pattern}", file=out)
    print(f"  Lookback:          {config.lookback() or 'none'}", file=out)
    print(f"  Provider:          {config.update_time_provider_kind}", file=out)
    print(f"  Tables scanned:    {result.tables_scanned}", file=out)
    print(f"  Work descriptors:  {len(result.descriptors)}", file=out)
    print(f"  Datasets advanced: {len(result.watermarks)}", file=out)

    if result.failures:
        print(file=out)
        print(f"PARTIAL FAILURES ({len(result.failures)}):", file=out)
        print("-" * 40, file=out)
        for failure in result.failures:
            print(f"  {failure.entity}  [{failure.kind.value}]  {failure.message}", file=out)

    print("=" * 60, file=out)


def run_scan(args: argparse.Namespace) -> int:
    if args.commit and not args.watermarks:
        raise ConfigurationError(
            "--commit needs --watermarks",
            suggestion="Pass the watermark state file to update.",
        )

    config_path = Path(args.config)
    config = load_config(config_path)

    prior = load_watermarks(args.watermarks) if args.watermarks else {}

    client = config.build_catalog_client(base_dir=config_path.parent)
    with config.build_pool(client) as pool:
        scheduler = config.build_scheduler(pool)
        result = scheduler.scan(prior, now=args.now)

    if args.output:
        with open(args.output, "w", encoding="utf-8") as f:
            write_descriptors(result, f)
        logger.info("Wrote %d work descriptor(s) to %s", len(result.descriptors), args.output)
    else:
        write_descriptors(result, sys.stdout)

    if args.commit:
        save_watermarks(args.watermarks, merge_watermarks(prior, result.watermarks))

    print_summary(config, result)

    if result.has_failures and args.fail_on_partial:
        return EXIT_PARTIAL
    return EXIT_OK


def run_validate(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    print(f"Configuration OK: {args.config}")
    print(json.dumps(config.model_dump(), indent=2, default=str))
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="changescan",
        description="Find changed tables and partitions in a metadata catalog",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Scan and print work descriptors as JSON lines
    python -m changescan scan ./scan.yaml --watermarks .state/watermarks.json

    # Scan and advance the stored watermarks
    python -m changescan scan ./scan.yaml --watermarks .state/watermarks.json --commit

    # Validate a configuration file
    python -m changescan validate ./scan.yaml
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    parser.add_argument(
        "--json-log",
        action="store_true",
        help="Output logs in JSON format (for log aggregation systems)",
    )
    parser.add_argument("--log-file", help="Write logs to a file in addition to console")

    subparsers = parser.add_subparsers(dest="command", required=True)

    scan = subparsers.add_parser("scan", help="Run a change scan")
    scan.add_argument("config", help="Scan configuration YAML")
    scan.add_argument("--watermarks", help="Watermark state file (JSON)")
    scan.add_argument("--now", type=int, help="Reference time in ms since the epoch (default: now)")
    scan.add_argument("--output", help="Write work descriptors to this file instead of stdout")
    scan.add_argument(
        "--commit",
        action="store_true",
        help="Merge advanced watermarks into the watermark file",
    )
    scan.add_argument(
        "--fail-on-partial",
        action="store_true",
        help="Exit with status 1 when some entities could not be evaluated",
    )
    scan.set_defaults(handler=run_scan)

    validate = subparsers.add_parser("validate", help="Validate a scan configuration")
    validate.add_argument("config", help="Scan configuration YAML")
    validate.set_defaults(handler=run_validate)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(verbose=args.verbose, json_format=args.json_log, log_file=args.log_file)

    try:
        return args.handler(args)
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return EXIT_CONFIG
    except CatalogConnectionFailure as e:
        logger.error("Scan aborted: %s", e)
        return EXIT_CONNECTION


if __name__ == "__main__":
    sys.exit(main())
